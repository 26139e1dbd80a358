from typing import Any, ClassVar

from docinsight.analysis.chat_backend import ChatAnalysisBackend
from docinsight.analysis.models import AnalysisResult
from docinsight.analysis.validator import build_compliance_result
from docinsight.capture.models import DocumentType


class ComplianceBackend(ChatAnalysisBackend):
    """Bilingual (English/Arabic) summary with compliance checks and risk flags."""

    PROMPT_NAME: ClassVar[str] = "compliance"
    FOCUS: ClassVar[dict[DocumentType, str]] = {
        DocumentType.INSURANCE_CLAIM: (
            "Check claim completeness: policy number, service dates, amounts and diagnosis codes."
        ),
        DocumentType.PRESCRIPTION: (
            "Check that every medication states strength, frequency and duration."
        ),
        DocumentType.LAB_REPORT: "Check that every result carries a unit and a reference range.",
    }

    def _build_result(self, data: dict[str, Any]) -> AnalysisResult:
        return build_compliance_result(data, self.backend_id)
