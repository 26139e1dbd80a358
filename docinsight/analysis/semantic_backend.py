from typing import Any, ClassVar

from docinsight.analysis.chat_backend import ChatAnalysisBackend
from docinsight.analysis.models import AnalysisResult
from docinsight.analysis.validator import build_semantic_result
from docinsight.capture.models import DocumentType


class SemanticBackend(ChatAnalysisBackend):
    """Summary, insights and prioritised action items."""

    PROMPT_NAME: ClassVar[str] = "semantic"
    FOCUS: ClassVar[dict[DocumentType, str]] = {
        DocumentType.LAB_REPORT: "Focus on abnormal values and their clinical significance.",
        DocumentType.MEDICAL_REPORT: (
            "Focus on medical findings, diagnoses and clinical significance."
        ),
        DocumentType.PRESCRIPTION: "Focus on medications, dosages and usage instructions.",
        DocumentType.PHARMACY_LABEL: "Focus on medications, dosages and usage instructions.",
        DocumentType.INSURANCE_CLAIM: (
            "Focus on claim details, coverage and any issues or denials."
        ),
        DocumentType.NUTRITION_LABEL: (
            "Focus on nutritional information and dietary considerations."
        ),
    }

    def _build_result(self, data: dict[str, Any]) -> AnalysisResult:
        return build_semantic_result(data, self.backend_id)
