"""Document-type to interpreter table.

The table is an immutable mapping keyed by the closed DocumentType enum and is
built once at import. Types without a dedicated interpreter (medical report,
spreadsheet, contract, generic) resolve to the passthrough interpreter.
"""

import dataclasses
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from docinsight.capture.models import DocumentType
from docinsight.recognition.models import TextBlock
from docinsight.templates.interpreters import (
    generic,
    insurance_claim,
    lab_report,
    nutrition_label,
    pharmacy_label,
    prescription,
)
from docinsight.templates.models import TemplateFinding, TemplateKind, TemplateOptions

InterpretFn = Callable[[str, list[TextBlock], TemplateOptions], TemplateFinding]


@dataclass(frozen=True)
class Interpreter:
    """One table entry: the template kind and the function that produces it."""

    kind: TemplateKind
    run: InterpretFn
    options: TemplateOptions = TemplateOptions()

    def interpret(
        self, unified_text: str, structured_blocks: list[TextBlock] | None = None
    ) -> TemplateFinding:
        return self.run(unified_text or "", list(structured_blocks or []), self.options)


_GENERIC = Interpreter(TemplateKind.GENERIC, generic.interpret)

_DEDICATED: dict[DocumentType, Interpreter] = {
    DocumentType.LAB_REPORT: Interpreter(TemplateKind.LAB_REPORT, lab_report.interpret),
    DocumentType.PRESCRIPTION: Interpreter(TemplateKind.PRESCRIPTION, prescription.interpret),
    DocumentType.PHARMACY_LABEL: Interpreter(
        TemplateKind.PHARMACY_LABEL, pharmacy_label.interpret
    ),
    DocumentType.INSURANCE_CLAIM: Interpreter(
        TemplateKind.INSURANCE_CLAIM, insurance_claim.interpret
    ),
    DocumentType.NUTRITION_LABEL: Interpreter(
        TemplateKind.NUTRITION_LABEL, nutrition_label.interpret
    ),
}

INTERPRETERS: Mapping[DocumentType, Interpreter] = MappingProxyType(
    {doc_type: _DEDICATED.get(doc_type, _GENERIC) for doc_type in DocumentType}
)


class TemplateEngine:
    """Pure, network-free selection and interpretation."""

    def __init__(self, options: TemplateOptions | None = None) -> None:
        self._options = options or TemplateOptions()

    def select(self, document_type: DocumentType) -> Interpreter:
        return dataclasses.replace(INTERPRETERS[document_type], options=self._options)

    def interpret(
        self,
        document_type: DocumentType,
        unified_text: str,
        structured_blocks: list[TextBlock] | None = None,
    ) -> TemplateFinding:
        return self.select(document_type).interpret(unified_text, structured_blocks)
