from dataclasses import dataclass

from docinsight.logging.logger import Log
from docinsight.redaction.base import BaseRedactor
from docinsight.redaction.exceptions import RedactionPolicyViolation


@dataclass(frozen=True)
class OutboundText:
    """Text cleared for dispatch, plus whether PHI was masked out of it."""

    text: str
    redacted: bool


class OutboundGuard:
    """Last check between local text and any network adapter.

    Consent is read at dispatch time, not at capture time.
    """

    def __init__(self, redactor: BaseRedactor) -> None:
        self._redactor = redactor

    def prepare(self, text: str, consent: bool) -> OutboundText:
        """Return the text to send: untouched with consent, redacted otherwise."""
        if consent:
            return OutboundText(text=text, redacted=False)
        result = self._redactor.redact_all(text)
        return OutboundText(text=result.redacted_text, redacted=result.phi_found)

    def check(self, text: str, consent: bool, document_id: str = "") -> None:
        """Raise RedactionPolicyViolation if *text* still carries PHI without consent."""
        if consent or not text:
            return
        leftover = self._redactor.scan(text)
        if leftover:
            Log.error(
                "Blocked outbound payload containing PHI",
                document_id=document_id,
                spans=len(leftover),
            )
            raise RedactionPolicyViolation(
                f"Outbound payload contains {len(leftover)} unredacted PHI span(s)"
            )
