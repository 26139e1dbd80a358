from docinsight.config.settings import Settings
from docinsight.redaction.base import BaseRedactor
from docinsight.redaction.engine import RedactionEngine


class RedactorFactory:
    """Creates the configured redactor."""

    @classmethod
    def create(cls, settings: Settings) -> BaseRedactor:
        return RedactionEngine(sensitive_words=settings.sensitive_words)
