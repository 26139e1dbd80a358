"""Analysis backend driven by a prompt template and a strict JSON schema."""

import json
from abc import abstractmethod
from pathlib import Path
from typing import Any, ClassVar

from docinsight.analysis.base import BaseAnalysisBackend
from docinsight.analysis.client_base import BaseAnalysisClient
from docinsight.analysis.exceptions import AnalysisResponseError
from docinsight.analysis.models import AnalysisResult
from docinsight.analysis.prompt_loader import load_json_schema, load_prompt_template
from docinsight.capture.models import DocumentType
from docinsight.logging.logger import Log
from docinsight.remote.retry import call_with_retry

_DISPLAY_NAMES: dict[DocumentType, str] = {
    DocumentType.LAB_REPORT: "lab report",
    DocumentType.PRESCRIPTION: "prescription",
    DocumentType.PHARMACY_LABEL: "pharmacy label",
    DocumentType.INSURANCE_CLAIM: "insurance claim",
    DocumentType.NUTRITION_LABEL: "nutrition label",
    DocumentType.MEDICAL_REPORT: "medical report",
    DocumentType.SPREADSHEET: "spreadsheet",
    DocumentType.CONTRACT: "contract",
    DocumentType.GENERIC: "document",
}


class ChatAnalysisBackend(BaseAnalysisBackend):
    """Shared request/parse loop for chat-completion backends.

    Subclasses name their prompt set and how parsed JSON becomes an AnalysisResult.
    """

    PROMPT_NAME: ClassVar[str] = ""
    FOCUS: ClassVar[dict[DocumentType, str]] = {}

    def __init__(
        self,
        *,
        backend_id: str,
        client: BaseAnalysisClient,
        model: str,
        temperature: float = 0.0,
        max_retries: int = 2,
        retry_base_delay_seconds: float = 1.0,
        prompt_dir: Path | None = None,
        system_prompt: str = "",
    ) -> None:
        self.backend_id = backend_id
        self._client = client
        self._model = model
        self._temperature = max(0.0, min(0.2, temperature))
        self._max_retries = max_retries
        self._retry_base_delay_seconds = retry_base_delay_seconds
        self._system_prompt = system_prompt
        self._prompt_template = load_prompt_template(self.PROMPT_NAME, prompt_dir)
        self._json_schema = load_json_schema(self.PROMPT_NAME, prompt_dir)
        self._json_schema_dict = json.loads(self._json_schema)

    async def analyze(
        self,
        image_bytes: bytes | None,
        text: str,
        language_hints: list[str],
        document_type: DocumentType,
    ) -> AnalysisResult:
        prompt = self._build_prompt(text, language_hints, document_type)
        raw_response = await call_with_retry(
            lambda: self._call_ai(prompt, image_bytes),
            service=self.backend_id,
            max_retries=self._max_retries,
            base_delay_seconds=self._retry_base_delay_seconds,
        )
        result = self._build_result(self._parse_json(raw_response))
        Log.info(
            f"Analysis backend {self.backend_id} complete",
            actions=len(result.action_items),
            flags=len(result.compliance_flags),
        )
        return result

    def _build_prompt(
        self, text: str, language_hints: list[str], document_type: DocumentType
    ) -> str:
        return self._prompt_template.format(
            document_type=_DISPLAY_NAMES.get(document_type, "document"),
            focus=self.FOCUS.get(document_type, ""),
            language_hints=", ".join(language_hints) or "any",
            json_schema=self._json_schema,
            text=text,
        )

    async def _call_ai(self, prompt: str, image_bytes: bytes | None) -> str:
        return await self._client.create_chat_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=self._system_prompt,
            user_prompt=prompt,
            schema_name=f"{self.PROMPT_NAME}_analysis",
            json_schema=self._json_schema_dict,
            image_bytes=image_bytes,
        )

    @abstractmethod
    def _build_result(self, data: dict[str, Any]) -> AnalysisResult:
        """Turn parsed JSON into an AnalysisResult."""

    @staticmethod
    def _parse_json(raw: str) -> dict[str, Any]:
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            lines = cleaned.splitlines()
            if lines and lines[0].startswith("```"):
                lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            cleaned = "\n".join(lines)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise AnalysisResponseError(f"Invalid JSON response: {exc}") from exc

        if not isinstance(parsed, dict):
            raise AnalysisResponseError("JSON response must be an object")
        return parsed
