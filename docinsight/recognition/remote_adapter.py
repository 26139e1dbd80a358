import asyncio
import base64
from typing import Any

import httpx

from docinsight.capture.models import DocumentType
from docinsight.logging.logger import Log
from docinsight.recognition.base import BaseRemoteRecognizer
from docinsight.recognition.classifier import guess_document_type
from docinsight.recognition.models import (
    RecognitionResult,
    Region,
    SourceEngine,
    Table,
    TextBlock,
)
from docinsight.remote.exceptions import RemoteTerminalFailure, RemoteTransientFailure
from docinsight.remote.retry import call_with_retry, classify_http_error

_SERVICE = "remote OCR"
_DEFAULT_CONFIDENCE = 0.9


class HttpRemoteRecognizer(BaseRemoteRecognizer):
    """Remote recognition over a JSON HTTP API.

    Request:  ``{image, mode, language_hints, document_type, extract_tables}``
    Response: ``{text, text_blocks[{text, bounding_box, confidence}],
    tables[{rows, headers, bounding_box, confidence}], confidence,
    detected_language}``
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        timeout_seconds: int,
        max_retries: int = 2,
        retry_base_delay_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay_seconds = retry_base_delay_seconds
        self._transport = transport

    async def recognize(
        self,
        image_bytes: bytes,
        language_hints: list[str],
        document_type: DocumentType,
    ) -> RecognitionResult:
        payload = {
            "image": base64.b64encode(image_bytes).decode("ascii"),
            "mode": "accurate",
            "language_hints": list(language_hints),
            "document_type": document_type.value,
            "extract_tables": document_type
            in (DocumentType.LAB_REPORT, DocumentType.NUTRITION_LABEL, DocumentType.SPREADSHEET),
        }
        data = await call_with_retry(
            lambda: self._post(payload),
            service=_SERVICE,
            max_retries=self._max_retries,
            base_delay_seconds=self._retry_base_delay_seconds,
        )
        result = self._parse(data, document_type)
        Log.debug(f"Remote OCR returned {len(result.structured_blocks)} blocks")
        return result

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                response = await asyncio.wait_for(
                    client.post(self._url, json=payload, headers=headers),
                    timeout=self._timeout_seconds,
                )
                response.raise_for_status()
        except asyncio.TimeoutError as exc:
            raise RemoteTransientFailure(
                f"{_SERVICE} exceeded {self._timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise classify_http_error(exc, _SERVICE) from exc
        except httpx.InvalidURL as exc:
            raise RemoteTerminalFailure(f"{_SERVICE} URL is invalid: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteTerminalFailure(f"{_SERVICE} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise RemoteTerminalFailure(f"{_SERVICE} response must be a JSON object")
        return data

    @staticmethod
    def _parse(data: dict[str, Any], document_type: DocumentType) -> RecognitionResult:
        text = data.get("text")
        if not isinstance(text, str):
            raise RemoteTerminalFailure(f"{_SERVICE} response is missing 'text'")

        blocks: list[TextBlock] = []
        cursor = 0
        for raw in _as_list(data.get("text_blocks"), "text_blocks"):
            if not isinstance(raw, dict) or not isinstance(raw.get("text"), str):
                raise RemoteTerminalFailure(f"{_SERVICE} returned a malformed text block")
            block_text = raw["text"]
            found = text.find(block_text, cursor)
            offset = found if found >= 0 else cursor
            if found >= 0:
                cursor = found + len(block_text)
            blocks.append(
                TextBlock(
                    text=block_text,
                    confidence=_as_confidence(raw.get("confidence"), _DEFAULT_CONFIDENCE),
                    region=_parse_region(raw.get("bounding_box")),
                    offset=offset,
                )
            )

        tables = [
            table
            for raw in _as_list(data.get("tables"), "tables")
            if (table := _parse_table(raw)) is not None
        ]

        guess = document_type
        if guess is DocumentType.GENERIC:
            guess = guess_document_type(text)
        return RecognitionResult(
            source_engine=SourceEngine.REMOTE,
            raw_text=text,
            structured_blocks=blocks,
            document_type_guess=guess,
            confidence=_as_confidence(data.get("confidence"), _DEFAULT_CONFIDENCE),
            language=str(data.get("detected_language") or ""),
            tables=tables,
        )


def _as_list(raw: Any, field_name: str) -> list[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RemoteTerminalFailure(f"{_SERVICE} returned a non-list '{field_name}'")
    return raw


def _cells(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    return ["" if cell is None else str(cell) for cell in raw]


def _parse_table(raw: Any) -> Table | None:
    """Tables without a list of row lists are skipped."""
    if not isinstance(raw, dict) or not isinstance(raw.get("rows"), list):
        return None
    rows = [_cells(row) for row in raw["rows"]]
    if any(row is None for row in rows):
        return None
    return Table(
        rows=[row for row in rows if row is not None],
        headers=_cells(raw.get("headers")) or [],
        region=_parse_region(raw.get("bounding_box")),
        confidence=_as_confidence(raw.get("confidence"), _DEFAULT_CONFIDENCE),
    )


def _as_confidence(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    return max(0.0, min(1.0, float(raw)))


def _parse_region(raw: Any) -> Region | None:
    if not isinstance(raw, dict):
        return None
    try:
        return Region(
            x=int(raw["x"]),
            y=int(raw["y"]),
            width=int(raw["width"]),
            height=int(raw["height"]),
        )
    except (KeyError, TypeError, ValueError):
        return None
