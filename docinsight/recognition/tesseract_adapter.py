import asyncio
import io
from dataclasses import dataclass, field
from typing import Any

import pytesseract
from PIL import Image, UnidentifiedImageError
from pytesseract import Output

from docinsight.logging.logger import Log
from docinsight.recognition.base import BaseOnDeviceRecognizer
from docinsight.recognition.classifier import guess_document_type
from docinsight.recognition.exceptions import LocalEngineFailure
from docinsight.recognition.models import RecognitionResult, Region, SourceEngine, TextBlock


@dataclass
class _Line:
    words: list[str] = field(default_factory=list)
    confidences: list[float] = field(default_factory=list)
    left: int = 0
    top: int = 0
    right: int = 0
    bottom: int = 0

    def add(self, word: str, conf: float, left: int, top: int, width: int, height: int) -> None:
        if not self.words:
            self.left, self.top = left, top
            self.right, self.bottom = left + width, top + height
        else:
            self.left = min(self.left, left)
            self.top = min(self.top, top)
            self.right = max(self.right, left + width)
            self.bottom = max(self.bottom, top + height)
        self.words.append(word)
        self.confidences.append(conf)


class TesseractRecognizer(BaseOnDeviceRecognizer):
    """On-device recognition via the local Tesseract binary.

    The engine runs in a worker thread; the call is bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        *,
        language: str = "eng",
        psm: int = 6,
        timeout_seconds: int = 20,
    ) -> None:
        self._language = language
        self._config = f"--oem 3 --psm {psm}"
        self._timeout_seconds = timeout_seconds

    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._recognize_sync, image_bytes),
                timeout=self._timeout_seconds,
            )
        except LocalEngineFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise LocalEngineFailure(
                f"On-device recognition exceeded {self._timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise LocalEngineFailure(f"On-device recognition failed: {exc}") from exc

    def _recognize_sync(self, image_bytes: bytes) -> RecognitionResult:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.load()
                data = pytesseract.image_to_data(
                    img,
                    lang=self._language,
                    config=self._config,
                    output_type=Output.DICT,
                    timeout=self._timeout_seconds,
                )
        except (UnidentifiedImageError, OSError) as exc:
            raise LocalEngineFailure(f"Unsupported or unreadable image: {exc}") from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise LocalEngineFailure("Tesseract engine is not installed") from exc
        except (pytesseract.TesseractError, RuntimeError) as exc:
            # pytesseract reports its own timeout as RuntimeError.
            raise LocalEngineFailure(f"Tesseract failed: {exc}") from exc

        blocks, word_confidences = self._build_blocks(data)
        raw_text = "\n".join(block.text for block in blocks)
        confidence = (
            sum(word_confidences) / len(word_confidences) if word_confidences else 0.0
        )
        Log.debug(f"Tesseract recognised {len(blocks)} lines, {len(word_confidences)} words")
        return RecognitionResult(
            source_engine=SourceEngine.LOCAL,
            raw_text=raw_text,
            structured_blocks=blocks,
            document_type_guess=guess_document_type(raw_text),
            confidence=confidence,
            language=self._language,
        )

    @staticmethod
    def _build_blocks(data: dict[str, list[Any]]) -> tuple[list[TextBlock], list[float]]:
        """Group word boxes into lines; skip layout rows (conf -1) and blanks."""
        lines: dict[tuple[int, int, int], _Line] = {}
        word_confidences: list[float] = []
        for i, raw_word in enumerate(data.get("text", [])):
            word = str(raw_word).strip()
            if not word:
                continue
            try:
                conf = float(data["conf"][i])
            except (TypeError, ValueError):
                continue
            if conf < 0:
                continue
            conf = min(conf / 100.0, 1.0)
            key = (int(data["block_num"][i]), int(data["par_num"][i]), int(data["line_num"][i]))
            line = lines.setdefault(key, _Line())
            line.add(
                word,
                conf,
                int(data["left"][i]),
                int(data["top"][i]),
                int(data["width"][i]),
                int(data["height"][i]),
            )
            word_confidences.append(conf)

        blocks: list[TextBlock] = []
        offset = 0
        for key in sorted(lines):
            line = lines[key]
            text = " ".join(line.words)
            blocks.append(
                TextBlock(
                    text=text,
                    confidence=sum(line.confidences) / len(line.confidences),
                    region=Region(
                        x=line.left,
                        y=line.top,
                        width=line.right - line.left,
                        height=line.bottom - line.top,
                    ),
                    offset=offset,
                )
            )
            offset += len(text) + 1
        return blocks, word_confidences
