"""Pattern-based PHI detector with ICU transliteration.

Processing flow:
1. Normalize Unicode (NFC) and fold non-ASCII decimal digits to ASCII.
2. Transliterate the text to Latin-ASCII via ICU, keeping a character map
   (transliterated index -> original index).
3. Detect PHI on the transliterated text:
   a. Sensitive-word dictionary (case-insensitive, whole words).
   b. Regex rules (emails, phones, dates, record numbers, ids, names).
4. Map spans back to the original text and merge overlaps.
5. Repeat detection on the masked text until nothing new is found, so that
   redacting the returned spans leaves no detector match behind.

Redaction replaces every character of a span (except newlines) with ``*``;
offsets of everything outside the spans are unchanged.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import ClassVar

import icu  # type: ignore[import-untyped]

from docinsight.logging.logger import Log
from docinsight.redaction.base import BaseRedactor
from docinsight.redaction.models import PhiSpan

MASK_CHAR = "*"


@dataclass
class _Detection:
    """A detected PHI span in the transliterated text."""

    kind: str
    trans_start: int
    trans_end: int


@dataclass(frozen=True)
class _Rule:
    kind: str
    pattern: re.Pattern[str]
    group: int = 0


_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"

_NAME_LABELS = (
    r"patient(?:\s+name)?|name|dr|doctor|physician|prescriber|mr|mrs|ms|miss"
    r"|insured|member|subscriber|guardian|son of|daughter of"
)

# Words that follow a name label without being a name.
_NAME_STOPWORDS = frozenset({
    "id", "no", "number", "name", "date", "dob", "age", "sex", "gender",
    "address", "phone", "mrn", "record", "information", "info", "details",
})


def _lower_same_length(text: str) -> str:
    """Lowercase without changing length (a few code points expand on lower())."""
    return "".join(low if len(low := ch.lower()) == 1 else ch for ch in text)


class RedactionEngine(BaseRedactor):
    """Best-effort PHI detector: identifiers, dates, phones, record numbers, names.

    False negatives are tolerated. Ambiguous matches are kept, so a span is
    redacted whenever any rule claims it.
    """

    _ICU_TRANSFORM: ClassVar[str] = "Any-Latin; Latin-ASCII"
    _MAX_PASSES: ClassVar[int] = 4

    _RULES: ClassVar[list[_Rule]] = [
        _Rule("EMAIL", re.compile(r"[\w.\-+]+@[\w.\-]+\.\w{2,}")),
        _Rule(
            "PHONE",
            re.compile(r"(?<![\w+])\+\d{1,3}[\s-]?(?:\(?\d{1,4}\)?[\s-]?){2,4}\d{2,4}(?!\w)"),
        ),
        _Rule("PHONE", re.compile(r"(?<![\w.])\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}(?![\w.])")),
        _Rule("PHONE", re.compile(r"(?<!\d)05\d{8}(?!\d)")),
        _Rule(
            "PHONE",
            re.compile(
                r"(?i:\b(?:phone|tel|telephone|mobile|mob|cell|fax)\b)\.?\s*"
                r"(?i:no\.?|number|#)?\s*[:.]?\s*(\+?\d[\d\s().-]{5,18}\d)"
            ),
            group=1,
        ),
        _Rule("DATE", re.compile(r"(?<![\d.])\d{1,2}([/.-])\d{1,2}\1(?:\d{4}|\d{2})(?![\d.])")),
        _Rule("DATE", re.compile(r"(?<![\d.])\d{4}([/.-])\d{1,2}\1\d{1,2}(?![\d.])")),
        _Rule(
            "DATE",
            re.compile(rf"(?i)\b\d{{1,2}}\s+{_MONTHS},?\s+\d{{2,4}}\b"),
        ),
        _Rule(
            "DATE",
            re.compile(rf"(?i)\b{_MONTHS}\s+\d{{1,2}},?\s+\d{{4}}\b"),
        ),
        _Rule(
            "DATE",
            re.compile(
                r"(?i)\b(?:dob|d\.o\.b\.?|date\s+of\s+birth|birth\s*date)\s*[:.]?\s*"
                r"([\d/.\-]{6,10})"
            ),
            group=1,
        ),
        _Rule(
            "MRN",
            re.compile(
                r"(?i)\b(?:mrn|medical\s+record(?:\s+(?:number|no\.?))?|record\s+no\.?"
                r"|patient\s+id|file\s+no\.?|hospital\s+no\.?)\s*[:#.]?\s*"
                r"([A-Z0-9][A-Z0-9-]{3,15})\b"
            ),
            group=1,
        ),
        _Rule(
            "ID",
            re.compile(
                r"(?i)\b(?:policy|member|subscriber|insurance|iqama|passport)\s*"
                r"(?:id|no\.?|number|#)\s*[:.]?\s*([A-Z0-9][A-Z0-9-]{4,19})\b"
            ),
            group=1,
        ),
        _Rule("NATIONAL_ID", re.compile(r"\b[12]\d{9}\b")),
        _Rule("ID", re.compile(r"\b\d{8,20}\b")),
        _Rule(
            "PERSON",
            re.compile(
                rf"(?i:\b(?:{_NAME_LABELS}))\b\.?\s*[:.\-]?\s*"
                r"([A-Z][A-Za-z'\-]+(?:[ \t]+[A-Z][A-Za-z'\-]+){0,2})"
            ),
            group=1,
        ),
    ]

    def __init__(self, sensitive_words: list[str] | None = None) -> None:
        self._transliterator: icu.Transliterator = icu.Transliterator.createInstance(
            self._ICU_TRANSFORM
        )
        self._dictionary = {w.strip().lower() for w in (sensitive_words or []) if w.strip()}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def scan(self, text: str) -> list[PhiSpan]:
        if not text:
            return []
        normalized = unicodedata.normalize("NFC", text)
        if len(normalized) != len(text):
            # Offsets must refer to the caller's text; skip normalization.
            normalized = text

        spans: list[PhiSpan] = []
        working = normalized
        for _ in range(self._MAX_PASSES):
            found = [s for s in self._scan_once(working) if not self._covered(s, spans)]
            if not found:
                break
            spans = self._merge(spans + found)
            working = self.redact(normalized, spans)

        if spans:
            Log.debug(f"Redaction scan found {len(spans)} PHI spans")
        return spans

    def redact(self, text: str, spans: list[PhiSpan]) -> str:
        if not text or not spans:
            return text
        chars = list(text)
        size = len(chars)
        for span in spans:
            start = max(0, span.start)
            end = min(size, span.end)
            for i in range(start, end):
                if chars[i] != "\n":
                    chars[i] = MASK_CHAR
        return "".join(chars)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _scan_once(self, text: str) -> list[PhiSpan]:
        transliterated, trans_to_orig = self._transliterate_with_mapping(text)
        detections: list[_Detection] = []
        detections.extend(self._detect_dictionary(_lower_same_length(transliterated)))
        detections.extend(self._detect_regex(transliterated))
        return self._map_to_original(detections, trans_to_orig)

    def _transliterate_with_mapping(self, text: str) -> tuple[str, list[int]]:
        """Transliterate *text* character-by-character via ICU.

        Returns:
            (transliterated_text, trans_to_orig) where trans_to_orig[j]
            is the index in *text* that produced transliterated char j.
        """
        parts: list[str] = []
        trans_to_orig: list[int] = []

        for orig_idx, ch in enumerate(text):
            if ch.isascii():
                t = ch
            elif ch.isdecimal():
                t = str(unicodedata.decimal(ch))
            else:
                t = self._transliterator.transliterate(ch)
            parts.append(t)
            trans_to_orig.extend([orig_idx] * len(t))

        return "".join(parts), trans_to_orig

    def _detect_dictionary(self, lowered: str) -> list[_Detection]:
        detections: list[_Detection] = []
        for word in self._dictionary:
            start = 0
            while True:
                idx = lowered.find(word, start)
                if idx == -1:
                    break
                end = idx + len(word)
                before_ok = idx == 0 or not lowered[idx - 1].isalnum()
                after_ok = end == len(lowered) or not lowered[end].isalnum()
                if before_ok and after_ok:
                    detections.append(_Detection("PERSON", idx, end))
                start = idx + 1
        return detections

    def _detect_regex(self, transliterated: str) -> list[_Detection]:
        detections: list[_Detection] = []
        for rule in self._RULES:
            for m in rule.pattern.finditer(transliterated):
                start, end = m.start(rule.group), m.end(rule.group)
                if start < 0 or start >= end:
                    continue
                if rule.kind == "PERSON":
                    trimmed = self._trim_name(transliterated, start, end)
                    if trimmed is None:
                        continue
                    start, end = trimmed
                detections.append(_Detection(rule.kind, start, end))
        return detections

    @staticmethod
    def _trim_name(text: str, start: int, end: int) -> tuple[int, int] | None:
        """Drop leading label-like words (``ID``, ``Number`` ...) from a name match."""
        words = list(re.finditer(r"\S+", text[start:end]))
        while words and words[0].group(0).lower().strip(".:") in _NAME_STOPWORDS:
            words.pop(0)
        if not words:
            return None
        return start + words[0].start(), start + words[-1].end()

    # ------------------------------------------------------------------
    # Span bookkeeping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_to_original(
        detections: list[_Detection],
        trans_to_orig: list[int],
    ) -> list[PhiSpan]:
        spans: list[PhiSpan] = []
        for d in detections:
            if d.trans_start >= len(trans_to_orig) or d.trans_end < 1:
                continue
            orig_start = trans_to_orig[d.trans_start]
            last = min(d.trans_end - 1, len(trans_to_orig) - 1)
            orig_end = trans_to_orig[last] + 1
            spans.append(PhiSpan(kind=d.kind, start=orig_start, end=orig_end))
        return spans

    @staticmethod
    def _covered(span: PhiSpan, spans: list[PhiSpan]) -> bool:
        return any(s.start <= span.start and span.end <= s.end for s in spans)

    @staticmethod
    def _merge(spans: list[PhiSpan]) -> list[PhiSpan]:
        """Sort and merge overlapping spans, keeping the first-seen kind."""
        ordered = sorted(spans, key=lambda s: (s.start, -s.end))
        merged: list[PhiSpan] = []
        for span in ordered:
            if merged and span.start < merged[-1].end:
                prev = merged[-1]
                merged[-1] = PhiSpan(kind=prev.kind, start=prev.start, end=max(prev.end, span.end))
            else:
                merged.append(span)
        return merged
