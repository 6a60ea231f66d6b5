"""
tracegate.inspection.sanitizer

Input normalization for query, path and body values.

Responsibilities:
- Return a cleaned copy of nested input (dicts/lists/strings); scalars pass through.
- Be idempotent: sanitizing clean output returns it unchanged.
- Never raise: a value that cannot be cleaned becomes an empty string.

Escaping policy, applied per string in this order:
1. Unicode NFKC normalization (folds full-width `＜` into `<` before tag handling).
2. Tabs/newlines become spaces; other control and format characters are removed.
3. `<script>`/`<style>` blocks are removed together with their content.
4. Every remaining tag is stripped by bleach; the text bleach re-escapes is unescaped again.
5. Steps 1-4 repeat until the value is stable (entity-encoded markup decodes one layer
   per round), then every stray `<` or `>` is removed.
6. Whitespace runs collapse to one space; leading/trailing whitespace is trimmed.
Quotes, apostrophes and ampersands are kept as printable text (`O'Brien's Pharmacy` is
unchanged). Output escaping is the renderer's job.
"""

from __future__ import annotations

import html
import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import bleach

from tracegate.observability.logging import get_logger

log = get_logger(__name__)

_BLOCK_RE = re.compile(r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL)
_ANGLE_RE = re.compile(r"[<>]")
_SPACE_RE = re.compile(r"\s+")

# Two rounds are the norm; more only for markup hidden under several entity layers.
_MAX_PASSES = 8


def _strip_controls(value: str) -> str:
    out = []
    for ch in value:
        if ch in "\t\n\r\x0b\x0c":
            out.append(" ")
        elif unicodedata.category(ch) in ("Cc", "Cf", "Cs", "Co", "Cn"):
            continue
        else:
            out.append(ch)
    return "".join(out)


def _clean_once(value: str) -> str:
    value = unicodedata.normalize("NFKC", value)
    value = _strip_controls(value)
    value = _BLOCK_RE.sub("", value)
    value = html.unescape(bleach.clean(value, tags=[], attributes={}, strip=True))
    return _SPACE_RE.sub(" ", value).strip()


def _converge(value: str) -> str:
    current = value
    for _ in range(_MAX_PASSES):
        cleaned = _clean_once(current)
        if cleaned == current:
            break
        current = cleaned
    return _SPACE_RE.sub(" ", _ANGLE_RE.sub("", current)).strip()


def sanitize_text(value: str) -> str:
    try:
        cleaned = _converge(value)
        if _converge(cleaned) != cleaned:
            # Still decoding after every round: drop the ampersands that keep producing markup.
            cleaned = _converge(cleaned.replace("&", ""))
        return cleaned
    except (TypeError, ValueError, UnicodeError):
        log.warning("sanitizer.unsanitizable_value")
        return ""


@dataclass(slots=True)
class SanitizeReport:
    # Dotted paths of values the sanitizer changed; never the values themselves.
    changed: list[str] = field(default_factory=list)


class InputSanitizer:
    def __init__(self, *, max_depth: int = 32) -> None:
        self._max_depth = max_depth

    def sanitize(self, value: Any, *, path: str = "", report: SanitizeReport | None = None) -> Any:
        return self._walk(value, path, report, 0)

    def sanitize_surfaces(
        self, surfaces: Mapping[str, Any]
    ) -> tuple[dict[str, Any], SanitizeReport]:
        report = SanitizeReport()
        cleaned = {name: self._walk(v, name, report, 0) for name, v in surfaces.items()}
        return cleaned, report

    def _walk(self, value: Any, path: str, report: SanitizeReport | None, depth: int) -> Any:
        if depth > self._max_depth:
            # Pathologically deep input cannot be inspected reliably; drop it.
            _note(report, path)
            return ""
        if isinstance(value, str):
            cleaned = sanitize_text(value)
            if cleaned != value:
                _note(report, path)
            return cleaned
        if isinstance(value, (bytes, bytearray)):
            try:
                text = bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                _note(report, path)
                return ""
            _note(report, path)
            return sanitize_text(text)
        if isinstance(value, Mapping):
            out: dict[Any, Any] = {}
            for k, v in value.items():
                key = sanitize_text(k) if isinstance(k, str) else k
                if key != k:
                    _note(report, f"{path}[key]")
                out[key] = self._walk(v, f"{path}.{key}" if path else str(key), report, depth + 1)
            return out
        if isinstance(value, (list, tuple)):
            return [
                self._walk(v, f"{path}[{i}]", report, depth + 1) for i, v in enumerate(value)
            ]
        if value is None or isinstance(value, (bool, int, float)):
            return value
        # Anything else (custom objects from a permissive decoder) is not trusted.
        _note(report, path)
        return ""


def _note(report: SanitizeReport | None, path: str) -> None:
    if report is not None:
        report.changed.append(path)


# --- Module Notes -----------------------------------------------------------
# Headers are never rewritten; they are only inspected by `inspection.injection`.
