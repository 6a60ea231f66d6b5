"""
tracegate.inspection.injection

Signature-based SQL and script injection detection.

Responsibilities:
- Scan every input value (and key) against two independent signature families.
- Report the family and the field path of the first match, never the matched value.
- Also scan URL-decoded and HTML-entity-decoded variants of each value, each with and
  without its control characters.

The detector is conservative: a false positive costs one rejected request, a false negative
costs a breach. It is not a parser; queries and markup are still parameterized/escaped
downstream.
"""

from __future__ import annotations

import enum
import html
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_plus


class InjectionFamily(enum.StrEnum):
    sql = "sql"
    script = "script"


_F = re.IGNORECASE | re.DOTALL

SQL_SIGNATURES: tuple[re.Pattern[str], ...] = (
    # Tautologies: ' OR '1'='1, OR 1=1, AND "a"="a"
    re.compile(r"\b(or|and)\b\s*['\"`]?\s*[\w-]+\s*['\"`]?\s*(=|<>|!=)\s*['\"`]?\s*[\w-]+", _F),
    re.compile(r"['\"`]\s*(or|and)\b\s*['\"`]", _F),
    # Concatenation tautologies: x'||'1'='1
    re.compile(r"['\"`]\s*\|\|\s*['\"`]", _F),
    re.compile(r"\bunion\b(\s+all)?\s+select\b", _F),
    # Stacked queries
    re.compile(r";\s*(select|insert|update|delete|drop|create|alter|truncate|exec|execute|grant|shutdown)\b", _F),
    re.compile(r"\b(drop|truncate|alter)\s+(table|database|schema)\b", _F),
    re.compile(r"\binsert\s+into\b", _F),
    re.compile(r"\bdelete\s+from\b", _F),
    re.compile(r"\bupdate\s+\w+\s+set\b", _F),
    re.compile(r"\b(exec|execute)\s*\(", _F),
    re.compile(r"\b(xp_cmdshell|sp_executesql|information_schema)\b", _F),
    re.compile(r"\b(sleep|benchmark|pg_sleep)\s*\(|\bwaitfor\s+delay\b", _F),
    # Comment markers
    re.compile(r"--(\s|$)|/\*|\*/", _F),
    re.compile(r"['\"`]\s*#", _F),
)

SCRIPT_SIGNATURES: tuple[re.Pattern[str], ...] = (
    re.compile(r"<\s*/?\s*script\b", _F),
    re.compile(r"<\s*(iframe|object|embed|applet|svg|math|meta|link|base|form)\b", _F),
    # Inline event handlers inside a tag, and bare handler assignments
    re.compile(r"<[^>]*\bon[a-z]+\s*=", _F),
    re.compile(
        r"\bon(load|error|click|dblclick|mouse\w+|focus\w*|blur|submit|change|input|key\w+"
        r"|toggle|animation\w+|transition\w+|pointer\w+|begin|end)\s*=",
        _F,
    ),
    re.compile(r"\b(javascript|vbscript|livescript)\s*:", _F),
    re.compile(r"\bdata\s*:\s*text/html", _F),
    re.compile(r"\bexpression\s*\(", _F),
    re.compile(r"\bsrcdoc\s*=", _F),
)

_FAMILIES: tuple[tuple[InjectionFamily, tuple[re.Pattern[str], ...]], ...] = (
    (InjectionFamily.sql, SQL_SIGNATURES),
    (InjectionFamily.script, SCRIPT_SIGNATURES),
)

# Credentials and content-negotiation syntax (`*/*`, multipart boundaries) are not inspected.
DEFAULT_SKIPPED_HEADERS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "x-api-key",
        "x-session-id",
        "x-csrf-token",
        "accept",
        "accept-encoding",
        "accept-language",
        "content-type",
        "content-length",
        "host",
        "connection",
        "cache-control",
        "if-none-match",
        "if-modified-since",
    }
)


@dataclass(frozen=True, slots=True)
class InjectionFinding:
    family: InjectionFamily
    field: str


# Browsers drop tabs, newlines and other C0 controls inside URL schemes ("jav\tascript:").
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def _variants(value: str) -> Iterator[str]:
    decoded = unquote_plus(value)
    unescaped = html.unescape(decoded)
    seen: set[str] = set()
    for form in (value, decoded, unescaped):
        for variant in (form, _CONTROL_RE.sub("", form)):
            if variant not in seen:
                seen.add(variant)
                yield variant


def match_family(value: str) -> InjectionFamily | None:
    for variant in _variants(value):
        for family, signatures in _FAMILIES:
            if any(sig.search(variant) for sig in signatures):
                return family
    return None


class InjectionDetector:
    def __init__(
        self,
        *,
        skipped_headers: frozenset[str] = DEFAULT_SKIPPED_HEADERS,
        max_depth: int = 32,
    ) -> None:
        self._skipped_headers = skipped_headers
        self._max_depth = max_depth

    def scan(self, surfaces: Mapping[str, Any]) -> InjectionFinding | None:
        for name, value in surfaces.items():
            finding = self._walk(value, name, 0)
            if finding is not None:
                return finding
        return None

    def scan_headers(self, headers: Mapping[str, str]) -> InjectionFinding | None:
        for name, value in headers.items():
            if name.lower() in self._skipped_headers:
                continue
            family = match_family(value)
            if family is not None:
                return InjectionFinding(family, f"headers.{name.lower()}")
        return None

    def _walk(self, value: Any, path: str, depth: int) -> InjectionFinding | None:
        if depth > self._max_depth:
            return None
        if isinstance(value, str):
            family = match_family(value)
            return InjectionFinding(family, path) if family is not None else None
        if isinstance(value, Mapping):
            for k, v in value.items():
                key = str(k)
                family = match_family(key)
                if family is not None:
                    return InjectionFinding(family, f"{path}[key]")
                finding = self._walk(v, f"{path}.{key}", depth + 1)
                if finding is not None:
                    return finding
            return None
        if isinstance(value, (list, tuple)):
            for i, v in enumerate(value):
                finding = self._walk(v, f"{path}[{i}]", depth + 1)
                if finding is not None:
                    return finding
        return None


# --- Module Notes -----------------------------------------------------------
# Bare SQL keywords ("select a size") are not signatures on their own; they only match in
# statement shapes (UNION SELECT, stacked statements, tautologies, DDL/DML phrases).
