"""
tracegate.pipeline.body

Request body decoding for inspection, and re-encoding of the sanitized form.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qs, urlencode


class BodyKind(enum.StrEnum):
    empty = "empty"
    json = "json"
    form = "form"
    text = "text"
    # Binary and multipart bodies are forwarded untouched.
    opaque = "opaque"


@dataclass(frozen=True, slots=True)
class ParsedBody:
    kind: BodyKind
    value: Any
    raw: bytes = b""


def _media_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def flatten_query(pairs: dict[str, list[str]]) -> dict[str, Any]:
    # Single values stay scalar; repeated keys keep their list.
    return {k: v[0] if len(v) == 1 else v for k, v in pairs.items()}


def parse_body(content_type: str | None, data: bytes) -> ParsedBody:
    if not data:
        return ParsedBody(BodyKind.empty, None, data)

    media = _media_type(content_type)
    if media == "application/json" or media.endswith("+json"):
        try:
            return ParsedBody(BodyKind.json, json.loads(data), data)
        except (UnicodeDecodeError, json.JSONDecodeError):
            # Still inspected as text; the application rejects the malformed document.
            pass
    if media == "application/x-www-form-urlencoded":
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return ParsedBody(BodyKind.opaque, None, data)
        return ParsedBody(BodyKind.form, flatten_query(parse_qs(text, keep_blank_values=True)), data)
    if media in ("", "text/plain", "application/json") or media.endswith("+json"):
        try:
            return ParsedBody(BodyKind.text, data.decode("utf-8"), data)
        except UnicodeDecodeError:
            return ParsedBody(BodyKind.opaque, None, data)
    if media.startswith("text/"):
        try:
            return ParsedBody(BodyKind.text, data.decode("utf-8"), data)
        except UnicodeDecodeError:
            return ParsedBody(BodyKind.opaque, None, data)
    return ParsedBody(BodyKind.opaque, None, data)


def encode_body(body: ParsedBody, cleaned: Any) -> bytes:
    """
    Serialize the sanitized value in the body's original format. Opaque and empty bodies
    are returned as received.
    """

    if body.kind is BodyKind.json:
        return json.dumps(cleaned, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    if body.kind is BodyKind.form:
        return urlencode(cleaned, doseq=True).encode("utf-8")
    if body.kind is BodyKind.text:
        return str(cleaned).encode("utf-8")
    return body.raw


def encode_query(cleaned: dict[str, Any]) -> bytes:
    return urlencode(cleaned, doseq=True).encode("ascii") if cleaned else b""
