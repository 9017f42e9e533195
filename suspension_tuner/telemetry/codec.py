"""Frame sanitizing and decoding for device JSON.

The firmware formats floats with ``String(value, n)`` which renders
non-finite readings as bare ``nan``/``inf`` tokens. Those are not valid JSON,
so every payload is normalized before it reaches :func:`json.loads`.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Union

from ..errors import ProtocolDecodeError

# Quoted strings are matched first so that tokens inside them survive.
_NON_FINITE_PATTERN = re.compile(
    r'"(?:[^"\\]|\\.)*"|(?<![\w.])[-+]?(?:nan|inf(?:inity)?)(?![\w.])',
    re.IGNORECASE,
)


def _replace_token(match: re.Match[str]) -> str:
    token = match.group(0)
    if token.startswith('"'):
        return token
    return "null"


def sanitize_frame(text: str) -> str:
    """Replace unquoted ``nan``/``inf``/``-inf`` tokens with ``null``."""

    return _NON_FINITE_PATTERN.sub(_replace_token, text)


def frame_text(payload: Union[str, bytes, bytearray]) -> str:
    if isinstance(payload, (bytes, bytearray)):
        try:
            return bytes(payload).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolDecodeError(f"Binary frame is not UTF-8: {exc}") from exc
    return payload


def is_object_frame(text: str) -> bool:
    """Whether the payload looks like a JSON object (status lines do not)."""

    return text.strip().startswith("{")


def decode_json(text: str) -> Any:
    """Sanitize and decode a JSON document.

    Raises:
        ProtocolDecodeError: If the sanitized text is still not valid JSON.
    """

    try:
        return json.loads(sanitize_frame(text))
    except (json.JSONDecodeError, RecursionError) as exc:
        raise ProtocolDecodeError(f"Malformed JSON payload: {exc}") from exc


def decode_frame(payload: Union[str, bytes, bytearray]) -> Optional[dict[str, Any]]:
    """Decode one stream frame.

    Returns ``None`` for frames that are not JSON objects (plain-text status
    messages). Raises :class:`ProtocolDecodeError` for object frames that
    cannot be decoded.
    """

    text = frame_text(payload)
    if not is_object_frame(text):
        return None

    message = decode_json(text)
    if not isinstance(message, dict):
        raise ProtocolDecodeError("Frame did not decode to an object")
    return message
