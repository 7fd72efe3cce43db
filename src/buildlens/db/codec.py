"""
JSON encoding for document columns.

Message content and metadata are stored as JSON text. Writes serialize
eagerly and fail loudly; reads never raise and fall back to an empty
document so a single malformed row cannot break a query.
"""

import json
import logging
import re
from typing import Any, Optional

from buildlens.exceptions import ContentEncodingError

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```json\s*")
_TRAILING_FENCE = re.compile(r"```(json)?\s*$")


def encode_document(value: Any, field: str = "content") -> str:
    """
    Serialize a document for storage.

    Args:
        value: A dict, list or scalar; ``None`` is stored as an empty object
        field: Column name, used in the error message

    Returns:
        JSON text

    Raises:
        ContentEncodingError: If the value is not JSON serializable
    """
    if value is None:
        value = {}
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        logger.error(f"Failed to serialize {field}: {e}")
        raise ContentEncodingError(field, str(e)) from e


def encode_metadata(value: Optional[dict[str, Any]]) -> Optional[str]:
    """Serialize free-form metadata; empty metadata is stored as NULL."""
    if not value:
        return None
    return encode_document(value, field="metadata")


def decode_document(raw: Optional[str], default: Any = None) -> Any:
    """
    Deserialize stored JSON text.

    Args:
        raw: Stored JSON text
        default: Value returned for NULL, empty or malformed text
            (an empty dict when not given)

    Returns:
        The decoded document, or the default
    """
    if default is None:
        default = {}
    if raw is None or raw == "":
        return default
    if not isinstance(raw, str):
        # Drivers with native JSON support hand back decoded values
        return raw
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.error(f"Failed to deserialize document ({len(raw)} chars): {e}")
        return default


def decode_object(raw: Optional[str]) -> dict[str, Any]:
    """Deserialize stored JSON text that is expected to hold an object."""
    value = decode_document(raw)
    return value if isinstance(value, dict) else {}


def clean_json_string(raw: Optional[str]) -> Optional[str]:
    """
    Strip Markdown code fences and surrounding prose from model output.

    AI responses often wrap the JSON body in a ```json fence or add text
    around it; everything outside the outermost braces is dropped.
    """
    if raw is None:
        return None

    cleaned = _LEADING_FENCE.sub("", raw)
    cleaned = _TRAILING_FENCE.sub("", cleaned).strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and start < end:
        cleaned = cleaned[start : end + 1]

    return cleaned
