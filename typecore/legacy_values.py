"""
Tolerant accessors over generic JSON values decoded from legacy blobs.

Legacy data was written by several generations of the front-end, so any
field may be missing or carry the wrong type. Every accessor here returns a
default instead of failing, which lets a single bad field degrade to its
default without discarding the rest of the record.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import SerializationError

logger = logging.getLogger(__name__)

JsonValue = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

_USER_ID_PATTERN = re.compile(r"^-?[0-9]+$")

# Range of the store's BIGINT columns.
BIGINT_MIN = -(2**63)
BIGINT_MAX = 2**63 - 1


def parse_json(raw: str) -> JsonValue:
    """
    Decode a legacy blob into a generic JSON value.

    Raises:
        SerializationError: If `raw` is not valid JSON.
    """
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Malformed JSON blob: {e}", original_exception=e
        ) from e


def parse_user_id(key: Any) -> Optional[int]:
    """Parse a string user-id key; returns None unless it is a plain integer."""
    if isinstance(key, str) and _USER_ID_PATTERN.match(key):
        return int(key)
    return None


def _is_number(value: Any) -> bool:
    # bool is a subclass of int but never a legacy number.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _as_int(value: Any) -> Optional[int]:
    """Integral value of a JSON number, or None if it does not fit a BIGINT."""
    if not _is_number(value):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = int(value)
    if not BIGINT_MIN <= value <= BIGINT_MAX:
        return None
    return value


def _as_float(value: Any) -> Optional[float]:
    if not _is_number(value):
        return None
    try:
        result = float(value)
    except OverflowError:
        return None
    return result if math.isfinite(result) else None


def _field(obj: JsonValue, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def get_optional_int(obj: JsonValue, key: str) -> Optional[int]:
    return _as_int(_field(obj, key))


def get_int(obj: JsonValue, key: str, default: int = 0) -> int:
    value = get_optional_int(obj, key)
    return default if value is None else value


def get_optional_float(obj: JsonValue, key: str) -> Optional[float]:
    return _as_float(_field(obj, key))


def get_float(obj: JsonValue, key: str, default: float = 0.0) -> float:
    value = get_optional_float(obj, key)
    return default if value is None else value


def get_optional_str(obj: JsonValue, key: str) -> Optional[str]:
    value = _field(obj, key)
    return value if isinstance(value, str) else None


def get_str(obj: JsonValue, key: str, default: str = "") -> str:
    value = get_optional_str(obj, key)
    return default if value is None else value


def get_list(obj: JsonValue, key: str) -> List[Any]:
    value = _field(obj, key)
    return value if isinstance(value, list) else []


def get_json_array_text(obj: JsonValue, key: str) -> str:
    """Re-serialise an array field, falling back to an empty JSON array."""
    return json.dumps(get_list(obj, key))


def ordered_entries(value: JsonValue) -> List[Tuple[str, Any]]:
    """
    Flatten a legacy "map of maps" into (sub-key, value) pairs.

    Accepts a JSON object, or a JSON array of [key, value] pairs (the way a
    JavaScript Map was serialised). Pairs whose key is not a string are
    dropped; anything else yields no entries.
    """
    if isinstance(value, dict):
        return [(k, v) for k, v in value.items()]
    entries: List[Tuple[str, Any]] = []
    if isinstance(value, list):
        for item in value:
            if (
                isinstance(item, list)
                and len(item) == 2
                and isinstance(item[0], str)
            ):
                entries.append((item[0], item[1]))
            else:
                logger.debug(f"Dropping malformed map entry: {item!r}")
    return entries


def key_count_pairs(value: JsonValue) -> List[Tuple[str, int]]:
    """
    Read problem keys stored as [[key, count], ...] or {key: count}.

    Counts that are not numbers, or do not fit a BIGINT, are dropped along
    with their key.
    """
    pairs: List[Tuple[str, int]] = []
    for key, count in ordered_entries(value):
        as_int = _as_int(count)
        if as_int is not None:
            pairs.append((key, as_int))
    return pairs
