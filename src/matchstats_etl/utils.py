import hashlib
import json
import re
from typing import Any, Dict, Optional


def stable_hash(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            if value.lstrip("-").isdigit():
                return int(value)
            return int(float(value))
        except ValueError:
            return None
    return None


def to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


_MINUTE_RE = re.compile(r"^\s*(\d+)\s*'?\s*(?:\+\s*(\d+)\s*'?)?\s*$")


def parse_minute(value: Any) -> tuple[Optional[int], Optional[int]]:
    """Split a vendor clock value like ``"90+2"`` into ``(90, 2)``.

    Plain integers pass through with no extra time. Unparseable input yields
    ``(None, None)``.
    """
    if value is None or isinstance(value, bool):
        return None, None
    if isinstance(value, (int, float)):
        return int(value), None
    match = _MINUTE_RE.match(str(value))
    if not match:
        return None, None
    extra = match.group(2)
    return int(match.group(1)), int(extra) if extra is not None else None


def nested(record: Dict[str, Any], *path: str) -> Any:
    cur: Any = record
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur
