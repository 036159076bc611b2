"""
Field extraction for free-form machine payloads.

Machines post whatever JSON object their firmware produces. The extractor
derives the machine id, device type and event timestamp by trying a fixed
list of candidate keys in priority order, and keeps the rest of the payload
as the residual measurement data.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .exceptions import MissingFieldsError, ValidationError

logger = structlog.get_logger(__name__)

MACHINE_ID_KEYS = ("machineId", "machine_id", "deviceId", "device_id", "id", "serial", "name")
DEVICE_TYPE_KEYS = ("deviceType", "device_type", "type", "category")
TIMESTAMP_KEYS = ("timestamp", "time", "datetime", "created_at", "recorded_at")

# Keys stripped from the residual data. The timestamp key is left in place.
CONSUMED_KEYS = frozenset(
    ("machineId", "machine_id", "deviceId", "device_id", "deviceType", "device_type", "type", "category")
)

DEFAULT_DEVICE_TYPE = "unknown"

STRICT_REQUIRED_FIELDS = ("machineId", "timestamp", "data")

_datetime_adapter = TypeAdapter(datetime)

# "machineId": "abc" / "device_id": 42 style pairs in an unparsed body
_RAW_KEY_PATTERN = re.compile(
    r'"(%s)"\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(-?\d+(?:\.\d+)?))'
    % "|".join(re.escape(key) for key in MACHINE_ID_KEYS)
)


@dataclass
class ExtractionResult:
    """Structured fields derived from a payload."""
    machine_id: Optional[str]
    device_type: str
    event_timestamp: Optional[str]
    extracted_data: Dict[str, Any]


def _as_text(value: Any) -> str:
    """Render a JSON value as a string identifier."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _first_present(payload: Dict[str, Any], keys: tuple) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a JSON value as an aware UTC datetime.

    Accepts ISO 8601 strings and Unix epoch numbers (seconds or
    milliseconds). Returns None for anything that does not parse.
    """
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (str, int, float)):
        return None
    if isinstance(value, str) and not value.strip():
        return None

    try:
        parsed = _datetime_adapter.validate_python(value)
    except (PydanticValidationError, ValueError, OverflowError):
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Canonical UTC string form, e.g. 2025-01-01T00:00:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    timespec = "milliseconds" if value.microsecond else "seconds"
    return value.isoformat(timespec=timespec).replace("+00:00", "Z")


def extract_machine_id(payload: Dict[str, Any]) -> Optional[str]:
    """First non-null machine identifier candidate, as a string."""
    value = _first_present(payload, MACHINE_ID_KEYS)
    return None if value is None else _as_text(value)


def extract_device_type(payload: Dict[str, Any]) -> str:
    value = _first_present(payload, DEVICE_TYPE_KEYS)
    return DEFAULT_DEVICE_TYPE if value is None else _as_text(value)


def extract_timestamp(payload: Dict[str, Any]) -> Optional[str]:
    """First candidate that parses as a date; invalid candidates are skipped."""
    for key in TIMESTAMP_KEYS:
        if key not in payload:
            continue
        parsed = parse_timestamp(payload[key])
        if parsed is not None:
            return format_timestamp(parsed)
        logger.debug("Skipping unparseable timestamp candidate", key=key)
    return None


def residual_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow copy of the payload without the identity and type keys."""
    return {key: value for key, value in payload.items() if key not in CONSUMED_KEYS}


def extract(payload: Dict[str, Any]) -> ExtractionResult:
    """
    Derive structured fields from an arbitrary JSON object.

    Never raises: missing or malformed fields fall back to None or
    "unknown".
    """
    return ExtractionResult(
        machine_id=extract_machine_id(payload),
        device_type=extract_device_type(payload),
        event_timestamp=extract_timestamp(payload),
        extracted_data=residual_data(payload),
    )


def _is_blank(value: Any) -> bool:
    """None, false, zero or an empty string. Empty objects and arrays count as present."""
    if isinstance(value, (dict, list)):
        return False
    return not value


def validate_strict(payload: Dict[str, Any]) -> None:
    """
    Legacy ingestion policy.

    Requires machineId, timestamp and data; timestamp must parse and data
    must be an object.
    """
    missing: List[str] = [field for field in STRICT_REQUIRED_FIELDS if _is_blank(payload.get(field))]
    if missing:
        raise MissingFieldsError(missing=missing, received=list(payload.keys()))

    if parse_timestamp(payload["timestamp"]) is None:
        raise ValidationError("Invalid timestamp format. Use ISO 8601 format.")

    if not isinstance(payload["data"], dict):
        raise ValidationError("Data field must be an object")


def admission_key(payload: Any, raw_body: bytes) -> Optional[str]:
    """
    Machine identifier used to key the per-machine rate limit.

    Uses the extraction rules when the body is a JSON object and falls back
    to scanning the raw body text, so malformed bodies are still attributed
    to their machine where possible.
    """
    if isinstance(payload, dict):
        machine_id = extract_machine_id(payload)
        if machine_id:
            return machine_id
        return None

    if not raw_body:
        return None

    text = raw_body.decode("utf-8", errors="replace")
    found: Dict[str, str] = {}
    for match in _RAW_KEY_PATTERN.finditer(text):
        key = match.group(1)
        if key not in found:
            found[key] = match.group(2) if match.group(2) is not None else match.group(3)

    for key in MACHINE_ID_KEYS:
        if found.get(key):
            return found[key]
    return None
