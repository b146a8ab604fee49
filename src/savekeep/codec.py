from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Type, TypeVar

from .errors import CorruptionError, InvalidArgumentError
from .record import SaveRecord

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=SaveRecord)


def encode_record(record: SaveRecord) -> bytes:
    """Encode a record to pretty-printed UTF-8 JSON.

    The shape is ``{"version": int, "timestamp": int, ...owner fields}``.
    """
    if record is None:
        raise InvalidArgumentError("Cannot encode a missing record")
    try:
        text = json.dumps(record.to_dict(), ensure_ascii=False, indent=2)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"Record '{record.key}' is not JSON serializable: {e}") from e
    return text.encode("utf-8")


def decode_record(payload: bytes, record_type: Type[R], key: Optional[str] = None) -> R:
    """Decode JSON bytes into a record of ``record_type``.

    Anything that does not parse into the expected shape raises CorruptionError.
    """
    try:
        data: Dict[str, Any] = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptionError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CorruptionError(f"Save payload malformed: expected an object, got {type(data).__name__}")

    try:
        return record_type.from_dict(data, key=key)
    except (TypeError, ValueError) as e:
        raise CorruptionError(f"Save payload does not match {record_type.__name__}: {e}") from e
