import hashlib
import json
from datetime import date, datetime
from decimal import Decimal


def _json_default(value):
    """fallback serialiser for values json does not know about"""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return str(value)


def stable_json(payload) -> str:
    """serialise `payload` so that structurally equal values give identical strings"""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=_json_default)


def hash_dict(payload: dict) -> str:
    hasher = hashlib.sha256()

    hasher.update(stable_json(payload).encode("utf-8"))

    return hasher.hexdigest()

