"""Shared utilities for caching repositories."""

from dataclasses import asdict
from typing import Any, Dict, Optional

from ....domain.feature import FeatureFlag, as_utc


def flag_cache_key(name: str, environment: str) -> str:
    return f"flag:{name}:{environment}"


def serialize_flag(flag: FeatureFlag) -> Dict[str, Any]:
    """Turn a flag into a JSON-friendly dict (timestamps as ISO strings)."""
    data = asdict(flag)
    for k in ("created_at", "updated_at"):
        if data.get(k) is not None:
            data[k] = data[k].isoformat()
    return data


def deserialize_flag(s: Any) -> Optional[FeatureFlag]:
    """Deserialize a cached flag value back to a FeatureFlag object."""
    if s is None:
        return None
    if isinstance(s, FeatureFlag):
        return s
    if isinstance(s, dict):
        d = dict(s)
        # convert ISO timestamps back to datetimes when present
        d["created_at"] = as_utc(d.get("created_at"))
        d["updated_at"] = as_utc(d.get("updated_at"))
        return FeatureFlag(**d)
    return None
