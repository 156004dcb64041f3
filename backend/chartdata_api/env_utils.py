from __future__ import annotations

import os


ENV_PREFIX = "CHARTDATA_"


def _prefixed_name(suffix: str) -> str:
    s = (suffix or "").strip().upper()
    if not s:
        raise ValueError("empty env suffix")
    return f"{ENV_PREFIX}{s}"


def env_str(suffix: str, default: str | None = None) -> str | None:
    value = os.getenv(_prefixed_name(suffix))
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def env_int(suffix: str, default: int) -> int:
    raw = env_str(suffix, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default
