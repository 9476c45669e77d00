from __future__ import annotations

from typing import Any, Dict


def as_float(x: Any, default: float) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return float(default)


def as_int(x: Any, default: int) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return int(default)


def as_bool(x: Any, default: bool) -> bool:
    if isinstance(x, bool):
        return x
    if isinstance(x, str):
        v = x.strip().lower()
        if v in ("1", "true", "yes", "on"):
            return True
        if v in ("0", "false", "no", "off"):
            return False
    if isinstance(x, (int, float)):
        return bool(x)
    return bool(default)


def as_str(x: Any, default: str) -> str:
    if x is None:
        return default
    s = str(x).strip()
    return s if s else default


def get_section(root: Dict[str, Any], key: str) -> Dict[str, Any]:
    v = root.get(key, {})
    return v if isinstance(v, dict) else {}
