from typing import Any, Mapping

_UNITS = ((3600.0, "hr"), (60.0, "min"))


def format_duration(seconds: float) -> str:
    """'42.00 sec', '3.50 min' or '1.25 hr'."""
    for size, unit in _UNITS:
        if seconds >= size:
            return f"{seconds / size:.2f} {unit}"
    return f"{seconds:.2f} sec"


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Copy of ``base`` with ``override`` laid on top; nested tables merge key by key.

    Neither input is modified.
    """
    merged = {k: deep_merge(v, {}) if isinstance(v, Mapping) else v for k, v in base.items()}
    for key, value in (override or {}).items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged
