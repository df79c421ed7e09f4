from .errors import IntervalError

UNIT_FACTORS_MS = {
    "ms": 1.0,
    "s": 1000.0,
    "min": 60.0 * 1000.0,
    "h": 60.0 * 60.0 * 1000.0,
}


def to_milliseconds(value, unit):
    try:
        num = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if num != num or num <= 0 or num == float("inf"):
        return None
    factor = UNIT_FACTORS_MS.get(str(unit).strip())
    if factor is None:
        return None
    return num * factor


def _fmt_num(x):
    return f"{x:g}"


def format_interval(ms):
    if ms < 1000:
        return f"{_fmt_num(ms)} ms"
    if ms < 60000:
        return f"{_fmt_num(ms / 1000)} s"
    if ms < 3600000:
        return f"{_fmt_num(ms / 60000)} min"
    return f"{_fmt_num(ms / 3600000)} h"


def validate_interval(value, unit, profile):
    """Return the interval in ms, or raise IntervalError with an operator-facing message."""
    ms = to_milliseconds(value, unit)
    if ms is None:
        raise IntervalError(f"Invalid interval value: {value!r} {unit!r}")
    if ms < profile.min_interval_ms:
        raise IntervalError(f"Minimum interval for this instrument: {format_interval(profile.min_interval_ms)}")
    return ms


def effective_period_s(interval_ms, profile):
    return max(float(interval_ms), float(profile.min_interval_ms)) / 1000.0
