"""
Bucket width resolution and alignment.

Bucket boundaries are multiples of the interval width counted from the Unix
epoch, so a query's bucket grid never depends on the exact `from` a caller
passes in.
"""

from src.lib.timeseries.models import DEFAULT_INTERVAL, Interval


def resolve_interval(name: str | None) -> int | None:
    """
    Map an interval name to its width in seconds.

    Args:
        name: Interval name such as "hour" or "day"

    Returns:
        Width in seconds, or None when the name is absent or unknown.
        Callers decide the default.
    """
    if not name:
        return None
    try:
        return Interval(name.strip().lower()).duration_seconds
    except ValueError:
        return None


def interval_seconds_or_default(name: str | None) -> int:
    """Resolve an interval name, falling back to one hour."""
    seconds = resolve_interval(name)
    if seconds is None:
        return DEFAULT_INTERVAL.duration_seconds
    return seconds


def align_down(timestamp: int, interval_seconds: int) -> int:
    """
    Round a Unix timestamp down to its bucket boundary.

    Args:
        timestamp: Unix seconds
        interval_seconds: Bucket width, must be positive

    Returns:
        timestamp - (timestamp mod interval_seconds)

    Raises:
        ValueError: If interval_seconds is not positive
    """
    if interval_seconds <= 0:
        raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
    return timestamp - (timestamp % interval_seconds)

