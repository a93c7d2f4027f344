"""Session filter — pure function, checks minute-of-hour alignment."""

PREFERRED_MINUTES: tuple[int, ...] = (0, 15, 30, 45)


def is_preferred_minute(
    utc_minute: int,
    tolerance: int = 1,
    anchors: tuple[int, ...] = PREFERRED_MINUTES,
) -> bool:
    """Return True if *utc_minute* is within *tolerance* of a quarter-hour anchor.

    Distance wraps around the hour, so minute 59 is one minute from :00.
    With the default tolerance the window is
    ``{59, 0, 1, 14, 15, 16, 29, 30, 31, 44, 45, 46}``.

    Args:
        utc_minute: Minute of the hour in UTC (0–59).
        tolerance: Allowed distance in minutes from an anchor.
        anchors: Anchor minutes.
    """
    minute = utc_minute % 60
    for anchor in anchors:
        distance = abs(minute - anchor) % 60
        if min(distance, 60 - distance) <= tolerance:
            return True
    return False
