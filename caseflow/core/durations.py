# ISO-8601 duration parsing for timer nodes
# Accepts the PnDTnHnMn.nS subset used by BPMN timeDuration values

import re
from datetime import timedelta

DURATION_PATTERN = re.compile(
    r"^(?P<sign>[-+]?)P"
    r"(?:(?P<days>[-+]?\d+)D)?"
    r"(?:T"
    r"(?:(?P<hours>[-+]?\d+)H)?"
    r"(?:(?P<minutes>[-+]?\d+)M)?"
    r"(?:(?P<seconds>[-+]?\d+(?:[.,]\d{0,9})?)S)?"
    r")?$",
    re.IGNORECASE,
)


def parse_duration(text: str) -> timedelta:
    """
    Parse an ISO-8601 duration such as ``PT5S``, ``PT1H30M`` or ``P2DT3H``.

    Raises:
        ValueError: If the text is not a supported duration
    """
    candidate = text.strip()
    match = DURATION_PATTERN.match(candidate)
    if not match or candidate.upper().endswith("T"):
        raise ValueError(f"Invalid ISO-8601 duration: '{text}'")

    parts = match.groupdict()
    if not any(parts[unit] for unit in ("days", "hours", "minutes", "seconds")):
        raise ValueError(f"Invalid ISO-8601 duration: '{text}'")

    duration = timedelta(
        days=int(parts["days"] or 0),
        hours=int(parts["hours"] or 0),
        minutes=int(parts["minutes"] or 0),
        seconds=float((parts["seconds"] or "0").replace(",", ".")),
    )
    return -duration if parts["sign"] == "-" else duration
