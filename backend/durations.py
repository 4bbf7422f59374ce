"""Duration strings used by job descriptors.

Accepted forms: ``"250ms"``, ``"30s"``, ``"5m"``, ``"2h"``, ``"1d"`` and bare
integers, which are milliseconds (``"1500"`` or ``1500``).
"""

import re

from error_handler import ConfigurationError

_DURATION_RE = re.compile(r"^(\d+)(ms|s|m|h|d)?$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value, field: str = "duration") -> float:
    """Parse a duration into seconds.

    Raises:
        ConfigurationError: value is not a non-negative integer or a string
            matching ``^\\d+(ms|s|m|h|d)?$``.
    """
    if isinstance(value, bool):
        raise ConfigurationError(
            f"Invalid {field}: {value!r}", context={"field": field, "value": value}
        )
    if isinstance(value, int):
        if value < 0:
            raise ConfigurationError(
                f"Invalid {field}: {value!r} is negative",
                context={"field": field, "value": value},
            )
        return value * _UNIT_SECONDS["ms"]
    if not isinstance(value, str):
        raise ConfigurationError(
            f"Invalid {field}: expected string or integer, got {type(value).__name__}",
            context={"field": field},
        )

    match = _DURATION_RE.match(value.strip())
    if not match:
        raise ConfigurationError(
            f"Invalid {field}: {value!r}",
            context={"field": field, "value": value},
            troubleshooting="Use a number followed by ms, s, m, h or d (e.g. '30s', '6h').",
        )
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit or "ms"]


def format_duration(seconds: float) -> str:
    """Render seconds in the largest whole unit (inverse of parse_duration)."""
    ms = int(round(seconds * 1000))
    for unit, factor in (("d", 86_400_000), ("h", 3_600_000), ("m", 60_000), ("s", 1000)):
        if ms and ms % factor == 0:
            return f"{ms // factor}{unit}"
    return f"{ms}ms"
