from __future__ import annotations

import math
import re
from dataclasses import dataclass

TTL_UNITS = {
    "D": 86400,
    "W": 604800,
    "M": 2592000,
    "Y": 31536000,
}

DEFAULT_TTL_SECONDS = TTL_UNITS["D"]

_TTL_RE = re.compile(r"^(\d+)([DWMY])$")


def parse_ttl(value: int | str) -> int:
    """
    Convert a TTL value to seconds.

    Accepts integer seconds, "D"/"W"/"M"/"Y", a count plus unit ("2W", "6m")
    or a numeric string ("3600", "1.5"; fractions truncate). Unrecognised
    input falls back to one day.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return max(1, value)
    if not isinstance(value, str):
        return DEFAULT_TTL_SECONDS

    code = value.strip().upper()

    m = _TTL_RE.match(code)
    if m:
        return int(m.group(1)) * TTL_UNITS[m.group(2)]

    if code in TTL_UNITS:
        return TTL_UNITS[code]

    try:
        seconds = float(code)
    except ValueError:
        return DEFAULT_TTL_SECONDS
    if not math.isfinite(seconds):
        return DEFAULT_TTL_SECONDS
    return max(1, int(seconds))


@dataclass(frozen=True)
class CacheTtl:
    spec: int | str
    seconds: int

    @classmethod
    def parse(cls, value: int | str) -> "CacheTtl":
        return cls(spec=value, seconds=parse_ttl(value))
