"""Parsing of Go-style duration strings such as ``10m`` or ``1h30m``."""

from __future__ import annotations

import re

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: str) -> float:
    """Convert a duration string to seconds.

    Accepts a sequence of decimal numbers each followed by a unit
    (``ns``, ``us``, ``µs``, ``ms``, ``s``, ``m``, ``h``), optionally signed.
    A bare ``0`` is also accepted.

    >>> parse_duration("1h30m")
    5400.0
    >>> parse_duration("250ms")
    0.25

    Raises:
        ValueError: If ``value`` is not a valid duration.
    """
    text = value.strip()
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    sign = 1.0
    if text[0] in "+-":
        if text[0] == "-":
            sign = -1.0
        text = text[1:]

    if text == "0":
        return 0.0

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        number, unit = match.groups()
        total += float(number) * _UNITS[unit]
        pos = match.end()

    if pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return sign * total
