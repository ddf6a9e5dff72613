# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Human-readable byte sizes.

Sizes in the configuration are written the way operators think about them
(``10m``, ``512k``, ``50MB``) and sizes in the attachment summary are shown
the same way (``3B``, ``1.5kB``).  Both directions use decimal (SI) units:
``1k`` is 1000 bytes, not 1024.
"""

import re


_DECIMAL_UNITS = ("B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB")

_MULTIPLIERS = {
    "": 1,
    "k": 1000,
    "m": 1000**2,
    "g": 1000**3,
    "t": 1000**4,
    "p": 1000**5,
}

# "10m", "10 MB", "1.5k", "2KiB", "42", "42b"
_SIZE_RE = re.compile(
    r"^(?P<num>\d+(?:\.\d*)?|\.\d+) ?(?P<unit>[kmgtp]?)(?P<suffix>i?b)?$",
    re.IGNORECASE,
)


def parse_size(value: str | int) -> int:
    """Parse a human-readable size into bytes.

    Args:
        value: Size such as ``"10m"``, ``"5k"``, ``"50MB"`` or a plain
            integer byte count.

    Returns:
        Size in bytes (fractional bytes are truncated).

    Raises:
        ValueError: If the value is negative or not a recognised size.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"invalid size: {value!r}")
        return value

    match = _SIZE_RE.match(value.strip())
    if match is None:
        raise ValueError(f"invalid size: '{value}'")

    unit = match.group("unit").lower()
    suffix = (match.group("suffix") or "").lower()
    # "ib" only makes sense after a unit letter ("KiB"), never alone.
    if suffix == "ib" and not unit:
        raise ValueError(f"invalid suffix: '{value}'")

    return int(float(match.group("num")) * _MULTIPLIERS[unit])


def human_size(size: float) -> str:
    """Format a byte count with four significant digits.

    Examples: ``3`` -> ``"3B"``, ``1500`` -> ``"1.5kB"``,
    ``10_000_000`` -> ``"10MB"``.
    """
    index = 0
    while size >= 1000 and index < len(_DECIMAL_UNITS) - 1:
        size /= 1000
        index += 1
    return f"{size:.4g}{_DECIMAL_UNITS[index]}"
