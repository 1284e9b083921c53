"""Size units and human-readable formatting.

Sizes are plain ints in bytes everywhere in the engine.  These helpers
turn them into the strings shown by the shell and the web API:

    >>> format_bytes(1536 * 1024)
    '1.5 MiB'
    >>> format_address(0x100000)
    '0x100000'
"""

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB

_UNITS = ("B", "KiB", "MiB", "GiB")


def format_bytes(size: int) -> str:
    """Format a byte count with the largest binary unit that keeps it >= 1.

    Values are rounded to two decimals and trailing zeros are dropped.
    """
    if size == 0:
        return "0 B"
    exponent = 0
    while exponent < len(_UNITS) - 1 and abs(size) >= KIB ** (exponent + 1):
        exponent += 1
    value = round(size / KIB**exponent, 2)
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_UNITS[exponent]}"


def format_address(address: int) -> str:
    """Format an address as upper-case hex padded to six digits."""
    return f"0x{address:06X}"
