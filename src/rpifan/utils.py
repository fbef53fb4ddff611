"""Utility functions for the fan utility."""

import re

_LEADING_INT = re.compile(rb"^\s*([+-]?\d+)")


def parse_leading_int(raw: bytes) -> int:
    """
    Parse the integer at the start of a text record.

    Records coming from the driver and sysfs are fixed-size and may be
    NUL-padded or newline-terminated. Only leading digits count; a record
    that does not start with a number yields 0.

    Example:
        parse_leading_int(b"18\\x00\\x00") == 18
        parse_leading_int(b"51234\\n") == 51234
        parse_leading_int(b"abc") == 0
    """
    match = _LEADING_INT.match(raw)
    if not match:
        return 0
    return int(match.group(1))
