"""
Line number table decoding (co_lnotab and the 3.10 co_linetable)
"""

from ..errors import MalformedInput
from ..parser.types import LineTableFormat

__all__ = (
    'decode_line_table',
)

NO_LINE = -128


def decode_line_table(
    table       : bytes,
    first_line  : int,
    fmt         : LineTableFormat = LineTableFormat.Lnotab,
) -> list[tuple[int, int]]:
    """
    Decode a line number table into (byte_offset, line) breakpoints.

    Both formats are sequences of byte pairs, so a table of odd length
    raises MalformedInput at the offset of its dangling byte.
    """
    if len(table) % 2:
        raise MalformedInput(f'line table has odd length {len(table)}', len(table) - 1)

    pairs = zip(table[0::2], (_signed(b) for b in table[1::2]))

    match fmt:
        case LineTableFormat.Lnotab:
            return _decode_lnotab(pairs, first_line)

        case LineTableFormat.Linetable:
            return _decode_linetable(pairs, first_line)

    raise MalformedInput(f'unknown line table format {fmt}')


def _signed(b: int) -> int:
    return b - 0x100 if b >= 0x80 else b


def _decode_lnotab(pairs, first_line: int) -> list[tuple[int, int]]:
    """
    (byte increment, line increment) pairs.

    A breakpoint is reported once per change of line, at the offset where
    the byte increment that follows it starts, so consecutive pairs that
    only adjust the line (large jumps are split across several pairs)
    produce a single entry.
    """
    starts = []
    last_line = None
    line = first_line
    addr = 0

    for byte_incr, line_incr in pairs:
        if byte_incr:
            if line != last_line:
                starts.append((addr, line))
                last_line = line

            addr += byte_incr

        line += line_incr

    if line != last_line:
        starts.append((addr, line))

    return starts


def _decode_linetable(pairs, first_line: int) -> list[tuple[int, int]]:
    """
    (range length, line delta) pairs, one address range per pair.

    A delta of -128 marks a range with no line and leaves the running line
    unchanged. Empty ranges still apply their delta. A breakpoint is the
    start of the first range of each new line.
    """
    starts = []
    last_line = None
    line = first_line
    addr = 0

    for length, delta in pairs:
        start = addr
        addr += length

        if delta == NO_LINE:
            current = None
        else:
            line += delta
            current = line

        if length == 0 or current is None:
            continue

        if current != last_line:
            starts.append((start, current))
            last_line = current

    return starts
