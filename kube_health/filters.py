"""Non-verbose output filtering."""

import re
from typing import Iterable, Iterator

ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# Summary headers, status glyphs, bullets and numbered section headers
SUMMARY_LINE_RE = re.compile(r"^(Summary:|━|✓|✗|⚠|•|[0-9]+\.)")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub("", text)


def is_summary_line(line: str) -> bool:
    """Return True if a check output line is kept in non-verbose mode.

    Colour codes and indentation are ignored, so "  ✓ ok" in green is kept.
    Blank lines are kept to preserve the report layout.
    """
    text = strip_ansi(line).rstrip("\r\n").lstrip()
    if not text:
        return True
    return bool(SUMMARY_LINE_RE.match(text))


def filter_lines(lines: Iterable[str], verbose: bool = False) -> Iterator[str]:
    """Yield the lines shown for a check, lazily so output still streams."""
    for line in lines:
        if verbose or is_summary_line(line):
            yield line
