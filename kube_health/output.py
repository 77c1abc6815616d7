"""Console output: colours, the tee'd report transcript and progress messages."""

import logging
import os
import sys
import threading
from typing import Optional, TextIO

logger = logging.getLogger(__name__)

RULE_WIDTH = 66
BOX_WIDTH = 66


class Colors:
    """ANSI colour codes used throughout the report"""

    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    MAGENTA = "\033[0;35m"
    CYAN = "\033[0;36m"
    NC = "\033[0m"


COLOR_MODES = ("auto", "always", "never")


def color_enabled(mode: str = "auto", stream: Optional[TextIO] = None) -> bool:
    """Decide whether ANSI colours should be emitted.

    ``auto`` colours only when the stream is a terminal and NO_COLOR is unset.
    """
    if mode == "always":
        return True
    if mode == "never":
        return False
    if os.environ.get("NO_COLOR"):
        return False
    stream = stream or sys.stdout
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class Palette:
    """Wraps text in colour codes when colour output is enabled."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def paint(self, text: str, color: str) -> str:
        if not self.enabled:
            return text
        return f"{color}{text}{Colors.NC}"

    def red(self, text: str) -> str:
        return self.paint(text, Colors.RED)

    def green(self, text: str) -> str:
        return self.paint(text, Colors.GREEN)

    def yellow(self, text: str) -> str:
        return self.paint(text, Colors.YELLOW)

    def blue(self, text: str) -> str:
        return self.paint(text, Colors.BLUE)

    def magenta(self, text: str) -> str:
        return self.paint(text, Colors.MAGENTA)

    def cyan(self, text: str) -> str:
        return self.paint(text, Colors.CYAN)


def boxed_title(title: str, palette: Palette) -> list[str]:
    """Return the three lines of a double-line box around a centred title."""
    inner = BOX_WIDTH
    return [
        palette.magenta("╔" + "═" * inner + "╗"),
        palette.magenta("║" + title.center(inner) + "║"),
        palette.magenta("╚" + "═" * inner + "╝"),
    ]


def rule(palette: Palette) -> str:
    return palette.cyan("━" * RULE_WIDTH)


class Transcript:
    """Report writer that tees everything to stdout and an optional file.

    Both sinks receive the exact same text, so the file is a byte-for-byte
    copy of what appeared on the console.
    """

    def __init__(self, stream: Optional[TextIO] = None, path: Optional[str] = None):
        self._stream = stream or sys.stdout
        self._file = open(path, "w", encoding="utf-8") if path else None
        self._lock = threading.Lock()
        self.path = path

    def write(self, text: str) -> None:
        with self._lock:
            self._stream.write(text)
            if self._file:
                self._file.write(text)

    def line(self, text: str = "") -> None:
        self.write(text + "\n")

    def flush(self) -> None:
        with self._lock:
            self._stream.flush()
            if self._file:
                self._file.flush()

    def close(self) -> None:
        self.flush()
        if self._file:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def configure_logging(verbose: bool = False) -> None:
    """Attach a stderr handler to the package logger.

    Verbose runs log everything from DEBUG up with timestamps; otherwise log
    records stay silent and ProgressTracker is the only console surface.
    """
    package_logger = logging.getLogger("kube_health")
    package_logger.handlers.clear()
    package_logger.propagate = False
    if verbose:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
        package_logger.setLevel(logging.DEBUG)
    else:
        package_logger.addHandler(logging.NullHandler())
        package_logger.setLevel(logging.INFO)


class ProgressTracker:
    """User-facing progress messages on stderr, mirrored into the logger.

    Nothing is printed to stdout so the report transcript stays clean.
    """

    def __init__(self, verbose=False):
        self.verbose = verbose

    def info(self, message):
        """Show info message."""
        logger.info(message)

        if not self.verbose:
            print(message, file=sys.stderr)

    def error(self, message):
        """Show error message."""
        logger.error(message)

        if not self.verbose:
            print(f"✗ {message}", file=sys.stderr)
