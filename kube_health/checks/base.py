"""Shared runtime for the built-in check providers.

Every provider module exposes ``main()`` returning the process exit code:

    0   - no failures found (warnings are allowed)
    1   - failures found, component missing, or kubectl unavailable
    2   - unexpected error while checking
    130 - interrupted by user (Ctrl+C)
"""

import logging
import os
import sys
from typing import Callable, Optional, TextIO

from kube_health import resources
from kube_health.errors import ComponentNotFoundError, KubeHealthError
from kube_health.kubectl import Kubectl
from kube_health.output import Palette, color_enabled

logger = logging.getLogger(__name__)

BANNER_WIDTH = 38


class Report:
    """Writes a numbered, glyph-annotated check report to stdout."""

    def __init__(self, title: str, stream: Optional[TextIO] = None, palette: Optional[Palette] = None):
        self.title = title
        self.stream = stream or sys.stdout
        if palette is None:
            palette = Palette(color_enabled(os.environ.get("KUBE_HEALTH_COLOR", "auto"), self.stream))
        self.palette = palette
        self.passes = 0
        self.warnings = 0
        self.failures = 0
        self.recommendations: list[str] = []
        self.summary: list[tuple[str, object]] = []
        self._section = 0

    def line(self, text: str = "") -> None:
        self.stream.write(text + "\n")
        self.stream.flush()

    def banner(self) -> None:
        self.line("=" * BANNER_WIDTH)
        self.line(self.title)
        self.line("=" * BANNER_WIDTH)

    def section(self, title: str) -> None:
        self._section += 1
        header = f"{self._section}. {title}..."
        self.line()
        self.line(self.palette.blue(header))
        self.line("-" * len(header))

    def ok(self, message: str) -> None:
        self.passes += 1
        self.line(self.palette.green(f"✓ {message}"))

    def warn(self, message: str) -> None:
        self.warnings += 1
        self.line(self.palette.yellow(f"⚠ {message}"))

    def fail(self, message: str) -> None:
        self.failures += 1
        self.line(self.palette.red(f"✗ {message}"))

    def info(self, message: str) -> None:
        self.line(f"ℹ {message}")

    def detail(self, message: str, indent: int = 2) -> None:
        self.line(" " * indent + message)

    def bullet(self, message: str) -> None:
        self.line(f"• {message}")

    def table(self, rows: list, headers: list) -> None:
        """Print left-aligned columns sized to the widest cell."""
        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))
        fmt = "  ".join(f"{{:<{w}}}" for w in widths)
        self.detail(fmt.format(*headers))
        for row in rows:
            self.detail(fmt.format(*[str(c) for c in row]))

    def recommend(self, message: str) -> None:
        if message not in self.recommendations:
            self.recommendations.append(message)

    def add_summary(self, label: str, value) -> None:
        self.summary.append((label, value))

    def render_recommendations(self) -> None:
        self.section("Recommendations")
        if not self.recommendations:
            self.ok("No issues requiring action found")
            return
        for recommendation in self.recommendations:
            self.bullet(recommendation)

    def finish(self) -> None:
        """Print the closing Summary block."""
        self.line()
        self.line("=" * BANNER_WIDTH)
        self.line(f"{self.title} Complete")
        self.line()
        self.line("Summary:")
        for label, value in self.summary:
            self.bullet(f"{label}: {value}")
        self.bullet(f"Checks passed: {self.passes}")
        self.bullet(f"Warnings: {self.warnings}")
        self.bullet(f"Failures: {self.failures}")
        self.line("=" * BANNER_WIDTH)


CheckFunction = Callable[[Report, Kubectl], Optional[int]]


def run_provider(title: str, check: CheckFunction, stream: Optional[TextIO] = None,
                 kubectl: Optional[Kubectl] = None) -> int:
    """Run a check function inside a report and return its exit code."""
    report = Report(title, stream=stream)
    report.banner()

    try:
        kubectl = kubectl or Kubectl(os.environ.get("KUBE_HEALTH_KUBE_CONTEXT") or None)
        if not kubectl.is_available():
            report.fail("Error: kubectl command not found. Please install kubectl.")
            return 1
        code = check(report, kubectl)
    except ComponentNotFoundError as e:
        report.fail(str(e))
        return 1
    except KubeHealthError as e:
        report.fail(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        report.line("Interrupted")
        return 130
    except Exception as e:
        logger.exception(f"{title} failed")
        report.fail(f"Unexpected error: {e}")
        return 2

    report.render_recommendations()
    report.finish()
    if code is not None:
        return code
    return 1 if report.failures else 0


def pod_label(pod: dict) -> str:
    """``name (phase, restarts)`` string used in pod listings."""
    return f"{resources.name(pod)} ({resources.pod_phase(pod)}, restarts: {resources.pod_restarts(pod)})"
