"""Runs a single check provider as a child process and frames its output."""

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from kube_health.errors import CheckUnavailableError
from kube_health.filters import filter_lines
from kube_health.output import Palette, rule
from kube_health.registry import CheckDescriptor

logger = logging.getLogger(__name__)


class CheckStatus:
    """Outcome of one check run"""

    PASSED = "passed"
    ISSUES = "issues"
    UNAVAILABLE = "unavailable"
    TIMED_OUT = "timed_out"
    NO_OUTPUT = "no_output"


@dataclass
class CheckResult:
    name: str
    status: str
    exit_code: Optional[int]
    output: str
    duration: float
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == CheckStatus.PASSED


class CheckExecutor:
    """Runs check providers, filtering their output unless verbose.

    The provider's exit code is recorded but never raised: a failing check
    must not stop the checks after it.
    """

    def __init__(self, verbose: bool = False, timeout: Optional[float] = None,
                 extra_env: Optional[dict] = None, palette: Optional[Palette] = None):
        self.verbose = verbose
        self.timeout = timeout
        self.palette = palette or Palette(enabled=False)
        self.env = dict(os.environ)
        if extra_env:
            self.env.update({k: str(v) for k, v in extra_env.items() if v is not None})

    def resolve_program(self, descriptor: CheckDescriptor) -> list:
        """Return the argv to start, falling back to the script name without ``.sh``.

        Raises:
            CheckUnavailableError: If no runnable program can be found
        """
        path = descriptor.executable
        if os.sep not in path:
            found = shutil.which(path)
            if not found:
                raise CheckUnavailableError(f"Executable not found in PATH: {path}")
            return [found, *descriptor.args]

        if not os.path.isfile(path) and path.endswith(".sh") and os.path.isfile(path[:-3]):
            path = path[:-3]
        if not os.path.isfile(path):
            raise CheckUnavailableError(f"Script not found: {descriptor.executable}")
        if not os.access(path, os.X_OK):
            raise CheckUnavailableError(f"Script is not executable: {path}")
        return [path, *descriptor.args]

    def run(self, descriptor: CheckDescriptor, write: Callable[[str], None]) -> CheckResult:
        """Run one check, passing every framed output chunk to ``write``."""
        chunks = []

        def emit(text: str) -> None:
            chunks.append(text)
            write(text)

        start_time = time.monotonic()
        emit(self._header(descriptor))

        try:
            argv = self.resolve_program(descriptor)
            process = subprocess.Popen(
                argv,
                shell=False,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self.env,
                start_new_session=bool(self.timeout),
            )
        except (CheckUnavailableError, OSError) as e:
            duration = time.monotonic() - start_time
            message = str(e) if isinstance(e, CheckUnavailableError) else f"Cannot start {descriptor.executable}: {e}"
            logger.error(f"Check {descriptor.name} unavailable: {message}")
            emit(self.palette.red(f"✗ {message}") + "\n")
            emit(self._footer(duration, None))
            return CheckResult(descriptor.name, CheckStatus.UNAVAILABLE, None, "".join(chunks), duration, message)

        timed_out = threading.Event()
        timer = None
        if self.timeout:
            def kill():
                timed_out.set()
                # Kill the whole group so grandchildren release the pipe
                try:
                    os.killpg(process.pid, signal.SIGKILL)
                except ProcessLookupError:
                    pass

            timer = threading.Timer(self.timeout, kill)
            timer.daemon = True
            timer.start()

        lines_read = 0

        def read_lines():
            nonlocal lines_read
            for line in process.stdout:
                lines_read += 1
                yield line

        try:
            for line in filter_lines(read_lines(), self.verbose):
                emit(line if line.endswith("\n") else line + "\n")
            exit_code = process.wait()
        finally:
            if timer:
                timer.cancel()
            process.stdout.close()

        duration = time.monotonic() - start_time
        error = None
        if timed_out.is_set():
            status = CheckStatus.TIMED_OUT
            error = f"Timed out after {self.timeout:g}s"
            logger.warning(f"Check {descriptor.name} timed out after {self.timeout:g}s")
            emit(self.palette.red(f"✗ {error}") + "\n")
        elif lines_read == 0:
            status = CheckStatus.NO_OUTPUT
            error = "Check produced no output"
            logger.warning(f"Check {descriptor.name} produced no output")
            emit(self.palette.red(f"✗ {error}") + "\n")
        elif exit_code == 0:
            status = CheckStatus.PASSED
        else:
            status = CheckStatus.ISSUES
            logger.warning(f"Check {descriptor.name} exited with code {exit_code}")

        emit(self._footer(duration, exit_code))
        return CheckResult(descriptor.name, status, exit_code, "".join(chunks), duration, error)

    def _header(self, descriptor: CheckDescriptor) -> str:
        lines = [
            rule(self.palette),
            self.palette.cyan(f"Running: {descriptor.description}"),
            rule(self.palette),
            "",
        ]
        return "\n".join(lines) + "\n"

    def _footer(self, duration: float, exit_code: Optional[int]) -> str:
        text = f"Check completed in {duration:.1f}s"
        if exit_code:
            text += f" (exit code {exit_code})"
        return "\n" + self.palette.blue(text) + "\n\n"
