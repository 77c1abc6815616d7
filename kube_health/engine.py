"""Sequential and parallel execution of a check selection."""

import io
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from kube_health.executor import CheckExecutor, CheckResult
from kube_health.registry import CheckDescriptor

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """Aggregate outcome of a run, built from the per-check results."""

    results: list[CheckResult] = field(default_factory=list)
    duration: float = 0.0

    def add(self, result: CheckResult) -> None:
        self.results.append(result)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def failed_results(self) -> list[CheckResult]:
        return [r for r in self.results if not r.succeeded]

    def slowest(self, limit: int = 5) -> list[CheckResult]:
        return sorted(self.results, key=lambda r: r.duration, reverse=True)[:limit]


class ExecutionEngine:
    """Runs a selection one at a time or all at once.

    Output always reaches ``write`` in selection order. In parallel mode each
    check writes into its own buffer and the buffers are flushed in order as
    the futures are joined.
    """

    def __init__(self, executor: CheckExecutor, write: Callable[[str], None],
                 max_parallel: Optional[int] = None):
        self.executor = executor
        self.write = write
        self.max_parallel = max_parallel

    def run(self, selection: Sequence[CheckDescriptor], parallel: bool = False) -> RunSummary:
        if parallel:
            return self.run_parallel(selection)
        return self.run_sequential(selection)

    def run_sequential(self, selection: Sequence[CheckDescriptor]) -> RunSummary:
        summary = RunSummary()
        start_time = time.monotonic()
        for index, descriptor in enumerate(selection, 1):
            logger.info(f"[{index}/{len(selection)}] Running {descriptor.name}")
            result = self.executor.run(descriptor, self.write)
            summary.add(result)
        summary.duration = time.monotonic() - start_time
        return summary

    def run_parallel(self, selection: Sequence[CheckDescriptor]) -> RunSummary:
        summary = RunSummary()
        if not selection:
            return summary

        def run_buffered(descriptor: CheckDescriptor) -> tuple[CheckResult, str]:
            buffer = io.StringIO()
            result = self.executor.run(descriptor, buffer.write)
            return result, buffer.getvalue()

        # One worker per check unless a cap is configured
        workers = min(self.max_parallel or len(selection), len(selection))
        logger.info(f"Running {len(selection)} checks with {workers} workers")

        start_time = time.monotonic()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="check") as pool:
            futures = [pool.submit(run_buffered, descriptor) for descriptor in selection]
            for completed, future in enumerate(futures, 1):
                result, output = future.result()
                self.write(output)
                summary.add(result)
                logger.info(f"[{completed}/{len(selection)}] {result.name} {result.status} ({result.duration:.1f}s)")
        summary.duration = time.monotonic() - start_time

        slowest = summary.slowest()
        if slowest:
            slowest_str = ", ".join(f"{r.name}: {r.duration:.1f}s" for r in slowest)
            logger.info(f"Slowest checks: {slowest_str}")
        return summary
