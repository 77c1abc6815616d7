"""Command line entry point for kube-health-check."""

import argparse
import logging
import sys
import time
from datetime import datetime

import pytz

from kube_health import VERSION
from kube_health.config import ConfigLoader, Settings
from kube_health.engine import ExecutionEngine, RunSummary
from kube_health.errors import (
    ClusterUnreachableError,
    KubectlNotAvailableError,
    NoChecksSelectedError,
    PreconditionError,
    UnknownCheckError,
    UsageError,
)
from kube_health.executor import CheckExecutor
from kube_health.kubectl import Kubectl
from kube_health.output import (
    COLOR_MODES,
    Palette,
    ProgressTracker,
    Transcript,
    boxed_title,
    color_enabled,
    configure_logging,
)
from kube_health.registry import build_registry, format_listing, resolve_selection
from kube_health.summary import SummaryReporter, collect_indicators

logger = logging.getLogger(__name__)

PROG = "kube-health-check"

EXIT_OK = 0
EXIT_INTERNAL_ERROR = 1
EXIT_USAGE = 2
EXIT_PRECONDITION = 3
EXIT_INTERRUPTED = 130


def create_argument_parser():
    """Create argument parser with all CLI options"""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Comprehensive Kubernetes health check - runs diagnostic checks and summarizes the results",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Examples:
  # Run every check
  {PROG} --all

  # Run specific checks
  {PROG} cluster nodes storage

  # Run all checks in parallel and save the report
  {PROG} --all --parallel --output report.txt

  # Show full check output instead of the summary lines
  {PROG} --verbose etcd

  # Use external check scripts from a directory
  {PROG} --checks-dir ./scripts --all

Environment Variables:
  KUBE_HEALTH_OUTPUT         - Output file
  KUBE_HEALTH_VERBOSE        - Verbose output (true/false)
  KUBE_HEALTH_PARALLEL       - Run checks in parallel (true/false)
  KUBE_HEALTH_CHECKS_DIR     - Directory with check scripts
  KUBE_HEALTH_KUBE_CONTEXT   - Kubernetes context
  KUBE_HEALTH_TIMEZONE       - Timezone for the report date
  KUBE_HEALTH_COLOR          - Color mode (auto/always/never)
  KUBE_HEALTH_MAX_PARALLEL   - Maximum concurrent checks
  KUBE_HEALTH_CHECK_TIMEOUT  - Per-check timeout in seconds
        """,
    )

    parser.add_argument("checks", nargs="*", metavar="CHECK", help="Names of the checks to run")

    selection_group = parser.add_mutually_exclusive_group()
    selection_group.add_argument("-a", "--all", action="store_true", help="Run all available checks")
    selection_group.add_argument("-l", "--list", action="store_true", help="List available checks and exit")

    parser.add_argument("-o", "--output", metavar="FILE", help="Save the report to FILE as well as stdout")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show full check output and debug logs")
    parser.add_argument("-p", "--parallel", action="store_true", help="Run checks in parallel")

    parser.add_argument("--config", help="Path to YAML/JSON config file")
    parser.add_argument("--checks-dir", help="Run check scripts from this directory instead of the built-in checks")
    parser.add_argument("--kube-context", help="Kubernetes context name")
    parser.add_argument("--timezone", help="Timezone for the report date (default: UTC)")
    parser.add_argument("--max-parallel", type=int, metavar="N", help="Maximum checks running at once in parallel mode")
    parser.add_argument("--check-timeout", type=float, metavar="SECONDS", help="Kill checks that run longer than this")
    parser.add_argument("--color", choices=COLOR_MODES, help="Color output (default: auto)")

    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    return parser


def format_report_date(tz_name: str) -> str:
    return datetime.now(pytz.timezone(tz_name)).strftime("%a %b %d %H:%M:%S %Z %Y")


def preflight(kubectl: Kubectl, transcript: Transcript, palette: Palette) -> None:
    """Verify kubectl is installed and the cluster answers.

    Raises:
        KubectlNotAvailableError: If kubectl is not on PATH
        ClusterUnreachableError: If ``kubectl cluster-info`` fails
    """
    if not kubectl.is_available():
        transcript.line(palette.red("Error: kubectl command not found. Please install kubectl."))
        raise KubectlNotAvailableError("kubectl not found in PATH")

    transcript.write("Checking cluster connectivity... ")
    if not kubectl.cluster_reachable():
        transcript.line(palette.red("✗ Cannot connect to cluster"))
        raise ClusterUnreachableError("Cannot connect to cluster")
    transcript.line(palette.green("✓ Connected"))
    transcript.line()


def run_health_check(selection, settings: Settings, kubectl: Kubectl, transcript: Transcript,
                     palette: Palette, show_indicators: bool) -> RunSummary:
    """Print the report header, run the selection and print the summary."""
    start_time = time.monotonic()
    transcript.line()
    for text in boxed_title("Kubernetes Comprehensive Health Check Report", palette):
        transcript.line(text)
    transcript.line()
    transcript.line(f"Date: {format_report_date(settings.timezone)}")
    transcript.line(f"Cluster: {kubectl.current_context() or 'Unknown'}")
    transcript.line(f"Checks to run: {len(selection)}")
    transcript.line()

    preflight(kubectl, transcript, palette)

    if settings.parallel:
        transcript.line(palette.yellow("Running checks in parallel..."))
        transcript.line()

    executor = CheckExecutor(
        verbose=settings.verbose,
        timeout=settings.check_timeout,
        extra_env={
            "KUBE_HEALTH_COLOR": "always" if palette.enabled else "never",
            "KUBE_HEALTH_KUBE_CONTEXT": settings.kube_context,
        },
        palette=palette,
    )
    engine = ExecutionEngine(executor, transcript.write, max_parallel=settings.max_parallel)
    summary = engine.run(selection, parallel=settings.parallel)
    transcript.flush()

    indicators = collect_indicators(kubectl) if show_indicators else None
    summary.duration = time.monotonic() - start_time
    SummaryReporter(transcript.line, palette).render(summary, indicators, show_indicators)
    transcript.flush()
    return summary


def main(argv=None):
    """Main entry point"""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)
    progress = ProgressTracker(verbose=args.verbose)
    transcript = None

    try:
        config = ConfigLoader.load(args.config)
        settings = Settings.from_sources(config, {
            "output": args.output,
            "verbose": args.verbose,
            "parallel": args.parallel,
            "checks_dir": args.checks_dir,
            "kube_context": args.kube_context,
            "timezone": args.timezone,
            "color": args.color,
            "max_parallel": args.max_parallel,
            "check_timeout": args.check_timeout,
        })
        if settings.verbose and not args.verbose:
            configure_logging(True)
            progress = ProgressTracker(verbose=True)

        registry = build_registry(settings.checks_dir)

        if args.list:
            sys.stdout.write(format_listing(registry, PROG))
            sys.exit(EXIT_OK)

        try:
            selection = resolve_selection(registry, args.all, args.checks)
        except NoChecksSelectedError as e:
            sys.stdout.write(f"{e}\n\n")
            sys.stdout.write(format_listing(registry, PROG))
            sys.exit(EXIT_USAGE)

        kubectl = Kubectl(settings.kube_context)
        palette = Palette(enabled=color_enabled(settings.color, sys.stdout))
        show_indicators = args.all or any(d.cluster_level for d in selection)

        if settings.output:
            # Not part of the transcript, so the saved file matches stdout
            progress.info(f"Saving output to: {settings.output}")
        try:
            transcript = Transcript(sys.stdout, settings.output)
        except OSError as e:
            progress.error(f"Cannot write output: {e}")
            sys.exit(EXIT_USAGE)

        summary = run_health_check(selection, settings, kubectl, transcript, palette, show_indicators)
        logger.info(f"Completed {summary.total} checks: {summary.succeeded} succeeded, {summary.failed} failed")
        sys.exit(EXIT_OK)

    except UnknownCheckError as e:
        progress.error(f"Error: Unknown check '{e.name}'")
        progress.error("Use --list to see available checks")
        sys.exit(EXIT_USAGE)
    except UsageError as e:
        progress.error(f"Usage error: {e}")
        sys.exit(EXIT_USAGE)
    except KubectlNotAvailableError as e:
        progress.error(f"kubectl error: {e}")
        progress.error("Please ensure kubectl is installed and in your PATH")
        sys.exit(EXIT_PRECONDITION)
    except PreconditionError as e:
        progress.error(f"Cluster error: {e}")
        sys.exit(EXIT_PRECONDITION)
    except KeyboardInterrupt:
        progress.error("\nHealth check interrupted by user")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        progress.error(f"Unexpected error: {e}")
        if args.verbose:
            import traceback

            traceback.print_exc()
        sys.exit(EXIT_INTERNAL_ERROR)
    finally:
        if transcript:
            transcript.close()


if __name__ == "__main__":
    main()
