"""Tests for running a single check as a child process."""

import os
import re

import pytest
from kube_health.executor import CheckExecutor, CheckStatus
from kube_health.registry import CheckDescriptor

FOOTER_RE = re.compile(r"Check completed in \d+\.\ds")


class TestCheckExecutor:
    """Test cases for CheckExecutor.run with stub check scripts."""

    @pytest.fixture
    def collected(self):
        return []

    def test_passing_check(self, make_script, collected):
        """Exit 0 is recorded as passed and framed with banner and footer."""
        descriptor = make_script("alpha", 'echo "Checking alpha..."\necho "✓ alpha ok"\nexit 0', "Alpha Health")

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.PASSED
        assert result.succeeded is True
        assert result.exit_code == 0
        assert "Running: Alpha Health" in result.output
        assert "✓ alpha ok" in result.output
        assert FOOTER_RE.search(result.output)
        assert result.output.index("Running: Alpha Health") < result.output.index("✓ alpha ok")
        assert result.output.index("✓ alpha ok") < FOOTER_RE.search(result.output).start()

    def test_write_receives_exactly_the_output(self, make_script, collected):
        """Everything written is also kept in the result."""
        descriptor = make_script("alpha", 'echo "✓ one"\necho "✓ two"')

        result = CheckExecutor().run(descriptor, collected.append)

        assert "".join(collected) == result.output

    def test_non_verbose_filters_detail_lines(self, make_script, collected):
        """Detail lines are dropped unless verbose."""
        descriptor = make_script("alpha", 'echo "Scanning pods"\necho "⚠ 1 pod pending"\necho "Summary:"')

        result = CheckExecutor(verbose=False).run(descriptor, collected.append)

        assert "Scanning pods" not in result.output
        assert "⚠ 1 pod pending" in result.output
        assert "Summary:" in result.output

    def test_verbose_keeps_every_line(self, make_script, collected):
        descriptor = make_script("alpha", 'echo "Scanning pods"\necho "⚠ 1 pod pending"')

        result = CheckExecutor(verbose=True).run(descriptor, collected.append)

        assert "Scanning pods" in result.output
        assert "⚠ 1 pod pending" in result.output

    def test_stderr_is_merged(self, make_script, collected):
        """stderr lines are interleaved with stdout."""
        descriptor = make_script("alpha", 'echo "✓ from stdout"\necho "✗ from stderr" >&2')

        result = CheckExecutor().run(descriptor, collected.append)

        assert "✓ from stdout" in result.output
        assert "✗ from stderr" in result.output

    def test_non_zero_exit_is_recorded_not_raised(self, make_script, collected):
        """A failing check returns a result with issues."""
        descriptor = make_script("alpha", 'echo "✗ broken"\nexit 1')

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.ISSUES
        assert result.succeeded is False
        assert result.exit_code == 1
        assert "(exit code 1)" in result.output

    def test_missing_script_is_unavailable(self, tmp_path, collected):
        """A missing script is reported inside a normal frame."""
        descriptor = CheckDescriptor("ghost", str(tmp_path / "check-ghost.sh"), "Ghost Check")

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.UNAVAILABLE
        assert result.exit_code is None
        assert "Script not found" in result.error
        assert "Running: Ghost Check" in result.output
        assert "✗ Script not found" in result.output
        assert FOOTER_RE.search(result.output)

    def test_non_executable_script_is_unavailable(self, make_script, collected):
        descriptor = make_script("alpha", 'echo "✓ ok"', executable=False)

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.UNAVAILABLE
        assert "not executable" in result.error

    def test_script_without_sh_extension_is_found(self, make_script, collected):
        """check-x.sh falls back to check-x when only that exists."""
        descriptor = make_script("alpha", 'echo "✓ extensionless"')
        bare = descriptor.executable[:-3]

        os.rename(descriptor.executable, bare)

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.PASSED
        assert "✓ extensionless" in result.output

    def test_program_on_path(self, collected):
        """A bare executable name is looked up on PATH."""
        descriptor = CheckDescriptor("inline", "sh", "Inline Check", args=("-c", "echo '✓ inline'"))

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.PASSED
        assert "✓ inline" in result.output

    def test_program_missing_from_path(self, collected):
        descriptor = CheckDescriptor("inline", "no-such-check-program-xyz", "Inline Check")

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.UNAVAILABLE
        assert "not found in PATH" in result.error

    def test_timeout_kills_check(self, make_script, collected):
        """A check running past the timeout is killed and marked timed out."""
        descriptor = make_script("slow", 'echo "✓ started"\nsleep 30\necho "✓ never"')

        result = CheckExecutor(timeout=0.5).run(descriptor, collected.append)

        assert result.status == CheckStatus.TIMED_OUT
        assert result.duration < 10
        assert "✓ started" in result.output
        assert "✓ never" not in result.output
        assert "Timed out after 0.5s" in result.output

    def test_extra_env_is_passed(self, make_script, collected):
        """Provider settings reach the child through its environment."""
        descriptor = make_script("alpha", 'echo "• color=$KUBE_HEALTH_COLOR context=$KUBE_HEALTH_KUBE_CONTEXT"')

        executor = CheckExecutor(extra_env={"KUBE_HEALTH_COLOR": "never", "KUBE_HEALTH_KUBE_CONTEXT": None})
        result = executor.run(descriptor, collected.append)

        assert "• color=never context=" in result.output

    def test_unterminated_last_line(self, make_script, collected):
        """Output without a trailing newline still ends its line."""
        descriptor = make_script("alpha", 'printf "✓ no newline"')

        result = CheckExecutor().run(descriptor, collected.append)

        assert "✓ no newline\n" in result.output

    def test_non_verbose_is_subset_of_verbose(self, make_script):
        """Filtering only removes lines, and keeps every marker line."""
        script = "\n".join([
            'echo "1. Checking pods..."',
            'echo "-------------------"',
            'echo "  web-1 Running"',
            'echo "✓ pods ok"',
            'echo "⚠ one restart"',
            'echo "Summary:"',
            'echo "• Failures: 0"',
        ])
        descriptor = make_script("alpha", script)

        def framed_lines(verbose):
            output = CheckExecutor(verbose=verbose).run(descriptor, lambda text: None).output
            return [line for line in output.splitlines() if not line.startswith("Check completed")]

        quiet, loud = framed_lines(False), framed_lines(True)

        assert set(quiet) <= set(loud)
        for marker in ("1. Checking pods...", "✓ pods ok", "⚠ one restart", "Summary:", "• Failures: 0"):
            assert marker in quiet
        assert "  web-1 Running" in loud
        assert "  web-1 Running" not in quiet

    def test_silent_check_is_failed(self, make_script, collected):
        """Exiting 0 without any output is reported in the block and as a failure."""
        descriptor = make_script("silent", "exit 0")

        result = CheckExecutor().run(descriptor, collected.append)

        assert result.status == CheckStatus.NO_OUTPUT
        assert result.succeeded is False
        assert result.exit_code == 0
        assert result.error == "Check produced no output"
        assert result.output.index("Running: Silent Check") < result.output.index("✗ Check produced no output")
        assert FOOTER_RE.search(result.output)

    def test_silent_failing_check_keeps_exit_code(self, make_script, collected):
        result = CheckExecutor().run(make_script("silent", "exit 3"), collected.append)

        assert result.status == CheckStatus.NO_OUTPUT
        assert result.exit_code == 3
        assert "(exit code 3)" in result.output

    def test_filtered_out_output_still_counts(self, make_script, collected):
        """Detail-only output is hidden in non-verbose mode but the check still passes."""
        descriptor = make_script("alpha", 'echo "just details"')

        result = CheckExecutor(verbose=False).run(descriptor, collected.append)

        assert result.status == CheckStatus.PASSED
        assert "just details" not in result.output
        assert "no output" not in result.output
