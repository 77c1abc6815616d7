"""Tests for the shared check provider runtime."""

import io

import pytest
from kube_health.checks.base import Report, pod_label, run_provider
from kube_health.errors import ComponentNotFoundError, InputValidationError
from kube_health.filters import is_summary_line
from kube_health.output import Palette


@pytest.fixture
def stream():
    return io.StringIO()


class TestReport:
    """Test cases for Report output formatting."""

    @pytest.fixture
    def report(self, stream):
        return Report("Demo Check", stream=stream, palette=Palette(enabled=False))

    def test_glyph_lines_and_counters(self, report, stream):
        report.ok("fine")
        report.warn("hmm")
        report.fail("bad")
        report.info("fyi")

        assert stream.getvalue() == "✓ fine\n⚠ hmm\n✗ bad\nℹ fyi\n"
        assert (report.passes, report.warnings, report.failures) == (1, 1, 1)

    def test_sections_are_numbered(self, report, stream):
        report.section("First")
        report.section("Second")

        lines = stream.getvalue().splitlines()
        assert "1. First..." in lines
        assert "2. Second..." in lines

    def test_status_lines_survive_filtering(self, report, stream):
        """The lines a run summary needs are the ones kept in non-verbose mode."""
        report.section("Checking")
        report.ok("kept")
        report.detail("dropped detail")
        report.add_summary("Nodes", 3)
        report.finish()

        kept = [line for line in stream.getvalue().splitlines() if is_summary_line(line) and line.strip()]
        assert "1. Checking..." in kept
        assert "✓ kept" in kept
        assert "Summary:" in kept
        assert "• Nodes: 3" in kept
        assert "  dropped detail" not in kept

    def test_recommendations_deduplicated(self, report, stream):
        report.recommend("Fix it")
        report.recommend("Fix it")
        report.render_recommendations()

        assert stream.getvalue().count("• Fix it") == 1

    def test_no_recommendations(self, report, stream):
        report.render_recommendations()

        assert "✓ No issues requiring action found" in stream.getvalue()

    def test_table_alignment(self, report, stream):
        report.table([("a", 1), ("longer", 22)], ["NAME", "N"])

        lines = stream.getvalue().splitlines()
        assert lines[0].rstrip() == "  NAME    N"
        assert lines[2] == "  longer  22"

    def test_pod_label(self, sample_pod):
        assert pod_label(sample_pod) == "web-7d4b9c-abcde (Running, restarts: 2)"


class TestRunProvider:
    """Test cases for run_provider exit codes."""

    def test_clean_check_exits_zero(self, stream, fake_kubectl):
        def check(report, kubectl):
            report.ok("all good")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 0
        output = stream.getvalue()
        assert output.startswith("=" * 38 + "\nDemo\n")
        assert "Demo Complete" in output
        assert "• Checks passed: 1" in output

    def test_warnings_only_exit_zero(self, stream, fake_kubectl):
        def check(report, kubectl):
            report.warn("minor")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 0

    def test_failures_exit_one(self, stream, fake_kubectl):
        def check(report, kubectl):
            report.fail("broken")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 1
        assert "• Failures: 1" in stream.getvalue()

    def test_explicit_code_wins(self, stream, fake_kubectl):
        def check(report, kubectl):
            report.ok("listed nothing")
            return 1

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 1

    def test_kubectl_missing(self, stream, fake_kubectl):
        called = []

        def check(report, kubectl):
            called.append(True)

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl(available=False)) == 1
        assert not called
        assert "kubectl command not found" in stream.getvalue()

    def test_component_not_found(self, stream, fake_kubectl):
        def check(report, kubectl):
            raise ComponentNotFoundError("Widget not installed")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 1
        assert "✗ Widget not installed" in stream.getvalue()

    def test_known_error(self, stream, fake_kubectl):
        def check(report, kubectl):
            raise InputValidationError("bad namespace")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 1
        assert "✗ Error: bad namespace" in stream.getvalue()

    def test_unexpected_error_exits_two(self, stream, fake_kubectl):
        def check(report, kubectl):
            raise RuntimeError("boom")

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 2
        assert "✗ Unexpected error: boom" in stream.getvalue()

    def test_interrupted(self, stream, fake_kubectl):
        def check(report, kubectl):
            raise KeyboardInterrupt

        assert run_provider("Demo", check, stream=stream, kubectl=fake_kubectl()) == 130

    def test_context_from_environment(self, stream, monkeypatch, mocker):
        """Providers pick the orchestrator's kube context from the environment."""
        monkeypatch.setenv("KUBE_HEALTH_KUBE_CONTEXT", "staging")
        kubectl_cls = mocker.patch("kube_health.checks.base.Kubectl")
        kubectl_cls.return_value.is_available.return_value = False

        run_provider("Demo", lambda report, kubectl: None, stream=stream)

        kubectl_cls.assert_called_once_with("staging")
