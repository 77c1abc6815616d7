"""Tests for non-verbose output filtering."""

import pytest
from kube_health.filters import filter_lines, is_summary_line, strip_ansi


class TestIsSummaryLine:
    """Test cases for the summary line predicate."""

    @pytest.mark.parametrize(
        "line",
        [
            "Summary:\n",
            "━━━━━━━━━━━━━━━━\n",
            "✓ All nodes ready\n",
            "✗ etcd unhealthy\n",
            "⚠ 2 pods restarting\n",
            "• Checks passed: 4\n",
            "1. Checking nodes...\n",
            "12. Recommendations...\n",
            "\n",
            "",
        ],
    )
    def test_kept_lines(self, line: str):
        """Summary headers, glyphs, bullets, numbered headers and blanks are kept."""
        assert is_summary_line(line) is True

    @pytest.mark.parametrize(
        "line",
        [
            "Running detailed scan\n",
            "  ClusterIP: 10.96.0.10\n",
            "NAME   READY   STATUS\n",
            "----------------\n",
            "1 pod found\n",
            "v1.28 detected\n",
        ],
    )
    def test_dropped_lines(self, line: str):
        """Detail lines are dropped."""
        assert is_summary_line(line) is False

    def test_colour_codes_ignored(self):
        """A coloured glyph line is still a summary line."""
        assert is_summary_line("\x1b[0;32m✓ Connected\x1b[0m\n") is True
        assert is_summary_line("\x1b[0;34mdetail\x1b[0m\n") is False

    def test_indentation_ignored(self):
        """Indented glyph lines are kept."""
        assert is_summary_line("    ⚠ high restarts\n") is True

    def test_line_without_newline(self):
        """A final unterminated line is classified like any other."""
        assert is_summary_line("✓ done") is True
        assert is_summary_line("done") is False


class TestStripAnsi:
    """Test cases for strip_ansi."""

    def test_strip_ansi(self):
        assert strip_ansi("\x1b[1;33mwarn\x1b[0m") == "warn"


class TestFilterLines:
    """Test cases for filter_lines."""

    LINES = ["1. Checking nodes...\n", "  worker-1 Ready\n", "✓ nodes ok\n", "\n", "NAME STATUS\n"]

    def test_non_verbose_keeps_summary_lines(self):
        assert list(filter_lines(self.LINES)) == ["1. Checking nodes...\n", "✓ nodes ok\n", "\n"]

    def test_verbose_keeps_everything(self):
        assert list(filter_lines(self.LINES, verbose=True)) == self.LINES

    def test_lazy(self):
        """Lines are pulled from the source only as they are consumed."""
        consumed = []

        def source():
            for line in self.LINES:
                consumed.append(line)
                yield line

        filtered = filter_lines(source())
        assert consumed == []
        assert next(filtered) == "1. Checking nodes...\n"
        assert consumed == ["1. Checking nodes...\n"]
