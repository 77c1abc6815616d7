"""Tests for colours, the report transcript and logging setup."""

import io
import logging

import pytest
from kube_health.output import (
    BOX_WIDTH,
    Colors,
    Palette,
    ProgressTracker,
    Transcript,
    boxed_title,
    color_enabled,
    configure_logging,
)


class FakeTTY(io.StringIO):
    def isatty(self):
        return True


class TestColorEnabled:
    """Test cases for colour mode resolution."""

    def test_always_and_never(self):
        assert color_enabled("always", io.StringIO()) is True
        assert color_enabled("never", FakeTTY()) is False

    def test_auto_follows_terminal(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        assert color_enabled("auto", FakeTTY()) is True
        assert color_enabled("auto", io.StringIO()) is False

    def test_no_color_env(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "1")
        assert color_enabled("auto", FakeTTY()) is False


class TestPalette:
    """Test cases for Palette."""

    def test_enabled_wraps_text(self):
        assert Palette(enabled=True).red("x") == f"{Colors.RED}x{Colors.NC}"

    def test_disabled_returns_plain_text(self):
        assert Palette(enabled=False).green("x") == "x"

    def test_boxed_title(self):
        lines = boxed_title("Summary Report", Palette(enabled=False))
        assert len(lines) == 3
        assert all(len(line) == BOX_WIDTH + 2 for line in lines)
        assert "Summary Report" in lines[1]


class TestTranscript:
    """Test cases for the tee'd report writer."""

    def test_stream_only(self):
        stream = io.StringIO()
        transcript = Transcript(stream)
        transcript.write("a")
        transcript.line("b")
        transcript.close()

        assert stream.getvalue() == "ab\n"

    def test_file_is_identical_to_stream(self, tmp_path):
        stream = io.StringIO()
        path = tmp_path / "out.txt"
        with Transcript(stream, str(path)) as transcript:
            transcript.line("✓ unicode ok")
            transcript.write("\x1b[0;32mcoloured\x1b[0m\n")

        assert path.read_bytes() == stream.getvalue().encode("utf-8")

    def test_close_is_idempotent(self, tmp_path):
        transcript = Transcript(io.StringIO(), str(tmp_path / "out.txt"))
        transcript.close()
        transcript.close()

    def test_unwritable_path(self, tmp_path):
        with pytest.raises(OSError):
            Transcript(io.StringIO(), str(tmp_path / "no" / "such" / "dir.txt"))


class TestConfigureLogging:
    """Test cases for configure_logging."""

    def test_verbose_logs_debug(self):
        configure_logging(True)
        package_logger = logging.getLogger("kube_health")
        assert package_logger.level == logging.DEBUG
        assert any(isinstance(h, logging.StreamHandler) for h in package_logger.handlers)

    def test_quiet_uses_null_handler(self):
        configure_logging(False)
        package_logger = logging.getLogger("kube_health")
        assert [type(h) for h in package_logger.handlers] == [logging.NullHandler]


class TestProgressTracker:
    """Test cases for ProgressTracker."""

    def test_info_goes_to_stderr_and_logger(self, capsys, mocker):
        mock_logger = mocker.patch("kube_health.output.logger")

        ProgressTracker(verbose=False).info("Saving output to: report.txt")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == "Saving output to: report.txt\n"
        mock_logger.info.assert_called_once_with("Saving output to: report.txt")

    def test_verbose_leaves_console_to_the_log_handler(self, capsys, mocker):
        mock_logger = mocker.patch("kube_health.output.logger")

        ProgressTracker(verbose=True).info("hello")
        ProgressTracker(verbose=True).error("boom")

        assert capsys.readouterr().err == ""
        mock_logger.info.assert_called_once_with("hello")
        mock_logger.error.assert_called_once_with("boom")

    def test_error_prefixed(self, capsys, mocker):
        mocker.patch("kube_health.output.logger")

        ProgressTracker().error("boom")

        assert capsys.readouterr().err == "✗ boom\n"
