"""End-to-end tests for the kube-health-check command line."""

import os
import re
import stat
import time

import pytest
from kube_health import cli
from kube_health.kubectl import Kubectl
from kube_health.output import Transcript

READY_NODE = {"metadata": {"name": "n1"}, "status": {"conditions": [{"type": "Ready", "status": "True"}]}}
NOT_READY_NODE = {"metadata": {"name": "n2"}, "status": {"conditions": [{"type": "Ready", "status": "False"}]}}
RUNNING_POD = {"metadata": {"name": "p1"}, "status": {"phase": "Running"}}
PENDING_POD = {"metadata": {"name": "p2"}, "status": {"phase": "Pending"}}


def write_check(directory, script, body):
    path = directory / script
    path.write_text("#!/bin/sh\n" + body + "\n")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def fake_get_items(resource, namespace=None, selector=None, all_namespaces=False):
    if resource == "nodes":
        return [READY_NODE, NOT_READY_NODE]
    if namespace == "kube-system":
        return [RUNNING_POD]
    return [RUNNING_POD, PENDING_POD]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep KUBE_HEALTH_* settings from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("KUBE_HEALTH_"):
            monkeypatch.delenv(key)
    monkeypatch.delenv("NO_COLOR", raising=False)


@pytest.fixture
def cluster(mocker):
    """A reachable cluster with two nodes, one of them not ready."""
    mocker.patch.object(Kubectl, "is_available", return_value=True)
    mocker.patch.object(Kubectl, "cluster_reachable", return_value=True)
    mocker.patch.object(Kubectl, "current_context", return_value="test-context")
    mocker.patch.object(Kubectl, "get_items", side_effect=fake_get_items)


@pytest.fixture
def checks_dir(tmp_path):
    directory = tmp_path / "scripts"
    directory.mkdir()
    write_check(directory, "check-k8s-health-enhanced.sh", 'echo "detail line"\necho "✓ cluster fine"')
    write_check(directory, "check-node-health.sh", 'echo "✗ node broken"\nexit 1')
    write_check(directory, "check-etcd.sh", 'echo "⚠ etcd slow"')
    return directory


def run_cli(argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(argv)
    return exc_info.value.code


class TestSelectionErrors:
    """Test cases for usage errors reported before any check runs."""

    def test_list_exits_zero_without_cluster(self, capsys, mocker):
        """--list needs neither kubectl nor a cluster."""
        available = mocker.patch.object(Kubectl, "is_available", return_value=False)

        assert run_cli(["--list"]) == cli.EXIT_OK

        out = capsys.readouterr().out
        assert out.startswith("Available Health Checks:")
        assert "cert-manager" in out
        available.assert_not_called()

    def test_no_selection_prints_listing(self, capsys):
        """No names and no --all shows the listing and exits non-zero."""
        assert run_cli([]) == cli.EXIT_USAGE

        out = capsys.readouterr().out
        assert "No checks specified" in out
        assert "Available Health Checks:" in out

    def test_no_selection_listing_is_stable(self, capsys):
        """Repeated runs without a selection print the same listing."""
        run_cli([])
        first = capsys.readouterr().out
        run_cli([])
        assert capsys.readouterr().out == first

    def test_unknown_check_runs_nothing(self, capsys, mocker, checks_dir):
        """An unknown name aborts before preflight or any check."""
        available = mocker.patch.object(Kubectl, "is_available", return_value=True)

        assert run_cli(["--checks-dir", str(checks_dir), "cluster", "bogus"]) == cli.EXIT_USAGE

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Unknown check 'bogus'" in captured.err
        assert "--list" in captured.err
        available.assert_not_called()

    def test_all_and_list_are_exclusive(self, capsys):
        assert run_cli(["--all", "--list"]) == 2

    def test_invalid_config_is_usage_error(self, tmp_path, capsys):
        config = tmp_path / "config.yaml"
        config.write_text("color: sometimes\n")

        assert run_cli(["--config", str(config), "cluster"]) == cli.EXIT_USAGE
        assert "Invalid color mode" in capsys.readouterr().err


class TestPreconditions:
    """Test cases for the kubectl and connectivity checks."""

    def test_kubectl_missing(self, capsys, mocker, checks_dir):
        mocker.patch.object(Kubectl, "is_available", return_value=False)
        mocker.patch.object(Kubectl, "current_context", return_value=None)

        assert run_cli(["--checks-dir", str(checks_dir), "cluster"]) == cli.EXIT_PRECONDITION

        captured = capsys.readouterr()
        assert "kubectl command not found" in captured.out
        assert "Running:" not in captured.out
        assert "kubectl" in captured.err

    def test_cluster_unreachable(self, capsys, mocker, checks_dir):
        mocker.patch.object(Kubectl, "is_available", return_value=True)
        mocker.patch.object(Kubectl, "cluster_reachable", return_value=False)
        mocker.patch.object(Kubectl, "current_context", return_value=None)

        assert run_cli(["--checks-dir", str(checks_dir), "nodes"]) == cli.EXIT_PRECONDITION

        out = capsys.readouterr().out
        assert "Cannot connect to cluster" in out
        assert "Cluster: Unknown" in out
        assert "Running:" not in out


class TestHealthCheckRun:
    """Test cases for full runs against stub check scripts."""

    def test_sequential_run(self, capsys, cluster, checks_dir):
        """Checks run in order, failures are counted and the exit code stays 0."""
        code = run_cli(["--checks-dir", str(checks_dir), "etcd", "nodes"])

        assert code == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "Kubernetes Comprehensive Health Check Report" in out
        assert "Cluster: test-context" in out
        assert "Checks to run: 2" in out
        assert "✓ Connected" in out
        assert out.index("Running: etcd Key-Value Store") < out.index("Running: Node Health and Resources")
        assert "Total checks run: 2" in out
        assert "Succeeded: 1" in out
        assert "Failed: 1" in out
        assert "nodes: issues (exit code 1)" in out
        assert "Cluster Health Indicators:" not in out
        assert out.rstrip().endswith("Health check complete!")

    def test_non_verbose_hides_detail(self, capsys, cluster, checks_dir):
        run_cli(["--checks-dir", str(checks_dir), "cluster"])

        out = capsys.readouterr().out
        assert "✓ cluster fine" in out
        assert "detail line" not in out

    def test_verbose_shows_detail(self, capsys, cluster, checks_dir):
        run_cli(["--checks-dir", str(checks_dir), "--verbose", "cluster"])

        assert "detail line" in capsys.readouterr().out

    def test_cluster_selection_shows_indicators(self, capsys, cluster, checks_dir):
        run_cli(["--checks-dir", str(checks_dir), "cluster"])

        out = capsys.readouterr().out
        assert "Cluster Health Indicators:" in out
        assert "Nodes: ⚠ 1/2 ready" in out
        assert "Pods: 1/2 running" in out
        assert "System Pods: ✓ 1/1 running" in out

    def test_all_counts_missing_scripts_as_failed(self, capsys, cluster, checks_dir):
        """--all runs all 15 checks; the missing scripts are unavailable, not fatal."""
        code = run_cli(["--checks-dir", str(checks_dir), "--all"])

        assert code == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "Checks to run: 15" in out
        assert out.count("Running: ") == 15
        assert out.count("Check completed in ") == 15
        assert "Total checks run: 15" in out
        assert "Succeeded: 2" in out
        assert "Failed: 13" in out
        assert "Cluster Health Indicators:" in out

    def test_parallel_output_matches_sequential_order(self, capsys, cluster, checks_dir):
        run_cli(["--checks-dir", str(checks_dir), "--parallel", "nodes", "etcd", "cluster"])

        out = capsys.readouterr().out
        assert "Running checks in parallel..." in out
        positions = [out.index(f"Running: {d}") for d in
                     ("Node Health and Resources", "etcd Key-Value Store", "Enhanced Kubernetes Cluster Health")]
        assert positions == sorted(positions)
        assert "Total checks run: 3" in out

    def test_output_file_matches_stdout(self, capsys, cluster, checks_dir, tmp_path):
        """The saved report is byte-identical to what was printed."""
        report = tmp_path / "report.txt"

        code = run_cli(["--checks-dir", str(checks_dir), "-o", str(report), "cluster", "nodes"])

        assert code == cli.EXIT_OK
        captured = capsys.readouterr()
        assert report.read_bytes() == captured.out.encode("utf-8")
        assert f"Saving output to: {report}" in captured.err

    def test_unwritable_output_file(self, capsys, cluster, checks_dir, tmp_path):
        code = run_cli(["--checks-dir", str(checks_dir), "-o", str(tmp_path / "missing" / "r.txt"), "cluster"])

        assert code == cli.EXIT_USAGE
        assert "Cannot write output" in capsys.readouterr().err

    def test_broken_stdout_is_not_an_output_file_error(self, capsys, cluster, checks_dir, mocker):
        """Only opening the -o file is reported as an output problem."""
        mocker.patch.object(Transcript, "write", side_effect=BrokenPipeError("Broken pipe"))

        code = run_cli(["--checks-dir", str(checks_dir), "cluster"])

        assert code == cli.EXIT_INTERNAL_ERROR
        err = capsys.readouterr().err
        assert "Cannot write output" not in err
        assert "Broken pipe" in err

    def test_quoted_numbers_in_config_file(self, capsys, cluster, checks_dir, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text('max_parallel: "2"\ncheck_timeout: "30"\nparallel: "yes"\n')

        code = run_cli(["--config", str(config), "--checks-dir", str(checks_dir), "cluster", "etcd", "nodes"])

        assert code == cli.EXIT_OK
        out = capsys.readouterr().out
        assert "Running checks in parallel..." in out
        assert "Total checks run: 3" in out

    def test_total_duration_covers_whole_run(self, capsys, cluster, checks_dir, mocker):
        """Indicator queries after the checks count towards the total duration."""

        def slow_indicators(kubectl):
            time.sleep(0.5)

        mocker.patch("kube_health.cli.collect_indicators", side_effect=slow_indicators)

        run_cli(["--checks-dir", str(checks_dir), "cluster"])

        match = re.search(r"Total duration: (\d+\.\d)s", capsys.readouterr().out)
        assert float(match.group(1)) >= 0.5


class TestFormatReportDate:
    """Test cases for the report date line."""

    def test_timezone_name_in_date(self):
        assert "UTC" in cli.format_report_date("UTC")
