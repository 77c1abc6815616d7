"""Tests for Kubernetes object helpers."""

from datetime import datetime, timezone

import pytest
from kube_health import resources


class TestObjectHelpers:
    """Test cases for metadata and condition accessors."""

    def test_qualified_name(self, sample_pod, sample_node):
        assert resources.qualified_name(sample_pod) == "default/web-7d4b9c-abcde"
        assert resources.qualified_name(sample_node) == "worker-1"

    def test_condition(self, sample_node):
        assert resources.condition(sample_node, "Ready") == {"type": "Ready", "status": "True"}
        assert resources.condition(sample_node, "DiskPressure") is None
        assert resources.is_condition_true(sample_node, "Ready") is True
        assert resources.is_condition_true(sample_node, "MemoryPressure") is False

    def test_missing_metadata(self):
        assert resources.name({}) == ""
        assert resources.labels({"metadata": {"labels": None}}) == {}


class TestNodes:
    """Test cases for node helpers."""

    def test_ready(self, sample_node, sample_node_condition):
        assert resources.node_is_ready(sample_node) is True
        sample_node["status"]["conditions"] = [sample_node_condition]
        assert resources.node_is_ready(sample_node) is False
        assert resources.node_condition(sample_node, "MemoryPressure") == "True"

    def test_count_ready_nodes(self, sample_node):
        assert resources.count_ready_nodes([sample_node, {"status": {}}]) == (1, 2)

    def test_roles(self):
        control_plane = {"metadata": {"labels": {"node-role.kubernetes.io/control-plane": ""}}}
        assert resources.node_roles(control_plane) == ["control-plane"]
        assert resources.node_is_control_plane(control_plane) is True
        assert resources.node_roles({"metadata": {}}) == ["worker"]

    def test_kernel_major(self, sample_node):
        assert resources.kernel_major(sample_node) == 5
        assert resources.kernel_major({}) is None


class TestPods:
    """Test cases for pod helpers."""

    def test_running_and_ready(self, sample_pod):
        assert resources.pod_is_running(sample_pod) is True
        assert resources.pod_is_ready(sample_pod) is True
        assert resources.pod_restarts(sample_pod) == 2

    def test_pod_without_statuses_not_ready(self):
        assert resources.pod_is_ready({"status": {"phase": "Pending"}}) is False
        assert resources.pod_phase({}) == "Unknown"

    def test_count_running_pods(self, sample_pod):
        assert resources.count_running_pods([sample_pod, {"status": {"phase": "Failed"}}]) == (1, 2)

    def test_waiting_reasons(self):
        pod = {"status": {"containerStatuses": [
            {"state": {"waiting": {"reason": "CrashLoopBackOff"}}},
            {"state": {"running": {}}},
        ]}}
        assert resources.waiting_reasons(pod) == ["CrashLoopBackOff"]

    def test_owner_and_node(self, sample_pod):
        assert resources.owner_kind(sample_pod) == "ReplicaSet"
        assert resources.pod_node(sample_pod) == "worker-1"
        assert resources.pod_node({"spec": {}}) == "<unscheduled>"

    def test_container_args_from_template(self):
        deployment = {"spec": {"template": {"spec": {"containers": [
            {"command": ["/metrics-server"], "args": ["--kubelet-insecure-tls"]},
        ]}}}}
        assert resources.container_args(deployment) == ["/metrics-server", "--kubelet-insecure-tls"]

    def test_security_context_helpers(self, sample_pod):
        assert resources.runs_as_root(sample_pod) is False
        sample_pod["spec"]["containers"][0]["securityContext"] = {"runAsUser": 0, "privileged": True}
        assert resources.runs_as_root(sample_pod) is True
        assert resources.is_privileged(sample_pod) is True
        assert resources.uses_default_service_account({"spec": {}}) is True


class TestWorkloads:
    """Test cases for Deployment and DaemonSet counters."""

    def test_deployment_replicas(self):
        assert resources.deployment_replicas({"spec": {"replicas": 3}, "status": {"readyReplicas": 2}}) == (2, 3)
        assert resources.deployment_replicas({"spec": {}, "status": {}}) == (0, 1)

    def test_daemonset_pods(self):
        daemonset = {"status": {"numberReady": 4, "desiredNumberScheduled": 5}}
        assert resources.daemonset_pods(daemonset) == (4, 5)


class TestQuantities:
    """Test cases for quantity and time parsing."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("250m", 0.25),
            ("2", 2.0),
            ("4Gi", 4 * 2**30),
            ("512Mi", 512 * 2**20),
            ("1k", 1000.0),
            ("1e3", 1000.0),
            (None, 0.0),
            (3, 3.0),
        ],
    )
    def test_parse_quantity(self, value, expected):
        assert resources.parse_quantity(value) == pytest.approx(expected)

    def test_parse_quantity_invalid(self):
        with pytest.raises(ValueError):
            resources.parse_quantity("lots")

    def test_format_bytes(self):
        assert resources.format_bytes(3 * 2**30) == "3.0Gi"
        assert resources.format_bytes(100) == "100B"

    def test_parse_timestamp(self):
        parsed = resources.parse_timestamp("2026-02-20T10:30:00Z")
        assert parsed == datetime(2026, 2, 20, 10, 30, tzinfo=timezone.utc)
        assert resources.parse_timestamp("not a date") is None
        assert resources.parse_timestamp(None) is None


class TestEvents:
    """Test cases for event helpers."""

    def test_recent_events_newest_first(self):
        events = [
            {"reason": "old", "lastTimestamp": "2026-01-01T00:00:00Z"},
            {"reason": "undated"},
            {"reason": "new", "lastTimestamp": "2026-03-01T00:00:00Z"},
        ]
        assert [e["reason"] for e in resources.recent_events(events, 2)] == ["new", "old"]

    def test_event_summary(self):
        event = {"reason": "BackOff", "message": " restarting \n", "involvedObject": {"kind": "Pod", "name": "web"}}
        assert resources.event_summary(event) == "BackOff Pod/web: restarting"


class TestTopAndMetrics:
    """Test cases for kubectl top and Prometheus text parsing."""

    def test_parse_top_nodes(self):
        output = "node-1   250m   12%   2048Mi   55%\nbroken line\nnode-2   1   50%   1Gi   n/a\n"
        assert resources.parse_top_nodes(output) == [
            {"name": "node-1", "cpu": "250m", "cpu_pct": 12, "memory": "2048Mi", "memory_pct": 55},
        ]

    def test_detect_cni(self):
        pods = [{"metadata": {"name": "cilium-abcde"}}, {"metadata": {"name": "coredns-1"}}]
        assert resources.detect_cni(pods) == ["cilium"]

    def test_metric_samples(self):
        metrics = "\n".join([
            "# HELP coredns_dns_requests_total Counter",
            'coredns_dns_requests_total{server="dns://:53",type="A"} 100',
            'coredns_dns_requests_total{server="dns://:53",type="AAAA"} 50',
            "coredns_dns_requests_total_other 7",
            'coredns_dns_responses_total{rcode="SERVFAIL"} 3',
            'coredns_dns_responses_total{rcode="NOERROR"} 90',
        ])
        assert resources.metric_samples(metrics, "coredns_dns_requests_total") == [100.0, 50.0]
        assert resources.metric_total(metrics, "coredns_dns_requests_total") == 150.0
        assert resources.metric_total(metrics, "coredns_dns_responses_total", contains="SERVFAIL") == 3.0
        assert resources.metric_total(metrics, "missing_metric") == 0
