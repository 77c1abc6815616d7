"""Metrics Server health check: deployment, API registration, scraping and HPAs."""

import re
import sys
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, pod_label, run_provider
from kube_health.config import Thresholds
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

CANDIDATE_NAMESPACES = ("kube-system", "metrics-server", "monitoring")
POD_SELECTOR = "k8s-app=metrics-server"
API_SERVICE = "v1beta1.metrics.k8s.io"
SERVER_URL = "https://localhost:4443"
CONFIG_FLAG_RE = re.compile(r"kubelet-insecure-tls|kubelet-preferred-address-types|metric-resolution")
# label, log pattern
KUBELET_ERRORS = (
    ("Timeout errors", "unable to fetch metrics from node"),
    ("TLS/Certificate errors", "x509"),
    ("Scrape failures", "failed to scrape"),
)
SAMPLE_LINES = 5


def find_namespace(kubectl: Kubectl) -> Optional[str]:
    for ns in CANDIDATE_NAMESPACES:
        if kubectl.get_json(["get", "deployment", "-n", ns, "metrics-server"]) is not None:
            return ns
    return None


def hpa_without_metrics(hpas: list) -> list:
    """HPAs that report no current metrics or failed to fetch resource metrics."""
    return [
        h for h in hpas
        if not h.get("status", {}).get("currentMetrics")
        or any(c.get("reason") == "FailedGetResourceMetric" for c in h.get("status", {}).get("conditions") or [])
    ]


def kubelet_error_counts(logs: str) -> dict:
    return {label: logs.count(pattern) for label, pattern in KUBELET_ERRORS}


def check_metrics_server(report: Report, kubectl: Kubectl):
    namespace = find_namespace(kubectl)
    if namespace is None:
        raise ComponentNotFoundError(
            f"metrics-server not found in any namespace (checked: {', '.join(CANDIDATE_NAMESPACES)})"
        )
    report.line(report.palette.blue(f"Found metrics-server in namespace: {namespace}"))

    report.section("Metrics Server Deployment Status")
    deployment = kubectl.get_json(["get", "deployment", "-n", namespace, "metrics-server"]) or {}
    ready, desired = resources.deployment_replicas(deployment)
    if ready == desired:
        report.ok(f"All replicas ready: {ready}/{desired}")
    else:
        report.warn(f"Only {ready}/{desired} replicas ready")
    report.detail(f"Available replicas: {deployment.get('status', {}).get('availableReplicas', 0)}")
    conditions = deployment.get("status", {}).get("conditions") or []
    if conditions:
        report.detail("Conditions:")
        for entry in conditions:
            report.detail(f"{entry.get('type')}: {entry.get('status')} ({entry.get('reason', '')})", indent=4)

    report.section("Metrics Server Pod Health")
    pods = kubectl.get_items("pods", namespace=namespace, selector=POD_SELECTOR) or []
    running, total = resources.count_running_pods(pods)
    report.line(f"Total metrics-server pods: {total}")
    if running == total:
        report.ok(f"All pods running: {running}/{total}")
    else:
        report.warn(f"Only {running}/{total} pods running")
    for pod in pods:
        report.detail(f"{pod_label(pod)} on {resources.pod_node(pod)}, "
                      f"ready: {'Yes' if resources.pod_is_ready(pod) else 'No'}")
    restarting = [p for p in pods if resources.pod_restarts(p) > Thresholds.RESTART_WARNING]
    if restarting:
        report.warn("Pods with high restart counts:")
        for pod in restarting:
            report.detail(f"{resources.name(pod)}: {resources.pod_restarts(pod)} restarts")

    report.section("Metrics Server Service")
    service = kubectl.get_json(["get", "service", "-n", namespace, "metrics-server"])
    if service is not None:
        report.ok("Metrics Server service found")
        spec = service.get("spec", {})
        port = (spec.get("ports") or [{}])[0]
        report.detail(f"ClusterIP: {spec.get('clusterIP')}")
        report.detail(f"Port: {port.get('port')}/{port.get('protocol')}")
        endpoints = kubectl.get_json(["get", "endpoints", "-n", namespace, "metrics-server"]) or {}
        subsets = endpoints.get("subsets") or [{}]
        report.detail(f"Active endpoints: {len(subsets[0].get('addresses') or [])}")
    else:
        report.fail("Metrics Server service not found")

    report.section("API Service Registration")
    api_service = kubectl.get_json(["get", "apiservice", API_SERVICE])
    api_available = False
    if api_service is None:
        report.fail("Metrics API service not registered")
        report.recommend(f"Register the {API_SERVICE} APIService")
    elif resources.is_condition_true(api_service, "Available"):
        api_available = True
        report.ok("Metrics API service is available")
    else:
        report.fail("Metrics API service is not available")
        report.line("Conditions:")
        for entry in api_service.get("status", {}).get("conditions") or []:
            report.detail(f"{entry.get('type')}: {entry.get('status')} - {entry.get('reason')}: {entry.get('message')}")

    report.section("Metrics Server Configuration")
    running_pod = resources.first_running(pods)
    first_pod = resources.name(running_pod) if running_pod else None
    if first_pod:
        args = resources.container_args(pods[0])
        report.line("Configuration parameters:")
        for arg in args:
            if CONFIG_FLAG_RE.search(arg):
                report.detail(arg)
        if any("kubelet-insecure-tls" in arg for arg in args):
            report.warn("Running with --kubelet-insecure-tls (development mode)")
            report.recommend("Configure kubelet serving certificates and drop --kubelet-insecure-tls")

    report.section("Testing Metrics Availability")
    node_metrics = kubectl.output(["top", "nodes"])
    if node_metrics is not None:
        report.ok("kubectl top nodes: Working")
        report.line("Sample node metrics:")
        for line in node_metrics.splitlines()[:SAMPLE_LINES]:
            report.detail(line)
    else:
        report.fail("kubectl top nodes: Not working")
        report.detail("Error: Cannot fetch node metrics")
    pod_metrics = kubectl.output(["top", "pods", "-n", "kube-system"])
    if pod_metrics is not None:
        report.ok("kubectl top pods: Working")
        report.line("Sample pod metrics (kube-system):")
        for line in pod_metrics.splitlines()[:SAMPLE_LINES]:
            report.detail(line)
    else:
        report.fail("kubectl top pods: Not working")
        report.detail("Error: Cannot fetch pod metrics")

    report.section("Metrics Server Resource Usage")
    containers = resources.pod_containers(pods[0]) if pods else []
    spec = (containers[0].get("resources") or {}) if containers else {}
    for kind in ("requests", "limits"):
        values = spec.get(kind) or {}
        report.line(f"{kind.capitalize()}:")
        report.detail(f"CPU: {values.get('cpu', 'not set')}")
        report.detail(f"Memory: {values.get('memory', 'not set')}")
    if running:
        usage = kubectl.output(["top", "pods", "-n", namespace, "-l", POD_SELECTOR, "--no-headers"])
        if usage:
            report.line("Current resource usage:")
            for line in usage.splitlines():
                report.detail(line)

    report.section("Checking Metrics Server Endpoints")
    if first_pod:
        metrics_ok, metrics = kubectl.exec(namespace, first_pod, [
            "wget", "-qO-", f"{SERVER_URL}/metrics", "--no-check-certificate"])
        if metrics_ok:
            report.ok("Metrics endpoint (/metrics): Accessible")
            p99 = resources.metric_samples(metrics, "metrics_server_scraper_duration_seconds", contains='quantile="0.99"')
            if p99:
                report.detail(f"Scrape duration (p99): {p99[0]}s")
        else:
            report.warn("Metrics endpoint (/metrics): Not accessible")
        readyz, _ = kubectl.exec(namespace, first_pod, ["wget", "-qO-", f"{SERVER_URL}/readyz", "--no-check-certificate"])
        if readyz:
            report.ok("Readiness endpoint (/readyz): Ready")
        else:
            report.fail("Readiness endpoint (/readyz): Not ready")

    report.section("Checking Kubelet Connectivity")
    if first_pod:
        logs = kubectl.logs(namespace, first_pod)
        counts = kubelet_error_counts(logs)
        if not any(counts.values()):
            report.ok("No kubelet connectivity issues detected")
        else:
            report.warn("Kubelet connectivity issues detected:")
            for label, count in counts.items():
                if count:
                    report.detail(f"- {label}: {count}")
            patterns = [pattern for _, pattern in KUBELET_ERRORS]
            samples = [line for line in logs.splitlines() if any(p in line for p in patterns)]
            report.line("Recent error samples:")
            for line in samples[-3:]:
                report.detail(line[:200])

    report.section("HPA (Horizontal Pod Autoscaler) Status")
    hpas = kubectl.get_items("hpa", all_namespaces=True) or []
    with_metrics = sum(1 for h in hpas if h.get("status", {}).get("currentMetrics"))
    if hpas:
        report.line(f"Found {len(hpas)} Horizontal Pod Autoscaler(s)")
        missing = hpa_without_metrics(hpas)
        if not missing:
            report.ok(f"All HPAs receiving metrics: {with_metrics}/{len(hpas)}")
        else:
            report.warn(f"HPAs not receiving metrics: {len(missing)}/{len(hpas)}")
            for hpa in missing[:SAMPLE_LINES]:
                report.detail(resources.qualified_name(hpa))
    else:
        report.info("No Horizontal Pod Autoscalers found")

    report.section("Recent Metrics Server Events")
    events = [
        e for e in kubectl.get_items("events", namespace=namespace) or []
        if e.get("involvedObject", {}).get("name", "").startswith("metrics-server")
    ]
    if events:
        report.line("Recent events:")
        for event in resources.recent_events(events, 5):
            report.detail(f"{event.get('lastTimestamp')}: {event.get('reason')} - {(event.get('message') or '').strip()}")
    else:
        report.ok("No recent events")

    report.add_summary("Deployment", f"{ready}/{desired} replicas ready")
    report.add_summary("API Service", "Available" if api_available else "Not Available")
    report.add_summary("Node metrics", "Working" if node_metrics is not None else "Not Working")
    report.add_summary("Pod metrics", "Working" if pod_metrics is not None else "Not Working")
    if hpas:
        report.add_summary("HPAs with metrics", f"{with_metrics}/{len(hpas)}")
    return None


def main() -> int:
    return run_provider("Metrics Server Health Check", check_metrics_server)


if __name__ == "__main__":
    sys.exit(main())
