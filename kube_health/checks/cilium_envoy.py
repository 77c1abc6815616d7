"""Cilium Envoy proxy health check."""

import re
import sys
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.checks.cilium import AGENT_SELECTOR, find_namespace
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

ENVOY_ADMIN = "http://localhost:9901"
ENVOY_PROCESS_COUNT = "ps aux | grep -c '[c]ilium-envoy'"
ENVOY_PROCESS_LINE = "ps aux | grep '[c]ilium-envoy' | head -1"
BOOTSTRAP_CONFIG = "/var/run/cilium/envoy/bootstrap-config.json"
XDS_SOCKET = "/var/run/cilium/envoy/sds.sock"
LOG_ERROR_RE = re.compile(r"error|fail", re.IGNORECASE)


def has_l7_rules(policy: dict) -> bool:
    """True when any rule of a Cilium(Clusterwide)NetworkPolicy carries L7 rules."""
    spec = policy.get("spec") or {}
    specs = [spec] + list(policy.get("specs") or spec.get("specs") or [])
    for entry in specs:
        if entry.get("l7Rules"):
            return True
        for direction in ("ingress", "egress", "rules"):
            for rule in entry.get(direction) or []:
                if any(port.get("rules") for port in rule.get("toPorts") or []):
                    return True
    return False


def parse_ps_line(line: str) -> Optional[dict]:
    """CPU and memory columns of a ``ps aux`` line (VSZ and RSS in KiB)."""
    fields = line.split()
    if len(fields) < 6:
        return None
    try:
        return {"cpu": fields[2], "memory": fields[3], "vsz": int(fields[4]), "rss": int(fields[5])}
    except ValueError:
        return None


def envoy_process_count(kubectl: Kubectl, namespace: str, pod: str) -> int:
    ok, output = kubectl.exec(namespace, pod, ["sh", "-c", ENVOY_PROCESS_COUNT])
    try:
        return int(output.strip()) if ok else 0
    except ValueError:
        return 0


def check_cilium_envoy(report: Report, kubectl: Kubectl):
    namespace = find_namespace(kubectl)
    if namespace is None:
        raise ComponentNotFoundError("Cilium not found in kube-system or cilium namespace")
    report.line(report.palette.blue(f"Checking Cilium Envoy in namespace: {namespace}"))

    report.section("Checking Cilium Envoy Configuration")
    config = kubectl.get_json(["get", "configmap", "-n", namespace, "cilium-config"])
    if config is not None:
        data = config.get("data") or {}
        l7_proxy = data.get("enable-l7-proxy", "true")
        report.detail(f"L7 Proxy enabled: {l7_proxy}")
        report.detail(f"Envoy config enabled: {data.get('enable-envoy-config', 'false')}")
        if l7_proxy != "true":
            report.warn("L7 proxy is disabled. Envoy may not be in use.")
    else:
        report.warn("Unable to check Cilium configuration")

    report.section("Checking Envoy Processes in Cilium Pods")
    pods = kubectl.get_items("pods", namespace=namespace, selector=AGENT_SELECTOR) or []
    report.line(f"Scanning {len(pods)} Cilium pods for Envoy processes...")
    with_envoy = []
    issues = 0
    for pod in pods:
        pod_name = resources.name(pod)
        count = envoy_process_count(kubectl, namespace, pod_name)
        label = f"{pod_name} (node: {resources.pod_node(pod)})"
        if count:
            with_envoy.append(pod_name)
            report.ok(f"{label}: {count} Envoy process(es)")
            admin_ok, _ = kubectl.exec(namespace, pod_name, ["curl", "-s", f"{ENVOY_ADMIN}/stats/prometheus"])
            if admin_ok:
                report.detail("└─ Envoy admin interface: accessible")
            else:
                report.warn("Envoy admin interface not accessible")
                issues += 1
        else:
            report.warn(f"{label}: No Envoy process found")
    report.line(f"{len(with_envoy)}/{len(pods)} pods have Envoy running")
    envoy_pod = with_envoy[0] if with_envoy else None

    report.section("Checking Envoy Listeners and Clusters")
    if envoy_pod:
        report.line(f"Using pod {envoy_pod} for detailed Envoy checks...")
        listeners_ok, listeners = kubectl.exec(namespace, envoy_pod, ["curl", "-s", f"{ENVOY_ADMIN}/listeners"])
        if listeners_ok and listeners.strip():
            lines = [line for line in listeners.splitlines() if ":" in line]
            report.ok(f"Found {len(lines)} active listeners")
            for line in lines[:10]:
                report.detail(line)
        else:
            report.warn("Unable to retrieve listener information")
        clusters_ok, clusters = kubectl.exec(namespace, envoy_pod, ["curl", "-s", f"{ENVOY_ADMIN}/clusters"])
        if clusters_ok and clusters.strip():
            report.ok(f"Found {clusters.count('::observability_name::')} active clusters")
        else:
            report.warn("Unable to retrieve cluster information")
    else:
        report.warn("No Cilium pod with Envoy found for detailed checks")

    report.section("Checking Envoy Statistics")
    if envoy_pod:
        stats_ok, stats = kubectl.exec(namespace, envoy_pod, ["curl", "-s", f"{ENVOY_ADMIN}/stats/prometheus"])
        if stats_ok and stats.strip():
            report.line("Envoy Statistics:")
            report.detail(f"Total connections: {resources.metric_total(stats, 'envoy_http_downstream_cx_total'):.0f}")
            report.detail(f"Total requests: {resources.metric_total(stats, 'envoy_http_downstream_rq_total'):.0f}")
            report.detail(f"Active connections: {resources.metric_total(stats, 'envoy_http_downstream_cx_active'):.0f}")
            cx_errors = resources.metric_total(stats, "envoy_http_downstream_cx_destroy_remote_with_active_rq")
            server_errors = resources.metric_total(stats, "envoy_http_downstream_rq_xx", contains="5")
            if cx_errors or server_errors:
                report.warn("Errors detected:")
                if cx_errors:
                    report.detail(f"Connection errors: {cx_errors:.0f}", indent=4)
                if server_errors:
                    report.detail(f"5xx responses: {server_errors:.0f}", indent=4)
            else:
                report.ok("No connection errors detected")
        else:
            report.warn("Unable to retrieve Envoy statistics")

    report.section("Checking L7 Network Policies")
    namespaced = [p for p in kubectl.get_items("ciliumnetworkpolicies", all_namespaces=True) or [] if has_l7_rules(p)]
    clusterwide = [p for p in kubectl.get_items("ciliumclusterwidenetworkpolicies") or [] if has_l7_rules(p)]
    total_l7 = len(namespaced) + len(clusterwide)
    if total_l7:
        report.ok(f"Found {total_l7} L7 network policies")
        report.detail(f"- Namespace policies with L7 rules: {len(namespaced)}")
        report.detail(f"- Clusterwide policies with L7 rules: {len(clusterwide)}")
        report.line("L7 Policy Examples:")
        for policy in namespaced[:5]:
            report.detail(resources.qualified_name(policy))
    else:
        report.info("No L7 network policies found (Envoy may not be actively used)")

    report.section("Checking Envoy Configuration Sources")
    if envoy_pod:
        if kubectl.exec(namespace, envoy_pod, ["test", "-f", BOOTSTRAP_CONFIG])[0]:
            report.ok("Envoy bootstrap configuration: Found")
        else:
            report.warn("Envoy bootstrap configuration: Not found at expected location")
        if kubectl.exec(namespace, envoy_pod, ["test", "-e", XDS_SOCKET])[0]:
            report.ok("Envoy xDS socket: Found")
        else:
            report.warn("Envoy xDS socket: Not found")

    report.section("Checking Envoy Resource Usage")
    if envoy_pod:
        _, line = kubectl.exec(namespace, envoy_pod, ["sh", "-c", ENVOY_PROCESS_LINE])
        usage = parse_ps_line(line)
        if usage:
            report.line("Envoy Process Resources:")
            report.detail(f"CPU Usage: {usage['cpu']}%")
            report.detail(f"Memory Usage: {usage['memory']}%")
            report.detail(f"Virtual Memory: {usage['vsz'] // 1024} MB")
            report.detail(f"Resident Memory: {usage['rss'] // 1024} MB")

    report.section("Checking Recent Envoy Logs")
    if envoy_pod:
        entries = [line for line in kubectl.logs(namespace, envoy_pod, tail=200).splitlines() if "envoy" in line.lower()]
        if entries:
            report.line("Recent Envoy-related log entries:")
            for line in entries[-10:]:
                report.detail(line[:200])
            errors = sum(1 for line in entries[-10:] if LOG_ERROR_RE.search(line))
            if errors:
                report.warn(f"Found {errors} error messages in recent Envoy logs")
        else:
            report.info("No recent Envoy-related logs found")

    report.section("Checking Envoy Version")
    if envoy_pod:
        version_ok, version = kubectl.exec(namespace, envoy_pod, ["cilium-envoy", "--version"])
        if version_ok and version.strip():
            report.detail(f"Envoy version: {version.strip().splitlines()[0]}")
        else:
            report.warn("Unable to determine Envoy version")

    if not with_envoy:
        report.recommend("No Envoy processes found: L7 proxy may be disabled, no L7 policies may be active, "
                         "or Cilium runs in a mode that does not require Envoy")
    elif issues:
        report.recommend("Check Cilium agent logs for Envoy-related errors")
        report.recommend("Verify L7 network policies are correctly configured")
        report.recommend("Ensure sufficient resources are available for Envoy")

    report.add_summary("Cilium pods with Envoy", f"{len(with_envoy)}/{len(pods)}")
    report.add_summary("L7 policies configured", total_l7)
    if issues:
        report.add_summary("Issues detected", issues)
    return None


def main() -> int:
    return run_provider("Cilium Envoy Proxy Health Check", check_cilium_envoy)


if __name__ == "__main__":
    sys.exit(main())
