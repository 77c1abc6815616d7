"""Loki logging system health check: server, promtail, gateway, storage and API."""

import re
import sys
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

CANDIDATE_NAMESPACES = ("loki", "loki-stack", "logging", "monitoring", "observability")
LOKI_SELECTORS = ("app=loki", "app.kubernetes.io/name=loki", "name=loki")
PROMTAIL_SELECTORS = ("app=promtail", "app.kubernetes.io/name=promtail")
GATEWAY_SELECTORS = ("app=loki-gateway", "app.kubernetes.io/component=gateway")
LOKI_URL = "http://localhost:3100"
PROMTAIL_URL = "http://localhost:3101"
PROMTAIL_CONFIGS = ("/etc/promtail/config.yml", "/etc/promtail/promtail.yaml")
OBJECT_STORAGE_ENV_RE = re.compile(r"S3|GCS|AZURE")
LOG_ERROR_RE = re.compile(r"error|fail|panic", re.IGNORECASE)


def first_match(kubectl: Kubectl, resource: str, namespace: str, selectors: tuple) -> list:
    """Objects matched by the first selector that returns any."""
    for selector in selectors:
        items = kubectl.get_items(resource, namespace=namespace, selector=selector)
        if items:
            return items
    return []


def find_namespace(kubectl: Kubectl) -> Optional[str]:
    for ns in CANDIDATE_NAMESPACES:
        if first_match(kubectl, "pods", ns, LOKI_SELECTORS):
            return ns
    return None


def loki_mode(pod: dict) -> str:
    flags = [arg for arg in resources.container_args(pod) if "target" in arg or "mode" in arg]
    return " ".join(flags) or "single-binary"


def check_loki(report: Report, kubectl: Kubectl):
    namespace = find_namespace(kubectl)
    if namespace is None:
        raise ComponentNotFoundError(
            f"Loki not found in any namespace (checked: {', '.join(CANDIDATE_NAMESPACES)})"
        )
    report.line(report.palette.blue(f"Found Loki in namespace: {namespace}"))

    report.section("Checking Loki Components")
    report.line("Loki Server:")
    pods = first_match(kubectl, "pods", namespace, LOKI_SELECTORS)
    ready = sum(1 for p in pods if resources.pod_is_running(p) and resources.pod_is_ready(p))
    first_pod = resources.name(pods[0]) if pods else None
    if not pods:
        report.fail("No Loki server pods found")
    else:
        text = f"Loki server: {ready}/{len(pods)} pods ready"
        if ready == len(pods):
            report.ok(text)
        else:
            report.warn(text)
        report.detail(f"Operating in: {loki_mode(pods[0])} mode")

    report.line()
    report.line("Promtail (Log Collector):")
    promtail = first_match(kubectl, "daemonset", namespace, PROMTAIL_SELECTORS)
    promtail_ready = promtail_desired = None
    if promtail:
        promtail_ready, promtail_desired = resources.daemonset_pods(promtail[0])
        text = f"Promtail DaemonSet: {promtail_ready}/{promtail_desired} pods ready"
        if promtail_ready == promtail_desired:
            report.ok(text)
        else:
            report.warn(text)
            report.recommend("Check nodes without a running Promtail pod")
    else:
        report.warn("Promtail DaemonSet not found")

    report.line()
    report.line("Loki Gateway:")
    gateways = first_match(kubectl, "pods", namespace, GATEWAY_SELECTORS)
    if gateways:
        running, total = resources.count_running_pods(gateways)
        text = f"Gateway: {running}/{total} pods ready"
        if running == total:
            report.ok(text)
        else:
            report.warn(text)
    else:
        report.detail("No gateway component found (single-binary mode likely)")

    report.section("Checking Loki Services")
    services = [s for s in kubectl.get_items("services", namespace=namespace) or [] if "loki" in resources.name(s)]
    if services:
        report.line("Loki services found:")
        endpoints = {resources.name(e): e for e in kubectl.get_items("endpoints", namespace=namespace) or []}
        for service in services:
            subsets = endpoints.get(resources.name(service), {}).get("subsets") or [{}]
            addresses = len(subsets[0].get("addresses") or [])
            ports = ", ".join(f"{p.get('port')}/{p.get('protocol', 'TCP')}" for p in service.get("spec", {}).get("ports", []) or [])
            report.bullet(f"{resources.name(service)}: {addresses} endpoint(s), ports: {ports}")
    else:
        report.warn("No Loki services found")

    report.section("Checking Loki Storage")
    claims = [p for p in kubectl.get_items("pvc", namespace=namespace) or [] if "loki" in resources.name(p)]
    if claims:
        report.line("Persistent Volume Claims:")
        for claim in claims:
            status = claim.get("status", {})
            report.detail(f"{resources.name(claim)}: {status.get('phase')} "
                          f"{status.get('capacity', {}).get('storage', '')}".rstrip())
    else:
        report.info("No PVCs found (might be using object storage or emptyDir)")
    if pods:
        containers = resources.pod_containers(pods[0])
        env = containers[0].get("env", []) if containers else []
        storage_env = [e.get("name") for e in env or [] if OBJECT_STORAGE_ENV_RE.search(e.get("name", ""))]
        if storage_env:
            report.line("Object storage environment variables found:")
            for name in storage_env[:5]:
                report.detail(f"- {name}", indent=4)
        config_maps = [resources.name(c) for c in kubectl.get_items("configmap", namespace=namespace) or []
                       if "loki" in resources.name(c)]
        if config_maps:
            report.detail(f"Configuration found in: {', '.join(config_maps)}")

    report.section("Checking Loki Distributor Ring")
    if first_pod:
        ring_ok, ring = kubectl.exec(namespace, first_pod, ["wget", "-qO-", f"{LOKI_URL}/ring"])
        if ring_ok and ring.strip():
            report.ok("Ring endpoint accessible")
        else:
            report.info("Ring status not available (single-binary mode or different port)")

    report.section("Checking Loki API Health")
    metrics = ""
    if first_pod:
        api_ready, _ = kubectl.exec(namespace, first_pod, ["wget", "-qO-", f"{LOKI_URL}/ready"])
        if api_ready:
            report.ok("Loki API ready check: Ready")
        else:
            report.fail("Loki API ready check: Not ready")
            report.recommend("Loki is not ready - check ingester and storage connectivity")
        metrics_ok, metrics = kubectl.exec(namespace, first_pod, ["wget", "-qO-", f"{LOKI_URL}/metrics"])
        if metrics_ok:
            report.ok("Loki metrics endpoint: Accessible")
        else:
            metrics = ""
            report.warn("Loki metrics endpoint: Not accessible")

    report.section("Checking Log Ingestion Rate")
    if metrics:
        received = resources.metric_total(metrics, "loki_distributor_lines_received_total")
        if received:
            report.ok("Logs are being ingested")
            report.detail(f"Total lines received: {received:.0f}")
        failures = resources.metric_total(metrics, "loki_distributor_ingester_append_failures_total")
        if failures:
            report.warn(f"Ingestion errors detected: {failures:.0f}")
    else:
        report.info("Metrics not available for ingestion rate check")

    report.section("Checking Promtail Targets")
    promtail_pods = first_match(kubectl, "pods", namespace, PROMTAIL_SELECTORS)
    if promtail_pods:
        promtail_pod = resources.name(promtail_pods[0])
        targets_ok, targets = kubectl.exec(namespace, promtail_pod, ["wget", "-qO-", f"{PROMTAIL_URL}/targets"])
        if targets_ok and "job" in targets:
            report.ok("Promtail targets check: Targets configured")
        else:
            report.warn("Promtail targets check: No targets found or endpoint not accessible")
        if any(kubectl.exec(namespace, promtail_pod, ["cat", path])[0] for path in PROMTAIL_CONFIGS):
            report.ok("Promtail configuration: Configuration file found")
        else:
            report.warn("Promtail configuration: Configuration file not found at expected location")

    report.section("Recent Events and Errors")
    events = [e for e in kubectl.get_items("events", namespace=namespace) or [] if resources.is_warning_event(e)]
    if events:
        report.warn("Recent warning events:")
        for event in resources.recent_events(events, 5):
            report.detail(f"{event.get('lastTimestamp')}: {event.get('reason')} - {(event.get('message') or '').strip()}")
    else:
        report.ok("No recent warning events")
    if first_pod:
        errors = [line for line in kubectl.logs(namespace, first_pod).splitlines() if LOG_ERROR_RE.search(line)]
        if errors:
            report.warn("Recent errors found in Loki logs:")
            for line in errors[-5:]:
                report.detail(line[:200])
        else:
            report.ok("No recent errors in logs")

    report.section("Integration Status")
    grafana = kubectl.get_items("pods", selector="app.kubernetes.io/name=grafana", all_namespaces=True) or []
    if grafana:
        report.ok(f"Grafana found in namespace: {resources.namespace(grafana[0])}")
        report.detail("Loki can be configured as a datasource in Grafana")
    else:
        report.info("Grafana not found (optional for visualization)")

    report.add_summary("Namespace", namespace)
    report.add_summary("Loki pods", f"{ready}/{len(pods)} ready")
    if promtail:
        report.add_summary("Promtail", f"{promtail_ready}/{promtail_desired} nodes covered")
    return None


def main() -> int:
    return run_provider("Loki Logging System Health Check", check_loki)


if __name__ == "__main__":
    sys.exit(main())
