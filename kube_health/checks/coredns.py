"""CoreDNS health check: deployment, service, Corefile, resolution and metrics."""

import re
import sys

from kube_health import resources
from kube_health.checks.base import Report, pod_label, run_provider
from kube_health.config import Thresholds
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

COREDNS_NAMESPACE = "kube-system"
COREDNS_SELECTORS = ("k8s-app=kube-dns", "app=coredns")
METRICS_URL = "http://localhost:9153/metrics"
COREFILE_PLUGINS = (
    ("kubernetes", "Kubernetes service discovery"),
    ("forward", "Upstream DNS servers"),
    ("cache", "DNS caching"),
    ("loop", "Loop detection"),
    ("reload", "Auto-reload config"),
    ("loadbalance", "A/AAAA record balancing"),
    ("prometheus", "Metrics endpoint"),
    ("health", "Health endpoint"),
    ("ready", "Readiness endpoint"),
)
# name, fatal when unresolved
RESOLUTION_TESTS = (
    ("kubernetes.default", True),
    ("kube-dns.kube-system", True),
    ("google.com", False),
)
LOG_ERROR_RE = re.compile(r"error|fail|panic|timeout", re.IGNORECASE)
FORWARD_TIMEOUT_RE = re.compile(r"forward.*i/o timeout")


def corefile_plugins(corefile: str) -> list[str]:
    """Known plugins enabled in a Corefile, in declaration order of COREFILE_PLUGINS."""
    found = []
    for plugin, _ in COREFILE_PLUGINS:
        if re.search(rf"^\s*{plugin}\b", corefile, re.MULTILINE):
            found.append(plugin)
    return found


def forward_upstreams(corefile: str) -> list[str]:
    """Upstream servers listed on ``forward . <servers...>`` lines."""
    upstreams = []
    for match in re.finditer(r"^\s*forward\s+\S+\s+([^{\n]+)", corefile, re.MULTILINE):
        upstreams += match.group(1).split()
    return upstreams


def cache_hit_rate(hits: float, misses: float):
    if hits + misses <= 0:
        return None
    return hits * 100 / (hits + misses)


def check_coredns(report: Report, kubectl: Kubectl):
    selector = pods = None
    for candidate in COREDNS_SELECTORS:
        pods = kubectl.get_items("pods", namespace=COREDNS_NAMESPACE, selector=candidate)
        if pods:
            selector = candidate
            break
    if selector is None:
        raise ComponentNotFoundError(f"CoreDNS not found in {COREDNS_NAMESPACE} namespace")
    report.line(report.palette.blue(f"Found CoreDNS in namespace: {COREDNS_NAMESPACE}"))

    report.section("CoreDNS Deployment Status")
    deployment = kubectl.get_json(["get", "deployment", "-n", COREDNS_NAMESPACE, "coredns"])
    if deployment is None:
        deployments = kubectl.get_items("deployment", namespace=COREDNS_NAMESPACE, selector=selector) or []
        deployment = deployments[0] if deployments else None
    if deployment is not None:
        ready, desired = resources.deployment_replicas(deployment)
        if ready == desired:
            report.ok(f"All replicas ready: {ready}/{desired}")
        else:
            report.warn(f"Only {ready}/{desired} replicas ready")
        report.detail(f"Available replicas: {deployment.get('status', {}).get('availableReplicas', 0)}")
        conditions = deployment.get("status", {}).get("conditions") or []
        if conditions:
            report.detail("Conditions:")
            for condition in conditions:
                report.detail(f"{condition.get('type')}: {condition.get('status')}", indent=4)
    else:
        report.fail("CoreDNS deployment not found")

    report.section("CoreDNS Pod Health")
    running, total = resources.count_running_pods(pods)
    report.line(f"Total CoreDNS pods: {total}")
    if running == total:
        report.ok(f"All pods running: {running}/{total}")
    else:
        report.warn(f"Only {running}/{total} pods running")
    report.line("Pod details:")
    for pod in pods:
        report.detail(f"{pod_label(pod)} on {resources.pod_node(pod)}, "
                      f"ready: {'Yes' if resources.pod_is_ready(pod) else 'No'}")
    restarting = [p for p in pods if resources.pod_restarts(p) > Thresholds.RESTART_WARNING]
    if restarting:
        report.warn("Pods with high restart counts:")
        for pod in restarting:
            report.detail(f"{resources.name(pod)}: {resources.pod_restarts(pod)} restarts")

    report.section("CoreDNS Service Configuration")
    endpoint_count = 0
    service = kubectl.get_json(["get", "service", "-n", COREDNS_NAMESPACE, "kube-dns"])
    if service is not None:
        report.ok("DNS Service found")
        report.detail(f"ClusterIP: {service.get('spec', {}).get('clusterIP')}")
        report.detail("Ports:")
        for port in service.get("spec", {}).get("ports", []) or []:
            report.detail(f"- {port.get('name')}: {port.get('port')}/{port.get('protocol')}", indent=4)
        endpoints = kubectl.get_json(["get", "endpoints", "-n", COREDNS_NAMESPACE, "kube-dns"]) or {}
        subsets = endpoints.get("subsets") or [{}]
        endpoint_count = len(subsets[0].get("addresses") or [])
        report.detail(f"Active endpoints: {endpoint_count}")
        if not endpoint_count:
            report.fail("kube-dns service has no active endpoints")
    else:
        report.fail("kube-dns service not found")

    report.section("CoreDNS Configuration")
    config = kubectl.get_json(["get", "configmap", "-n", COREDNS_NAMESPACE, "coredns"])
    if config is not None:
        report.ok("CoreDNS ConfigMap found")
        corefile = (config.get("data") or {}).get("Corefile", "")
        descriptions = dict(COREFILE_PLUGINS)
        report.line("Configured plugins:")
        for plugin in corefile_plugins(corefile):
            report.detail(f"✓ {plugin} - {descriptions[plugin]}")
        upstreams = forward_upstreams(corefile)
        if upstreams:
            report.line(f"Upstream DNS servers: {' '.join(upstreams)}")
    else:
        report.warn("CoreDNS ConfigMap not found")

    report.section("DNS Resolution Tests")
    running_pod = resources.first_running(pods)
    first_pod = resources.name(running_pod) if running_pod else None
    if first_pod:
        report.line("Testing DNS resolution from CoreDNS pod...")
        for host, fatal in RESOLUTION_TESTS:
            resolved, _ = kubectl.exec(COREDNS_NAMESPACE, first_pod, ["nslookup", host, "127.0.0.1"])
            if resolved:
                report.ok(f"{host}: Resolved")
            elif fatal:
                report.fail(f"{host}: Failed")
            else:
                report.warn(f"{host}: Failed (check upstream DNS)")

    report.section("CoreDNS Metrics")
    total_queries = hit_rate = None
    if first_pod:
        metrics_ok, metrics = kubectl.exec(COREDNS_NAMESPACE, first_pod, ["wget", "-qO-", METRICS_URL])
        if metrics_ok:
            report.ok("Metrics endpoint: Available")
            total_queries = resources.metric_total(metrics, "coredns_dns_requests_total")
            hits = resources.metric_total(metrics, "coredns_cache_hits_total")
            misses = resources.metric_total(metrics, "coredns_cache_misses_total")
            report.line("Query statistics:")
            report.detail(f"Total DNS queries: {total_queries:.0f}")
            report.detail(f"Cache hits: {hits:.0f}")
            report.detail(f"Cache misses: {misses:.0f}")
            hit_rate = cache_hit_rate(hits, misses)
            if hit_rate is not None:
                report.detail(f"Cache hit rate: {hit_rate:.2f}%")
            servfail = resources.metric_total(metrics, "coredns_dns_responses_total", contains="SERVFAIL")
            if servfail:
                report.warn(f"SERVFAIL responses: {servfail:.0f}")
        else:
            report.warn("Metrics endpoint: Not accessible")

    report.section("CoreDNS Resource Usage")
    containers = resources.pod_containers(pods[0])
    spec = (containers[0].get("resources") or {}) if containers else {}
    for kind in ("requests", "limits"):
        values = spec.get(kind) or {}
        report.line(f"{kind.capitalize()}:")
        report.detail(f"CPU: {values.get('cpu', 'not set')}")
        report.detail(f"Memory: {values.get('memory', 'not set')}")
    usage = kubectl.output(["top", "pods", "-n", COREDNS_NAMESPACE, "-l", selector, "--no-headers"])
    if usage:
        report.line("Current resource usage:")
        for line in usage.splitlines():
            report.detail(line)

    report.section("DNS Policy Compliance")
    all_pods = kubectl.get_items("pods", all_namespaces=True) or []
    non_standard = [p for p in all_pods if p.get("spec", {}).get("dnsPolicy") not in (None, "ClusterFirst")]
    if non_standard:
        report.warn(f"Found {len(non_standard)} pods with non-standard DNS policies")
    else:
        report.ok("All pods using appropriate DNS policies")
    custom = sum(1 for p in all_pods if p.get("spec", {}).get("dnsConfig"))
    if custom:
        report.detail(f"Pods with custom DNS config: {custom}")

    report.section("Recent CoreDNS Logs Analysis")
    if first_pod:
        lines = kubectl.logs(COREDNS_NAMESPACE, first_pod, tail=200).splitlines()
        errors = [line for line in lines if LOG_ERROR_RE.search(line)]
        if errors:
            report.warn(f"Found {len(errors)} error messages in recent logs")
            for line in errors[-5:]:
                report.detail(line[:200])
        else:
            report.ok("No errors found in recent logs")
        plugin_errors = sum(1 for line in lines if "plugin/errors" in line)
        if plugin_errors:
            report.warn(f"Plugin errors detected: {plugin_errors}")
        forward_errors = sum(1 for line in lines if FORWARD_TIMEOUT_RE.search(line))
        if forward_errors:
            report.warn(f"Upstream DNS timeout errors: {forward_errors}")
            report.recommend("Check upstream DNS server connectivity")

    report.section("DNS Performance Test")
    test_pod = resources.first_running(kubectl.get_items("pods", namespace="default") or [])
    if test_pod:
        report.line(f"Using pod {resources.name(test_pod)} for DNS tests...")
        resolved, output = kubectl.exec("default", resources.name(test_pod), ["nslookup", "kubernetes.default"])
        if resolved and "Address" in output:
            report.ok("DNS resolution working")
        else:
            report.warn("DNS test failed or no suitable pod found")
    else:
        report.info("No running pods in default namespace for testing")

    report.add_summary("CoreDNS pods", f"{running}/{total} running")
    report.add_summary("DNS service endpoints", endpoint_count)
    if total_queries is not None:
        report.add_summary("Total queries processed", f"{total_queries:.0f}")
    if hit_rate is not None:
        report.add_summary("Cache hit rate", f"{hit_rate:.2f}%")
    return None


def main() -> int:
    return run_provider("CoreDNS Health Check", check_coredns)


if __name__ == "__main__":
    sys.exit(main())
