"""Enhanced cluster-wide health check covering every major subsystem."""

import re
import sys
from collections import Counter

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.config import Thresholds
from kube_health.kubectl import Kubectl

NODE_CONDITIONS = ("MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable")
API_HEALTH_ENDPOINTS = ("/healthz", "/livez", "/readyz")
SYSTEM_COMPONENTS = (
    ("kube-apiserver", "component=kube-apiserver"),
    ("kube-controller-manager", "component=kube-controller-manager"),
    ("kube-scheduler", "component=kube-scheduler"),
    ("etcd", "component=etcd"),
    ("kube-proxy", "k8s-app=kube-proxy"),
    ("coredns", "k8s-app=kube-dns"),
)
NOTABLE_EVENT_REASONS = ("OOMKilling", "SystemOOM", "FailedScheduling", "FailedMount")
DEFAULT_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"
ROOT_POD_RECOMMENDATION_THRESHOLD = 20


def _minor(version_info: dict) -> int:
    digits = re.sub(r"[^0-9]", "", version_info.get("minor", ""))
    return int(digits) if digits else 0


def check_versions(report: Report, kubectl: Kubectl) -> None:
    report.section("Cluster Version and API Resources")
    versions = kubectl.get_json(["version"])
    if versions and "serverVersion" in versions:
        server = versions["serverVersion"]
        client = versions.get("clientVersion", {})
        report.line(f"Server version: {server.get('gitVersion', 'unknown')}")
        report.line(f"Client version: {client.get('gitVersion', 'unknown')}")
        if abs(_minor(client) - _minor(server)) > 1:
            report.warn("Client and server versions differ by more than 1 minor version")
            report.recommend("Align the kubectl version with the cluster version")
    else:
        report.fail("Unable to read cluster version")

    success, output = kubectl.run(["api-resources", "--verbs=list", "-o", "name"])
    if success:
        report.ok(f"{len(output.split())} API resources available")
    else:
        report.fail("Some API resources are unavailable")
        report.recommend("Check aggregated APIServices for unavailable backends")

    metrics = kubectl.raw("/metrics") or ""
    deprecated = [
        line for line in metrics.splitlines()
        if line.startswith("apiserver_requested_deprecated_apis")
    ]
    if deprecated:
        report.warn(f"Found {len(deprecated)} deprecated API calls")
        report.recommend("Migrate clients off deprecated API versions before upgrading")
    else:
        report.ok("No deprecated API usage detected")


def check_nodes(report: Report, nodes: list) -> tuple[int, int]:
    report.section("Advanced Node Health Check")
    ready, total = resources.count_ready_nodes(nodes)
    control_plane = sum(1 for n in nodes if resources.node_is_control_plane(n))
    report.line(f"Total nodes: {total} (control plane: {control_plane}, workers: {total - control_plane})")
    if ready == total:
        report.ok(f"All nodes ready: {ready}/{total}")
    else:
        report.fail(f"Only {ready}/{total} nodes ready")
        report.recommend("Fix NotReady nodes before they impact workload availability")

    for condition in NODE_CONDITIONS:
        affected = [resources.name(n) for n in nodes if resources.node_condition(n, condition) == "True"]
        if affected:
            report.warn(f"{condition}: {len(affected)} node(s) ({', '.join(affected)})")
        else:
            report.ok(f"No nodes with {condition}")

    report.line("Node capacity:")
    for node in nodes:
        capacity = node.get("status", {}).get("capacity", {})
        allocatable = node.get("status", {}).get("allocatable", {})
        report.detail(
            f"{resources.name(node)}: CPU {capacity.get('cpu')} (allocatable {allocatable.get('cpu')}), "
            f"Memory {capacity.get('memory')} (allocatable {allocatable.get('memory')}), "
            f"Pods {capacity.get('pods')} (allocatable {allocatable.get('pods')})"
        )

    report.line("Operating systems:")
    os_counts = Counter(
        f"{n.get('status', {}).get('nodeInfo', {}).get('osImage', '?')} - "
        f"Kernel: {n.get('status', {}).get('nodeInfo', {}).get('kernelVersion', '?')}"
        for n in nodes
    )
    for os_image, count in os_counts.most_common():
        report.detail(f"{count} x {os_image}")
    return ready, total


def check_control_plane(report: Report, kubectl: Kubectl) -> None:
    report.section("Control Plane Deep Health Check")
    for endpoint in API_HEALTH_ENDPOINTS:
        response = kubectl.raw(endpoint)
        if response == "ok":
            report.ok(f"{endpoint}: Healthy")
            continue
        report.fail(f"{endpoint}: Unhealthy")
        if endpoint == "/readyz":
            verbose = kubectl.raw("/readyz?verbose") or ""
            failing = [line for line in verbose.splitlines() if line.startswith("[") and " ok" not in line]
            for line in failing[:5]:
                report.detail(line)

    apiserver = kubectl.get_items("pods", namespace="kube-system", selector="component=kube-apiserver") or []
    plugins = None
    if apiserver:
        for arg in resources.container_args(apiserver[0]):
            if arg.startswith("--enable-admission-plugins="):
                plugins = arg.split("=", 1)[1]
    if plugins:
        report.line(f"Admission plugins: {plugins}")
    else:
        report.info("Unable to determine enabled admission controllers")


def check_system_components(report: Report, kubectl: Kubectl, system_pods: list) -> None:
    report.section("System Components Advanced Health")
    for component, selector in SYSTEM_COMPONENTS:
        pods = kubectl.get_items("pods", namespace="kube-system", selector=selector) or []
        if not pods:
            pods = [p for p in system_pods if resources.name(p).startswith(f"{component}-")]
        if not pods:
            report.info(f"{component}: not found (managed control plane or different naming)")
            continue
        running, total = resources.count_running_pods(pods)
        if running == total:
            report.ok(f"{component}: {running}/{total} running")
        else:
            report.fail(f"{component}: {running}/{total} running")
            report.recommend(f"Investigate {component} pods that are not running")
        high_restarts = [p for p in pods if resources.pod_restarts(p) > Thresholds.RESTART_WARNING]
        if high_restarts:
            report.warn(f"{component}: {len(high_restarts)} pod(s) with more than {Thresholds.RESTART_WARNING} restarts")


def check_storage(report: Report, kubectl: Kubectl) -> tuple[int, int]:
    report.section("Advanced Storage Health Check")
    classes = kubectl.get_items("storageclasses") or []
    defaults = [
        resources.name(sc) for sc in classes
        if resources.annotations(sc).get(DEFAULT_CLASS_ANNOTATION) == "true"
    ]
    report.line(f"Storage classes: {len(classes)}")
    if defaults:
        report.ok(f"Default storage class: {', '.join(defaults)}")
    else:
        report.warn("No default storage class configured")
        report.recommend("Set a default StorageClass for dynamic provisioning")

    pvs = kubectl.get_items("pv") or []
    phases = resources.count_by(pvs, lambda pv: pv.get("status", {}).get("phase", "Unknown"))
    report.line(f"Persistent volumes: {len(pvs)}")
    for phase in ("Available", "Bound", "Released", "Failed"):
        report.detail(f"{phase}: {phases.get(phase, 0)}")
    if phases.get("Failed"):
        report.fail(f"{phases['Failed']} PersistentVolumes in Failed state")

    pvcs = kubectl.get_items("pvc", all_namespaces=True) or []
    by_namespace = resources.count_by(pvcs, resources.namespace)
    if by_namespace:
        report.line("PVCs by namespace (top 5):")
        for ns, count in by_namespace.most_common(5):
            report.detail(f"{ns}: {count} PVCs")

    released = phases.get("Released", 0)
    if released:
        report.warn(f"{released} released PersistentVolumes (orphaned)")
        report.recommend(f"Clean up {released} released PersistentVolumes")
    return len(classes), len(pvs)


def check_pods(report: Report, pods: list) -> None:
    report.section("Pod Health Deep Analysis")
    total = len(pods)
    phases = resources.count_by(pods, resources.pod_phase)
    report.line(f"Total pods: {total}")
    for phase in ("Running", "Pending", "Succeeded", "Failed", "Unknown"):
        count = phases.get(phase, 0)
        percent = count * 100 // total if total else 0
        report.detail(f"{phase}: {count} ({percent}%)")
    if phases.get("Failed"):
        report.warn(f"{phases['Failed']} pods in Failed phase")

    reasons = Counter(reason for pod in pods for reason in resources.waiting_reasons(pod))
    if reasons:
        report.warn(f"{sum(reasons.values())} containers waiting")
        for reason, count in reasons.most_common(5):
            report.detail(f"{reason}: {count}")

    crashloop = [p for p in pods if "CrashLoopBackOff" in resources.waiting_reasons(p)]
    if crashloop:
        report.fail(f"{len(crashloop)} pods in CrashLoopBackOff")
        for pod in crashloop[:10]:
            report.detail(resources.qualified_name(pod))
        report.recommend(f"Investigate and fix {len(crashloop)} pods in CrashLoopBackOff")
    else:
        report.ok("No pods in CrashLoopBackOff")

    oom = sum(
        1 for pod in pods for cs in resources.container_statuses(pod)
        if cs.get("state", {}).get("terminated", {}).get("reason") == "OOMKilled"
        or cs.get("lastState", {}).get("terminated", {}).get("reason") == "OOMKilled"
    )
    if oom:
        report.warn(f"{oom} containers were OOMKilled")
        report.recommend("Review memory limits for containers that were OOMKilled")
    else:
        report.ok("No OOMKilled containers")


def check_resource_usage(report: Report, kubectl: Kubectl) -> None:
    report.section("Resource Usage Analysis")
    success, output = kubectl.run(["top", "nodes", "--no-headers"])
    rows = resources.parse_top_nodes(output) if success else []
    if not rows:
        report.warn("Metrics not available (metrics-server not installed or not ready)")
        return

    report.table([(r["name"], r["cpu"], f"{r['cpu_pct']}%", r["memory"], f"{r['memory_pct']}%") for r in rows],
                 ["NODE", "CPU", "CPU%", "MEMORY", "MEMORY%"])
    avg_cpu = sum(r["cpu_pct"] for r in rows) / len(rows)
    avg_mem = sum(r["memory_pct"] for r in rows) / len(rows)
    report.line(f"Average CPU usage: {avg_cpu:.1f}%")
    report.line(f"Average Memory usage: {avg_mem:.1f}%")

    high_cpu = [r["name"] for r in rows if r["cpu_pct"] > Thresholds.NODE_USAGE_WARNING]
    high_mem = [r["name"] for r in rows if r["memory_pct"] > Thresholds.NODE_USAGE_WARNING]
    if high_cpu:
        report.warn(f"{len(high_cpu)} node(s) with CPU usage > {Thresholds.NODE_USAGE_WARNING}%")
        report.recommend(f"Address high CPU usage on {len(high_cpu)} nodes")
    if high_mem:
        report.warn(f"{len(high_mem)} node(s) with Memory usage > {Thresholds.NODE_USAGE_WARNING}%")
    if not high_cpu and not high_mem:
        report.ok("Node resource usage within limits")

    success, output = kubectl.run(["top", "pods", "--all-namespaces", "--sort-by=cpu", "--no-headers"])
    if success and output.strip():
        report.line("Top 5 CPU consuming pods:")
        for line in output.strip().splitlines()[:5]:
            report.detail(" ".join(line.split()))


def check_services(report: Report, kubectl: Kubectl) -> int:
    report.section("Network and Service Health")
    services = kubectl.get_items("services", all_namespaces=True) or []
    report.line(f"Total services: {len(services)}")
    for svc_type, count in sorted(resources.count_by(services, lambda s: s.get("spec", {}).get("type", "ClusterIP")).items()):
        report.detail(f"{svc_type}: {count}")

    endpoints = kubectl.get_items("endpoints", all_namespaces=True) or []
    with_addresses = {
        resources.qualified_name(ep) for ep in endpoints
        if any(subset.get("addresses") for subset in ep.get("subsets") or [])
    }
    missing = [
        resources.qualified_name(s) for s in services
        if s.get("spec", {}).get("selector")
        and s.get("spec", {}).get("type") != "ExternalName"
        and resources.qualified_name(s) not in with_addresses
    ]
    if missing:
        report.warn(f"{len(missing)} services without ready endpoints")
        for svc in missing[:10]:
            report.detail(svc)
    else:
        report.ok("All selector-based services have endpoints")

    ingresses = kubectl.get_items("ingress", all_namespaces=True) or []
    if ingresses:
        report.line(f"Ingress resources: {len(ingresses)}")
        no_address = [i for i in ingresses if not i.get("status", {}).get("loadBalancer", {}).get("ingress")]
        if no_address:
            report.warn(f"{len(no_address)} ingresses without address")
        else:
            report.ok("All ingresses have addresses")
    return len(services)


def check_security(report: Report, kubectl: Kubectl, pods: list) -> None:
    report.section("Security and Compliance Checks")
    root = sum(1 for p in pods if resources.runs_as_root(p))
    privileged = sum(1 for p in pods if resources.is_privileged(p))
    host_network = sum(1 for p in pods if p.get("spec", {}).get("hostNetwork"))
    default_sa = sum(1 for p in pods if resources.uses_default_service_account(p))

    report.line(f"Pods running as root: {root}")
    if privileged:
        report.warn(f"Pods with privileged containers: {privileged}")
        report.recommend(f"Review {privileged} pods running with privileged containers")
    else:
        report.ok("No privileged containers")
    report.line(f"Pods using host network: {host_network}")
    report.line(f"Pods using default service account: {default_sa}")
    if root > ROOT_POD_RECOMMENDATION_THRESHOLD:
        report.recommend("Consider implementing Pod Security Standards to limit root containers")

    namespaces = kubectl.get_items("namespaces") or []
    labelled = [
        (resources.name(ns), {k: v for k, v in resources.labels(ns).items() if k.startswith("pod-security.kubernetes.io")})
        for ns in namespaces
    ]
    labelled = [(ns, pss) for ns, pss in labelled if pss]
    if labelled:
        report.ok(f"Pod Security Standards labels on {len(labelled)} namespace(s)")
        for ns, pss in labelled[:10]:
            report.detail(f"{ns}: {', '.join(f'{k}={v}' for k, v in sorted(pss.items()))}")
    else:
        report.warn("Pod Security Standards not configured on any namespace")


def check_events(report: Report, kubectl: Kubectl) -> int:
    report.section("Recent Events Analysis")
    events = kubectl.get_items("events", all_namespaces=True) or []
    warnings = [e for e in events if resources.is_warning_event(e)]
    report.line(f"Total events: {len(events)}")
    if not warnings:
        report.ok("No warning events")
        return 0
    report.warn(f"Warning events: {len(warnings)}")
    for reason, count in resources.count_by(warnings, lambda e: e.get("reason", "Unknown")).most_common(10):
        report.detail(f"{reason}: {count}")
    notable = [e for e in warnings if e.get("reason") in NOTABLE_EVENT_REASONS]
    for event in resources.recent_events(notable, 5):
        involved = event.get("involvedObject", {})
        report.detail(f"{involved.get('namespace', '')}/{involved.get('name', '')} - "
                      f"{event.get('reason')}: {(event.get('message') or '').strip()[:150]}")
    return len(warnings)


def check_capacity(report: Report, nodes: list, pods: list) -> None:
    report.section("Cluster Capacity Planning")
    capacity = 0
    for node in nodes:
        try:
            capacity += int(node.get("status", {}).get("allocatable", {}).get("pods", 0))
        except ValueError:
            pass
    scheduled = sum(1 for p in pods if resources.pod_phase(p) in ("Running", "Pending"))
    usage = scheduled * 100 // capacity if capacity else 0
    report.line(f"Pod capacity: {scheduled}/{capacity} ({usage}%)")
    if usage > Thresholds.POD_CAPACITY_WARNING:
        report.warn(f"Pod capacity at {usage}%")
        report.recommend(f"Pod capacity at {usage}% - plan for cluster expansion")
    else:
        report.ok("Pod capacity within limits")

    report.line("Pods per namespace (top 10):")
    for ns, count in resources.count_by(pods, resources.namespace).most_common(10):
        report.detail(f"{ns}: {count} pods")


def check_cluster(report: Report, kubectl: Kubectl):
    context = kubectl.current_context() or "Unknown"
    report.line(f"Cluster context: {context}")

    nodes = kubectl.get_items("nodes")
    pods = kubectl.get_items("pods", all_namespaces=True)
    if nodes is None or pods is None:
        report.fail("Cannot list nodes or pods - check cluster connectivity and permissions")
        return 1

    check_versions(report, kubectl)
    ready_nodes, total_nodes = check_nodes(report, nodes)
    check_control_plane(report, kubectl)
    check_system_components(report, kubectl, [p for p in pods if resources.namespace(p) == "kube-system"])
    storage_classes, pv_count = check_storage(report, kubectl)
    check_pods(report, pods)
    check_resource_usage(report, kubectl)
    service_count = check_services(report, kubectl)
    check_security(report, kubectl, pods)
    warning_events = check_events(report, kubectl)
    check_capacity(report, nodes, pods)

    running, total = resources.count_running_pods(pods)
    report.add_summary("Cluster", context)
    report.add_summary("Nodes", f"{ready_nodes}/{total_nodes} ready")
    report.add_summary("Pods", f"{running}/{total} running")
    report.add_summary("Services", service_count)
    report.add_summary("Storage", f"{storage_classes} storage classes, {pv_count} PVs")
    report.add_summary("Warning events", warning_events)
    return None


def main() -> int:
    return run_provider("Enhanced Kubernetes Health Check", check_cluster)


if __name__ == "__main__":
    sys.exit(main())
