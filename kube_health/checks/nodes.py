"""Node health check: conditions, resource usage, events and pod distribution."""

import sys

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.config import Thresholds
from kube_health.kubectl import Kubectl

STANDARD_CONDITIONS = ("Ready", "MemoryPressure", "DiskPressure", "PIDPressure", "NetworkUnavailable")
PRESSURE_CONDITIONS = ("MemoryPressure", "DiskPressure", "PIDPressure")
MIN_KERNEL_MAJOR = 5


def security_module(os_image: str) -> str:
    image = os_image.lower()
    if "ubuntu" in image or "debian" in image:
        return "AppArmor (Ubuntu default)"
    if any(distro in image for distro in ("centos", "rhel", "red hat", "fedora", "rocky", "alma")):
        return "SELinux (RHEL/CentOS default)"
    return "unknown"


def is_uneven(counts: list[int]) -> bool:
    """Pod distribution is uneven when the busiest node runs more than twice the quietest."""
    if len(counts) < 2:
        return False
    return max(counts) > 2 * min(counts)


def check_node_health(report: Report, kubectl: Kubectl):
    nodes = kubectl.get_items("nodes")
    if nodes is None:
        report.fail("Cannot list nodes")
        return 1

    report.section("Node Overview")
    ready, total = resources.count_ready_nodes(nodes)
    not_ready = total - ready
    report.line(f"Total nodes: {total}")
    roles = resources.count_by((role for n in nodes for role in resources.node_roles(n)), lambda r: r)
    for role, count in sorted(roles.items()):
        report.detail(f"{role}: {count}")
    if not_ready:
        report.fail(f"{not_ready} node(s) are NotReady")
        report.recommend(f"Critical: {not_ready} node(s) are NotReady")
    else:
        report.ok(f"All {total} nodes are Ready")

    report.section("Node Conditions Deep Dive")
    for node in nodes:
        node_name = resources.name(node)
        info = node.get("status", {}).get("nodeInfo", {})
        report.line()
        report.line(report.palette.blue(f"Node: {node_name}"))
        report.detail(f"OS: {info.get('osImage', '?')}")
        report.detail(f"Kernel: {info.get('kernelVersion', '?')}")
        report.detail(f"Container Runtime: {info.get('containerRuntimeVersion', '?')}")
        report.detail(f"Kubelet: {info.get('kubeletVersion', '?')}")
        report.detail(f"Created: {node.get('metadata', {}).get('creationTimestamp', '?')}")

        for condition in node.get("status", {}).get("conditions", []) or []:
            ctype, status = condition.get("type"), condition.get("status")
            text = f"{ctype}: {status} ({condition.get('reason') or 'None'})"
            if ctype == "Ready" and status != "True":
                report.fail(f"{node_name} {text}")
            elif ctype in PRESSURE_CONDITIONS and status == "True":
                report.fail(f"{node_name} {text}")
            else:
                report.detail(text)

        allocatable = node.get("status", {}).get("allocatable", {})
        report.detail(f"Allocatable: CPU {allocatable.get('cpu')}, Memory {allocatable.get('memory')}, "
                      f"Pods {allocatable.get('pods')}")
        addresses = node.get("status", {}).get("addresses", []) or []
        report.detail("Addresses: " + ", ".join(f"{a.get('type')}={a.get('address')}" for a in addresses))
        taints = node.get("spec", {}).get("taints", []) or []
        if taints:
            report.detail("Taints: " + ", ".join(
                f"{t.get('key')}={t.get('value', '')}:{t.get('effect')}" for t in taints
            ))

    report.section("Node Resource Usage Analysis")
    success, output = kubectl.run(["top", "nodes", "--no-headers"])
    rows = resources.parse_top_nodes(output) if success else []
    high_cpu = high_mem = 0
    if rows:
        for row in rows:
            summary = f"{row['name']}: CPU {row['cpu_pct']}%, Memory {row['memory_pct']}%"
            if row["cpu_pct"] >= Thresholds.CPU_CRITICAL or row["memory_pct"] >= Thresholds.MEMORY_CRITICAL:
                report.fail(summary)
            elif row["cpu_pct"] >= Thresholds.CPU_WARNING or row["memory_pct"] >= Thresholds.MEMORY_WARNING:
                report.warn(summary)
            else:
                report.ok(summary)
        high_cpu = sum(1 for r in rows if r["cpu_pct"] >= Thresholds.CPU_WARNING)
        high_mem = sum(1 for r in rows if r["memory_pct"] >= Thresholds.MEMORY_WARNING)
        if high_cpu:
            report.recommend(f"Consider scaling out - {high_cpu} node(s) have high CPU usage")
        if high_mem:
            report.recommend(f"Consider scaling out - {high_mem} node(s) have high memory usage")
    else:
        report.warn("Metrics not available (metrics-server not installed or not ready)")

    report.section("Node Storage Analysis")
    events = kubectl.get_items("events", all_namespaces=True) or []
    node_events = [e for e in events if e.get("involvedObject", {}).get("kind") == "Node"]
    for node in nodes:
        node_name = resources.name(node)
        status = node.get("status", {})
        report.detail(f"{node_name}: {len(status.get('volumesInUse') or [])} volumes in use, "
                      f"{len(status.get('volumesAttached') or [])} attached")
        disk_events = [
            e for e in node_events
            if e.get("involvedObject", {}).get("name") == node_name and e.get("reason") == "NodeHasDiskPressure"
        ]
        if disk_events:
            report.warn(f"{node_name}: recent disk pressure events: {len(disk_events)}")

    report.section("Node Events Analysis")
    warnings_found = False
    for node in nodes:
        node_name = resources.name(node)
        warnings = [
            e for e in node_events
            if e.get("involvedObject", {}).get("name") == node_name and resources.is_warning_event(e)
        ]
        if warnings:
            warnings_found = True
            report.warn(f"Node {node_name}: {len(warnings)} warning event(s)")
            for event in resources.recent_events(warnings, 5):
                report.detail(f"{event.get('reason')} - {(event.get('message') or '').strip()[:150]}")
    if not warnings_found:
        report.ok("No node warning events")

    report.section("Node Network Configuration")
    pods = kubectl.get_items("pods", all_namespaces=True) or []
    cnis = resources.detect_cni(pods)
    for cni in cnis:
        report.ok(f"Found {cni} CNI")
    if not cnis:
        report.info("No known CNI plugin pods detected")
    api_resources = kubectl.output(["api-resources", "-o", "name"]) or ""
    if "networkpolicies" in api_resources:
        report.ok("NetworkPolicies supported")

    report.section("Node Security Analysis")
    old_kernels = 0
    for node in nodes:
        info = node.get("status", {}).get("nodeInfo", {})
        report.detail(f"{resources.name(node)}: kernel {info.get('kernelVersion', '?')}, "
                      f"security module {security_module(info.get('osImage', ''))}")
        major = resources.kernel_major(node)
        if major is not None and major < MIN_KERNEL_MAJOR:
            old_kernels += 1
    if old_kernels:
        report.warn(f"{old_kernels} node(s) running kernel version < {MIN_KERNEL_MAJOR}.x")
        report.recommend(f"{old_kernels} node(s) running kernel version < {MIN_KERNEL_MAJOR}.x")

    report.section("Node Pod Distribution")
    rows = []
    counts = []
    for node in nodes:
        node_name = resources.name(node)
        node_pods = [p for p in pods if p.get("spec", {}).get("nodeName") == node_name]
        system = sum(1 for p in node_pods if resources.namespace(p) == "kube-system")
        percent = len(node_pods) * 100 // len(pods) if pods else 0
        rows.append((node_name, len(node_pods), system, len(node_pods) - system, f"{percent}%"))
        counts.append(len(node_pods))
    report.table(rows, ["NODE", "PODS", "SYSTEM PODS", "USER PODS", "SHARE"])
    if is_uneven(counts):
        report.warn(f"Pod distribution is uneven (max: {max(counts)}, min: {min(counts)})")
        report.recommend(f"Pod distribution is uneven (max: {max(counts)}, min: {min(counts)})")

    report.section("Node Readiness Gates")
    custom = 0
    for node in nodes:
        extra = [
            c.get("type") for c in node.get("status", {}).get("conditions", []) or []
            if c.get("type") not in STANDARD_CONDITIONS
        ]
        if extra:
            custom += 1
            report.detail(f"{resources.name(node)}: custom conditions {', '.join(extra)}")
    if not custom:
        report.ok("No custom node conditions found")

    report.add_summary("Nodes", f"{ready}/{total} ready")
    report.add_summary("High CPU nodes", high_cpu)
    report.add_summary("High memory nodes", high_mem)
    return None


def main() -> int:
    return run_provider("Node Health Check", check_node_health)


if __name__ == "__main__":
    sys.exit(main())
