"""Host port bindings check: usage, per-node conflicts and scheduling impact."""

import sys
from collections import Counter, defaultdict
from dataclasses import dataclass

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.kubectl import Kubectl

PORT_ADVICE = {
    80: "Consider using Ingress instead of hostPort 80/8080",
    8080: "Consider using Ingress instead of hostPort 80/8080",
    443: "Consider using Ingress with TLS instead of hostPort 443/8443",
    8443: "Consider using Ingress with TLS instead of hostPort 443/8443",
    22: "Warning: SSH port exposure - security risk",
    3306: "Database ports - consider using ClusterIP service instead",
    5432: "Database ports - consider using ClusterIP service instead",
    6379: "Database ports - consider using ClusterIP service instead",
    27017: "Database ports - consider using ClusterIP service instead",
}
BEST_PRACTICES = (
    "Use NodePort or LoadBalancer services instead of hostPort",
    "Use Ingress controllers for HTTP/HTTPS traffic",
    "Only use hostPort for system-level DaemonSets when absolutely necessary",
    "Consider using hostNetwork instead of hostPort for system pods",
    "Document all hostPort usage and ensure no conflicts",
)


@dataclass(frozen=True)
class HostPortBinding:
    pod: str
    node: str
    container: str
    host_port: int
    container_port: int
    protocol: str


def host_port_bindings(obj: dict) -> list[HostPortBinding]:
    """hostPort declarations of a pod (or the pod template of a workload)."""
    spec = obj.get("spec", {})
    if "template" in spec:
        spec = spec["template"].get("spec", {})
    bindings = []
    for container in spec.get("containers", []) or []:
        for port in container.get("ports", []) or []:
            if port.get("hostPort") is None:
                continue
            bindings.append(HostPortBinding(
                pod=resources.qualified_name(obj),
                node=spec.get("nodeName") or "not scheduled",
                container=container.get("name", ""),
                host_port=port["hostPort"],
                container_port=port.get("containerPort"),
                protocol=port.get("protocol") or "TCP",
            ))
    return bindings


def find_conflicts(bindings: list[HostPortBinding]) -> dict:
    """Map node -> {(port, protocol): [pods]} for ports bound by more than one pod on the same node."""
    by_node = defaultdict(lambda: defaultdict(set))
    for binding in bindings:
        if binding.node == "not scheduled":
            continue
        by_node[binding.node][(binding.host_port, binding.protocol)].add(binding.pod)
    conflicts = {}
    for node, ports in sorted(by_node.items()):
        clashing = {key: sorted(pods) for key, pods in sorted(ports.items()) if len(pods) > 1}
        if clashing:
            conflicts[node] = clashing
    return conflicts


def check_host_ports(report: Report, kubectl: Kubectl):
    pods = kubectl.get_items("pods", all_namespaces=True)
    if pods is None:
        report.fail("Cannot list pods")
        return 1

    report.section("Scanning all pods for hostPort usage")
    hostport_pods = [p for p in pods if host_port_bindings(p)]
    bindings = [b for p in hostport_pods for b in host_port_bindings(p)]
    if not hostport_pods:
        report.ok("No pods using hostPort found")
    else:
        report.warn("Found pods using hostPort:")
        for pod in hostport_pods:
            report.line(resources.qualified_name(pod))
            report.detail(f"Node: {pod.get('spec', {}).get('nodeName') or 'not scheduled'}")
            report.detail(f"Status: {resources.pod_phase(pod)}")
            for binding in host_port_bindings(pod):
                report.detail(f"- {binding.container}: Port {binding.host_port} (hostPort) -> "
                              f"{binding.container_port} (containerPort) {binding.protocol}", indent=4)

    report.section("Checking for hostPort conflicts")
    conflicts = find_conflicts(bindings)
    if not conflicts:
        report.ok("No hostPort conflicts detected")
    else:
        for node, ports in conflicts.items():
            for (port, protocol), owners in ports.items():
                report.fail(f"Node {node}: port {port}/{protocol} used by multiple pods")
                for owner in owners:
                    report.detail(f"- {owner}", indent=4)
        report.recommend("Resolve hostPort conflicts so pods bound to the same port land on different nodes")

    report.section("Checking pending pods that might be stuck due to hostPort")
    pending = [p for p in hostport_pods if resources.pod_phase(p) == "Pending"]
    if not pending:
        report.ok("No pending pods with hostPort requirements")
    else:
        report.warn("Pending pods with hostPort requirements:")
        events = kubectl.get_items("events", all_namespaces=True) or []
        for pod in pending:
            scheduling = [
                e for e in events
                if e.get("reason") == "FailedScheduling"
                and e.get("involvedObject", {}).get("name") == resources.name(pod)
                and e.get("involvedObject", {}).get("namespace") == resources.namespace(pod)
            ]
            latest = resources.recent_events(scheduling, 1)
            report.line(report.palette.blue(f"{resources.qualified_name(pod)}:"))
            report.detail((latest[0].get("message") or "").strip() if latest else "No scheduling events found")

    report.section("Analyzing hostPort usage by node")
    used_by_node = defaultdict(set)
    for binding in bindings:
        used_by_node[binding.node].add((binding.host_port, binding.protocol))
    for node in kubectl.get_items("nodes") or []:
        node_name = resources.name(node)
        report.line(report.palette.blue(f"Node: {node_name}"))
        ports = sorted(used_by_node.get(node_name, ()))
        if ports:
            report.detail("HostPorts in use:")
            for port, protocol in ports:
                report.detail(f"- {port}/{protocol}", indent=4)
        else:
            report.detail("No hostPorts in use")

    report.section("Common hostPort ranges and recommendations")
    usage = Counter(b.host_port for b in bindings)
    if usage:
        report.line("Most used hostPorts:")
        for port, count in usage.most_common(10):
            report.detail(f"- Port {port}: used {count} time(s)")
            if port in PORT_ADVICE:
                report.detail(f"→ {PORT_ADVICE[port]}", indent=4)

    report.section("DaemonSets with hostPort")
    daemonsets = [d for d in kubectl.get_items("daemonsets", all_namespaces=True) or [] if host_port_bindings(d)]
    if daemonsets:
        report.line(report.palette.magenta("DaemonSets with hostPort (expected on all nodes):"))
        for daemonset in daemonsets:
            ports = ", ".join(f"{b.host_port}/{b.protocol}" for b in host_port_bindings(daemonset))
            report.detail(f"{resources.qualified_name(daemonset)}: {ports}")
    else:
        report.ok("No DaemonSets using hostPort")

    if hostport_pods:
        for practice in BEST_PRACTICES:
            report.recommend(practice)
        standalone = [p for p in hostport_pods if resources.owner_kind(p) != "DaemonSet"]
        if standalone:
            report.warn(f"Found {len(standalone)} non-DaemonSet pod(s) using hostPort")
            report.recommend("Non-DaemonSet pods with hostPort limit pod scheduling flexibility")

    report.add_summary("Pods using hostPort", len(hostport_pods))
    report.add_summary("Nodes with conflicts", len(conflicts))
    return None


def main() -> int:
    return run_provider("Kubernetes Host Port Bindings Check", check_host_ports)


if __name__ == "__main__":
    sys.exit(main())
