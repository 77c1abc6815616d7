"""Longhorn storage system health check."""

import sys

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

LONGHORN_NAMESPACE = "longhorn-system"
LONGHORN_PROVISIONER = "driver.longhorn.io"
GIB = 2**30


def volume_health(volumes: list) -> dict:
    """Count Longhorn volumes by robustness; healthy only counts attached or detached volumes."""
    counts = {"healthy": 0, "degraded": [], "faulted": []}
    for volume in volumes:
        status = volume.get("status", {})
        robustness = status.get("robustness")
        if robustness == "healthy" and status.get("state") in ("attached", "detached"):
            counts["healthy"] += 1
        elif robustness == "degraded":
            counts["degraded"].append(resources.name(volume))
        elif robustness == "faulted":
            counts["faulted"].append(resources.name(volume))
    return counts


def disk_usage_lines(longhorn_nodes: list) -> list[str]:
    lines = []
    for node in longhorn_nodes:
        for disk, status in sorted((node.get("status", {}).get("diskStatus") or {}).items()):
            available = status.get("storageAvailable") or 0
            maximum = status.get("storageMaximum") or 0
            free = available * 100 // maximum if maximum else 0
            lines.append(f"{resources.name(node)}: {disk} - Available: {available // GIB}GB / "
                         f"Total: {maximum // GIB}GB ({free}% free)")
    return lines


def _check_running(report: Report, pods: list, label: str, required: bool) -> None:
    running, total = resources.count_running_pods(pods)
    if not total:
        if required:
            report.fail(f"No {label} pods found")
        return
    if running == total:
        report.ok(f"{label} pods: {running}/{total} Running")
    else:
        report.warn(f"{label} pods: {running}/{total} Running")


def check_longhorn(report: Report, kubectl: Kubectl):
    if kubectl.output(["get", "namespace", LONGHORN_NAMESPACE]) is None:
        raise ComponentNotFoundError(f"Longhorn namespace '{LONGHORN_NAMESPACE}' not found.")

    report.section("Checking Longhorn Manager Pods")
    managers = kubectl.get_items("pods", namespace=LONGHORN_NAMESPACE, selector="app=longhorn-manager") or []
    if managers:
        report.line(f"Found {len(managers)} Longhorn Manager pod(s)")
    _check_running(report, managers, "Longhorn Manager", required=True)

    report.section("Checking Longhorn Engine Image DaemonSet")
    daemonsets = kubectl.get_items("daemonset", namespace=LONGHORN_NAMESPACE, selector="app=longhorn-manager") or []
    if daemonsets:
        ready, desired = resources.daemonset_pods(daemonsets[0])
        text = f"Engine Image DaemonSet: {ready}/{desired} pods ready"
        if desired == ready:
            report.ok(text)
        else:
            report.warn(text)
    else:
        report.warn("No Engine Image DaemonSet found")

    report.section("Checking Longhorn CSI Driver")
    provisioners = kubectl.get_items("pods", namespace=LONGHORN_NAMESPACE, selector="app=csi-provisioner") or []
    _check_running(report, provisioners, "CSI provisioner", required=True)
    attachers = kubectl.get_items("pods", namespace=LONGHORN_NAMESPACE, selector="app=csi-attacher") or []
    _check_running(report, attachers, "CSI attacher", required=False)

    report.section("Checking Longhorn Volumes")
    volumes = kubectl.get_items("volumes.longhorn.io", namespace=LONGHORN_NAMESPACE)
    health = None
    if volumes is None:
        report.warn("Unable to check Longhorn volumes (CRDs might not be installed)")
    else:
        health = volume_health(volumes)
        report.line(f"Total volumes: {len(volumes)}")
        if health["healthy"]:
            report.ok(f"Healthy volumes: {health['healthy']}")
        if health["degraded"]:
            report.warn(f"Degraded volumes: {len(health['degraded'])}")
            for volume in health["degraded"]:
                report.detail(volume)
            report.recommend("Rebuild replicas for degraded Longhorn volumes")
        if health["faulted"]:
            report.fail(f"Faulted volumes: {len(health['faulted'])}")
            for volume in health["faulted"]:
                report.detail(volume)
            report.recommend("Restore faulted Longhorn volumes from backup or salvage replicas")

    report.section("Checking Longhorn Nodes")
    longhorn_nodes = kubectl.get_items("nodes.longhorn.io", namespace=LONGHORN_NAMESPACE)
    if longhorn_nodes is None:
        report.warn("Unable to check Longhorn nodes (CRDs might not be installed)")
    else:
        ready, total = resources.count_ready_nodes(longhorn_nodes)
        report.line(f"Total Longhorn nodes: {total}")
        if ready == total:
            report.ok(f"All nodes are ready: {ready}/{total}")
        else:
            report.warn(f"Only {ready}/{total} nodes are ready")
            for node in longhorn_nodes:
                if not resources.node_is_ready(node):
                    report.detail(resources.name(node))

    report.section("Checking Storage Classes")
    classes = [
        resources.name(sc) for sc in kubectl.get_items("storageclass") or []
        if sc.get("provisioner") == LONGHORN_PROVISIONER
    ]
    if classes:
        report.ok("Longhorn storage classes found:")
        for storage_class in classes:
            report.detail(storage_class)
    else:
        report.warn("No Longhorn storage classes found")

    report.section("Checking Disk Space")
    if longhorn_nodes is None:
        report.warn("Unable to check disk space")
    else:
        for line in disk_usage_lines(longhorn_nodes):
            report.detail(line)

    report.add_summary("Manager pods", f"{resources.count_running_pods(managers)[0]}/{len(managers)} running")
    if health is not None:
        report.add_summary("Volumes", f"{len(volumes)} ({len(health['degraded'])} degraded, "
                                      f"{len(health['faulted'])} faulted)")
    return None


def main() -> int:
    return run_provider("Longhorn Storage Health Check", check_longhorn)


if __name__ == "__main__":
    sys.exit(main())
