"""etcd health check: pods, cluster health, members, size, alarms and backups."""

import re
import sys

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.config import Thresholds
from kube_health.kubectl import Kubectl

ETCD_NAMESPACE = "kube-system"
DEFAULT_ENDPOINTS = "https://127.0.0.1:2379"
ETCD_CACERT = "/etc/kubernetes/pki/etcd/ca.crt"
ETCD_CERT = "/etc/kubernetes/pki/etcd/server.crt"
ETCD_KEY = "/etc/kubernetes/pki/etcd/server.key"
LOG_ERROR_RE = re.compile(r"error|fail|panic|fatal", re.IGNORECASE)


def find_etcd_pods(kubectl: Kubectl) -> list:
    """Labelled etcd pods, falling back to kubeadm static pods named etcd-*."""
    pods = kubectl.get_items("pods", namespace=ETCD_NAMESPACE, selector="component=etcd") or []
    if pods:
        return pods
    all_pods = kubectl.get_items("pods", namespace=ETCD_NAMESPACE) or []
    return [p for p in all_pods if resources.name(p).startswith("etcd-")]


class Etcdctl:
    """Runs etcdctl inside an etcd pod using the kubeadm certificate layout."""

    def __init__(self, kubectl: Kubectl, pod: str):
        self.kubectl = kubectl
        self.pod = pod
        self.endpoints = DEFAULT_ENDPOINTS

    def available(self) -> bool:
        found, _ = self.kubectl.exec(ETCD_NAMESPACE, self.pod, ["which", "etcdctl"])
        if not found:
            return False
        ok, endpoints = self.kubectl.exec(ETCD_NAMESPACE, self.pod, ["printenv", "ETCDCTL_ENDPOINTS"])
        if ok and endpoints.strip():
            self.endpoints = endpoints.strip()
        return True

    def run(self, *args) -> tuple[bool, str]:
        return self.kubectl.exec(ETCD_NAMESPACE, self.pod, [
            "etcdctl",
            f"--endpoints={self.endpoints}",
            f"--cacert={ETCD_CACERT}",
            f"--cert={ETCD_CERT}",
            f"--key={ETCD_KEY}",
            *args,
        ])


def check_etcd(report: Report, kubectl: Kubectl):
    report.section("Detecting etcd Configuration")
    pods = find_etcd_pods(kubectl)
    external = not pods
    if pods:
        report.ok(f"Found {len(pods)} etcd pod(s) in {ETCD_NAMESPACE}")
    else:
        report.warn("No etcd pods found, etcd is probably external to the cluster")

    report.section("etcd Pod Health Status")
    running = 0
    if pods:
        running, total = resources.count_running_pods(pods)
        if running == total:
            report.ok(f"All etcd pods are running: {running}/{total}")
        else:
            report.warn(f"Only {running}/{total} etcd pods are running")
            report.recommend("Investigate etcd pods that are not running")
        report.line("etcd pod details:")
        for pod in pods:
            report.detail(f"{resources.name(pod)} - Node: {resources.pod_node(pod)} - Status: {resources.pod_phase(pod)}")
        for pod in pods:
            restarts = resources.pod_restarts(pod)
            if restarts > Thresholds.RESTART_WARNING:
                report.warn(f"{resources.name(pod)}: {restarts} restarts")
                report.recommend("Check etcd logs for the cause of frequent restarts")
    else:
        report.info("Skipping pod health checks (external etcd)")

    report.section("etcd Cluster Health")
    etcdctl = None
    first_pod = resources.name(pods[0]) if pods else None
    if first_pod:
        candidate = Etcdctl(kubectl, first_pod)
        if candidate.available():
            etcdctl = candidate
            ok, output = etcdctl.run("endpoint", "health")
            if ok and "is healthy" in output:
                report.ok("Cluster health: Healthy")
                for line in output.splitlines():
                    if "is healthy" in line:
                        report.detail(line.strip())
            else:
                report.fail("Cluster health: Unhealthy")
                report.detail(output.strip())
                report.recommend("Restore etcd quorum before making further cluster changes")
        else:
            report.warn("etcdctl not available in pod, using HTTP health endpoint")
            ok, output = kubectl.exec(ETCD_NAMESPACE, first_pod, ["wget", "-qO-", "http://127.0.0.1:2381/health"])
            if ok and "true" in output:
                report.ok("Health endpoint: Healthy")
            else:
                report.warn("Could not verify health via HTTP endpoint")

    report.section("etcd Member Status")
    if etcdctl:
        ok, members = etcdctl.run("member", "list", "-w", "table")
        if ok:
            for line in members.splitlines():
                report.detail(line)
            started = sum(1 for line in members.splitlines() if "started" in line)
            report.line(f"Healthy members: {started}")
            if started and started % 2 == 0:
                report.warn(f"Even number of etcd members ({started}) does not improve fault tolerance")
        else:
            report.warn("Could not retrieve member list")

    report.section("etcd Performance Metrics")
    if etcdctl:
        ok, status = etcdctl.run("endpoint", "status", "-w", "table")
        if ok:
            for line in status.splitlines():
                report.detail(line)
        else:
            report.warn("Could not retrieve endpoint status")

    report.section("etcd Database Size")
    for pod in pods:
        pod_name = resources.name(pod)
        ok, output = kubectl.exec(ETCD_NAMESPACE, pod_name, ["du", "-sk", "/var/lib/etcd/member/snap/db"])
        size_kb = output.split()[0] if ok and output.split() else ""
        if size_kb.isdigit():
            size_mb = int(size_kb) / 1024
            if size_mb > Thresholds.ETCD_DB_SIZE_WARNING_MB:
                report.warn(f"{pod_name} database size: {size_mb:.0f}MB")
                report.recommend("Compact and defragment the etcd database")
            else:
                report.detail(f"{pod_name} database size: {size_mb:.0f}MB")
        else:
            report.detail(f"{pod_name} database size: unknown")
    if first_pod:
        logs = kubectl.logs(ETCD_NAMESPACE, first_pod, tail=100)
        size_warnings = sum(1 for line in logs.splitlines() if "database space exceeded" in line.lower())
        if size_warnings:
            report.warn(f"Found {size_warnings} database size warnings in recent logs")
            report.recommend("Compact and defragment the etcd database")
        else:
            report.ok("No database size warnings found")

    report.section("etcd Alarm Status")
    if etcdctl:
        ok, alarms = etcdctl.run("alarm", "list")
        if not ok:
            report.warn("Could not check alarm status")
        elif not alarms.strip():
            report.ok("No active alarms")
        else:
            report.fail("Active alarms found:")
            for line in alarms.strip().splitlines():
                report.detail(line)
            report.recommend("Resolve active etcd alarms (e.g. NOSPACE) and disarm them")

    report.section("etcd Backup Status")
    backup_cronjobs = _backup_objects(kubectl, "cronjobs")
    backup_jobs = _backup_objects(kubectl, "jobs")
    if backup_cronjobs or backup_jobs:
        report.ok("etcd backup jobs found")
        for obj in backup_cronjobs:
            schedule = obj.get("spec", {}).get("schedule", "?")
            report.detail(f"CronJob {resources.qualified_name(obj)} (schedule: {schedule})")
        for obj in backup_jobs[-5:]:
            succeeded = obj.get("status", {}).get("succeeded", 0)
            report.detail(f"Job {resources.qualified_name(obj)} (succeeded: {succeeded})")
    else:
        report.warn("No etcd backup jobs found")
        report.recommend("Schedule regular etcd snapshots")

    report.section("etcd Resource Usage")
    if pods:
        success, output = kubectl.run(["top", "pods", "-n", ETCD_NAMESPACE, "--no-headers"])
        if success:
            names = {resources.name(p) for p in pods}
            for line in output.splitlines():
                fields = line.split()
                if fields and fields[0] in names:
                    report.detail(f"{fields[0]}: CPU {fields[1]}, Memory {fields[2]}")
        else:
            report.warn("Metrics not available (metrics-server may not be installed)")
        for container in resources.pod_containers(pods[0]):
            limits = container.get("resources", {}).get("limits", {})
            requests = container.get("resources", {}).get("requests", {})
            report.detail(f"Requests: {requests or 'none'}; Limits: {limits or 'none'}")

    report.section("Recent etcd Errors")
    if first_pod:
        logs = kubectl.logs(ETCD_NAMESPACE, first_pod, tail=200)
        errors = [line for line in logs.splitlines() if LOG_ERROR_RE.search(line)]
        if errors:
            report.warn(f"Found {len(errors)} error messages in recent logs")
            for line in errors[-5:]:
                report.detail(line[:200])
        else:
            report.ok("No errors found in recent logs")
        slow = sum(1 for line in logs.splitlines() if "slow fdatasync" in line)
        if slow:
            report.warn(f"Found {slow} slow fdatasync warnings (disk performance issue)")
            report.recommend("Move etcd data to faster (SSD) storage")

    if external:
        report.add_summary("Configuration", "External etcd (not managed by Kubernetes)")
    else:
        report.add_summary("etcd pods", f"{running}/{len(pods)} running")
    report.add_summary("Backup status", f"{len(backup_cronjobs)} CronJobs, {len(backup_jobs)} Jobs")


def _backup_objects(kubectl: Kubectl, resource: str) -> list:
    items = kubectl.get_items(resource, all_namespaces=True) or []
    return [o for o in items if "etcd" in resources.name(o) and "backup" in resources.name(o)]


def main() -> int:
    return run_provider("etcd Health Check", check_etcd)


if __name__ == "__main__":
    sys.exit(main())
