"""Cilium CNI health check: agents, operator, configuration, endpoints and Hubble."""

import json
import re
import shutil
import subprocess
import sys
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

CANDIDATE_NAMESPACES = ("kube-system", "cilium")
AGENT_SELECTOR = "k8s-app=cilium"
CILIUM_CLI_TIMEOUT = 60
# key, default
CONFIG_KEYS = (
    ("Tunnel mode", "tunnel", "vxlan"),
    ("IPAM mode", "ipam", "cluster-pool"),
    ("IPv4 enabled", "enable-ipv4", "true"),
    ("IPv6 enabled", "enable-ipv6", "false"),
    ("Kube-proxy replacement", "kube-proxy-replacement", "disabled"),
    ("Hubble enabled", "enable-hubble", "false"),
)
LOG_ERROR_RE = re.compile(r"level=(error|fatal)")


def find_namespace(kubectl: Kubectl) -> Optional[str]:
    for ns in CANDIDATE_NAMESPACES:
        if kubectl.get_items("pods", namespace=ns, selector=AGENT_SELECTOR):
            return ns
    return None


def run_cilium_cli(namespace: str) -> tuple[bool, str]:
    try:
        result = subprocess.run(
            ["cilium", "status", "--namespace", namespace, "--wait=false"],
            shell=False,
            capture_output=True,
            text=True,
            timeout=CILIUM_CLI_TIMEOUT,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        return False, str(e)
    return result.returncode == 0, result.stdout + result.stderr


def endpoint_states(endpoints: list) -> list[str]:
    """``namespace/name: state`` for every endpoint that is not ready."""
    return [
        f"{resources.qualified_name(e)}: {e.get('status', {}).get('state', 'unknown')}"
        for e in endpoints if e.get("status", {}).get("state") != "ready"
    ]


def check_cilium(report: Report, kubectl: Kubectl):
    cli_available = shutil.which("cilium") is not None
    if cli_available:
        report.ok("Cilium CLI found")
    else:
        report.warn("Cilium CLI not found. Some checks will be limited.")

    namespace = find_namespace(kubectl)
    if namespace is None:
        raise ComponentNotFoundError("Cilium not found in kube-system or cilium namespace")
    report.line(report.palette.blue(f"Found Cilium in namespace: {namespace}"))

    report.section("Cilium Agent (DaemonSet) Status")
    daemonset = kubectl.get_json(["get", "daemonset", "-n", namespace, "cilium"])
    if daemonset is None:
        report.fail("Cilium DaemonSet not found")
        return 1
    ready, desired = resources.daemonset_pods(daemonset)
    if ready == desired:
        report.ok(f"All nodes have Cilium running: {ready}/{desired}")
    else:
        report.warn(f"Only {ready}/{desired} nodes have Cilium running")
        report.recommend("Investigate nodes where the Cilium agent is not ready")
    pods = kubectl.get_items("pods", namespace=namespace, selector=AGENT_SELECTOR) or []
    running, total = resources.count_running_pods(pods)
    report.line(f"Total Cilium pods: {total}")
    report.line(f"Running pods: {running}")
    restarted = [p for p in pods if resources.pod_restarts(p) > 0]
    if restarted:
        report.line(report.palette.yellow("Pods with restarts:"))
        for pod in restarted:
            report.detail(f"{resources.name(pod)}: {resources.pod_restarts(pod)} restarts")
    first_pod = resources.first_running(pods) or (pods[0] if pods else None)
    first_pod = resources.name(first_pod) if first_pod else None

    report.section("Cilium Operator Status")
    operator = kubectl.get_json(["get", "deployment", "-n", namespace, "cilium-operator"])
    if operator is not None:
        op_ready, op_desired = resources.deployment_replicas(operator)
        text = f"Cilium Operator: {op_ready}/{op_desired} replicas ready"
        if op_ready == op_desired:
            report.ok(text)
        else:
            report.warn(text)
    else:
        report.warn("Cilium Operator deployment not found")

    report.section("Cilium Configuration")
    config = kubectl.get_json(["get", "configmap", "-n", namespace, "cilium-config"])
    if config is not None:
        data = config.get("data") or {}
        report.line("Key configuration parameters:")
        for label, key, default in CONFIG_KEYS:
            report.detail(f"- {label}: {data.get(key, default)}")
    else:
        report.warn("Cilium ConfigMap not found")

    report.section("Cilium Health Checks")
    if cli_available:
        report.line("Running Cilium CLI status check...")
        ok, output = run_cilium_cli(namespace)
        for line in output.splitlines():
            report.detail(line)
        if not ok:
            report.warn("Cilium CLI status check failed")
    elif first_pod:
        report.line("Running manual health checks...")
        healthy, _ = kubectl.exec(namespace, first_pod, ["cilium", "status", "--brief"])
        if healthy:
            report.ok("Cilium agent status: Healthy")
        else:
            report.warn("Cilium agent status: Check failed")
        _, health = kubectl.exec(namespace, first_pod, ["cilium-health", "status"])
        if "Probe succeeded" in health:
            report.ok("Cilium connectivity health: All probes succeeded")
        else:
            report.warn("Cilium connectivity health: Some health probes may have failed")

    report.section("Cilium Network Policies")
    cnp = len(kubectl.get_items("ciliumnetworkpolicies", all_namespaces=True) or [])
    ccnp = len(kubectl.get_items("ciliumclusterwidenetworkpolicies") or [])
    netpols = len(kubectl.get_items("networkpolicies", all_namespaces=True) or [])
    report.detail(f"CiliumNetworkPolicies: {cnp}")
    report.detail(f"CiliumClusterwideNetworkPolicies: {ccnp}")
    report.detail(f"Kubernetes NetworkPolicies: {netpols}")

    report.section("Cilium Endpoints")
    endpoints = kubectl.get_items("ciliumendpoints", all_namespaces=True)
    if endpoints is None:
        report.warn("Unable to check Cilium endpoints")
    else:
        not_ready = endpoint_states(endpoints)
        report.line(f"Total Cilium endpoints: {len(endpoints)}")
        text = f"{len(endpoints) - len(not_ready)}/{len(endpoints)}"
        if not not_ready:
            report.ok(f"All endpoints ready: {text}")
        else:
            report.warn(f"Ready endpoints: {text}")
            report.line("Not ready endpoints:")
            for entry in not_ready[:10]:
                report.detail(entry)

    report.section("IP Address Management (IPAM)")
    if first_pod:
        listed, output = kubectl.exec(namespace, first_pod, ["cilium", "endpoint", "list", "-o", "json"])
        try:
            allocated = len(json.loads(output)) if listed else 0
        except json.JSONDecodeError:
            allocated = 0
        report.detail(f"Endpoints with IPs allocated: {allocated}")
        logs = kubectl.logs(namespace, first_pod)
        ipam_errors = sum(1 for line in logs.splitlines() if "ipam" in line.lower() and "error" in line.lower())
        if ipam_errors:
            report.warn(f"Found {ipam_errors} IPAM-related errors in recent logs")
        else:
            report.ok("No IPAM errors in recent logs")

    report.section("Hubble Observability")
    relay = kubectl.get_json(["get", "deployment", "-n", namespace, "hubble-relay"])
    if relay is not None:
        report.ok("Hubble Relay found")
        relay_ready, relay_desired = resources.deployment_replicas(relay)
        text = f"Hubble Relay: {relay_ready}/{relay_desired} replicas ready"
        if relay_ready == relay_desired:
            report.ok(text)
        else:
            report.warn(text)
        if kubectl.get_json(["get", "deployment", "-n", namespace, "hubble-ui"]) is not None:
            report.ok("Hubble UI deployed")
    else:
        report.info("Hubble not deployed (optional observability component)")

    report.section("Cilium Node Status")
    cilium_nodes = kubectl.get_items("ciliumnodes")
    if cilium_nodes is None:
        report.warn("Unable to check Cilium nodes")
    else:
        report.line(f"Cilium nodes registered: {len(cilium_nodes)}")
        encrypted = sum(1 for n in cilium_nodes if (n.get("spec", {}).get("encryption") or {}).get("type"))
        if encrypted:
            report.ok(f"Encryption enabled on {encrypted} nodes")
        report.line("Node health summary:")
        for node in cilium_nodes[:10]:
            error = ((node.get("status", {}).get("ipam") or {}).get("operator-status") or {}).get("error")
            report.detail(f"{resources.name(node)}: {error or 'OK'}")

    report.section("Recent Cilium Events")
    events = [e for e in kubectl.get_items("events", all_namespaces=True) or [] if e.get("reason") == "CiliumAgent"]
    if events:
        report.line(f"Recent Cilium events found: {len(events)}")
        for event in resources.recent_events(events, 5):
            report.detail(resources.event_summary(event)[:200])
    if first_pod:
        errors = [line for line in kubectl.logs(namespace, first_pod).splitlines() if LOG_ERROR_RE.search(line)]
        if errors:
            report.warn("Recent errors found in Cilium logs:")
            for line in errors[-5:]:
                report.detail(line[:200])
        else:
            report.ok("No recent errors in logs")

    report.add_summary("Cilium agents", f"{ready}/{desired} nodes")
    report.add_summary("Endpoints", f"{len(endpoints or [])} total")
    report.add_summary("Network policies", f"{cnp} Cilium, {netpols} Kubernetes")
    return None


def main() -> int:
    return run_provider("Cilium CNI Health Check", check_cilium)


if __name__ == "__main__":
    sys.exit(main())
