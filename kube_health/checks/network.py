"""Network connectivity test.

Inspects DNS, services and CNI configuration, then deploys a temporary
namespace with a server and client pod to probe pod-to-pod, service, DNS,
external, network-policy and MTU behaviour. The namespace is always deleted.
"""

import os
import re
import sys
import time

import yaml

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.kubectl import Kubectl

TEST_IMAGE = "nicolaka/netshoot:latest"
SERVER_IMAGE = "nginx:alpine"
POD_READY_TIMEOUT = "60s"
SERVICES_SHOWN = 10
MTU_PROBE_SIZES = (1000, 1400, 1500, 9000)
DEFAULT_MTU = 1500
DNS_TESTS = (
    ("kubernetes.default.svc.cluster.local", "Kubernetes API"),
    ("kube-dns.kube-system.svc.cluster.local", "CoreDNS Service"),
    ("google.com", "External DNS"),
)
EXTRA_CNI_PLUGINS = ("antrea", "multus")
INGRESS_CONTROLLER_RE = re.compile(r"ingress|nginx-controller|traefik|haproxy-controller|istio-gateway")
NETWORK_EVENT_RE = re.compile(r"network|connection|timeout|DNS", re.IGNORECASE)


def discover_cidrs(kubectl: Kubectl) -> dict:
    """Pod and service CIDRs from kubeadm-config, kube-proxy config or apiserver flags."""
    cidrs = {}
    kubeadm = kubectl.get_json(["get", "configmap", "-n", "kube-system", "kubeadm-config"])
    if kubeadm:
        try:
            cluster_config = yaml.safe_load(kubeadm.get("data", {}).get("ClusterConfiguration", "")) or {}
        except yaml.YAMLError:
            cluster_config = {}
        networking = cluster_config.get("networking", {}) or {}
        if networking.get("podSubnet"):
            cidrs["pod"] = (networking["podSubnet"], "kubeadm-config")
        if networking.get("serviceSubnet"):
            cidrs["service"] = (networking["serviceSubnet"], "kubeadm-config")

    if "pod" not in cidrs:
        proxy = kubectl.get_json(["get", "configmap", "-n", "kube-system", "kube-proxy"])
        if proxy:
            try:
                proxy_config = yaml.safe_load(proxy.get("data", {}).get("config.conf", "")) or {}
            except yaml.YAMLError:
                proxy_config = {}
            if proxy_config.get("clusterCIDR"):
                cidrs["pod"] = (proxy_config["clusterCIDR"], "kube-proxy")

    if "service" not in cidrs:
        apiserver = kubectl.get_items("pods", namespace="kube-system", selector="component=kube-apiserver") or []
        if apiserver:
            for arg in resources.container_args(apiserver[0]):
                if arg.startswith("--service-cluster-ip-range="):
                    cidrs["service"] = (arg.split("=", 1)[1], "kube-apiserver")
    return cidrs


def services_without_endpoints(services: list, endpoints: list) -> list[str]:
    """Services that should have endpoints but have none.

    The default/kubernetes service, ExternalName and headless services are
    skipped.
    """
    with_addresses = {
        resources.qualified_name(ep) for ep in endpoints
        if any(subset.get("addresses") for subset in ep.get("subsets") or [])
    }
    missing = []
    for svc in services:
        qualified = resources.qualified_name(svc)
        spec = svc.get("spec", {})
        if qualified == "default/kubernetes":
            continue
        if spec.get("type") == "ExternalName" or spec.get("clusterIP") == "None":
            continue
        if qualified not in with_addresses:
            missing.append(qualified)
    return missing


def nettest_manifests(namespace: str, server_node=None, client_node=None) -> list[dict]:
    server = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "nettest-server", "namespace": namespace, "labels": {"app": "nettest-server"}},
        "spec": {
            "restartPolicy": "Never",
            "containers": [{"name": "nginx", "image": SERVER_IMAGE, "ports": [{"containerPort": 80}]}],
        },
    }
    client = {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "nettest-client", "namespace": namespace, "labels": {"app": "nettest-client"}},
        "spec": {
            "restartPolicy": "Never",
            "containers": [{"name": "netshoot", "image": TEST_IMAGE, "command": ["sleep", "3600"]}],
        },
    }
    if server_node:
        server["spec"]["nodeSelector"] = {"kubernetes.io/hostname": server_node}
    if client_node:
        client["spec"]["nodeSelector"] = {"kubernetes.io/hostname": client_node}
    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "nettest-service", "namespace": namespace},
        "spec": {"selector": {"app": "nettest-server"}, "ports": [{"name": "http", "port": 80, "targetPort": 80}]},
    }
    return [server, service, client]


def deny_all_policy(namespace: str) -> dict:
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": {"name": "deny-all", "namespace": namespace},
        "spec": {"podSelector": {}, "policyTypes": ["Ingress", "Egress"]},
    }


def parse_mtu(ip_link_output: str):
    match = re.search(r"\bmtu (\d+)", ip_link_output)
    return int(match.group(1)) if match else None


class NetworkProbe:
    """Runs commands from the test client pod."""

    def __init__(self, kubectl: Kubectl, namespace: str):
        self.kubectl = kubectl
        self.namespace = namespace

    def succeeds(self, *command) -> bool:
        ok, _ = self.kubectl.exec(self.namespace, "nettest-client", list(command), timeout=20)
        return ok

    def http(self, url: str, connect_timeout: int = 5) -> bool:
        return self.succeeds("curl", "-s", "-o", "/dev/null", "--connect-timeout", str(connect_timeout), url)


def check_network(report: Report, kubectl: Kubectl):
    report.section("Cluster Network Overview")
    cidrs = discover_cidrs(kubectl)
    for kind in ("pod", "service"):
        if kind in cidrs:
            value, source = cidrs[kind]
            report.detail(f"{kind.capitalize()} Network CIDR: {value} (from {source})")
        else:
            report.detail(f"{kind.capitalize()} Network CIDR: unknown")

    all_pods = kubectl.get_items("pods", all_namespaces=True) or []
    plugins = resources.detect_cni(all_pods) + [
        p for p in EXTRA_CNI_PLUGINS if any(p in resources.name(pod).lower() for pod in all_pods)
    ]
    for cni in plugins:
        cni_pods = [p for p in all_pods if cni in resources.name(p).lower() and resources.pod_phase(p) != "Succeeded"]
        running, total = resources.count_running_pods(cni_pods)
        report.ok(f"Found {cni} CNI ({running}/{total} pods running)")
    if not plugins:
        report.warn("No known CNI plugin detected")

    report.section("DNS Service Check")
    dns_service = kubectl.get_json(["get", "service", "-n", "kube-system", "kube-dns"])
    dns_endpoint_count = 0
    if dns_service:
        report.ok("DNS Service found")
        report.detail(f"Cluster DNS IP: {dns_service.get('spec', {}).get('clusterIP')}")
        dns_endpoints = kubectl.get_json(["get", "endpoints", "-n", "kube-system", "kube-dns"]) or {}
        dns_endpoint_count = sum(len(s.get("addresses") or []) for s in dns_endpoints.get("subsets") or [])
        report.detail(f"DNS Endpoints: {dns_endpoint_count}")
        if not dns_endpoint_count:
            report.fail("No DNS endpoints available")
    else:
        report.fail("DNS Service not found")
    if not dns_endpoint_count:
        report.recommend("CRITICAL: DNS service has no endpoints")

    report.section("Service Connectivity Matrix")
    services = kubectl.get_items("services", all_namespaces=True) or []
    endpoints = kubectl.get_items("endpoints", all_namespaces=True) or []
    missing = services_without_endpoints(services, endpoints)
    for svc in missing[:SERVICES_SHOWN]:
        report.warn(f"{svc} has no endpoints")
    if len(missing) > SERVICES_SHOWN:
        report.detail(f"(Showing first {SERVICES_SHOWN}, {len(missing) - SERVICES_SHOWN} more...)")
    report.line(f"Total services: {len(services)}")
    report.line(f"Services without endpoints: {len(missing)}")
    if len(missing) > SERVICES_SHOWN:
        report.recommend(f"HIGH: {len(missing)} services have no endpoints")

    netpols = kubectl.get_items("networkpolicies", all_namespaces=True) or []
    test_namespace = f"network-test-{os.getpid()}"
    pod_to_pod_tested = False
    mtu = None
    try:
        pod_to_pod_tested, mtu = run_active_tests(report, kubectl, test_namespace, netpols)
    finally:
        report.line()
        report.line("Cleaning up test resources...")
        kubectl.run(["delete", "namespace", test_namespace, "--ignore-not-found=true", "--wait=false"])

    report.section("Load Balancer and Ingress Test")
    load_balancers = [s for s in services if s.get("spec", {}).get("type") == "LoadBalancer"]
    report.line(f"LoadBalancer services: {len(load_balancers)}")
    pending = 0
    for svc in load_balancers[:5]:
        ingress = (svc.get("status", {}).get("loadBalancer", {}).get("ingress") or [{}])[0]
        address = ingress.get("ip") or ingress.get("hostname")
        if not address:
            pending += 1
        report.detail(f"{resources.qualified_name(svc)}: {address or 'pending'}")
    if pending:
        report.recommend("Some LoadBalancer services are pending external IPs")
    ingresses = kubectl.get_items("ingress", all_namespaces=True) or []
    report.line(f"Ingress resources: {len(ingresses)}")
    if ingresses:
        controllers = [p for p in all_pods if INGRESS_CONTROLLER_RE.search(resources.name(p))]
        for pod in controllers[:5]:
            report.detail(f"{resources.qualified_name(pod)}: {resources.pod_phase(pod)}")

    report.section("Network Performance Indicators")
    events = kubectl.get_items("events", all_namespaces=True) or []
    network_events = [
        e for e in events
        if resources.is_warning_event(e) and NETWORK_EVENT_RE.search(e.get("message") or "")
    ]
    if network_events:
        report.warn(f"Found {len(network_events)} network-related warning events")
        for event in resources.recent_events(network_events, 5):
            report.detail(resources.event_summary(event)[:200])
    else:
        report.ok("No recent network warning events")

    if not netpols:
        report.recommend("Consider implementing network policies for security")
    if mtu is not None and mtu < DEFAULT_MTU:
        report.recommend(f"MTU is {mtu} (less than {DEFAULT_MTU}), may impact performance")

    report.add_summary("CNI Plugin", ", ".join(plugins) if plugins else "Not detected")
    report.add_summary("DNS Service", "Healthy" if dns_endpoint_count else "Issues detected")
    report.add_summary("Pod-to-Pod", "Tested" if pod_to_pod_tested else "Not tested")
    report.add_summary("Network policies", f"{len(netpols)} configured")
    return None


def run_active_tests(report: Report, kubectl: Kubectl, namespace: str, netpols: list) -> tuple[bool, object]:
    """Deploy the test pods and probe connectivity. Returns (pod-to-pod tested, MTU)."""
    report.section("Creating Network Test Environment")
    report.line(f"Creating test namespace: {namespace}")
    ok, error = kubectl.run(["create", "namespace", namespace])
    if not ok:
        report.fail(f"Cannot create test namespace: {error.strip()}")
        return False, None

    node_names = [resources.name(n) for n in kubectl.get_items("nodes") or []]
    report.line(f"Available nodes: {len(node_names)}")
    server_node = node_names[0] if node_names else None
    client_node = node_names[1] if len(node_names) > 1 else server_node
    manifests = yaml.safe_dump_all(nettest_manifests(namespace, server_node, client_node))
    ok, error = kubectl.run(["apply", "-f", "-"], stdin=manifests)
    if not ok:
        report.fail(f"Cannot create test pods: {error.strip()}")
        return False, None

    report.line("Waiting for test pods to be ready...")
    for pod in ("nettest-server", "nettest-client"):
        ready, _ = kubectl.run(["wait", "--for=condition=Ready", f"pod/{pod}", "-n", namespace,
                                f"--timeout={POD_READY_TIMEOUT}"], timeout=90)
        if not ready:
            report.warn(f"{pod} pod not ready")

    server = kubectl.get_json(["get", "pod", "nettest-server", "-n", namespace]) or {}
    server_ip = server.get("status", {}).get("podIP")
    probe = NetworkProbe(kubectl, namespace)

    report.section("Pod-to-Pod Connectivity Tests")
    if server_ip:
        report.line(f"Server pod IP: {server_ip}")
        if probe.http(f"http://{server_ip}"):
            report.ok("HTTP to server pod: Success")
        else:
            report.fail("HTTP to server pod: Failed")
            report.recommend("Check CNI health: pods cannot reach each other")
        if probe.succeeds("ping", "-c", "1", "-W", "2", server_ip):
            report.ok("ICMP to server pod: Success")
        else:
            report.warn("ICMP to server pod: Failed (ICMP may be blocked)")
    else:
        report.fail("Server pod has no IP address")

    report.section("Service Connectivity Tests")
    service = kubectl.get_json(["get", "service", "nettest-service", "-n", namespace]) or {}
    service_ip = service.get("spec", {}).get("clusterIP")
    service_fqdn = f"nettest-service.{namespace}.svc.cluster.local"
    if service_ip:
        if probe.http(f"http://{service_ip}"):
            report.ok(f"ClusterIP {service_ip}: Success")
        else:
            report.fail(f"ClusterIP {service_ip}: Failed")
            report.recommend("Check kube-proxy / service routing: ClusterIP not reachable")
    if probe.succeeds("nslookup", service_fqdn):
        report.ok("Service DNS lookup: Resolved")
    else:
        report.fail("Service DNS lookup: Failed")
    if probe.http(f"http://{service_fqdn}"):
        report.ok("HTTP via service DNS name: Success")
    else:
        report.fail("HTTP via service DNS name: Failed")

    report.section("DNS Resolution Tests")
    for host, description in DNS_TESTS:
        if probe.succeeds("nslookup", host):
            report.ok(f"{description} ({host}): Resolved")
        else:
            report.fail(f"{description} ({host}): Failed")

    report.section("External Connectivity Test")
    for url in ("http://www.google.com", "https://www.google.com"):
        if probe.http(url):
            report.ok(f"{url}: Success")
        else:
            report.warn(f"{url}: Failed (egress may be restricted)")

    report.section("Network Policy Impact Test")
    if netpols and server_ip:
        report.line(f"Network policies detected: {len(netpols)}")
        ok, _ = kubectl.run(["apply", "-f", "-"], stdin=yaml.safe_dump(deny_all_policy(namespace)))
        if ok:
            time.sleep(2)
            if probe.http(f"http://{server_ip}", connect_timeout=3):
                report.warn("Pod connectivity with deny-all policy: still working (CNI may not enforce policies)")
            else:
                report.ok("Pod connectivity with deny-all policy: blocked as expected")
            kubectl.run(["delete", "networkpolicy", "deny-all", "-n", namespace])
    else:
        report.info("No network policies configured in cluster")

    report.section("MTU and Fragmentation Test")
    ok, output = kubectl.exec(namespace, "nettest-client", ["ip", "link", "show", "eth0"])
    mtu = parse_mtu(output) if ok else None
    report.line(f"Pod interface MTU: {mtu or 'unknown'}")
    if server_ip:
        for size in MTU_PROBE_SIZES:
            if probe.succeeds("ping", "-c", "1", "-W", "2", "-s", str(size), server_ip):
                report.ok(f"Ping with {size} bytes: Success")
            elif size > (mtu or DEFAULT_MTU):
                report.warn(f"Ping with {size} bytes: Failed (larger than MTU)")
            else:
                report.fail(f"Ping with {size} bytes: Failed")
    return bool(server_ip), mtu


def main() -> int:
    return run_provider("Kubernetes Network Connectivity Test", check_network)


if __name__ == "__main__":
    sys.exit(main())
