"""NGINX Ingress Controller health check."""

import sys
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

CANDIDATE_NAMESPACES = ("ingress-nginx", "nginx-ingress", "kube-system")
APP_SELECTOR = "app.kubernetes.io/name=ingress-nginx"
CONTROLLER_SELECTOR = "app.kubernetes.io/name=ingress-nginx,app.kubernetes.io/component=controller"
LEGACY_CONTROLLER_SELECTOR = "app=nginx-ingress,component=controller"
INGRESS_CONTROLLER = "k8s.io/ingress-nginx"
DEFAULT_CLASS_ANNOTATION = "ingressclass.kubernetes.io/is-default-class"
LEGACY_CLASS_ANNOTATION = "kubernetes.io/ingress.class"


def find_namespace(kubectl: Kubectl) -> Optional[str]:
    for ns in CANDIDATE_NAMESPACES:
        if kubectl.get_items("pods", namespace=ns, selector=APP_SELECTOR):
            return ns
    return None


def is_nginx_ingress(ingress: dict) -> bool:
    return (ingress.get("spec", {}).get("ingressClassName") == "nginx"
            or resources.annotations(ingress).get(LEGACY_CLASS_ANNOTATION) == "nginx")


def ingress_hosts(ingress: dict) -> str:
    return ", ".join(rule.get("host") or "*" for rule in ingress.get("spec", {}).get("rules", []) or [])


def container_resources(pod: dict) -> str:
    containers = resources.pod_containers(pod)
    spec = (containers[0].get("resources") or {}) if containers else {}
    requests, limits = spec.get("requests") or {}, spec.get("limits") or {}
    return (f"CPU: {requests.get('cpu', 'not set')} / {limits.get('cpu', 'not set')}, "
            f"Memory: {requests.get('memory', 'not set')} / {limits.get('memory', 'not set')}")


def check_nginx(report: Report, kubectl: Kubectl):
    namespace = find_namespace(kubectl)
    if namespace is None:
        raise ComponentNotFoundError(
            "NGINX Ingress Controller not found in any namespace "
            f"(checked: {', '.join(CANDIDATE_NAMESPACES)})"
        )
    report.line(report.palette.blue(f"Found NGINX Ingress Controller in namespace: {namespace}"))

    report.section("Checking NGINX Ingress Controller Pods")
    pods = kubectl.get_items("pods", namespace=namespace, selector=CONTROLLER_SELECTOR) or []
    if not pods:
        pods = kubectl.get_items("pods", namespace=namespace, selector=LEGACY_CONTROLLER_SELECTOR) or []
    if not pods:
        report.fail("No NGINX Ingress Controller pods found")
    else:
        ready = sum(1 for p in pods if resources.pod_is_running(p) and resources.pod_is_ready(p))
        report.line(f"Found {len(pods)} NGINX Ingress Controller pod(s)")
        if ready == len(pods):
            report.ok("All Controller pods are Running and Ready")
        else:
            report.warn(f"Only {ready}/{len(pods)} Controller pods are Running and Ready")
        report.line("Controller Pod Resources:")
        for pod in pods:
            report.detail(f"{resources.name(pod)}: {container_resources(pod)}")

    report.section("Checking NGINX Ingress Controller Deployment/DaemonSet")
    deployments = kubectl.get_items("deployment", namespace=namespace, selector=CONTROLLER_SELECTOR) or []
    daemonsets = [] if deployments else (
        kubectl.get_items("daemonset", namespace=namespace, selector=CONTROLLER_SELECTOR) or [])
    if deployments:
        ready, desired = resources.deployment_replicas(deployments[0])
        text = f"Deployment: {ready}/{desired} replicas ready"
    elif daemonsets:
        ready, desired = resources.daemonset_pods(daemonsets[0])
        text = f"DaemonSet: {ready}/{desired} pods ready"
    else:
        desired = ready = None
        report.warn("No Deployment or DaemonSet found for NGINX Ingress Controller")
    if desired is not None:
        if ready == desired:
            report.ok(text)
        else:
            report.warn(text)

    report.section("Checking NGINX Ingress Service")
    services = kubectl.get_items("service", namespace=namespace, selector=CONTROLLER_SELECTOR) or []
    if not services:
        report.warn("No NGINX Ingress Service found")
    for service in services:
        spec = service.get("spec", {})
        report.line(f"Service: {resources.name(service)}")
        report.detail(f"Type: {spec.get('type')}")
        report.detail(f"ClusterIP: {spec.get('clusterIP')}")
        if spec.get("type") == "LoadBalancer":
            ingress = (service.get("status", {}).get("loadBalancer", {}).get("ingress") or [{}])[0]
            external = ingress.get("ip") or ingress.get("hostname")
            if external:
                report.detail(f"External IP: {external}")
            else:
                report.warn("External IP: pending")
        report.detail("Ports: " + ", ".join(f"{p.get('name')}:{p.get('port')}" for p in spec.get("ports", []) or []))

    report.section("Checking Ingress Classes")
    classes = [c for c in kubectl.get_items("ingressclass") or [] if c.get("spec", {}).get("controller") == INGRESS_CONTROLLER]
    if classes:
        report.ok("NGINX Ingress Classes found:")
        for ingress_class in classes:
            report.detail(resources.name(ingress_class))
        defaults = [resources.name(c) for c in classes if resources.annotations(c).get(DEFAULT_CLASS_ANNOTATION) == "true"]
        if defaults:
            report.ok(f"Default ingress class: {', '.join(defaults)}")
    else:
        report.warn("No NGINX Ingress Classes found")

    report.section("Checking Ingress Resources")
    ingresses = kubectl.get_items("ingress", all_namespaces=True) or []
    nginx_ingresses = [i for i in ingresses if is_nginx_ingress(i)]
    report.line(f"Total Ingress resources: {len(ingresses)}")
    without_address = 0
    if nginx_ingresses:
        report.ok(f"NGINX Ingress resources: {len(nginx_ingresses)}")
        for ingress in nginx_ingresses:
            hosts = ingress_hosts(ingress)
            if ingress.get("status", {}).get("loadBalancer", {}).get("ingress"):
                report.detail(f"{resources.qualified_name(ingress)}: Ready - Hosts: {hosts}")
            else:
                without_address += 1
                report.warn(f"{resources.qualified_name(ingress)}: No address assigned - Hosts: {hosts}")
    else:
        report.warn("No NGINX Ingress resources found")

    report.section("Checking NGINX Configuration")
    if pods:
        pod = resources.name(pods[0])
        report.line(f"Testing NGINX configuration in pod: {pod}")
        valid, _ = kubectl.exec(namespace, pod, ["nginx", "-T"])
        if valid:
            report.ok("NGINX configuration is valid")
            _, upstreams = kubectl.exec(namespace, pod, ["sh", "-c", "grep -c upstream /etc/nginx/nginx.conf || echo 0"])
            _, servers = kubectl.exec(namespace, pod, ["sh", "-c", "grep -c 'server {' /etc/nginx/nginx.conf || echo 0"])
            report.detail(f"Configured upstreams: {upstreams.strip() or 0}")
            report.detail(f"Configured servers: {servers.strip() or 0}")
        else:
            report.fail("NGINX configuration test failed")
            report.recommend("Inspect the controller logs for configuration errors")

    report.section("Checking Webhook Configuration")
    webhooks = kubectl.get_items("validatingwebhookconfiguration", selector=APP_SELECTOR) or []
    if webhooks:
        report.ok(f"Validating webhook found: {resources.name(webhooks[0])}")
        client = ((webhooks[0].get("webhooks") or [{}])[0].get("clientConfig") or {}).get("service") or {}
        report.detail(f"Webhook service: {client.get('namespace')}/{client.get('name')}:{client.get('port', 443)}")
    else:
        report.warn("No validating webhook found (admission control may not be working)")

    report.section("Recent Events")
    events = [e for e in kubectl.get_items("events", namespace=namespace) or [] if resources.is_warning_event(e)]
    if events:
        report.warn("Recent warning events:")
        for event in resources.recent_events(events, 5):
            report.detail(f"{event.get('lastTimestamp')}: {event.get('reason')} - {(event.get('message') or '').strip()}")
    else:
        report.ok("No recent warning events")

    report.add_summary("Namespace", namespace)
    report.add_summary("Controller pods", len(pods))
    report.add_summary("NGINX ingresses", f"{len(nginx_ingresses)} ({without_address} without address)")
    return None


def main() -> int:
    return run_provider("NGINX Ingress Controller Health Check", check_nginx)


if __name__ == "__main__":
    sys.exit(main())
