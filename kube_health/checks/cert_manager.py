"""cert-manager health check: controllers, CRDs, webhooks, issuers and certificates."""

import re
import sys
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.config import Thresholds
from kube_health.errors import ComponentNotFoundError
from kube_health.kubectl import Kubectl

CERT_MANAGER_NAMESPACE = "cert-manager"
# deployment, pod selector
DEPLOYMENTS = (
    ("cert-manager", "app=cert-manager"),
    ("cert-manager-webhook", "app.kubernetes.io/name=cert-manager-webhook"),
    ("cert-manager-cainjector", "app.kubernetes.io/name=cert-manager-cainjector"),
)
CRDS = (
    "certificates.cert-manager.io",
    "issuers.cert-manager.io",
    "clusterissuers.cert-manager.io",
    "certificaterequests.cert-manager.io",
    "orders.acme.cert-manager.io",
    "challenges.acme.cert-manager.io",
)
ISSUER_TYPES = ("acme", "ca", "vault", "venafi", "selfSigned")
ORDER_STATES = ("pending", "ready", "processing", "valid", "invalid")
MIN_CA_BUNDLE_LENGTH = 100
METRICS_PORT_NAME = "tcp-prometheus-servicemonitor"
LOG_ERROR_RE = re.compile(r"error|failed", re.IGNORECASE)


def expiry_class(not_after: Optional[str], now: Optional[datetime] = None) -> Optional[tuple[str, int]]:
    """Classify a certificate by ``status.notAfter``.

    Returns:
        ("expired" | "critical" | "warning" | "healthy", days left), or None
        when the certificate has no parseable expiry
    """
    expiry = resources.parse_timestamp(not_after)
    if expiry is None:
        return None
    now = now or datetime.now(timezone.utc)
    days_left = (expiry - now).days
    if expiry < now:
        return "expired", days_left
    if days_left < Thresholds.CERT_CRITICAL_DAYS:
        return "critical", days_left
    if days_left < Thresholds.CERT_WARNING_DAYS:
        return "warning", days_left
    return "healthy", days_left


def issuer_type_counts(issuers: list) -> Counter:
    return Counter(t for i in issuers for t in ISSUER_TYPES if (i.get("spec") or {}).get(t) is not None)


def dns01_providers(issuers: list) -> Counter:
    counts = Counter()
    for issuer in issuers:
        for solver in ((issuer.get("spec") or {}).get("acme") or {}).get("solvers") or []:
            counts.update((solver.get("dns01") or {}).keys())
    return counts


def _ready_count(objects: list) -> int:
    return sum(1 for obj in objects if resources.is_condition_true(obj, "Ready"))


def check_cert_manager(report: Report, kubectl: Kubectl):
    if kubectl.output(["get", "namespace", CERT_MANAGER_NAMESPACE]) is None:
        raise ComponentNotFoundError("cert-manager namespace not found")
    report.line(report.palette.blue(f"Found cert-manager in namespace: {CERT_MANAGER_NAMESPACE}"))

    report.section("cert-manager Deployment Status")
    all_healthy = True
    for deployment_name, selector in DEPLOYMENTS:
        deployment = kubectl.get_json(["get", "deployment", "-n", CERT_MANAGER_NAMESPACE, deployment_name])
        if deployment is None:
            report.fail(f"{deployment_name}: Not found")
            all_healthy = False
            continue
        ready, desired = resources.deployment_replicas(deployment)
        if ready == desired:
            report.ok(f"{deployment_name}: {ready}/{desired} replicas ready")
        else:
            report.warn(f"{deployment_name}: {ready}/{desired} replicas ready")
            all_healthy = False
        pods = kubectl.get_items("pods", namespace=CERT_MANAGER_NAMESPACE, selector=selector) or []
        restarting = sum(1 for p in pods if resources.pod_restarts(p) > Thresholds.RESTART_WARNING)
        if restarting:
            report.warn(f"{deployment_name}: {restarting} pod(s) with high restart count")

    report.section("cert-manager Pod Health")
    pods = kubectl.get_items("pods", namespace=CERT_MANAGER_NAMESPACE) or []
    running, total = resources.count_running_pods(pods)
    report.line(f"Total cert-manager pods: {total}")
    if running == total:
        report.ok(f"All pods running: {running}/{total}")
    else:
        report.warn(f"Only {running}/{total} pods running")
        report.line("Non-running pods:")
        for pod in pods:
            if not resources.pod_is_running(pod):
                report.detail(f"{resources.name(pod)} ({resources.pod_phase(pod)})")

    report.section("cert-manager CRDs")
    report.line("Checking Custom Resource Definitions:")
    missing = 0
    for crd_name in CRDS:
        crd = kubectl.get_json(["get", "crd", crd_name])
        if crd is None:
            missing += 1
            report.fail(f"{crd_name} not found")
        else:
            version = (crd.get("spec", {}).get("versions") or [{}])[0].get("name", "?")
            report.ok(f"{crd_name} (version: {version})")
    if missing:
        report.fail(f"Missing {missing} CRDs - cert-manager may not function properly")
        report.recommend("Reinstall the cert-manager CRDs")

    report.section("Webhook Configuration")
    webhook = kubectl.get_json(["get", "validatingwebhookconfiguration", "cert-manager-webhook"])
    if webhook is not None:
        report.ok("Validating webhook configured")
        hooks = webhook.get("webhooks") or []
        report.detail(f"Webhook endpoints: {len(hooks)}")
        ca_bundle = ((hooks[0] if hooks else {}).get("clientConfig") or {}).get("caBundle") or ""
        if len(ca_bundle) > MIN_CA_BUNDLE_LENGTH:
            report.ok("CA bundle configured")
        else:
            report.warn("CA bundle may not be properly injected")
    else:
        report.fail("Webhook not found")
    if kubectl.get_json(["get", "mutatingwebhookconfiguration", "cert-manager-webhook"]) is not None:
        report.ok("Mutating webhook configured")
    else:
        report.warn("Mutating webhook not found")

    report.section("Issuers and ClusterIssuers")
    issuers = kubectl.get_items("issuers", all_namespaces=True) or []
    cluster_issuers = kubectl.get_items("clusterissuers") or []
    for label, objects in (("Issuers", issuers), ("ClusterIssuers", cluster_issuers)):
        ready = _ready_count(objects)
        report.line(f"{label}:")
        report.detail(f"Total: {len(objects)}")
        report.detail(f"Ready: {ready}")
        if ready < len(objects):
            report.warn(f"{label} not ready: {len(objects) - ready}")
            for obj in objects:
                if not resources.is_condition_true(obj, "Ready"):
                    message = (resources.condition(obj, "Ready") or {}).get("message", "no Ready condition")
                    report.detail(f"{resources.qualified_name(obj)}: {message}")
    all_issuers = issuers + cluster_issuers
    types = issuer_type_counts(all_issuers)
    if types:
        report.line("Issuer types in use:")
        for issuer_type in ISSUER_TYPES:
            if types[issuer_type]:
                report.detail(f"{issuer_type}: {types[issuer_type]}")

    report.section("Certificate Status")
    certificates = kubectl.get_items("certificates", all_namespaces=True) or []
    ready_certs = _ready_count(certificates)
    if not certificates:
        report.info("No certificates found")
    else:
        report.line(f"Total certificates: {len(certificates)}")
        report.ok(f"Ready: {ready_certs}")
        if ready_certs < len(certificates):
            report.warn(f"Not ready: {len(certificates) - ready_certs}")
        issuing = sum(1 for c in certificates if resources.is_condition_true(c, "Issuing"))
        if issuing:
            report.info(f"Currently issuing: {issuing}")
        failed = [c for c in certificates if (resources.condition(c, "Ready") or {}).get("status") == "False"]
        if failed:
            report.line("Failed certificates:")
            for cert in failed[:5]:
                entry = resources.condition(cert, "Ready")
                report.detail(f"{resources.qualified_name(cert)}: {entry.get('reason')} - {entry.get('message')}")

    report.section("Certificate Expiration Check")
    expiry = Counter()
    if certificates:
        report.line("Checking certificate expiration dates...")
        for cert in certificates:
            result = expiry_class(cert.get("status", {}).get("notAfter"))
            if result is None:
                continue
            state, days_left = result
            expiry[state] += 1
            cert_name = resources.qualified_name(cert)
            if state == "expired":
                report.fail(f"EXPIRED: {cert_name}")
            elif state == "critical":
                report.fail(f"CRITICAL: {cert_name} (expires in {days_left} days)")
            elif state == "warning":
                report.warn(f"WARNING: {cert_name} (expires in {days_left} days)")
        report.line("Expiration Summary:")
        report.detail(f"Expired: {expiry['expired']}")
        report.detail(f"Critical (<{Thresholds.CERT_CRITICAL_DAYS} days): {expiry['critical']}")
        report.detail(f"Warning (<{Thresholds.CERT_WARNING_DAYS} days): {expiry['warning']}")
        report.detail(f"Healthy: {len(certificates) - expiry['expired'] - expiry['critical'] - expiry['warning']}")
        if expiry["expired"] or expiry["critical"]:
            report.recommend("Renew expired or soon-expiring certificates and check their issuers")

    report.section("ACME Orders and Challenges")
    orders = kubectl.get_items("orders", all_namespaces=True) or []
    if orders:
        report.line(f"ACME Orders: {len(orders)}")
        states = resources.count_by(orders, lambda o: o.get("status", {}).get("state"))
        for state in ORDER_STATES:
            if states[state]:
                report.detail(f"{state}: {states[state]}")
        invalid = [o for o in orders if o.get("status", {}).get("state") == "invalid"]
        if invalid:
            report.warn(f"Failed orders: {len(invalid)}")
            for order in invalid[:5]:
                report.detail(f"{resources.qualified_name(order)}: {order.get('status', {}).get('failureTime')}")
    else:
        report.info("No ACME orders found")
    challenges = kubectl.get_items("challenges", all_namespaces=True) or []
    if challenges:
        report.line(f"ACME Challenges: {len(challenges)}")
        active = [c for c in challenges if c.get("status", {}).get("state") in ("pending", "processing")]
        if active:
            report.warn(f"Active challenges: {len(active)}")
            for challenge in active[:5]:
                report.detail(f"{resources.qualified_name(challenge)}: {challenge.get('spec', {}).get('type')} - "
                              f"{challenge.get('status', {}).get('state')}")

    report.section("cert-manager Logs Analysis")
    controllers = kubectl.get_items("pods", namespace=CERT_MANAGER_NAMESPACE, selector="app=cert-manager") or []
    if controllers:
        logs = kubectl.logs(CERT_MANAGER_NAMESPACE, resources.name(controllers[0]), tail=500)
        errors = [line for line in logs.splitlines() if LOG_ERROR_RE.search(line)]
        if errors:
            report.warn(f"Found {len(errors)} error messages in recent logs")
            for line in errors[-5:]:
                report.detail(line[:200])
        else:
            report.ok("No errors in recent logs")
        if "too many certificates" in logs:
            report.fail("Rate limiting detected - too many certificate requests")

    report.section("Integration Status")
    service = kubectl.get_json(["get", "service", "-n", CERT_MANAGER_NAMESPACE, "cert-manager"]) or {}
    metrics_port = next((p.get("port") for p in service.get("spec", {}).get("ports", []) or []
                         if p.get("name") == METRICS_PORT_NAME), None)
    if metrics_port:
        report.ok(f"Prometheus metrics exposed on port {metrics_port}")
    else:
        report.info("Prometheus metrics not configured")
    monitors = kubectl.get_items("servicemonitor", namespace=CERT_MANAGER_NAMESPACE)
    if monitors:
        report.ok("ServiceMonitor configured for Prometheus Operator")
    solvers = dns01_providers(all_issuers)
    report.line("DNS01 solver configurations:")
    if solvers:
        for provider, count in sorted(solvers.items()):
            report.detail(f"{provider}: {count}")
    else:
        report.detail("No DNS01 solvers configured")

    report.add_summary("Deployments", "All healthy" if all_healthy else "Some issues detected")
    report.add_summary("Certificates", f"{len(certificates)} total, {ready_certs} ready")
    return None


def main() -> int:
    return run_provider("cert-manager Health Check", check_cert_manager)


if __name__ == "__main__":
    sys.exit(main())
