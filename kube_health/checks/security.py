"""Pod security and compliance check with an overall compliance score."""

import sys
from collections import Counter
from dataclasses import dataclass

from kube_health import resources
from kube_health.checks.base import Report, run_provider
from kube_health.config import Thresholds
from kube_health.kubectl import Kubectl

PSS_LABEL_PREFIX = "pod-security.kubernetes.io"
HIGH_RISK_SHOWN = 10
ROOT_SAMPLE_THRESHOLD = 10


@dataclass
class SecurityCounts:
    """Per-pod security findings across the cluster."""

    total_pods: int = 0
    root: int = 0
    no_security_context: int = 0
    privileged: int = 0
    host_network: int = 0
    host_pid: int = 0
    host_ipc: int = 0
    default_service_account: int = 0
    writable_root_fs: int = 0
    added_capabilities: int = 0
    no_seccomp: int = 0
    no_resource_limits: int = 0
    latest_image: int = 0
    network_policies: int = 0
    pss_namespaces: int = 0


def _container_contexts(pod: dict) -> list[dict]:
    return [c.get("securityContext") or {} for c in resources.pod_containers(pod)]


def analyze_pods(pods: list) -> SecurityCounts:
    counts = SecurityCounts(total_pods=len(pods))
    for pod in pods:
        spec = pod.get("spec", {})
        pod_context = spec.get("securityContext") or {}
        contexts = _container_contexts(pod)
        containers = resources.pod_containers(pod)

        if resources.runs_as_root(pod):
            counts.root += 1
        if not pod_context and not any(contexts):
            counts.no_security_context += 1
        if resources.is_privileged(pod):
            counts.privileged += 1
        if spec.get("hostNetwork"):
            counts.host_network += 1
        if spec.get("hostPID"):
            counts.host_pid += 1
        if spec.get("hostIPC"):
            counts.host_ipc += 1
        if resources.uses_default_service_account(pod):
            counts.default_service_account += 1
        if not all(ctx.get("readOnlyRootFilesystem") for ctx in contexts):
            counts.writable_root_fs += 1
        if any((ctx.get("capabilities") or {}).get("add") for ctx in contexts):
            counts.added_capabilities += 1
        if not pod_context.get("seccompProfile") and not any(ctx.get("seccompProfile") for ctx in contexts):
            counts.no_seccomp += 1
        if sum(1 for c in containers if (c.get("resources") or {}).get("limits")) < len(containers):
            counts.no_resource_limits += 1
        if any(c.get("image", "").endswith(":latest") for c in containers):
            counts.latest_image += 1
    return counts


# (predicate, penalty) pairs applied to a base score of 100
SCORE_PENALTIES = (
    (lambda c: c.privileged > 0, 20),
    (lambda c: c.host_pid > 0, 15),
    (lambda c: c.host_network > 0, 10),
    (lambda c: c.root > c.total_pods // 4, 10),
    (lambda c: c.no_security_context > c.total_pods // 3, 10),
    (lambda c: c.default_service_account > c.total_pods // 2, 5),
    (lambda c: c.no_resource_limits > c.total_pods // 3, 5),
    (lambda c: c.network_policies == 0, 10),
    (lambda c: c.pss_namespaces == 0, 5),
    (lambda c: c.latest_image > 0, 5),
)


def compliance_score(counts: SecurityCounts) -> int:
    score = 100
    for applies, penalty in SCORE_PENALTIES:
        if applies(counts):
            score -= penalty
    return max(score, 0)


def image_registry(image: str) -> str:
    """Registry host of an image reference; Docker Hub when the first part is not a host."""
    first = image.split("/", 1)[0]
    if "/" in image and ("." in first or ":" in first or first == "localhost"):
        return first
    return "docker.io"


def is_public_image(image: str) -> bool:
    return image.startswith(("docker.io/", "library/")) or image_registry(image) == "docker.io"


def check_security(report: Report, kubectl: Kubectl):
    report.section("Pod Security Standards Analysis")
    namespaces = kubectl.get_items("namespaces") or []
    pss = []
    for ns in namespaces:
        pss_labels = {k: v for k, v in resources.labels(ns).items() if k.startswith(PSS_LABEL_PREFIX)}
        if pss_labels:
            pss.append((resources.name(ns), pss_labels))
    if pss:
        report.ok(f"{len(pss)} namespace(s) with Pod Security Standards labels")
        for ns, pss_labels in pss:
            modes = ", ".join(f"{key.rsplit('/', 1)[-1]}={value}" for key, value in sorted(pss_labels.items()))
            report.detail(f"{ns}: {modes}")
    else:
        report.warn("No namespaces with Pod Security Standards labels")

    report.section("Security Context Analysis")
    pods = kubectl.get_items("pods", all_namespaces=True)
    if pods is None:
        report.fail("Cannot list pods")
        return 1
    counts = analyze_pods(pods)
    counts.pss_namespaces = len(pss)
    total = counts.total_pods or 1
    report.line(f"Total pods analyzed: {counts.total_pods}")
    rows = [
        ("Running as root", counts.root),
        ("No security context", counts.no_security_context),
        ("Privileged", counts.privileged),
        ("Host network", counts.host_network),
        ("Host PID", counts.host_pid),
        ("Host IPC", counts.host_ipc),
        ("Default service account", counts.default_service_account),
        ("Writable root filesystem", counts.writable_root_fs),
        ("Added capabilities", counts.added_capabilities),
        ("No seccomp profile", counts.no_seccomp),
        ("Missing resource limits", counts.no_resource_limits),
        ("Using :latest images", counts.latest_image),
    ]
    report.table([(label, value, f"{value * 100 // total}%") for label, value in rows], ["CHECK", "PODS", "SHARE"])
    if counts.privileged:
        report.fail(f"{counts.privileged} pod(s) with privileged containers")
    if counts.host_pid:
        report.fail(f"{counts.host_pid} pod(s) using hostPID")

    report.section("High-Risk Pods Detail")
    privileged = [resources.qualified_name(p) for p in pods if resources.is_privileged(p)]
    if privileged:
        report.line(report.palette.red("Privileged Pods:"))
        for pod in privileged[:HIGH_RISK_SHOWN]:
            report.detail(pod)
    if counts.root > ROOT_SAMPLE_THRESHOLD:
        report.line(report.palette.red("Pods running as root (sample):"))
        for pod in [p for p in pods if resources.runs_as_root(p)][:HIGH_RISK_SHOWN]:
            report.detail(resources.qualified_name(pod))
    host_ns = []
    for pod in pods:
        spec = pod.get("spec", {})
        flags = [flag for flag in ("hostNetwork", "hostPID", "hostIPC") if spec.get(flag)]
        if flags:
            host_ns.append(f"{resources.qualified_name(pod)}: {' '.join(flags)}")
    if host_ns:
        report.line(report.palette.yellow("Pods using host namespaces:"))
        for entry in host_ns[:HIGH_RISK_SHOWN]:
            report.detail(entry)
    if not (privileged or host_ns or counts.root > ROOT_SAMPLE_THRESHOLD):
        report.ok("No high-risk pods found")

    report.section("RBAC Analysis")
    service_accounts = kubectl.get_items("serviceaccounts", all_namespaces=True) or []
    default_sas = sum(1 for sa in service_accounts if resources.name(sa) == "default")
    report.detail(f"Total service accounts: {len(service_accounts)}")
    report.detail(f"Custom service accounts: {len(service_accounts) - default_sas}")
    report.detail(f"Default service accounts: {default_sas}")
    bindings = kubectl.get_items("clusterrolebindings") or []
    admin_subjects = [
        f"{s.get('kind')}/{s.get('name')} in {s.get('namespace') or 'cluster-wide'}"
        for b in bindings if b.get("roleRef", {}).get("name") == "cluster-admin"
        for s in b.get("subjects") or []
    ]
    service_account_admins = [s for s in admin_subjects if s.startswith("ServiceAccount/")]
    if service_account_admins:
        report.warn(f"{len(service_account_admins)} service account(s) bound to cluster-admin")
        for subject in service_account_admins[:HIGH_RISK_SHOWN]:
            report.detail(subject)
        report.recommend("Review service accounts bound to cluster-admin and scope them down")
    else:
        report.ok("No cluster-admin role bindings to service accounts")
    if admin_subjects:
        report.detail(f"cluster-admin subjects total: {len(admin_subjects)}")

    report.section("Network Policies Coverage")
    netpols = kubectl.get_items("networkpolicies", all_namespaces=True) or []
    counts.network_policies = len(netpols)
    covered = {resources.namespace(np) for np in netpols}
    user_namespaces = [ns for ns in namespaces if not resources.name(ns).startswith("kube-")]
    report.detail(f"Network policies: {len(netpols)}")
    report.detail(f"Namespaces with policies: {len(covered)} / {len(user_namespaces)}")
    if not netpols:
        report.warn("No network policies found - network segmentation not enforced")
    else:
        default_deny = sum(
            1 for np in netpols
            if not np.get("spec", {}).get("podSelector") and "Ingress" in (np.get("spec", {}).get("policyTypes") or [])
        )
        report.detail(f"Default deny policies: {default_deny}")

    report.section("Container Image Security")
    images = sorted({c.get("image", "") for p in pods for c in resources.pod_containers(p)})
    report.line(f"Unique images: {len(images)}")
    registries = Counter(image_registry(image) for image in images)
    report.line("Images by registry:")
    for registry, count in registries.most_common(10):
        report.detail(f"{registry}: {count}")
    public = sum(1 for image in images if is_public_image(image))
    if public:
        report.warn(f"{public} images from public registries")

    report.section("Pod Disruption Budget Analysis")
    pdbs = kubectl.get_items("poddisruptionbudgets", all_namespaces=True) or []
    report.line(f"Pod Disruption Budgets: {len(pdbs)}")
    if pdbs:
        for ns, count in resources.count_by(pdbs, resources.namespace).most_common(10):
            report.detail(f"{ns}: {count} PDBs")
    else:
        report.warn("No Pod Disruption Budgets found")
        report.recommend("Define PodDisruptionBudgets for critical workloads")

    quarter, third, half = counts.total_pods // 4, counts.total_pods // 3, counts.total_pods // 2
    if counts.privileged:
        report.recommend(f"CRITICAL: Remove privileged flag from {counts.privileged} pod(s)")
    if counts.host_pid:
        report.recommend(f"CRITICAL: {counts.host_pid} pod(s) using hostPID - high security risk")
    if counts.root > quarter:
        report.recommend(f"HIGH: {counts.root} pods run as root - use non-root users")
    if counts.no_security_context > third:
        report.recommend(f"HIGH: {counts.no_security_context} pods lack security context")
    if counts.default_service_account > half:
        report.recommend(f"MEDIUM: {counts.default_service_account} pods use default service account")
    if counts.no_resource_limits > third:
        report.recommend(f"MEDIUM: {counts.no_resource_limits} pods lack resource limits")
    if not netpols:
        report.recommend("MEDIUM: Implement network policies for network segmentation")
    if not pss:
        report.recommend("Implement Pod Security Standards")
    if counts.latest_image:
        report.recommend("Use specific image tags instead of 'latest'")
    if counts.no_seccomp > half:
        report.recommend("Enable seccomp profiles for containers")

    report.section("Compliance Score")
    score = compliance_score(counts)
    text = f"Security Compliance Score: {score}/100"
    if score >= Thresholds.COMPLIANCE_GOOD:
        report.ok(text)
    elif score >= Thresholds.COMPLIANCE_FAIR:
        report.warn(text)
    else:
        report.fail(text)
    report.detail("Base score: 100")
    for applies, penalty in SCORE_PENALTIES:
        if applies(counts):
            report.detail(f"-{penalty}")

    report.add_summary("Total pods", counts.total_pods)
    report.add_summary("Privileged pods", counts.privileged)
    report.add_summary("Network policies", counts.network_policies)
    report.add_summary("Security score", f"{score}/100")
    return None


def main() -> int:
    return run_provider("Pod Security and Compliance Check", check_security)


if __name__ == "__main__":
    sys.exit(main())
