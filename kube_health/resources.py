"""Helpers for reading Kubernetes objects decoded from ``kubectl -o json``."""

import re
from collections import Counter
from datetime import datetime, timezone
from typing import Iterable, Optional

from dateutil import parser as date_parser

CONTROL_PLANE_ROLE_LABELS = (
    "node-role.kubernetes.io/control-plane",
    "node-role.kubernetes.io/master",
)

_QUANTITY_RE = re.compile(r"^([+-]?[0-9.]+(?:[eE][+-]?[0-9]+)?)([a-zA-Z]*)$")
_BINARY_SUFFIXES = {"Ki": 2**10, "Mi": 2**20, "Gi": 2**30, "Ti": 2**40, "Pi": 2**50, "Ei": 2**60}
_DECIMAL_SUFFIXES = {"n": 1e-9, "u": 1e-6, "m": 1e-3, "": 1, "k": 1e3, "K": 1e3, "M": 1e6,
                     "G": 1e9, "T": 1e12, "P": 1e15, "E": 1e18}


def name(obj: dict) -> str:
    return obj.get("metadata", {}).get("name", "")


def namespace(obj: dict) -> str:
    return obj.get("metadata", {}).get("namespace", "")


def labels(obj: dict) -> dict:
    return obj.get("metadata", {}).get("labels") or {}


def annotations(obj: dict) -> dict:
    return obj.get("metadata", {}).get("annotations") or {}


def qualified_name(obj: dict) -> str:
    ns = namespace(obj)
    return f"{ns}/{name(obj)}" if ns else name(obj)


def condition(obj: dict, condition_type: str) -> Optional[dict]:
    """The ``status.conditions`` entry of the given type, if present."""
    for entry in obj.get("status", {}).get("conditions", []) or []:
        if entry.get("type") == condition_type:
            return entry
    return None


def is_condition_true(obj: dict, condition_type: str) -> bool:
    entry = condition(obj, condition_type)
    return entry is not None and entry.get("status") == "True"


# === Nodes ===


def node_condition(node: dict, condition_type: str) -> Optional[str]:
    """Return the status string ("True"/"False"/"Unknown") of a node condition."""
    for condition in node.get("status", {}).get("conditions", []) or []:
        if condition.get("type") == condition_type:
            return condition.get("status")
    return None


def node_is_ready(node: dict) -> bool:
    return node_condition(node, "Ready") == "True"


def node_is_control_plane(node: dict) -> bool:
    node_labels = labels(node)
    return any(label in node_labels for label in CONTROL_PLANE_ROLE_LABELS)


def node_roles(node: dict) -> list[str]:
    roles = sorted(
        key.split("/", 1)[1]
        for key in labels(node)
        if key.startswith("node-role.kubernetes.io/") and "/" in key
    )
    return roles or ["worker"]


def count_ready_nodes(nodes: list) -> tuple[int, int]:
    """Return (ready, total) node counts."""
    return sum(1 for n in nodes if node_is_ready(n)), len(nodes)


def kernel_major(node: dict) -> Optional[int]:
    version = node.get("status", {}).get("nodeInfo", {}).get("kernelVersion", "")
    match = re.match(r"^(\d+)\.", version)
    return int(match.group(1)) if match else None


# === Pods ===


def pod_phase(pod: dict) -> str:
    return pod.get("status", {}).get("phase", "Unknown")


def pod_is_running(pod: dict) -> bool:
    return pod_phase(pod) == "Running"


def count_running_pods(pods: list) -> tuple[int, int]:
    """Return (running, total) pod counts."""
    return sum(1 for p in pods if pod_is_running(p)), len(pods)


def container_statuses(pod: dict) -> list:
    return pod.get("status", {}).get("containerStatuses", []) or []


def pod_restarts(pod: dict) -> int:
    return sum(cs.get("restartCount", 0) for cs in container_statuses(pod))


def pod_is_ready(pod: dict) -> bool:
    statuses = container_statuses(pod)
    return bool(statuses) and all(cs.get("ready") for cs in statuses)


def waiting_reasons(pod: dict) -> list[str]:
    return [
        cs["state"]["waiting"].get("reason", "Unknown")
        for cs in container_statuses(pod)
        if cs.get("state", {}).get("waiting")
    ]


def pod_containers(pod: dict) -> list:
    return pod.get("spec", {}).get("containers", []) or []


def owner_kind(obj: dict) -> Optional[str]:
    owners = obj.get("metadata", {}).get("ownerReferences") or []
    return owners[0].get("kind") if owners else None


def pod_node(pod: dict) -> str:
    return pod.get("spec", {}).get("nodeName") or "<unscheduled>"


def first_running(pods: list) -> Optional[dict]:
    for pod in pods:
        if pod_is_running(pod):
            return pod
    return None


def container_args(obj: dict) -> list[str]:
    """Command and args of every container in a pod or pod template spec."""
    spec = obj.get("spec", {})
    if "template" in spec:
        spec = spec["template"].get("spec", {})
    result = []
    for container in spec.get("containers", []) or []:
        result += container.get("command", []) or []
        result += container.get("args", []) or []
    return result


# === Workloads ===


def deployment_replicas(deployment: dict) -> tuple[int, int]:
    """(ready, desired) replicas of a Deployment."""
    desired = deployment.get("spec", {}).get("replicas", 1)
    return deployment.get("status", {}).get("readyReplicas", 0) or 0, desired


def daemonset_pods(daemonset: dict) -> tuple[int, int]:
    """(ready, desired) pods of a DaemonSet."""
    status = daemonset.get("status", {})
    return status.get("numberReady", 0) or 0, status.get("desiredNumberScheduled", 0) or 0


# === Quantities and time ===


def parse_quantity(value) -> float:
    """Convert a Kubernetes resource quantity ("250m", "4Gi", "1e3") to a float."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _QUANTITY_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid quantity: {value}")
    number, suffix = match.groups()
    if suffix in _BINARY_SUFFIXES:
        return float(number) * _BINARY_SUFFIXES[suffix]
    if suffix in _DECIMAL_SUFFIXES:
        return float(number) * _DECIMAL_SUFFIXES[suffix]
    raise ValueError(f"Invalid quantity suffix: {value}")


def format_bytes(size: float) -> str:
    for unit, factor in (("Ti", 2**40), ("Gi", 2**30), ("Mi", 2**20), ("Ki", 2**10)):
        if size >= factor:
            return f"{size / factor:.1f}{unit}"
    return f"{int(size)}B"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    if not value:
        return None
    try:
        dt = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def count_by(objects: Iterable, key) -> Counter:
    return Counter(key(obj) for obj in objects)


def is_warning_event(event: dict) -> bool:
    return event.get("type") == "Warning"


def event_summary(event: dict) -> str:
    involved = event.get("involvedObject", {})
    target = f"{involved.get('kind', '?')}/{involved.get('name', '?')}"
    return f"{event.get('reason', 'Unknown')} {target}: {(event.get('message') or '').strip()}"


def event_time(event: dict) -> Optional[datetime]:
    return parse_timestamp(
        event.get("lastTimestamp") or event.get("eventTime") or event.get("metadata", {}).get("creationTimestamp")
    )


def recent_events(events: list, limit: int = 10) -> list:
    """Most recent events first."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(events, key=lambda e: event_time(e) or epoch, reverse=True)[:limit]


# === Security context ===


def runs_as_root(pod: dict) -> bool:
    spec = pod.get("spec", {})
    if (spec.get("securityContext") or {}).get("runAsUser") == 0:
        return True
    return any((c.get("securityContext") or {}).get("runAsUser") == 0 for c in pod_containers(pod))


def is_privileged(pod: dict) -> bool:
    return any((c.get("securityContext") or {}).get("privileged") is True for c in pod_containers(pod))


def uses_default_service_account(pod: dict) -> bool:
    return pod.get("spec", {}).get("serviceAccountName") in (None, "", "default")


# === kubectl top ===


def parse_top_nodes(output: str) -> list[dict]:
    """Parse ``kubectl top nodes --no-headers`` into name/cpu/memory percentages."""
    rows = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 5:
            continue
        try:
            cpu_pct = int(fields[2].rstrip("%"))
            mem_pct = int(fields[4].rstrip("%"))
        except ValueError:
            continue
        rows.append({"name": fields[0], "cpu": fields[1], "cpu_pct": cpu_pct,
                     "memory": fields[3], "memory_pct": mem_pct})
    return rows


CNI_PLUGINS = ("calico", "weave", "flannel", "cilium", "canal", "kube-router")


def detect_cni(pods: list) -> list[str]:
    """Names of known CNI plugins that have pods in the cluster."""
    pod_names = [name(p).lower() for p in pods]
    return [cni for cni in CNI_PLUGINS if any(cni in pod_name for pod_name in pod_names)]


# === Prometheus text exposition ===


def metric_samples(metrics: str, name: str, contains: Optional[str] = None) -> list[float]:
    """Sample values of a metric, optionally only series whose line contains ``contains``."""
    values = []
    for line in metrics.splitlines():
        if line.startswith("#") or not line.startswith(name):
            continue
        if line[len(name):len(name) + 1] not in ("{", " "):
            continue
        if contains and contains not in line:
            continue
        try:
            values.append(float(line.rsplit(None, 1)[-1]))
        except ValueError:
            continue
    return values


def metric_total(metrics: str, name: str, contains: Optional[str] = None) -> float:
    return sum(metric_samples(metrics, name, contains))
