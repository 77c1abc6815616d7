"""Static check registry and selection resolution."""

import os
import sys
from dataclasses import dataclass
from typing import Iterable, Optional

from kube_health.errors import NoChecksSelectedError, UnknownCheckError

LISTING_NAME_WIDTH = 15


@dataclass(frozen=True)
class CheckDescriptor:
    """A runnable check: display name, program to execute and its description."""

    name: str
    executable: str
    description: str
    args: tuple = ()
    cluster_level: bool = False


# name, script file, description, built-in module, cluster-level
DEFAULT_CHECKS = (
    ("cluster", "check-k8s-health-enhanced.sh", "Enhanced Kubernetes Cluster Health", "cluster", True),
    ("nodes", "check-node-health.sh", "Node Health and Resources", "nodes", False),
    ("storage", "check-storage-health.sh", "Persistent Storage Health", "storage", False),
    ("network", "check-network-connectivity.sh", "Network Connectivity Test", "network", False),
    ("security", "check-pod-security.sh", "Pod Security and Compliance", "security", False),
    ("longhorn", "check-longhorn.sh", "Longhorn Storage System", "longhorn", False),
    ("nginx", "check-nginx-ingress.sh", "NGINX Ingress Controller", "nginx", False),
    ("loki", "check-loki.sh", "Loki Logging System", "loki", False),
    ("cilium", "check-cilium.sh", "Cilium CNI", "cilium", False),
    ("cilium-envoy", "check-cilium-envoy.sh", "Cilium Envoy Proxy", "cilium_envoy", False),
    ("etcd", "check-etcd.sh", "etcd Key-Value Store", "etcd", False),
    ("coredns", "check-coredns.sh", "CoreDNS", "coredns", False),
    ("metrics", "check-metrics-server.sh", "Metrics Server", "metrics", False),
    ("cert-manager", "check-cert-manager.sh", "cert-manager", "cert_manager", False),
    ("hostport", "check-hostport-conflicts.sh", "Host Port Conflicts", "hostport", False),
)


class CheckRegistry:
    """Ordered, read-only mapping of check name to descriptor."""

    def __init__(self, descriptors: Iterable[CheckDescriptor]):
        self._checks: dict[str, CheckDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in self._checks:
                raise ValueError(f"Duplicate check name: {descriptor.name}")
            self._checks[descriptor.name] = descriptor

    def resolve(self, name: str) -> CheckDescriptor:
        try:
            return self._checks[name]
        except KeyError:
            raise UnknownCheckError(name) from None

    def list_all(self) -> tuple[CheckDescriptor, ...]:
        """All descriptors in declaration order."""
        return tuple(self._checks.values())

    def __len__(self) -> int:
        return len(self._checks)


def build_registry(checks_dir: Optional[str] = None) -> CheckRegistry:
    """Create the default registry.

    Without ``checks_dir`` every check runs its built-in provider module with
    the current interpreter. With it, every check runs the matching script
    file from that directory.
    """
    descriptors = []
    for name, script, description, module, cluster_level in DEFAULT_CHECKS:
        if checks_dir:
            descriptors.append(CheckDescriptor(
                name=name,
                executable=os.path.join(os.path.abspath(checks_dir), script),
                description=description,
                cluster_level=cluster_level,
            ))
        else:
            descriptors.append(CheckDescriptor(
                name=name,
                executable=sys.executable,
                description=description,
                args=("-m", f"kube_health.checks.{module}"),
                cluster_level=cluster_level,
            ))
    return CheckRegistry(descriptors)


def resolve_selection(registry: CheckRegistry, run_all: bool, names: Iterable[str]) -> tuple[CheckDescriptor, ...]:
    """Turn CLI input into an ordered selection.

    Raises:
        UnknownCheckError: On the first name missing from the registry
        NoChecksSelectedError: When neither --all nor any name was given
    """
    if run_all:
        return registry.list_all()

    names = list(names or [])
    if not names:
        raise NoChecksSelectedError("No checks specified. Use --all or specify check names.")

    selection = []
    seen = set()
    for name in names:
        descriptor = registry.resolve(name)
        if name not in seen:
            seen.add(name)
            selection.append(descriptor)
    return tuple(selection)


def format_listing(registry: CheckRegistry, prog: str = "kube-health-check") -> str:
    """Text printed by --list and on usage errors."""
    lines = ["Available Health Checks:", "=======================", ""]
    for descriptor in registry.list_all():
        lines.append(f"  {descriptor.name:<{LISTING_NAME_WIDTH}} - {descriptor.description}")
    lines += [
        "",
        f"Use '{prog} <check-name>' to run specific checks",
        f"Use '{prog} --all' to run all checks",
    ]
    return "\n".join(lines) + "\n"
