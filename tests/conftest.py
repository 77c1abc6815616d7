"""Shared fixtures for kube-health-check tests."""

import pytest
import sys
import os
import stat

# Add parent directory to path to import the package without installing it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from kube_health.registry import CheckDescriptor


@pytest.fixture
def make_script(tmp_path):
    """Factory writing an executable shell script and returning its descriptor."""

    def _make(name, body, description=None, executable=True, cluster_level=False):
        path = tmp_path / f"{name}.sh"
        path.write_text("#!/bin/sh\n" + body + "\n")
        mode = path.stat().st_mode
        if executable:
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return CheckDescriptor(
            name=name,
            executable=str(path),
            description=description or f"{name.title()} Check",
            cluster_level=cluster_level,
        )

    return _make


class FakeKubectl:
    """Kubectl double answering queries from canned maps."""

    def __init__(self, items=None, available=True, json_docs=None, outputs=None, exec_results=None):
        self.items = items or {}
        self.available = available
        self.json_docs = json_docs or {}
        self.outputs = outputs or {}
        self.exec_results = exec_results or {}

    def is_available(self):
        return self.available

    def get_items(self, resource, namespace=None, selector=None, all_namespaces=False):
        return self.items.get(resource, [])

    def get_json(self, args, timeout=None):
        return self.json_docs.get(tuple(args))

    def output(self, args, timeout=None):
        return self.outputs.get(tuple(args))

    def raw(self, path, timeout=None):
        return None

    def run(self, args, timeout=None, stdin=None):
        return False, "not supported"

    def exec(self, namespace, pod, command, container=None, timeout=None):
        return self.exec_results.get(tuple(command), (False, ""))

    def logs(self, namespace, pod, tail=100, container=None):
        return ""

    def current_context(self):
        return "fake"


@pytest.fixture
def fake_kubectl():
    """The FakeKubectl class, for building per-test cluster doubles."""
    return FakeKubectl


@pytest.fixture
def sample_pod():
    """Running pod with one ready container."""
    return {
        "metadata": {"namespace": "default", "name": "web-7d4b9c-abcde", "ownerReferences": [{"kind": "ReplicaSet"}]},
        "spec": {
            "nodeName": "worker-1",
            "serviceAccountName": "web",
            "containers": [{"name": "web", "image": "nginx:1.25"}],
        },
        "status": {
            "phase": "Running",
            "containerStatuses": [{"name": "web", "ready": True, "restartCount": 2}],
        },
    }


@pytest.fixture
def sample_node():
    """Ready worker node."""
    return {
        "metadata": {"name": "worker-1", "labels": {"kubernetes.io/hostname": "worker-1"}},
        "status": {
            "conditions": [
                {"type": "MemoryPressure", "status": "False"},
                {"type": "Ready", "status": "True"},
            ],
            "nodeInfo": {"kernelVersion": "5.15.0-91-generic"},
        },
    }


@pytest.fixture
def sample_node_condition():
    """Sample node condition for testing."""
    return {
        "type": "MemoryPressure",
        "status": "True",
        "message": "Node has insufficient memory",
    }
