"""Thin kubectl wrapper shared by the orchestrator and the built-in checks."""

import json
import logging
import re
import shutil
import subprocess
from typing import Optional

from kube_health.config import DEFAULT_KUBECTL_TIMEOUT
from kube_health.errors import InputValidationError

logger = logging.getLogger(__name__)

INPUT_VALIDATION_PATTERNS = {
    "namespace": re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"),
    "kube_context": re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._:/@-]*$"),
    "resource_name": re.compile(r"^[a-z0-9]([-a-z0-9.]*[a-z0-9])?$"),
}


def validate_input(name: str, value: str) -> str:
    """Validate input parameter against a safe pattern.

    Args:
        name: Parameter name (namespace, kube_context, resource_name)
        value: Parameter value to validate

    Returns:
        The validated value (unchanged if valid)

    Raises:
        InputValidationError: If the value contains unsafe characters
    """
    if not value:
        return value

    if name not in INPUT_VALIDATION_PATTERNS:
        raise InputValidationError(f"Unknown parameter: {name}")

    pattern = INPUT_VALIDATION_PATTERNS[name]
    if not pattern.match(value):
        raise InputValidationError(f"Invalid {name}: '{value}'. Contains characters that are not allowed.")

    return value


class Kubectl:
    """Runs kubectl with shell=False and an optional fixed context."""

    def __init__(self, kube_context: Optional[str] = None, binary: str = "kubectl",
                 timeout: int = DEFAULT_KUBECTL_TIMEOUT):
        self.kube_context = validate_input("kube_context", kube_context) if kube_context else None
        self.binary = binary
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def build_command(self, args: list) -> list:
        cmd = [self.binary]
        if self.kube_context:
            cmd += ["--context", self.kube_context]
        return cmd + list(args)

    def run(self, args: list, timeout: Optional[int] = None, stdin: Optional[str] = None) -> tuple[bool, str]:
        """Run a single kubectl command.

        Args:
            args: kubectl arguments (e.g., ['get', 'nodes', '-o', 'json'])
            timeout: Timeout in seconds, defaults to the instance timeout
            stdin: Optional text fed to the command (for ``apply -f -``)

        Returns:
            Tuple of (success, output or error message)
        """
        cmd_parts = self.build_command(args)
        logger.debug(f"Running: {' '.join(cmd_parts)}")
        try:
            result = subprocess.run(
                cmd_parts,
                shell=False,
                capture_output=True,
                text=True,
                check=True,
                timeout=timeout or self.timeout,
                input=stdin,
            )
            return True, result.stdout
        except subprocess.TimeoutExpired:
            return False, "Command timed out"
        except subprocess.CalledProcessError as e:
            return False, e.stderr if e.stderr else "Command failed"
        except FileNotFoundError:
            return False, f"{self.binary} not found in PATH"

    def output(self, args: list, timeout: Optional[int] = None) -> Optional[str]:
        """Return stripped stdout of a kubectl command, or None on failure."""
        success, output = self.run(args, timeout=timeout)
        if not success:
            logger.debug(f"kubectl {' '.join(args)} failed: {output.strip()}")
            return None
        return output.strip()

    def get_json(self, args: list, timeout: Optional[int] = None) -> Optional[dict]:
        """Run ``kubectl <args> -o json`` and decode the result.

        Returns:
            Decoded JSON document, or None when the command or decoding fails
        """
        output = self.output(list(args) + ["-o", "json"], timeout=timeout)
        if output is None:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            logger.debug(f"Invalid JSON from kubectl {' '.join(args)}: {e}")
            return None

    def get_items(self, resource: str, namespace: Optional[str] = None, selector: Optional[str] = None,
                  all_namespaces: bool = False) -> Optional[list]:
        """List objects of a resource type; None means the query itself failed."""
        args = ["get", resource]
        if all_namespaces:
            args.append("--all-namespaces")
        elif namespace:
            args += ["-n", validate_input("namespace", namespace)]
        if selector:
            args += ["-l", selector]
        data = self.get_json(args)
        if data is None:
            return None
        return data.get("items", [])

    def raw(self, path: str, timeout: Optional[int] = None) -> Optional[str]:
        return self.output(["get", "--raw", path], timeout=timeout)

    def exec(self, namespace: str, pod: str, command: list, container: Optional[str] = None,
             timeout: Optional[int] = None) -> tuple[bool, str]:
        args = ["exec", "-n", namespace, pod]
        if container:
            args += ["-c", container]
        return self.run(args + ["--"] + list(command), timeout=timeout)

    def logs(self, namespace: str, pod: str, tail: int = 100, container: Optional[str] = None) -> str:
        args = ["logs", "-n", namespace, pod, f"--tail={tail}"]
        if container:
            args += ["-c", container]
        return self.output(args) or ""

    def current_context(self) -> Optional[str]:
        if self.kube_context:
            return self.kube_context
        return self.output(["config", "current-context"])

    def cluster_reachable(self, timeout: int = 15) -> bool:
        success, _ = self.run(["cluster-info"], timeout=timeout)
        return success
