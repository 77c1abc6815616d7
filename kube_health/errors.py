"""Exception hierarchy for the health check orchestrator."""


class KubeHealthError(Exception):
    """Base exception for kube-health-check"""

    pass


class UsageError(KubeHealthError):
    """Invalid command line usage"""

    pass


class NoChecksSelectedError(UsageError):
    """Neither --all nor any check name was given"""

    pass


class UnknownCheckError(UsageError):
    """Check name not present in the registry"""

    def __init__(self, name: str):
        super().__init__(f"Unknown check: {name}")
        self.name = name


class ConfigError(UsageError):
    """Invalid configuration file or value"""

    pass


class InputValidationError(UsageError):
    """Invalid or unsafe input parameter"""

    pass


class PreconditionError(KubeHealthError):
    """Environment is not ready for running checks"""

    pass


class KubectlNotAvailableError(PreconditionError):
    """kubectl not available in PATH"""

    pass


class ClusterUnreachableError(PreconditionError):
    """kubectl cluster-info failed"""

    pass


class CheckUnavailableError(KubeHealthError):
    """Check executable is missing or cannot be started"""

    pass


class ComponentNotFoundError(KubeHealthError):
    """Component inspected by a check is not installed in the cluster"""

    pass
