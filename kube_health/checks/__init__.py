"""Built-in check providers, each runnable as ``python -m kube_health.checks.<name>``."""
