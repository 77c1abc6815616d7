"""
Kubernetes Health Check v2.0.0

Runs a selectable set of diagnostic checks against a Kubernetes cluster and
prints a combined report with a closing summary.

================================================================================
USAGE
================================================================================

    kube-health-check --all
    kube-health-check cluster nodes storage
    kube-health-check --parallel --all --output report.txt
    kube-health-check --list

================================================================================
EXIT CODES
================================================================================

    0   - Run completed (check results are reported, not propagated)
    2   - Usage error (no checks selected, unknown check, invalid option)
    3   - Precondition failed (kubectl missing, cluster unreachable)
    130 - Interrupted by user (Ctrl+C)
"""

VERSION = "2.0.0"

__version__ = VERSION
