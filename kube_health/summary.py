"""Closing summary block and directly queried cluster health indicators."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from kube_health import resources
from kube_health.engine import RunSummary
from kube_health.kubectl import Kubectl
from kube_health.output import Palette, boxed_title

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterIndicators:
    ready_nodes: int
    total_nodes: int
    running_pods: int
    total_pods: int
    running_system_pods: int
    total_system_pods: int


def collect_indicators(kubectl: Kubectl) -> Optional[ClusterIndicators]:
    """Query node and pod counts straight from the API server.

    Returns None if any of the three queries fails.
    """
    nodes = kubectl.get_items("nodes")
    pods = kubectl.get_items("pods", all_namespaces=True)
    system_pods = kubectl.get_items("pods", namespace="kube-system")
    if nodes is None or pods is None or system_pods is None:
        logger.warning("Could not query cluster indicators")
        return None

    ready_nodes, total_nodes = resources.count_ready_nodes(nodes)
    running_pods, total_pods = resources.count_running_pods(pods)
    running_system, total_system = resources.count_running_pods(system_pods)
    return ClusterIndicators(ready_nodes, total_nodes, running_pods, total_pods, running_system, total_system)


class SummaryReporter:
    """Prints the summary report at the end of a run."""

    def __init__(self, write_line: Callable[[str], None], palette: Palette):
        self.line = write_line
        self.palette = palette

    def render(self, summary: RunSummary, indicators: Optional[ClusterIndicators] = None,
               show_indicators: bool = False) -> None:
        p = self.palette
        self.line("")
        for text in boxed_title("Summary Report", p):
            self.line(text)
        self.line("")
        self.line(f"Total checks run: {summary.total}")
        self.line(f"Succeeded: {summary.succeeded}")
        self.line(f"Failed: {summary.failed}")
        for result in summary.failed_results:
            detail = result.error or f"exit code {result.exit_code}"
            self.line(p.yellow(f"  ⚠ {result.name}: {result.status} ({detail})"))
        self.line(f"Total duration: {summary.duration:.1f}s")
        self.line("")

        if show_indicators:
            self.render_indicators(indicators)

        self.line(p.green("Health check complete!"))
        self.line("")

    def render_indicators(self, indicators: Optional[ClusterIndicators]) -> None:
        p = self.palette
        self.line("Cluster Health Indicators:")
        if indicators is None:
            self.line(p.yellow("  ⚠ Unable to query cluster health indicators"))
            self.line("")
            return

        nodes_text = f"{indicators.ready_nodes}/{indicators.total_nodes} ready"
        if indicators.ready_nodes == indicators.total_nodes:
            self.line("  Nodes: " + p.green(f"✓ {nodes_text}"))
        else:
            self.line("  Nodes: " + p.yellow(f"⚠ {nodes_text}"))

        self.line(f"  Pods: {indicators.running_pods}/{indicators.total_pods} running")

        system_text = f"{indicators.running_system_pods}/{indicators.total_system_pods} running"
        if indicators.running_system_pods == indicators.total_system_pods:
            self.line("  System Pods: " + p.green(f"✓ {system_text}"))
        else:
            self.line("  System Pods: " + p.yellow(f"⚠ {system_text}"))
        self.line("")
