"""
meritgov/metrics.py

Prometheus metrics collection for a live governance engine.

Usage:
    from meritgov.metrics import MetricsCollector

    metrics = MetricsCollector(governor)
    prometheus_output = metrics.collect()
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .protocol.governance import ProposalState

if TYPE_CHECKING:
    from .protocol.governance import Governor

logger = logging.getLogger("meritgov.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for meritgov.

    Reads the governor, its weight registry and its event log; holds no
    state of its own beyond a counter of rejected operations, which it
    receives through the governor's rejection hook.
    """

    METRICS = {
        "meritgov_proposals_total": {
            "type": "gauge",
            "help": "Number of proposals ever created",
        },
        "meritgov_proposals_by_state": {
            "type": "gauge",
            "help": "Number of proposals per lifecycle state",
        },
        "meritgov_votes_total": {
            "type": "gauge",
            "help": "Number of recorded votes across all proposals",
        },
        "meritgov_tally_weight": {
            "type": "gauge",
            "help": "Effective weight tallied per proposal and choice",
        },
        "meritgov_weight_entries_total": {
            "type": "gauge",
            "help": "Number of (day, topic, account) cap entries held",
        },
        "meritgov_events_total": {
            "type": "counter",
            "help": "Number of events appended to the log",
        },
        "meritgov_rejections_total": {
            "type": "counter",
            "help": "Number of rejected operations, by error type",
        },
    }

    def __init__(self, governor: "Governor"):
        """
        Initialize metrics collector.

        Args:
            governor: Governor instance to collect metrics from
        """
        self.governor = governor
        self._rejections: Dict[str, int] = {}
        governor.on_rejection(self.record_rejection)

    def record_rejection(self, error: Exception) -> None:
        """Count a rejected operation by its error class name."""
        name = type(error).__name__
        self._rejections[name] = self._rejections.get(name, 0) + 1

    def collect(self, now: Optional[int] = None) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []

        def header(name: str) -> None:
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def sample(name: str, value: Any, labels: Optional[Dict[str, str]] = None) -> None:
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        now = self.governor.now() if now is None else now
        proposals = self.governor.get_proposals()

        header("meritgov_proposals_total")
        sample("meritgov_proposals_total", len(proposals))

        counts = {state: 0 for state in ProposalState}
        for proposal in proposals:
            counts[self.governor.state(proposal.proposal_id, now)] += 1
        header("meritgov_proposals_by_state")
        for state, count in counts.items():
            sample("meritgov_proposals_by_state", count, {"state": state.name.lower()})

        header("meritgov_votes_total")
        sample("meritgov_votes_total", sum(len(p.votes) for p in proposals))

        header("meritgov_tally_weight")
        for proposal in proposals:
            tally = proposal.tally
            for choice, value in tally.to_dict().items():
                sample(
                    "meritgov_tally_weight",
                    value,
                    {"proposal": str(proposal.proposal_id), "choice": choice},
                )

        header("meritgov_weight_entries_total")
        sample("meritgov_weight_entries_total", self.governor.registry.get_stats()["entries"])

        header("meritgov_events_total")
        sample("meritgov_events_total", len(self.governor.event_log))

        header("meritgov_rejections_total")
        for name, count in sorted(self._rejections.items()):
            sample("meritgov_rejections_total", count, {"error": name})

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """Get metrics as a dictionary (for JSON output)."""
        stats = self.governor.get_stats()
        stats["weight_entries"] = self.governor.registry.get_stats()["entries"]
        stats["rejections"] = dict(self._rejections)
        return stats
