"""
meritgov/examples/check_votes.py

Audits a governance event log without touching live state.

Reads a JSON-lines log, which may come from this engine or from another
producer version (different field names, positional args), replays it
and prints every proposal with its votes and recomputed tally.

Usage:
    MERITGOV_EXPLORER_BASE=http://127.0.0.1:8080 \
        python examples/check_votes.py governance.jsonl
"""

import logging
import sys

from meritgov import GovernanceConfig, Reconciler
from meritgov.events import read_records

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s [AUDIT] %(levelname)s: %(message)s'
)


def main(path: str) -> int:
    config = GovernanceConfig.from_env()

    records = read_records(path)
    report = Reconciler(config).replay(records)
    print(report.format_report(config.explorer_base))

    if not report.proposals:
        print("No proposals - run examples/demo_vote.py first")
    return 0 if report.is_clean else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else "governance.jsonl"))
