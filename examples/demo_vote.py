"""
meritgov/examples/demo_vote.py

Drives a full voting round and writes its event log to disk.

This shows how the engine is used end to end:
1. Publish daily caps from the configured oracle
2. Create a proposal on a topic
3. Advance past the voting delay and cast three votes
4. Close the window and report the resolved state

Usage:
    python examples/demo_vote.py [governance.jsonl]

Then audit the log independently with examples/check_votes.py.
"""

import logging
import sys

from meritgov import EventLog, GovernanceConfig
from meritgov.cli import run_demo

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [DEMO] %(levelname)s: %(message)s'
)
logger = logging.getLogger(__name__)


def main(path: str) -> None:
    config = GovernanceConfig(
        admin="EDeployer",
        publishers=("EOracle",),
        voting_delay=60,
        voting_period=1200,
    )
    log = EventLog(path)
    if len(EventLog.load(path)):
        logger.error(f"{path} already holds events; pick a fresh file")
        sys.exit(1)

    governor = run_demo(config, log)

    for proposal in governor.get_proposals():
        logger.info(f"proposalId: {proposal.proposal_id}")
        logger.info(f"state: {governor.state(proposal.proposal_id).name}")
        logger.info(f"votes: {proposal.tally.to_dict()}")
    logger.info(f"Wrote {len(log)} events to {path}")


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "governance.jsonl")
