"""
meritgov/cli.py

Command-line driver for the governance engine.

Every command rebuilds the live engine from the event log file, runs one
operation, and appends the resulting events to the same file. Argument
validation (arity, roles, state) is left to the engine.

Usage:
    meritgov --log gov.jsonl grant-publisher EOracle --caller EAdmin
    meritgov --log gov.jsonl publish-weights --caller EOracle --day 5 --topic 1 \\
        --accounts EVoter --caps 100000
    meritgov --log gov.jsonl --power power.json propose --proposer EVoter --topic 1 \\
        --target EToken --value 0 --calldata 0x --description "Demo proposal"
    meritgov --log gov.jsonl --power power.json cast-vote <id> --voter EVoter --choice for
    meritgov --log gov.jsonl replay
"""

import json
import logging
import sys
from typing import List, Optional
from dataclasses import dataclass

import click
import trio

from .clock import ManualClock, SystemClock
from .config import GovernanceConfig
from .errors import GovernanceError, UnknownProposal
from .events import EventLog, read_records
from .metrics import MetricsCollector
from .protocol.governance import Governor, restore
from .protocol.reconciler import Reconciler, ReconciliationReport
from .protocol.tally import VoteChoice
from .protocol.voting_power import CheckpointedVotingPower
from .protocol.weights import WeightRegistry

logger = logging.getLogger("meritgov.cli")

DEFAULT_LOG_PATH = "governance.jsonl"


@dataclass
class CliContext:
    """Options shared by all commands."""
    config: GovernanceConfig
    log_path: str
    power_path: Optional[str]
    now: Optional[int]

    def clock(self):
        if self.now is not None:
            return lambda: self.now
        return SystemClock()

    def load(self) -> Governor:
        power = CheckpointedVotingPower.load(self.power_path) if self.power_path else CheckpointedVotingPower()
        return restore(EventLog.load(self.log_path), self.config, power, clock=self.clock())


def parse_proposal_id(value: str) -> int:
    text = value.strip()
    try:
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        raise click.BadParameter(f"not a proposal id: {value!r}") from None


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _fail(error: GovernanceError) -> None:
    raise click.ClickException(str(error))


@click.group()
@click.option("--log", "log_path", envvar="MERITGOV_LOG", default=DEFAULT_LOG_PATH,
              show_default=True, help="Event log file (JSON lines).")
@click.option("--power", "power_path", envvar="MERITGOV_POWER", default=None,
              help="Voting power JSON file: {account: balance | [[point, balance], ...]}.")
@click.option("--now", type=int, default=None, help="Override the current time (unix seconds).")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, log_path, power_path, now, verbose):
    """Topic-capped governance voting engine."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [MERITGOV] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        config = GovernanceConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e))
    ctx.obj = CliContext(config=config, log_path=log_path, power_path=power_path, now=now)


# ============================================================================
# WEIGHT REGISTRY
# ============================================================================

@main.command("grant-publisher")
@click.argument("account")
@click.option("--caller", required=True, help="Admin account.")
@click.pass_obj
def grant_publisher(obj: CliContext, account, caller):
    """Authorize ACCOUNT to publish weight caps."""
    governor = obj.load()
    try:
        governor.registry.grant_publisher(caller, account)
    except GovernanceError as e:
        _fail(e)
    click.echo(f"publisher granted: {account}")


@main.command("publish-weights")
@click.option("--caller", required=True, help="Publisher account.")
@click.option("--day", type=int, required=True, help="Day index.")
@click.option("--topic", "topic_id", type=int, required=True, help="Topic id.")
@click.option("--accounts", required=True, help="Comma separated accounts.")
@click.option("--caps", required=True, help="Comma separated caps, parallel to --accounts.")
@click.option("--context-hash", default="", help="Opaque audit tag (hex).")
@click.pass_obj
def publish_weights(obj: CliContext, caller, day, topic_id, accounts, caps, context_hash):
    """Publish a batch of caps for one (day, topic)."""
    governor = obj.load()
    try:
        cap_values = [int(c) for c in split_csv(caps)]
    except ValueError:
        raise click.BadParameter(f"caps must be integers: {caps!r}")
    try:
        entries = governor.registry.publish(
            caller, day, topic_id, split_csv(accounts), cap_values, context_hash
        )
    except GovernanceError as e:
        _fail(e)
    click.echo(f"published {len(entries)} caps for day={day} topic={topic_id}")


@main.command("weight")
@click.argument("account")
@click.option("--topic", "topic_id", type=int, required=True, help="Topic id.")
@click.option("--at", "timestamp", type=int, default=None, help="Timestamp (defaults to now).")
@click.pass_obj
def weight(obj: CliContext, account, topic_id, timestamp):
    """Show the cap for ACCOUNT on a topic at a time."""
    governor = obj.load()
    timestamp = governor.now() if timestamp is None else timestamp
    cap = governor.registry.weight_at(account, timestamp, topic_id)
    click.echo(f"{account} topic={topic_id} day={governor.registry.day_of(timestamp)} cap={cap}")


# ============================================================================
# PROPOSALS
# ============================================================================

@main.command()
@click.option("--proposer", required=True, help="Proposing account.")
@click.option("--topic", "topic_id", type=int, required=True, help="Topic id.")
@click.option("--target", "targets", multiple=True, help="Action target (repeatable).")
@click.option("--value", "values", type=int, multiple=True, help="Action value (repeatable).")
@click.option("--calldata", "calldatas", multiple=True, help="Action calldata hex (repeatable).")
@click.option("--description", required=True, help="Proposal description.")
@click.pass_obj
def propose(obj: CliContext, proposer, topic_id, targets, values, calldatas, description):
    """Create a proposal (idempotent for identical content)."""
    governor = obj.load()
    try:
        proposal_id = governor.propose(
            proposer, topic_id, list(targets), list(values), list(calldatas), description
        )
    except GovernanceError as e:
        _fail(e)
    proposal = governor.get_proposal(proposal_id)
    click.echo(f"proposalId: {proposal_id}")
    click.echo(f"window: {proposal.window_start} - {proposal.window_end}")


@main.command("cast-vote")
@click.argument("proposal_id")
@click.option("--voter", required=True, help="Voting account.")
@click.option("--choice", required=True, help="against | for | abstain (or 0 | 1 | 2).")
@click.option("--reason", default=None, help="Optional reason.")
@click.pass_obj
def cast_vote(obj: CliContext, proposal_id, voter, choice, reason):
    """Cast a vote on an active proposal."""
    governor = obj.load()
    try:
        weight = governor.cast_vote(parse_proposal_id(proposal_id), voter, choice, reason)
    except GovernanceError as e:
        _fail(e)
    click.echo(f"vote recorded: {voter} {VoteChoice.parse(choice).name} weight={weight}")


@main.command()
@click.argument("proposal_id")
@click.option("--caller", required=True, help="Proposer or admin account.")
@click.pass_obj
def cancel(obj: CliContext, proposal_id, caller):
    """Cancel a pending proposal."""
    governor = obj.load()
    try:
        governor.cancel(parse_proposal_id(proposal_id), caller)
    except GovernanceError as e:
        _fail(e)
    click.echo("canceled")


@main.command()
@click.argument("proposal_id")
@click.pass_obj
def queue(obj: CliContext, proposal_id):
    """Queue a succeeded proposal."""
    governor = obj.load()
    try:
        eta = governor.queue(parse_proposal_id(proposal_id))
    except GovernanceError as e:
        _fail(e)
    click.echo(f"queued, eta={eta}")


@main.command()
@click.argument("proposal_id")
@click.pass_obj
def execute(obj: CliContext, proposal_id):
    """Mark a queued proposal executed."""
    governor = obj.load()
    try:
        governor.execute(parse_proposal_id(proposal_id))
    except GovernanceError as e:
        _fail(e)
    click.echo("executed")


@main.command()
@click.argument("proposal_id", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.pass_obj
def state(obj: CliContext, proposal_id, as_json):
    """Show state and tally of one proposal, or of all proposals."""
    governor = obj.load()
    if proposal_id:
        proposal = governor.get_proposal(parse_proposal_id(proposal_id))
        if proposal is None:
            _fail(UnknownProposal(parse_proposal_id(proposal_id)))
        proposals = [proposal]
    else:
        proposals = governor.get_proposals()

    rows = []
    for proposal in proposals:
        rows.append({
            "proposal_id": str(proposal.proposal_id),
            "state": governor.state(proposal.proposal_id).name,
            "topic_id": proposal.topic_id,
            "window_start": proposal.window_start,
            "window_end": proposal.window_end,
            "tally": proposal.tally.to_dict(),
            "votes": len(proposal.votes),
        })

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("no proposals")
    for row in rows:
        tally = row["tally"]
        click.echo(
            f"{row['proposal_id']}  {row['state']}  topic={row['topic_id']}  "
            f"against={tally['against']} for={tally['for']} abstain={tally['abstain']}  "
            f"votes={row['votes']}"
        )


@main.command()
@click.pass_obj
def metrics(obj: CliContext):
    """Print Prometheus metrics for the current log."""
    click.echo(MetricsCollector(obj.load()).collect(), nl=False)


# ============================================================================
# RECONCILIATION
# ============================================================================

def _print_report(obj: CliContext, report: ReconciliationReport, as_json: bool) -> int:
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        click.echo(report.format_report(obj.config.explorer_base))

    # Live state can only be restored from a log the engine itself wrote
    try:
        governor = obj.load()
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Cannot restore live state from {obj.log_path}: {e!r}")
        click.echo(f"live comparison skipped: log holds foreign records ({e!r})", err=True)
        return 0
    mismatches = report.compare(governor)
    for mismatch in mismatches:
        click.echo(f"MISMATCH {mismatch}", err=True)
    return len(mismatches)


@main.command()
@click.option("--lookback", type=int, default=None, help="Trailing events to replay (0 = all).")
@click.option("--json", "as_json", is_flag=True, help="Print JSON.")
@click.option("--csv", "csv_path", default=None, help="Write one row per vote to a CSV file.")
@click.pass_obj
def replay(obj: CliContext, lookback, as_json, csv_path):
    """Rebuild proposals and votes from the log and compare with live state."""
    report = Reconciler(obj.config, lookback=lookback).replay(read_records(obj.log_path))
    if csv_path:
        report.to_dataframe().to_csv(csv_path, index=False)
        click.echo(f"wrote {len(report.votes())} votes to {csv_path}", err=True)
    mismatches = _print_report(obj, report, as_json)
    if mismatches:
        sys.exit(2)


async def _watch_loop(obj: CliContext, interval: float, iterations: int) -> None:
    seen = -1
    count = 0
    while True:
        records = read_records(obj.log_path)
        if len(records) != seen:
            seen = len(records)
            click.echo(f"--- {seen} events")
            _print_report(obj, Reconciler(obj.config).replay(records), False)
        count += 1
        if iterations and count >= iterations:
            break
        await trio.sleep(interval)


@main.command()
@click.option("--interval", type=float, default=5.0, show_default=True, help="Seconds between scans.")
@click.option("--iterations", type=int, default=0, help="Stop after N scans (0 = run until interrupted).")
@click.pass_obj
def watch(obj: CliContext, interval, iterations):
    """Re-run reconciliation whenever the log grows."""
    try:
        trio.run(_watch_loop, obj, interval, iterations)
    except KeyboardInterrupt:
        logger.info("Watch stopped")


# ============================================================================
# DEMO
# ============================================================================

def run_demo(config: Optional[GovernanceConfig] = None, log: Optional[EventLog] = None) -> Governor:
    """
    Drive a full scenario on a scripted clock.

    Publishes caps, creates a proposal, advances past the voting delay,
    casts three votes and closes the window.
    """
    admin, oracle = "EDeployer", "EOracle"
    voters = ["EDeployer", "EVoter1", "EVoter2"]
    config = config or GovernanceConfig(
        admin=admin, publishers=(oracle,), voting_delay=60, voting_period=1200
    )
    log = log if log is not None else EventLog()
    clock = ManualClock(start=5 * config.seconds_per_day)

    power = CheckpointedVotingPower()
    power.checkpoint(voters[0], 0, 1_000_000)
    power.checkpoint(voters[1], 0, 10)
    power.checkpoint(voters[2], 0, 10)

    registry = WeightRegistry(config, log, clock=clock)
    governor = Governor(config, registry, power, log, clock=clock)

    day = registry.day_of(clock())
    registry.publish(oracle, day, 1, voters, [100_000, 10, 5], b"demo-merit-batch")

    proposal_id = governor.propose(
        admin, 1, ["EGovToken"], [0], [b""], f"Demo proposal: GovToken.transfer({admin}, 0)"
    )
    clock.advance(config.voting_delay)

    governor.cast_vote(proposal_id, voters[0], VoteChoice.FOR, "deployer says FOR")
    governor.cast_vote(proposal_id, voters[1], VoteChoice.AGAINST, "voter1 says AGAINST")
    governor.cast_vote(proposal_id, voters[2], VoteChoice.ABSTAIN, "voter2 says ABSTAIN")

    clock.advance(config.voting_period)
    return governor


@main.command()
@click.pass_obj
def demo(obj: CliContext):
    """Run a scripted scenario in memory and print the replay report."""
    governor = run_demo()
    for proposal in governor.get_proposals():
        click.echo(f"proposalId: {proposal.proposal_id}")
        click.echo(f"state: {governor.state(proposal.proposal_id).name}")
        click.echo(f"tally: {proposal.tally.to_dict()}")

    report = Reconciler(governor.config).replay(governor.event_log)
    click.echo(report.format_report(obj.config.explorer_base))
    mismatches = report.compare(governor)
    click.echo(f"reconciliation: {'OK' if not mismatches else f'{len(mismatches)} mismatches'}")


if __name__ == "__main__":
    main()
