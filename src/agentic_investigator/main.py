"""CLI entrypoint for agentic-investigator."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from agentic_investigator import __version__
from agentic_investigator.config import Settings
from agentic_investigator.leads.controllers import (
    LeadAddChildCommand,
    LeadCaseCommand,
    LeadClaimCommand,
    LeadReleaseCommand,
    LeadsCliController,
    LeadSelectCommand,
    LeadUpdateCommand,
)
from agentic_investigator.orchestrator.controllers import (
    CheckContinueCommand,
    CheckContinueController,
)
from agentic_investigator.verification.controllers import (
    GapsCommand,
    GatesCommand,
    VerificationCliController,
    VerifyCommand,
)

click.rich_click.USE_MARKDOWN = True

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

CASE_ARGUMENT = click.argument("case_dir", type=click.Path(path_type=Path, file_okay=False))
OPTIONAL_CASE_ARGUMENT = click.argument(
    "case_dir",
    required=False,
    type=click.Path(path_type=Path, file_okay=False),
)
EXPECTED_VERSION_OPTION = click.option(
    "--expected-version",
    type=click.IntRange(min=0),
    default=None,
    help="Fail with VERSION_CONFLICT unless the ledger is at this version.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agentic-investigator")
@click.pass_context
def agentic_investigator(ctx: click.Context) -> None:
    """Coordination CLI for agent-driven investigations.

    Lead ledger operations, termination gates, gap digests and the
    orchestrator signal.
    """

    with _cli_errors():
        settings = Settings.from_env()
        settings.validate()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    ctx.obj = settings


@agentic_investigator.group()
def leads() -> None:
    """Lead ledger commands (JSON output)."""


@leads.command("claim")
@CASE_ARGUMENT
@click.argument("lead_id")
@EXPECTED_VERSION_OPTION
@click.pass_obj
def leads_claim(
    settings: Settings,
    case_dir: Path,
    lead_id: str,
    expected_version: int | None,
) -> None:
    """Claim one pending lead."""

    with _cli_errors():
        result = LeadsCliController(settings).claim(
            LeadClaimCommand(
                case_dir=case_dir,
                lead_ids=(lead_id,),
                expected_version=expected_version,
            ),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("batch-claim")
@CASE_ARGUMENT
@click.argument("lead_ids", nargs=-1)
@EXPECTED_VERSION_OPTION
@click.pass_obj
def leads_batch_claim(
    settings: Settings,
    case_dir: Path,
    lead_ids: tuple[str, ...],
    expected_version: int | None,
) -> None:
    """Claim several leads atomically: all or none."""

    with _cli_errors():
        result = LeadsCliController(settings).batch_claim(
            LeadClaimCommand(
                case_dir=case_dir,
                lead_ids=lead_ids,
                expected_version=expected_version,
            ),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("release")
@CASE_ARGUMENT
@click.argument("lead_id")
@EXPECTED_VERSION_OPTION
@click.pass_obj
def leads_release(
    settings: Settings,
    case_dir: Path,
    lead_id: str,
    expected_version: int | None,
) -> None:
    """Drop the claim on a lead without changing its status."""

    with _cli_errors():
        result = LeadsCliController(settings).release(
            LeadReleaseCommand(
                case_dir=case_dir,
                lead_id=lead_id,
                expected_version=expected_version,
            ),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("update")
@CASE_ARGUMENT
@click.argument("lead_id")
@click.argument("status")
@click.argument("result_text", metavar="RESULT")
@click.option(
    "--sources",
    "sources_json",
    default=None,
    help='JSON array of source ids, for example `["S001", "S002"]`.',
)
@EXPECTED_VERSION_OPTION
@click.pass_obj
def leads_update(  # noqa: PLR0913
    settings: Settings,
    case_dir: Path,
    lead_id: str,
    status: str,
    result_text: str,
    sources_json: str | None,
    expected_version: int | None,
) -> None:
    """Resolve a lead as `investigated` or `dead_end`."""

    with _cli_errors():
        result = LeadsCliController(settings).update(
            LeadUpdateCommand(
                case_dir=case_dir,
                lead_id=lead_id,
                status=status,
                result=result_text,
                sources_json=sources_json,
                expected_version=expected_version,
            ),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("add-child")
@CASE_ARGUMENT
@click.argument("parent_id")
@click.argument("child_json")
@EXPECTED_VERSION_OPTION
@click.pass_obj
def leads_add_child(
    settings: Settings,
    case_dir: Path,
    parent_id: str,
    child_json: str,
    expected_version: int | None,
) -> None:
    """Append a follow-up lead one level below PARENT_ID.

    CHILD_JSON is an object such as `{"lead": "...", "priority": "HIGH"}`.
    """

    with _cli_errors():
        result = LeadsCliController(settings).add_child(
            LeadAddChildCommand(
                case_dir=case_dir,
                parent_id=parent_id,
                child_json=child_json,
                expected_version=expected_version,
            ),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("batch-select")
@CASE_ARGUMENT
@click.argument("count", type=click.IntRange(min=1), default=4)
@click.pass_obj
def leads_batch_select(settings: Settings, case_dir: Path, count: int) -> None:
    """List the next COUNT claimable leads without claiming them."""

    with _cli_errors():
        result = LeadsCliController(settings).batch_select(
            LeadSelectCommand(case_dir=case_dir, count=count),
        )
    _emit_result(result.lines, success=result.success)


@leads.command("cleanup-stale")
@CASE_ARGUMENT
@click.pass_obj
def leads_cleanup_stale(settings: Settings, case_dir: Path) -> None:
    """Release every claim older than the stale threshold."""

    with _cli_errors():
        result = LeadsCliController(settings).cleanup_stale(LeadCaseCommand(case_dir=case_dir))
    _emit_result(result.lines, success=result.success)


@leads.command("stats")
@CASE_ARGUMENT
@click.pass_obj
def leads_stats(settings: Settings, case_dir: Path) -> None:
    """Show lead counts by status, priority and depth."""

    with _cli_errors():
        result = LeadsCliController(settings).stats(LeadCaseCommand(case_dir=case_dir))
    _emit_result(result.lines, success=result.success)


@agentic_investigator.command("check-continue")
@OPTIONAL_CASE_ARGUMENT
@click.option(
    "--batch",
    is_flag=True,
    default=False,
    help="Recommend leads for parallel follow-up.",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Leads per batch (default from AGENTIC_INVESTIGATOR_BATCH_SIZE).",
)
@click.option(
    "--refresh-gates/--no-refresh-gates",
    default=None,
    help="Recompute gates into state.json before deciding.",
)
@click.pass_obj
def check_continue(
    settings: Settings,
    case_dir: Path | None,
    batch: bool,
    batch_size: int | None,
    refresh_gates: bool | None,
) -> None:
    """Print the next orchestrator action.

    Exit codes: `0` complete, `1` error, `2` continue.
    """

    with _cli_errors():
        result = CheckContinueController(settings).check_continue(
            CheckContinueCommand(
                case_dir=case_dir,
                batch=batch,
                batch_size=batch_size,
                refresh_gates=refresh_gates,
            ),
        )
    _emit_lines(result.lines)
    click.get_current_context().exit(result.exit_code)


@agentic_investigator.command("gates")
@OPTIONAL_CASE_ARGUMENT
@click.option(
    "--write-state",
    is_flag=True,
    default=False,
    help="Store the gate map in state.json.",
)
@click.option(
    "--fix",
    is_flag=True,
    default=False,
    help="Create remediation tasks for failed gates.",
)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full JSON report.")
@click.pass_obj
def gates(
    settings: Settings,
    case_dir: Path | None,
    write_state: bool,
    fix: bool,
    as_json: bool,
) -> None:
    """Evaluate all termination gates; exit `1` unless every gate passes."""

    with _cli_errors():
        result = VerificationCliController(settings).gates(
            GatesCommand(case_dir=case_dir, write_state=write_state, fix=fix, as_json=as_json),
        )
    _emit_result(result.lines, success=result.success)


@agentic_investigator.command("gaps")
@OPTIONAL_CASE_ARGUMENT
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full gap report.")
@click.pass_obj
def gaps(settings: Settings, case_dir: Path | None, as_json: bool) -> None:
    """Run every verifier and write `control/gaps.json`; exit `1` on blocking gaps."""

    with _cli_errors():
        result = VerificationCliController(settings).gaps(
            GapsCommand(case_dir=case_dir, as_json=as_json),
        )
    _emit_result(result.lines, success=result.success)


@agentic_investigator.command("verify")
@OPTIONAL_CASE_ARGUMENT
@click.option("--json", "as_json", is_flag=True, default=False, help="Print a JSON summary.")
@click.pass_obj
def verify(settings: Settings, case_dir: Path | None, as_json: bool) -> None:
    """Generate gaps, then run gates; exit `0` only when both are clean."""

    with _cli_errors():
        result = VerificationCliController(settings).verify(
            VerifyCommand(case_dir=case_dir, as_json=as_json),
        )
    _emit_result(result.lines, success=result.success)


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_result(lines: list[str], *, success: bool) -> None:
    _emit_lines(lines)
    if not success:
        click.get_current_context().exit(1)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agentic_investigator()
