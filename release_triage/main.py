"""CLI entry point for release-triage."""

import asyncio
import json
import sys
from collections import Counter
from pathlib import Path

import click
import structlog

from release_triage.config.settings import TrackerConfig, TriageSettings
from release_triage.engine.orchestrator import TriageOrchestrator
from release_triage.engine.state_manager import COMMITS_FILE, RunStateManager
from release_triage.exceptions import ConfigurationError, ReleaseTriageError
from release_triage.git.repository import CliGitRepository
from release_triage.issues.jira import JiraIssueTracker
from release_triage.models.domain import Commit, CommitState
from release_triage.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option(
    "--config",
    default="release-triage.yaml",
    help="Path to configuration file",
)
@click.option("--log-level", default="INFO", help="Logging level")
@click.option("--json-logs/--console-logs", default=False, help="Render logs as JSON lines")
@click.pass_context
def cli(ctx: click.Context, config: str, log_level: str, json_logs: bool) -> None:
    """release-triage: triage upstream commits for a downstream release branch."""
    configure_logging(log_level, json_output=json_logs)

    config_path = Path(config)
    if not config_path.exists():
        click.echo(f"Error: Configuration file not found: {config}", err=True)
        sys.exit(1)

    try:
        settings = TriageSettings.from_yaml(str(config_path))
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {"settings": settings}


@cli.command()
@click.option("--release", help="Candidate release, e.g. 7.11.0")
@click.option("--qualifier", help="Candidate qualifier, e.g. CR1")
@click.option("--assignee", help="Default assignee username")
@click.option("--scratch/--no-scratch", default=None, help="Identify tasks without performing them")
@click.option(
    "--check-incomplete-commits/--no-check-incomplete-commits",
    default=None,
    help="Require downstream issues to be consistent with cherry-picks",
)
@click.option("--skip-commit-test/--commit-test", default=None, help="Skip the test gate after cherry-picks")
@click.option("--confirmed-commits", type=click.Path(dir_okay=False), help="commits.json of a prior run")
@click.option("--confirmed-upstream-issues", help="Comma-separated upstream issue keys")
@click.option("--confirmed-downstream-issues", help="Comma-separated downstream issue keys")
@click.option("--customer-priority", help="Minimum customer priority, e.g. HIGH")
@click.option("--security-impact", help="Minimum security impact, e.g. IMPORTANT")
@click.pass_context
def run(
    ctx: click.Context,
    release: str | None,
    qualifier: str | None,
    assignee: str | None,
    scratch: bool | None,
    check_incomplete_commits: bool | None,
    skip_commit_test: bool | None,
    confirmed_commits: str | None,
    confirmed_upstream_issues: str | None,
    confirmed_downstream_issues: str | None,
    customer_priority: str | None,
    security_impact: str | None,
) -> None:
    """Triage the upstream commits missing from the midstream branch."""
    try:
        settings = ctx.obj["settings"].with_run_overrides(
            release=release,
            qualifier=qualifier,
            assignee=assignee,
            scratch=scratch,
            check_incomplete_commits=check_incomplete_commits,
            skip_commit_test=skip_commit_test,
            confirmed_commits_file=confirmed_commits,
            confirmed_upstream_issues=confirmed_upstream_issues,
            confirmed_downstream_issues=confirmed_downstream_issues,
        )
        settings = _with_policy_overrides(settings, customer_priority, security_impact)
        commits = asyncio.run(_run_triage(settings))
    except ReleaseTriageError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("run_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    _echo_summary(commits)


@cli.command()
@click.pass_context
def summary(ctx: click.Context) -> None:
    """Show the commits persisted by the last run."""
    settings = ctx.obj["settings"]
    path = settings.state_dir / COMMITS_FILE
    if not path.exists():
        click.echo("No persisted commits found")
        return

    try:
        commits = list(asyncio.run(RunStateManager(settings.state_dir).load_confirmed_commits(path)).values())
    except ReleaseTriageError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    _echo_summary(commits)
    for commit in commits:
        reason = f" ({commit.reason.value})" if commit.reason else ""
        click.echo(f"{commit.state.name:<10} {commit.upstream_commit[:12]} {commit.summary}{reason}")
        for task in commit.tasks:
            value = f" {task.value}" if task.value else ""
            click.echo(f"    {task.state.value:<11} {task.type.value} {task.key}{value}")


def _with_policy_overrides(
    settings: TriageSettings,
    customer_priority: str | None,
    security_impact: str | None,
) -> TriageSettings:
    overrides = {}
    if customer_priority is not None:
        overrides["customer_priority"] = customer_priority
    if security_impact is not None:
        overrides["security_impact"] = security_impact
    if not overrides:
        return settings

    try:
        policy = settings.policy.model_validate({**settings.policy.model_dump(), **overrides})
    except ValueError as e:
        raise ConfigurationError(f"Invalid policy option: {e}") from e
    return settings.model_copy(update={"policy": policy})


def _create_tracker(config: TrackerConfig, upstream_issue_pattern: str | None = None) -> JiraIssueTracker:
    return JiraIssueTracker(
        base_url=config.base_url,
        project_key=config.project_key,
        auth_string=config.auth_string.get_secret_value() if config.auth_string else None,
        upstream_issue_pattern=upstream_issue_pattern,
        parse_custom_fields=config.parse_custom_fields,
        page_size=config.page_size,
        max_workers=config.max_workers,
        timeout=config.timeout,
    )


async def _run_triage(settings: TriageSettings) -> list[Commit]:
    upstream_tracker = _create_tracker(settings.upstream_tracker)
    downstream_tracker = _create_tracker(settings.downstream_tracker, settings.policy.upstream_issue_pattern)

    try:
        orchestrator = TriageOrchestrator(
            settings=settings,
            repository=CliGitRepository(settings.repository.directory),
            upstream_tracker=upstream_tracker,
            downstream_tracker=downstream_tracker,
            state=RunStateManager(settings.state_dir),
        )
        return await orchestrator.run()
    finally:
        await upstream_tracker.close()
        await downstream_tracker.close()


def _echo_summary(commits: list[Commit]) -> None:
    counts = Counter(commit.state for commit in commits)
    click.echo(
        json.dumps(
            {state.value: counts[state] for state in CommitState if counts[state]},
            sort_keys=True,
        )
    )


if __name__ == "__main__":
    cli()
