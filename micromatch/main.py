from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
from loguru import logger
from rich import print
from rich.table import Table

from .ai import (
	IdentityCanonicalizer,
	NoStarterGenerator,
	OpenAIStarterGenerator,
	OpenAITopicCanonicalizer,
	StarterGenerator,
	TopicCanonicalizer,
)
from .config import MatchingConfig
from .cycle import run_matching_cycle
from .data_models import Preference
from .errors import CycleInProgressError
from .ingest import ingest_csv, record_response
from .ledger import iso_week_start
from .notifier import broadcast_interest_prompt, notify_unmatched
from .store import SqlStore
from .transport import MessagingTransport, RecordingTransport, SlackTransport


app = typer.Typer(help="Micro-Match weekly interest matching")


def _configure_logging(verbose: bool) -> None:
	logger.remove()
	logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _store(config: MatchingConfig) -> SqlStore:
	return SqlStore(config.database_url)


def _transport(config: MatchingConfig, dry_run: bool) -> MessagingTransport:
	if dry_run:
		return RecordingTransport()
	if not config.slack_bot_token:
		print("[red]SLACK_BOT_TOKEN is not set.[/red] Use --dry-run to run without Slack.")
		raise typer.Exit(code=2)
	return SlackTransport(
		config.slack_bot_token,
		api_url=config.slack_api_url,
		timeout=config.transport_timeout_seconds,
	)


def _ai(config: MatchingConfig) -> Tuple[TopicCanonicalizer, StarterGenerator]:
	if not config.use_ai:
		return IdentityCanonicalizer(), NoStarterGenerator()
	return (
		OpenAITopicCanonicalizer(model=config.openai_model, timeout=config.oracle_timeout_seconds),
		OpenAIStarterGenerator(model=config.openai_model, timeout=config.oracle_timeout_seconds),
	)


@app.command()
def run(
	dry_run: bool = typer.Option(False, "--dry-run/--live", help="Record transport calls in memory instead of calling Slack"),
	use_ai: Optional[bool] = typer.Option(None, "--ai/--no-ai", help="Override MICROMATCH_USE_AI"),
	notify: Optional[bool] = typer.Option(None, "--notify/--no-notify", help="Override MICROMATCH_NOTIFY_UNMATCHED"),
	verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
	"""Run one matching cycle: bucket, pair, group, create rooms, record the unmatched."""
	_configure_logging(verbose)
	config = MatchingConfig.from_env()
	if use_ai is not None:
		config = config.model_copy(update={"use_ai": use_ai})
	store = _store(config)
	transport = _transport(config, dry_run)
	canonicalizer, starters = _ai(config)

	try:
		result = run_matching_cycle(store, transport, canonicalizer=canonicalizer, starters=starters, config=config)
	except CycleInProgressError as e:
		print(f"[red]{e}[/red]")
		raise typer.Exit(code=1)

	if result.not_enough:
		print(f"[yellow]Not enough participants to match[/yellow] (week {result.week_bucket})")
	table = Table("topic", "kind", "room", "members")
	for unit in result.created_units:
		table.add_row(unit.topic, unit.kind.value, unit.room_id or "", ", ".join(unit.members))
	print(table)
	print(f"[bold]{len(result.created_units)} room(s) created[/bold], {len(result.failed_units)} failed, {len(result.abandoned_units)} abandoned")
	if result.unmatched:
		print(f"[yellow]Unmatched ({result.week_bucket}):[/yellow] {', '.join(result.unmatched)}")

	should_notify = config.notify_unmatched if notify is None else notify
	if should_notify:
		sent = notify_unmatched(transport, result.unmatched, result.created_units)
		print(f"[green]Sent no-match options to[/green] {sent} participant(s)")


@app.command()
def ingest(
	csv_path: Path = typer.Argument(..., help="Survey export with participant id, topics and preference columns"),
):
	"""Load a survey CSV export into the response store."""
	config = MatchingConfig.from_env()
	count = ingest_csv(_store(config), csv_path)
	print(f"[green]Stored[/green] {count} response(s) from {csv_path}")


@app.command()
def respond(
	participant_id: str = typer.Argument(..., help="Participant id"),
	text: str = typer.Argument(..., help="Comma-separated topics, e.g. 'fitness, cinema'"),
	pairwise: bool = typer.Option(False, "--pairwise/--group", help="Ask for a 1:1 instead of a group"),
):
	"""Record one participant's reply for this week."""
	config = MatchingConfig.from_env()
	preference = Preference.PAIRWISE if pairwise else Preference.GROUP
	topics = record_response(_store(config), participant_id, text, preference)
	print(f"Saved {len(topics)} topic(s) for {participant_id}: {', '.join(topics) or '-'}")


@app.command()
def broadcast(
	dry_run: bool = typer.Option(False, "--dry-run/--live", help="Do not call Slack"),
):
	"""Ask every active participant for this week's interests."""
	config = MatchingConfig.from_env()
	sent = broadcast_interest_prompt(_store(config), _transport(config, dry_run))
	print(f"[green]Interest prompt sent to[/green] {sent} participant(s)")


@app.command()
def unmatched(
	week: Optional[str] = typer.Option(None, help="Week bucket (Monday, YYYY-MM-DD); defaults to the current week"),
):
	"""Show who was left unmatched in a given week."""
	config = MatchingConfig.from_env()
	bucket = week or iso_week_start()
	ids = _store(config).get_unmatched_for_week(bucket)
	table = Table("participant_id")
	for pid in ids:
		table.add_row(pid)
	print(f"[bold]{len(ids)} unmatched[/bold] in week {bucket}")
	print(table)


@app.command()
def rooms(
	archived: Optional[bool] = typer.Option(None, "--archived/--active", help="Filter by archive state"),
):
	"""List recorded rooms and their members."""
	config = MatchingConfig.from_env()
	store = _store(config)
	table = Table("room", "topic", "kind", "created_at", "archived", "members")
	for room in store.list_rooms(archived=archived):
		members = store.get_room_participants(room.room_id)
		table.add_row(
			room.room_id,
			room.topic or "",
			room.kind or "",
			room.created_at.strftime("%Y-%m-%d %H:%M") if room.created_at else "",
			"yes" if room.archived else "no",
			", ".join(members),
		)
	print(table)


if __name__ == "__main__":
	app()
