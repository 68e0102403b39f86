"""Run one matching cycle from the environment, e.g. from a weekly cron job.

Pseudocode:
1) Load `.env` and build the config
2) Open the store and the Slack transport (or the in-memory one with --dry-run)
3) Run the matching cycle
4) Offer the week's group rooms to the unmatched participants
5) Print a brief summary; exit non-zero if the cycle could not run

Notes:
- Set SLACK_BOT_TOKEN for live runs and OPENAI_API_KEY for topic merging and
  icebreakers. Without OpenAI the cycle still runs with exact topics.
"""

from __future__ import annotations

from pathlib import Path
import sys

# Ensure project root (parent of scripts/) is on sys.path for package imports
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from micromatch.ai import (
    IdentityCanonicalizer,
    NoStarterGenerator,
    OpenAIStarterGenerator,
    OpenAITopicCanonicalizer,
)
from micromatch.config import MatchingConfig
from micromatch.cycle import run_matching_cycle
from micromatch.notifier import notify_unmatched
from micromatch.store import SqlStore
from micromatch.transport import RecordingTransport, SlackTransport


def main() -> None:
    """Entry point for a scheduled weekly run.

    Raises:
        RuntimeError: If SLACK_BOT_TOKEN is missing for a live run.
    """
    dry_run = "--dry-run" in sys.argv[1:]
    config = MatchingConfig.from_env()

    print(f"[1/4] Opening store {config.database_url}...")
    store = SqlStore(config.database_url)

    if dry_run:
        transport = RecordingTransport()
    else:
        if not config.slack_bot_token:
            raise RuntimeError("SLACK_BOT_TOKEN not set. Add it to your environment or a .env file.")
        transport = SlackTransport(
            config.slack_bot_token,
            api_url=config.slack_api_url,
            timeout=config.transport_timeout_seconds,
        )

    if config.use_ai:
        canonicalizer = OpenAITopicCanonicalizer(model=config.openai_model, timeout=config.oracle_timeout_seconds)
        starters = OpenAIStarterGenerator(model=config.openai_model, timeout=config.oracle_timeout_seconds)
    else:
        canonicalizer, starters = IdentityCanonicalizer(), NoStarterGenerator()

    print("[2/4] Running matching cycle...")

    def progress(done: int, total: int, outcome) -> None:
        # Print every 5 rooms and on the final one
        if (done % 5 == 0) or (done == total):
            pct = int(100 * done / total)
            state = "ok" if outcome.ok else f"failed: {outcome.error}"
            print(f"   - [{done}/{total} | {pct}%] last: {outcome.unit.topic} ({outcome.unit.kind.value}, {state})")

    result = run_matching_cycle(
        store,
        transport,
        canonicalizer=canonicalizer,
        starters=starters,
        config=config,
        progress_fn=progress,
    )

    if config.notify_unmatched and result.unmatched:
        print(f"[3/4] Notifying {len(result.unmatched)} unmatched participant(s)...")
        notify_unmatched(transport, result.unmatched, result.created_units)
    else:
        print("[3/4] No unmatched participants to notify.")

    print(f"[4/4] Done. Week {result.week_bucket}: {len(result.created_units)} room(s), "
          f"{len(result.unmatched)} unmatched, not_enough={result.not_enough}")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)
