"""Weekly bookkeeping: who ended the cycle without a room."""

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Union

from loguru import logger

from .data_models import ParticipantStatus
from .errors import StoreError
from .matching_models import AssignmentUnit
from .store import MatchStore


def iso_week_start(when: Optional[Union[datetime, date]] = None) -> str:
    """Monday of the ISO week containing `when` (UTC), as YYYY-MM-DD."""
    if when is None:
        when = datetime.now(timezone.utc)
    if isinstance(when, datetime):
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        when = when.date()
    return (when - timedelta(days=when.weekday())).isoformat()


def compute_unmatched(participant_ids: Iterable[str], units: Iterable[AssignmentUnit]) -> List[str]:
    """Participants (in input order, deduplicated) that appear in none of the units."""
    matched = {m for unit in units for m in unit.members}
    return [pid for pid in dict.fromkeys(participant_ids) if pid not in matched]


def record_cycle(
    store: MatchStore,
    week_bucket: str,
    unmatched: List[str],
    matched: Iterable[str] = (),
) -> None:
    """Persist the unmatched list and participant statuses.

    Write failures are logged and swallowed; provisioned rooms are real and stay.
    """
    if unmatched:
        try:
            added = store.add_unmatched_for_week(week_bucket, unmatched)
            logger.info(f"Recorded {added} new unmatched participant(s) for week {week_bucket}")
        except StoreError as e:
            logger.warning(f"add_unmatched_for_week failed for {week_bucket}: {e}")

    matched = list(matched)
    for ids, status in ((matched, ParticipantStatus.MATCHED), (unmatched, ParticipantStatus.UNMATCHED)):
        if not ids:
            continue
        try:
            store.set_status(ids, status)
        except StoreError as e:
            logger.warning(f"Could not mark {len(ids)} participant(s) {status.value}: {e}")
