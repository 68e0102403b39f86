from datetime import date, datetime, timedelta, timezone

from micromatch.data_models import ParticipantStatus
from micromatch.errors import StoreError
from micromatch.ledger import compute_unmatched, iso_week_start, record_cycle
from micromatch.matching_models import AssignmentUnit, UnitKind


def test_iso_week_start():
    assert iso_week_start(datetime(2026, 10, 16, 9, tzinfo=timezone.utc)) == "2026-10-12"
    assert iso_week_start(date(2026, 10, 12)) == "2026-10-12"
    assert iso_week_start(date(2026, 10, 18)) == "2026-10-12"
    # Friday Jan 1st belongs to the week starting in December
    assert iso_week_start(date(2027, 1, 1)) == "2026-12-28"


def test_iso_week_start_uses_utc():
    plus_five = timezone(timedelta(hours=5))
    # Monday 01:00 at +05:00 is still Sunday in UTC
    assert iso_week_start(datetime(2026, 10, 19, 1, 0, tzinfo=plus_five)) == "2026-10-12"


def test_compute_unmatched_is_the_complement():
    units = [
        AssignmentUnit(topic="a", kind=UnitKind.PAIR, members=["A", "B"]),
        AssignmentUnit(topic="b", kind=UnitKind.GROUP, members=["B", "C", "D"]),
    ]
    everyone = ["A", "B", "C", "D", "E", "F", "E"]
    unmatched = compute_unmatched(everyone, units)
    assert unmatched == ["E", "F"]
    matched = {m for u in units for m in u.members}
    assert matched | set(unmatched) == set(everyone)
    assert matched.isdisjoint(unmatched)


def test_record_cycle_writes_ledger_and_statuses(store):
    record_cycle(store, "2026-10-12", ["E"], ["A", "B"])
    assert store.get_unmatched_for_week("2026-10-12") == ["E"]
    assert store.get_status("E") == ParticipantStatus.UNMATCHED
    assert store.get_status("A") == ParticipantStatus.MATCHED


class BrokenStore:
    def __init__(self):
        self.status_calls = []

    def add_unmatched_for_week(self, week_bucket, participant_ids):
        raise StoreError("database is locked")

    def set_status(self, participant_ids, status):
        self.status_calls.append(status)
        raise StoreError("database is locked")


def test_record_cycle_survives_store_failures():
    broken = BrokenStore()
    record_cycle(broken, "2026-10-12", ["E"], ["A"])
    assert broken.status_calls == [ParticipantStatus.MATCHED, ParticipantStatus.UNMATCHED]
