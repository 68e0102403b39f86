from micromatch.data_models import ParticipantStatus, Preference
from micromatch.store import SqlStore


def test_unmatched_insert_is_idempotent(store):
    assert store.add_unmatched_for_week("2026-10-12", ["B", "D"]) == 2
    assert store.add_unmatched_for_week("2026-10-12", ["B"]) == 0
    assert store.add_unmatched_for_week("2026-10-12", ["B", "B", "E"]) == 1
    assert store.get_unmatched_for_week("2026-10-12") == ["B", "D", "E"]


def test_consecutive_weeks_are_distinct_rows(store):
    store.add_unmatched_for_week("2026-10-05", ["B"])
    store.add_unmatched_for_week("2026-10-12", ["B"])
    assert store.get_unmatched_for_week("2026-10-05") == ["B"]
    assert store.get_unmatched_for_week("2026-10-12") == ["B"]
    assert store.get_unmatched_for_week("2026-10-19") == []


def test_save_response_upserts_and_marks_responded(store):
    store.save_response("A", ["cinema"], Preference.GROUP)
    store.save_response("A", ["chess", "go"], Preference.PAIRWISE)

    [response] = store.get_all_responses()
    assert response.participant_id == "A"
    assert response.topics == ["chess", "go"]
    assert response.preference == Preference.PAIRWISE
    assert store.get_status("A") == ParticipantStatus.RESPONDED


def test_clear_responses(store):
    store.save_response("A", ["x"])
    store.save_response("B", ["y"])
    assert store.clear_responses() == 2
    assert store.get_all_responses() == []


def test_status_and_participant_listing(store):
    store.set_status(["A", "B", "C"], ParticipantStatus.MATCHED)
    store.set_status(["B"], ParticipantStatus.OPTED_OUT)
    assert store.get_status("B") == ParticipantStatus.OPTED_OUT
    assert store.get_status("nobody") is None
    assert store.list_participants() == ["A", "C"]
    assert store.list_participants(exclude=()) == ["A", "B", "C"]


def test_rooms_and_participants(store):
    store.upsert_room("C1", topic="cinema", kind="group")
    store.upsert_room("C1")
    assert store.add_room_participants("C1", ["A", "B"]) == 2
    assert store.add_room_participants("C1", ["B", "C"]) == 1

    [room] = store.list_rooms()
    assert room.topic == "cinema"
    assert room.archived is False
    assert store.get_room_participants("C1") == ["A", "B", "C"]


def test_archive_filter(store):
    store.upsert_room("C1", topic="a")
    store.upsert_room("C2", topic="b")
    assert store.mark_room_archived("C1") is True
    assert store.mark_room_archived("missing") is False
    assert [r.room_id for r in store.list_rooms(archived=True)] == ["C1"]
    assert [r.room_id for r in store.list_rooms(archived=False)] == ["C2"]
    assert len(store.list_rooms()) == 2


def test_file_database_creates_parent_dir(tmp_path):
    db = tmp_path / "nested" / "mm.db"
    s = SqlStore(f"sqlite:///{db}")
    s.save_response("A", ["x"])
    assert db.exists()
    assert SqlStore(f"sqlite:///{db}").get_all_responses()[0].participant_id == "A"
