# tests/test_matcher.py
import random
from collections import Counter

import pytest

from micromatch.data_models import ParticipantResponse, Preference
from micromatch.matcher import (
    allocate_groups,
    allocate_pairs,
    batch_group,
    bucket_by_preference,
    plan_units,
    split_pairs,
)
from micromatch.matching_models import TopicBucket, UnitKind


def resp(pid, topics, pref=Preference.GROUP):
    return ParticipantResponse(participant_id=pid, topics=topics, preference=pref)


# -------------------------------
# Bucketing
# -------------------------------

def test_bucket_splits_by_preference():
    buckets = bucket_by_preference(
        [resp("A", ["cinema"]), resp("B", ["cinema"], Preference.PAIRWISE)],
        {"cinema": "cinema"},
    )
    assert buckets["cinema"].group == {"A"}
    assert buckets["cinema"].pairwise == {"B"}


def test_bucket_dedupes_topics_per_participant():
    mapping = {"yoga": "fitness", "gym": "fitness"}
    buckets = bucket_by_preference([resp("A", ["Yoga", "gym", " YOGA "])], mapping)
    assert list(buckets) == ["fitness"]
    assert buckets["fitness"].group == {"A"}


def test_bucket_participant_in_several_topics():
    buckets = bucket_by_preference([resp("A", ["cinema", "travel"])], {})
    assert set(buckets) == {"cinema", "travel"}


def test_bucket_empty_topics_contribute_nothing():
    buckets = bucket_by_preference([resp("A", []), resp("B", ["", "  "])], {})
    assert buckets == {}


def test_missing_preference_defaults_to_group():
    r = ParticipantResponse(participant_id="A", topics=["x"], preference=None)
    assert r.preference == Preference.GROUP


# -------------------------------
# Pairing
# -------------------------------

def test_split_pairs_even():
    pairs, leftover = split_pairs(["a", "b", "c", "d"], rng=random.Random(1))
    assert len(pairs) == 2
    assert leftover == []
    assert {p for pair in pairs for p in pair} == {"a", "b", "c", "d"}


def test_seven_pairwise_give_three_pairs_and_one_fold():
    bucket = TopicBucket(topic="chess", pairwise={f"p{i}" for i in range(7)})
    buckets = {"chess": bucket}
    units = allocate_pairs(buckets, rng=random.Random(7))

    assert len(units) == 3
    assert all(u.kind == UnitKind.PAIR for u in units)
    paired = [m for u in units for m in u.members]
    assert len(paired) == len(set(paired)) == 6
    assert len(bucket.group) == 1
    assert bucket.group.isdisjoint(paired)
    assert bucket.pairwise == set()


@pytest.mark.parametrize("seed", range(20))
def test_pairs_are_distinct_and_disjoint(seed):
    members = {f"u{i}" for i in range(13)}
    buckets = {"t": TopicBucket(topic="t", pairwise=set(members))}
    units = allocate_pairs(buckets, rng=random.Random(seed))
    for unit in units:
        assert len(unit.members) == 2
        assert unit.members[0] != unit.members[1]
    counts = Counter(m for u in units for m in u.members)
    assert max(counts.values()) == 1
    assert set(counts) | buckets["t"].group == members


def test_single_pairwise_member_is_not_folded():
    bucket = TopicBucket(topic="travel", pairwise={"B"}, group={"A"})
    units = allocate_pairs({"travel": bucket})
    assert units == []
    assert bucket.group == {"A"}


def test_leftover_joins_existing_group():
    bucket = TopicBucket(topic="go", pairwise={"a", "b", "c"}, group={"g"})
    allocate_pairs({"go": bucket}, rng=random.Random(3))
    assert len(bucket.group) == 2
    assert "g" in bucket.group


# -------------------------------
# Group batching
# -------------------------------

def test_batch_small_group_is_one_batch():
    assert batch_group(list("abcde"), 10) == [list("abcde")]


def test_batch_eleven_merges_singleton():
    sizes = [len(b) for b in batch_group([str(i) for i in range(11)], 10)]
    assert sizes == [11]


def test_batch_twenty_one_merges_into_last():
    sizes = [len(b) for b in batch_group([str(i) for i in range(21)], 10)]
    assert sizes == [10, 11]


def test_batch_remainder_of_two_gets_own_batch():
    sizes = [len(b) for b in batch_group([str(i) for i in range(22)], 10)]
    assert sizes == [10, 10, 2]


def test_batch_exact_multiple():
    sizes = [len(b) for b in batch_group([str(i) for i in range(20)], 10)]
    assert sizes == [10, 10]


def test_batch_keeps_every_member_once():
    members = [str(i) for i in range(37)]
    batches = batch_group(members, 4)
    flat = [m for b in batches for m in b]
    assert sorted(flat) == sorted(members)
    assert min(len(b) for b in batches) >= 2


def test_batch_too_small():
    assert batch_group(["a"], 10) == []
    assert batch_group([], 10) == []


def test_batch_rejects_tiny_max_size():
    with pytest.raises(ValueError):
        batch_group(["a", "b"], 1)


def test_allocate_groups_numbers_batches_only_when_split():
    buckets = {
        "big": TopicBucket(topic="big", group={str(i) for i in range(25)}),
        "small": TopicBucket(topic="small", group={"x", "y"}),
    }
    units = allocate_groups(buckets, max_size=10)
    big = [u for u in units if u.topic == "big"]
    small = [u for u in units if u.topic == "small"]
    assert [u.batch for u in big] == [1, 2, 3]
    assert [len(u.members) for u in big] == [10, 10, 5]
    assert small[0].batch is None


# -------------------------------
# Whole plan
# -------------------------------

def test_plan_end_to_end_scenario():
    responses = [
        resp("A", ["cinema", "travel"]),
        resp("B", ["soccer", "travel"], Preference.PAIRWISE),
        resp("C", ["cinema", "gaming"]),
    ]
    identity = {t: t for t in ["cinema", "travel", "soccer", "gaming"]}
    units = plan_units(responses, identity)

    assert len(units) == 1
    assert units[0].topic == "cinema"
    assert units[0].kind == UnitKind.GROUP
    assert set(units[0].members) == {"A", "C"}


def test_plan_pairs_come_before_groups():
    responses = [resp(f"p{i}", ["go"], Preference.PAIRWISE) for i in range(4)]
    responses += [resp(f"g{i}", ["go"]) for i in range(3)]
    units = plan_units(responses, {}, rng=random.Random(0))
    kinds = [u.kind for u in units]
    assert kinds == [UnitKind.PAIR, UnitKind.PAIR, UnitKind.GROUP]
