"""
Turns the week's responses into assignment units (pairs and groups).

It will be responsible for:

- Bucketing participants by canonical topic and by pairing preference
- For every topic:
    - Shuffling the pairwise bucket and cutting it into pairs
    - Folding an odd leftover into the same topic's group bucket
- Then, for every topic:
    - Splitting the group bucket into batches of at most `max_group_size`
    - Merging a single leftover member into the last batch instead of
      leaving them alone in a group of one

Nothing here talks to the transport or the store; the cycle runner feeds the
planned units to the provisioner.
"""
import random
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .data_models import ParticipantResponse, Preference
from .matching_models import AssignmentUnit, TopicBucket, UnitKind
from .topics import clean_topic


DEFAULT_MAX_GROUP_SIZE = 10


def bucket_by_preference(
    responses: Iterable[ParticipantResponse],
    mapping: Dict[str, str],
) -> Dict[str, TopicBucket]:
    """
    Group participants by canonical topic and split each topic by preference.

    Args:
        responses: One response per participant.
        mapping: Cleaned raw topic -> canonical topic, as built by `canonicalize_topics`.

    Returns:
        Dict[str, TopicBucket]: Buckets keyed by canonical topic, in first-seen order.
    """
    buckets: Dict[str, TopicBucket] = {}
    for response in responses:
        canonical_topics: Dict[str, None] = {}
        for raw in response.topics:
            topic = clean_topic(raw)
            if not topic:
                continue
            canonical_topics.setdefault(mapping.get(topic, topic), None)

        for topic in canonical_topics:
            bucket = buckets.setdefault(topic, TopicBucket(topic=topic))
            if response.preference == Preference.PAIRWISE:
                bucket.pairwise.add(response.participant_id)
            else:
                bucket.group.add(response.participant_id)
    return buckets


def split_pairs(
    participant_ids: Sequence[str],
    rng: Optional[random.Random] = None,
) -> Tuple[List[Tuple[str, str]], List[str]]:
    """Shuffle and cut a list of distinct ids into consecutive pairs.

    Returns the pairs and the (zero or one element) leftover list.
    """
    shuffled = list(dict.fromkeys(participant_ids))
    (rng or random).shuffle(shuffled)
    pairs = [(shuffled[i], shuffled[i + 1]) for i in range(0, len(shuffled) - 1, 2)]
    leftover = [shuffled[-1]] if len(shuffled) % 2 == 1 else []
    return pairs, leftover


def allocate_pairs(
    buckets: Dict[str, TopicBucket],
    rng: Optional[random.Random] = None,
) -> List[AssignmentUnit]:
    """
    Form PAIR units from every bucket's pairwise members.

    Pairs are taken out of the bucket; an odd leftover is moved into the same
    bucket's group set. Buckets with fewer than two pairwise members are left
    untouched (their single member is not folded).

    Args:
        buckets: Output of `bucket_by_preference`; mutated in place.
        rng: Optional random source, for reproducible runs.

    Returns:
        List[AssignmentUnit]: PAIR units in bucket order.
    """
    units: List[AssignmentUnit] = []
    for topic, bucket in buckets.items():
        if len(bucket.pairwise) < 2:
            continue
        # Sort before shuffling so the shuffle is the only source of order
        pairs, leftover = split_pairs(sorted(bucket.pairwise), rng=rng)
        for a, b in pairs:
            units.append(AssignmentUnit(topic=topic, kind=UnitKind.PAIR, members=[a, b]))
            bucket.group.discard(a)
            bucket.group.discard(b)
        bucket.pairwise = set()
        bucket.group.update(leftover)
    return units


def batch_group(members: Sequence[str], max_size: int = DEFAULT_MAX_GROUP_SIZE) -> List[List[str]]:
    """
    Split group members into batches of at most `max_size`.

    A remainder of exactly one member joins the last full batch (so one batch
    ends up with `max_size + 1` members); a remainder of two or more becomes
    its own batch. Fewer than two members produce no batch at all.

    >>> [len(b) for b in batch_group([str(i) for i in range(21)], 10)]
    [10, 11]
    """
    if max_size < 2:
        raise ValueError("max_size must be at least 2")
    members = list(members)
    if len(members) < 2:
        return []
    if len(members) <= max_size:
        return [members]

    full = len(members) // max_size
    batches = [members[i * max_size:(i + 1) * max_size] for i in range(full)]
    remainder = members[full * max_size:]
    if len(remainder) == 1:
        batches[-1].extend(remainder)
    elif remainder:
        batches.append(remainder)
    return batches


def allocate_groups(
    buckets: Dict[str, TopicBucket],
    max_size: int = DEFAULT_MAX_GROUP_SIZE,
) -> List[AssignmentUnit]:
    """Form GROUP units from every bucket's group members (run after `allocate_pairs`)."""
    units: List[AssignmentUnit] = []
    for topic, bucket in buckets.items():
        batches = batch_group(sorted(bucket.group), max_size=max_size)
        numbered = len(batches) > 1
        for index, batch in enumerate(batches, start=1):
            units.append(
                AssignmentUnit(
                    topic=topic,
                    kind=UnitKind.GROUP,
                    members=batch,
                    batch=index if numbered else None,
                )
            )
    return units


def plan_units(
    responses: Iterable[ParticipantResponse],
    mapping: Dict[str, str],
    max_group_size: int = DEFAULT_MAX_GROUP_SIZE,
    rng: Optional[random.Random] = None,
) -> List[AssignmentUnit]:
    """Bucket, pair and batch in one go. PAIR units come first, then GROUP units."""
    buckets = bucket_by_preference(responses, mapping)
    pairs = allocate_pairs(buckets, rng=rng)
    groups = allocate_groups(buckets, max_size=max_group_size)
    return pairs + groups
