"""
One weekly matching cycle, end to end.

COLLECTED -> NORMALIZED -> BUCKETED -> PAIRED -> GROUPED -> PROVISIONED -> LEDGERED

Only one cycle may run at a time in a process; a second call while one is
active raises CycleInProgressError. Room provisioning can fan out to a small
thread pool; outcomes are gathered here, in the calling thread.
"""
from __future__ import annotations

import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from .ai import IdentityCanonicalizer, NoStarterGenerator, StarterGenerator, TopicCanonicalizer
from .config import MatchingConfig
from .data_models import ParticipantResponse
from .errors import CycleInProgressError
from .ledger import compute_unmatched, iso_week_start, record_cycle
from .matcher import allocate_groups, allocate_pairs, bucket_by_preference
from .matching_models import AssignmentUnit, CyclePhase, CycleResult, ProvisionOutcome
from .provisioner import RoomProvisioner, date_stamp
from .store import MatchStore
from .topics import canonicalize_topics, collect_raw_topics
from .transport import MessagingTransport


MIN_RESPONDENTS = 2

_active_run = threading.Lock()

ProgressFn = Callable[[int, int, ProvisionOutcome], None]


def _collect(store: MatchStore) -> List[ParticipantResponse]:
    # A participant answering twice keeps only their latest response
    latest: Dict[str, ParticipantResponse] = {}
    for response in store.get_all_responses() or []:
        latest.pop(response.participant_id, None)
        latest[response.participant_id] = response
    return list(latest.values())


def provision_units(
    provisioner: RoomProvisioner,
    units: List[AssignmentUnit],
    workers: int = 1,
    deadline: Optional[float] = None,
    progress_fn: Optional[ProgressFn] = None,
) -> tuple[List[ProvisionOutcome], List[AssignmentUnit]]:
    """Provision every unit, isolating failures per unit.

    Returns (outcomes, abandoned). When `deadline` seconds pass, queued units
    are cancelled and running ones are told to stop before their next transport
    call; this waits for those workers so nothing outlives the cycle. Abandoned
    units are never counted as matched. A unit that finishes after the deadline
    is reported with its real outcome.
    """
    outcomes: List[ProvisionOutcome] = []
    abandoned: List[AssignmentUnit] = []
    if not units:
        return outcomes, abandoned

    executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="provision")
    futures: Dict[Future, AssignmentUnit] = {executor.submit(provisioner.provision, u): u for u in units}
    try:
        _, not_done = wait(futures, timeout=deadline)
        if not_done:
            logger.error(f"Provisioning deadline of {deadline}s expired with {len(not_done)} unit(s) unfinished")
            provisioner.cancelled.set()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    # Report in planning order regardless of completion order
    for future, unit in futures.items():
        if future.cancelled():
            abandoned.append(unit)
            continue
        try:
            outcome = future.result()
        except Exception as e:
            logger.error(f"Unexpected error provisioning '{unit.topic}' {unit.kind.value} unit: {e}")
            outcome = ProvisionOutcome(unit=unit, ok=False, error=type(e).__name__)
        if outcome.abandoned:
            abandoned.append(unit)
            continue
        outcomes.append(outcome)
        if progress_fn is not None:
            try:
                progress_fn(len(outcomes), len(units), outcome)
            except Exception:
                # Ignore progress callback errors to avoid breaking the run
                pass

    if abandoned:
        logger.error(f"{len(abandoned)} unit(s) abandoned at the provisioning deadline")
    return outcomes, abandoned


def run_matching_cycle(
    store: MatchStore,
    transport: MessagingTransport,
    canonicalizer: Optional[TopicCanonicalizer] = None,
    starters: Optional[StarterGenerator] = None,
    config: Optional[MatchingConfig] = None,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    progress_fn: Optional[ProgressFn] = None,
) -> CycleResult:
    """Run one matching cycle.

    Args:
        store: Source of responses and sink for rooms and the weekly ledger.
        transport: Messaging transport used to create rooms.
        canonicalizer: Topic oracle; identity mapping when omitted.
        starters: Conversation-starter generator; generic starter when omitted.
        config: Tuning knobs; defaults when omitted.
        now: Clock override for the week bucket and room names.
        rng: Random source for pairing and name suffixes.
        progress_fn: Called as (done, total, outcome) after each unit is provisioned.

    Returns:
        CycleResult with created units, the unmatched participants and the
        not_enough flag. Raises CycleInProgressError if another run is active.
    """
    if not _active_run.acquire(blocking=False):
        raise CycleInProgressError("A matching cycle is already running")
    try:
        return _run(
            store,
            transport,
            canonicalizer or IdentityCanonicalizer(),
            starters or NoStarterGenerator(),
            config or MatchingConfig(),
            now or datetime.now(timezone.utc),
            rng,
            progress_fn,
        )
    finally:
        _active_run.release()


def _run(
    store: MatchStore,
    transport: MessagingTransport,
    canonicalizer: TopicCanonicalizer,
    starters: StarterGenerator,
    config: MatchingConfig,
    now: datetime,
    rng: Optional[random.Random],
    progress_fn: Optional[ProgressFn],
) -> CycleResult:
    week_bucket = iso_week_start(now)

    responses = _collect(store)
    participant_ids = [r.participant_id for r in responses]
    logger.info(f"Collected {len(responses)} response(s) for week {week_bucket}")

    if len(responses) < MIN_RESPONDENTS:
        logger.info(f"Not enough participants to match. Unmatched: {', '.join(participant_ids) or '-'}")
        record_cycle(store, week_bucket, participant_ids)
        return CycleResult(
            unmatched=participant_ids,
            not_enough=True,
            week_bucket=week_bucket,
            phase=CyclePhase.LEDGERED,
        )

    raw_topics = collect_raw_topics(responses)
    mapping = canonicalize_topics(raw_topics, canonicalizer)
    logger.debug(f"[{CyclePhase.NORMALIZED.value}] {len(raw_topics)} raw topic(s) -> {len(set(mapping.values()))} canonical")

    buckets = bucket_by_preference(responses, mapping)
    logger.debug(f"[{CyclePhase.BUCKETED.value}] {len(buckets)} topic bucket(s)")

    pair_units = allocate_pairs(buckets, rng=rng)
    logger.debug(f"[{CyclePhase.PAIRED.value}] {len(pair_units)} pair(s)")

    group_units = allocate_groups(buckets, max_size=config.max_group_size)
    logger.debug(f"[{CyclePhase.GROUPED.value}] {len(group_units)} group(s)")

    provisioner = RoomProvisioner(
        transport,
        store,
        starters=starters,
        starter_count=config.starter_count,
        prefix=config.room_prefix,
        stamp=date_stamp(now),
        rng=rng,
    )
    outcomes, abandoned = provision_units(
        provisioner,
        pair_units + group_units,
        workers=config.provision_workers,
        deadline=config.provision_deadline_seconds,
        progress_fn=progress_fn,
    )
    created = [o.unit for o in outcomes if o.ok]
    failed = [o.unit for o in outcomes if not o.ok]

    unmatched = compute_unmatched(participant_ids, created)
    unmatched_set = set(unmatched)
    matched = [pid for pid in participant_ids if pid not in unmatched_set]
    if unmatched:
        logger.info(f"Participants without match: {', '.join(unmatched)}")
    if not created:
        logger.info("No rooms created (insufficient overlaps).")
    else:
        logger.info(f"Created {len(created)} room(s); {len(failed)} failed, {len(abandoned)} abandoned")

    record_cycle(store, week_bucket, unmatched, matched)

    return CycleResult(
        created_units=created,
        unmatched=unmatched,
        not_enough=False,
        week_bucket=week_bucket,
        failed_units=failed,
        abandoned_units=abandoned,
        phase=CyclePhase.LEDGERED,
    )
