"""Direct messages sent around a cycle: the weekly prompt and the no-match follow-up."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Tuple

from loguru import logger

from .data_models import ParticipantStatus
from .errors import StoreError, TransportError
from .matching_models import AssignmentUnit, UnitKind
from .store import MatchStore
from .transport import MessagingTransport


INTEREST_PROMPT = (
    "Hi there! What are your interests this week? Reply with one or more topics "
    "separated by commas (e.g., fitness, cinema, games)."
)
NO_ROOMS_TEXT = (
    "I couldn't find a match for you this round, but no worries! "
    "A new round starts next week, and I'd love to try again."
)
OFFER_TEXT = "This time we couldn't match you automatically.\nWould you like to join one of these group rooms instead?"

MAX_BUTTON_TEXT = 75
BUTTONS_PER_BLOCK = 3


def group_room_options(units: Iterable[AssignmentUnit]) -> List[Tuple[str, str]]:
    """(room_id, topic) for every created GROUP room, deduplicated by room id and topic."""
    seen = set()
    options: List[Tuple[str, str]] = []
    for unit in units:
        if unit.kind != UnitKind.GROUP or not unit.room_id:
            continue
        topic = unit.topic.strip()
        key = (unit.room_id, topic.casefold())
        if not topic or key in seen:
            continue
        seen.add(key)
        options.append((unit.room_id, topic))
    return options


def _button(text: str, action_id: str, value: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "button",
        "text": {"type": "plain_text", "text": text[:MAX_BUTTON_TEXT]},
        "value": json.dumps(value),
        "action_id": action_id,
    }


def room_offer_blocks(options: List[Tuple[str, str]]) -> List[Dict[str, Any]]:
    buttons = [
        _button(topic, "join_group", {"action": "join_group", "channelId": room_id, "topic": topic})
        for room_id, topic in options
    ]
    decline = _button("No, thanks", "join_group_rejected", {"action": "join_group_rejected"})
    blocks: List[Dict[str, Any]] = [{"type": "section", "text": {"type": "mrkdwn", "text": OFFER_TEXT}}]
    # Slack allows 5 elements per actions block
    if len(buttons) <= 4:
        blocks.append({"type": "actions", "elements": buttons + [decline]})
    else:
        for i in range(0, len(buttons), BUTTONS_PER_BLOCK):
            blocks.append({"type": "actions", "elements": buttons[i:i + BUTTONS_PER_BLOCK]})
        blocks.append({"type": "actions", "elements": [decline]})
    return blocks


def notify_unmatched(
    transport: MessagingTransport,
    unmatched: Iterable[str],
    created_units: Iterable[AssignmentUnit],
) -> int:
    """Offer each unmatched participant the week's group rooms. Returns messages sent."""
    options = group_room_options(created_units)
    if options:
        text = OFFER_TEXT + "\n" + "\n".join(f"• {topic}" for _, topic in options)
        blocks = room_offer_blocks(options)
    else:
        text, blocks = NO_ROOMS_TEXT, None

    sent = 0
    for participant_id in unmatched:
        try:
            transport.post_message(participant_id, text, blocks=blocks)
            sent += 1
        except TransportError as e:
            logger.warning(f"Could not send no-match options to {participant_id}: {e}")
    return sent


def broadcast_interest_prompt(store: MatchStore, transport: MessagingTransport, text: str = INTEREST_PROMPT) -> int:
    """Ask every active participant for this week's topics. Returns messages sent."""
    sent = 0
    for participant_id in store.list_participants():
        try:
            transport.post_message(participant_id, text)
        except TransportError as e:
            logger.warning(f"Error sending interest prompt to {participant_id}: {e}")
            continue
        sent += 1
        try:
            store.set_status([participant_id], ParticipantStatus.AWAITING_TOPICS)
        except StoreError as e:
            logger.warning(f"Could not update status for {participant_id}: {e}")
    return sent
