from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .data_models import ParticipantResponse, Preference
from .store import SqlStore


FIELD_ALIASES: Dict[str, List[str]] = {
    "id": ["participant_id", "user_id", "Slack ID", "What is your Slack member ID?", "Respondent ID"],
    "topics": ["topics", "interests", "What are your interests this week?", "Topics"],
    "preference": ["preference", "Do you prefer a 1:1 or a group chat?", "Pairing preference"],
}

PAIRWISE_TOKENS = {"1:1", "1-1", "1on1", "one-on-one", "one on one", "pair", "pairwise", "duo"}


def get_alias_column(df: pd.DataFrame, key: str) -> Optional[str]:
    for candidate in FIELD_ALIASES.get(key, []):
        if candidate in df.columns:
            return candidate
    return None


def resolve_aliases(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    return {key: get_alias_column(df, key) for key in FIELD_ALIASES}


def parse_topics(text: Optional[str]) -> List[str]:
    """Split a free-text reply like "Fitness, cinema ,games" into cleaned topics."""
    if not text:
        return []
    return [t.strip().lower() for t in str(text).split(",") if t.strip()]


def parse_preference(value: Optional[str]) -> Preference:
    """Anything that reads like a 1:1 request is PAIRWISE; everything else is GROUP."""
    token = " ".join(str(value or "").split()).lower()
    if token in PAIRWISE_TOKENS:
        return Preference.PAIRWISE
    return Preference.GROUP


def clean_response_df(df: pd.DataFrame) -> pd.DataFrame:
    """Light cleanup that preserves the original survey schema."""

    out = df.copy()
    out.columns = [col.strip() if isinstance(col, str) else col for col in out.columns]
    for col in out.columns:
        if pd.api.types.is_object_dtype(out[col]):
            out[col] = (
                out[col]
                .astype(str)
                .str.replace("\n", " ")
                .str.replace(r"\s+", " ", regex=True)
                .str.strip()
                .replace({"nan": None, "None": None, "": None})
            )
    return out


def responses_from_df(df: pd.DataFrame) -> List[ParticipantResponse]:
    """
    Convert a cleaned survey DataFrame into participant responses.

    Rows without a participant id are skipped. The topics column holds a
    comma-separated list; the preference column is optional.

    Args:
        df: DataFrame with columns matching FIELD_ALIASES.

    Returns:
        List[ParticipantResponse]: One response per usable row, in file order.
    """
    alias_map = resolve_aliases(df)
    id_col = alias_map.get("id")
    topics_col = alias_map.get("topics")
    if id_col is None or topics_col is None:
        missing = [k for k in ("id", "topics") if alias_map.get(k) is None]
        raise KeyError(f"Missing required columns: {missing}")
    pref_col = alias_map.get("preference")

    responses: List[ParticipantResponse] = []
    for _, row in df.iterrows():
        pid = row.get(id_col)
        if pid is None or pd.isna(pid) or not str(pid).strip():
            continue
        topics_val = row.get(topics_col)
        pref_val = row.get(pref_col) if pref_col else None
        responses.append(
            ParticipantResponse(
                participant_id=str(pid).strip(),
                topics=parse_topics(None if pd.isna(topics_val) else topics_val),
                preference=parse_preference(None if pref_val is None or pd.isna(pref_val) else pref_val),
            )
        )
    return responses


def load_responses_csv(csv_path: Path) -> List[ParticipantResponse]:
    df = pd.read_csv(csv_path, dtype=str)
    return responses_from_df(clean_response_df(df))


def record_response(
    store: SqlStore,
    participant_id: str,
    text: str,
    preference: Optional[Preference] = None,
) -> List[str]:
    """Store a participant's reply for this week and return the parsed topics."""
    topics = parse_topics(text)
    store.save_response(participant_id, topics, preference or Preference.GROUP)
    return topics


def ingest_csv(store: SqlStore, csv_path: Path) -> int:
    responses = load_responses_csv(csv_path)
    for response in responses:
        store.save_response(response.participant_id, response.topics, response.preference)
    return len(responses)
