"""Runtime configuration read from the environment (and `.env` via python-dotenv)."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class MatchingConfig(BaseModel):
    """Settings for one deployment of the matcher."""

    database_url: str = "sqlite:///data/micromatch.db"
    slack_bot_token: Optional[str] = None
    slack_api_url: str = "https://slack.com/api"
    openai_model: str = "gpt-5-mini"
    use_ai: bool = True
    max_group_size: int = Field(default=10, ge=2)
    starter_count: int = Field(default=3, ge=0)
    room_prefix: str = "micromatch"
    oracle_timeout_seconds: float = Field(default=20.0, gt=0)
    transport_timeout_seconds: float = Field(default=10.0, gt=0)
    provision_workers: int = Field(default=1, ge=1)
    provision_deadline_seconds: Optional[float] = Field(default=None, gt=0)
    notify_unmatched: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "MatchingConfig":
        """Build a config from environment variables.

        Args:
            environ: Mapping to read from; defaults to `os.environ`.
            dotenv: Load a `.env` file into the process environment first.

        Returns:
            A validated MatchingConfig. Raises pydantic.ValidationError on bad values.
        """
        if dotenv and environ is None:
            load_dotenv()
        env = os.environ if environ is None else environ

        values = {
            "database_url": env.get("MICROMATCH_DATABASE_URL"),
            "slack_bot_token": env.get("SLACK_BOT_TOKEN"),
            "slack_api_url": env.get("SLACK_API_URL"),
            "openai_model": env.get("OPENAI_MODEL"),
            "max_group_size": env.get("MICROMATCH_MAX_GROUP_SIZE"),
            "starter_count": env.get("MICROMATCH_STARTER_COUNT"),
            "room_prefix": env.get("MICROMATCH_ROOM_PREFIX"),
            "oracle_timeout_seconds": env.get("MICROMATCH_ORACLE_TIMEOUT"),
            "transport_timeout_seconds": env.get("MICROMATCH_TRANSPORT_TIMEOUT"),
            "provision_workers": env.get("MICROMATCH_PROVISION_WORKERS"),
            "provision_deadline_seconds": env.get("MICROMATCH_PROVISION_DEADLINE"),
        }
        # Unset variables fall back to the model defaults
        values = {k: v for k, v in values.items() if v not in (None, "")}
        values["use_ai"] = _env_bool(env.get("MICROMATCH_USE_AI"), True)
        values["notify_unmatched"] = _env_bool(env.get("MICROMATCH_NOTIFY_UNMATCHED"), True)
        return cls.model_validate(values)
