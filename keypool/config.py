"""Configuration management for the key pool scheduler."""

import json
import os
from dataclasses import dataclass, field
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from keypool.policy import DEFAULT_ALIASES, QuotaPolicyTable


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    api_keys: List[str]
    quota_policy: QuotaPolicyTable = field(default_factory=QuotaPolicyTable.default)
    usage_file: str = "daily_usage.json"
    day_boundary_tz: str = "UTC"
    cooldown_seconds: float = 60
    lease_ttl_seconds: float = 60
    max_retries: int = 3
    retry_delay_seconds: float = 1
    port: int = 8000
    host: str = "0.0.0.0"
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.api_keys:
            raise ValueError(
                "API_KEY_POOL environment variable must be set and non-empty"
            )
        if len(set(self.api_keys)) != len(self.api_keys):
            raise ValueError("API_KEY_POOL contains duplicate keys")
        if self.cooldown_seconds <= 0:
            raise ValueError("COOLDOWN_SECONDS must be positive")
        if self.lease_ttl_seconds <= 0:
            raise ValueError("LEASE_TTL_SECONDS must be positive")
        if self.max_retries <= 0:
            raise ValueError("MAX_RETRIES must be positive")
        if self.retry_delay_seconds < 0:
            raise ValueError("RETRY_DELAY_SECONDS must not be negative")
        try:
            ZoneInfo(self.day_boundary_tz)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(
                f"Unknown DAY_BOUNDARY_TZ time zone: {self.day_boundary_tz!r}"
            ) from None


def _load_policy(raw: str) -> QuotaPolicyTable:
    if not raw.strip():
        return QuotaPolicyTable.default()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"QUOTA_POLICY is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("QUOTA_POLICY must be a JSON object")
    # Request aliases stay available for the models the custom table keeps.
    aliases = {
        alias: model for alias, model in DEFAULT_ALIASES.items() if model in data
    }
    return QuotaPolicyTable.from_mapping(data, aliases)


def load_config(use_dotenv: bool = True) -> Config:
    """Load configuration from environment variables.

    Args:
        use_dotenv: Also read a ``.env`` file from the working directory

    Returns:
        Config: Configured application settings

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    if use_dotenv:
        load_dotenv()

    api_keys_raw = os.getenv("API_KEY_POOL") or os.getenv("API_KEY", "")
    api_keys = [key.strip() for key in api_keys_raw.split(",") if key.strip()]

    return Config(
        api_keys=api_keys,
        quota_policy=_load_policy(os.getenv("QUOTA_POLICY", "")),
        usage_file=os.getenv("USAGE_FILE", "daily_usage.json"),
        day_boundary_tz=os.getenv("DAY_BOUNDARY_TZ", "UTC"),
        cooldown_seconds=float(os.getenv("COOLDOWN_SECONDS", "60")),
        lease_ttl_seconds=float(os.getenv("LEASE_TTL_SECONDS", "60")),
        max_retries=int(os.getenv("MAX_RETRIES", "3")),
        retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "1")),
        port=int(os.getenv("PORT", "8000")),
        host=os.getenv("HOST", "0.0.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
