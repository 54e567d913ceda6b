from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Centralized workflow settings.

    Environment-variable handling lives here so the state machines and the
    date policy depend on typed attributes instead of calling os.getenv
    directly.
    """

    # IANA timezone used to decide which calendar day "today" is for the
    # overdue / due-today predicates.
    agency_timezone: str = os.getenv("AGENCY_TIMEZONE", "UTC")

    # A SCHEDULED task that was never started is swept to MISSED once its
    # scheduled date is more than this many days in the past.
    missed_after_days: int = int(os.getenv("MISSED_AFTER_DAYS", "3"))

    # Minimum OASIS completion percentage required by submit(). 100 blocks
    # partial submissions; lower it to accept incomplete assessments.
    oasis_min_completion_to_submit: int = int(os.getenv("OASIS_MIN_COMPLETION_TO_SUBMIT", "100"))

    # Total number of scorable OASIS-E1 items used by the completion helper.
    oasis_total_fields: int = int(os.getenv("OASIS_TOTAL_FIELDS", "300"))

    # Optional database configuration for SQL-backed repositories.
    database_url: Optional[str] = os.getenv("DATABASE_URL")
    use_sql_repos: bool = os.getenv("USE_SQL_REPOS", "false").lower() == "true"

    # Basic API authentication configuration.
    # When ENABLE_API_AUTH=true, every endpoint requires a valid API key.
    enable_api_auth: bool = os.getenv("ENABLE_API_AUTH", "false").lower() == "true"
    # Comma-separated list of allowed API keys when auth is enabled.
    api_keys: Optional[str] = os.getenv("API_KEYS")

    # CORS configuration: comma-separated origins. "*" is fine for local
    # development only.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
