"""Service ticket configuration."""

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "SERVICE_TICKET_CONFIG"


class TicketConfig(BaseModel):
    """
    Service ticket configuration.

    reserved_sequences blocks off ticket numbers per employee and year so
    numbers already handed out on paper are never issued again. Shape:
    {"HV": {26: 49}} means HV_26001..HV_26049 are reserved and the first
    number the allocator may issue in 2026 is HV_26050.
    """

    reserved_sequences: dict[str, dict[int, int]] = Field(
        default_factory=dict,
        description="Last reserved sequence per initials per two-digit year",
    )

    max_number_attempts: int = Field(
        default=100,
        description="How many times a contested ticket number is re-allocated before giving up",
        ge=1,
        le=1000,
    )
    retry_backoff_seconds: float = Field(
        default=0.0,
        description="Base delay between allocation retries (doubles each attempt)",
        ge=0.0,
        le=5.0,
    )

    fallback_initials: str = Field(
        default="XX",
        description="Initials used when a user has no first/last name on file",
        min_length=2,
        max_length=2,
    )

    @field_validator("reserved_sequences")
    @classmethod
    def normalize_initials(cls, value: dict[str, dict[int, int]]) -> dict[str, dict[int, int]]:
        normalized = {}
        for initials, years in value.items():
            for year, last_reserved in years.items():
                if not 0 <= year <= 99:
                    raise ValueError(f"Reserved year for {initials} must be two digits, got {year}")
                if last_reserved < 0:
                    raise ValueError(f"Reserved sequence for {initials}/{year} cannot be negative")
            normalized[initials.strip().upper()] = dict(years)
        return normalized

    @field_validator("fallback_initials")
    @classmethod
    def upper_fallback(cls, value: str) -> str:
        return value.upper()

    def last_reserved(self, initials: str, year: int) -> int:
        """Last reserved sequence for initials/year, 0 when nothing is reserved."""
        return self.reserved_sequences.get(initials.upper(), {}).get(year, 0)

    @classmethod
    def from_env(cls) -> "TicketConfig":
        """Load from the JSON file named by SERVICE_TICKET_CONFIG, defaults if unset."""
        path = os.getenv(CONFIG_PATH_ENV)
        if not path:
            return cls()
        return load_ticket_config(Path(path))


def load_ticket_config(path: Path) -> TicketConfig:
    """
    Load TicketConfig from a JSON file.

    Raises:
        FileNotFoundError: Path does not exist
        pydantic.ValidationError: Content is invalid
    """
    config = TicketConfig.model_validate_json(path.read_text())
    logger.info(
        f"Loaded ticket config from {path}: "
        f"{len(config.reserved_sequences)} employee(s) with reserved ranges"
    )
    return config
