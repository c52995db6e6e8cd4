"""Tests for TicketConfig."""

import json

import pytest
from pydantic import ValidationError

from core.config import CONFIG_PATH_ENV, TicketConfig, load_ticket_config


class TestTicketConfig:
    """Validation and lookups."""

    def test_defaults(self):
        config = TicketConfig()

        assert config.reserved_sequences == {}
        assert config.max_number_attempts == 100
        assert config.retry_backoff_seconds == 0.0
        assert config.fallback_initials == "XX"

    def test_initials_uppercased(self):
        config = TicketConfig(reserved_sequences={" hv ": {26: 49}})

        assert config.last_reserved("HV", 26) == 49
        assert config.last_reserved("hv", 26) == 49

    def test_missing_reservation_is_zero(self):
        config = TicketConfig(reserved_sequences={"HV": {26: 49}})

        assert config.last_reserved("HV", 27) == 0
        assert config.last_reserved("DB", 26) == 0

    def test_rejects_four_digit_year(self):
        with pytest.raises(ValidationError, match="two digits"):
            TicketConfig(reserved_sequences={"HV": {2026: 49}})

    def test_rejects_negative_reservation(self):
        with pytest.raises(ValidationError, match="negative"):
            TicketConfig(reserved_sequences={"HV": {26: -1}})

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            TicketConfig(max_number_attempts=0)

    def test_fallback_initials_uppercased(self):
        assert TicketConfig(fallback_initials="zz").fallback_initials == "ZZ"


class TestLoading:
    """Loading from JSON files and the environment."""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "tickets.json"
        path.write_text(json.dumps({"reserved_sequences": {"HV": {"26": 49}}, "max_number_attempts": 10}))

        config = load_ticket_config(path)

        assert config.last_reserved("HV", 26) == 49
        assert config.max_number_attempts == 10

    def test_from_env_without_variable(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)

        assert TicketConfig.from_env() == TicketConfig()

    def test_from_env_reads_file(self, tmp_path, monkeypatch):
        path = tmp_path / "tickets.json"
        path.write_text(json.dumps({"fallback_initials": "NA"}))
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))

        assert TicketConfig.from_env().fallback_initials == "NA"

    def test_invalid_file_raises(self, tmp_path):
        path = tmp_path / "tickets.json"
        path.write_text(json.dumps({"max_number_attempts": "many"}))

        with pytest.raises(ValidationError):
            load_ticket_config(path)
