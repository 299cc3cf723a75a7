"""Tests for marketplace configuration."""

import pytest

from craftiva.config import CompletionPolicy, MarketplaceConfig


def test_defaults():
    config = MarketplaceConfig()
    assert config.reject_siblings_on_accept is True
    assert config.completion_policy is CompletionPolicy.CLIENT
    assert config.client_can_complete
    assert not config.apprentice_can_complete


def test_completion_policy_from_string():
    config = MarketplaceConfig(completion_policy="either")
    assert config.completion_policy is CompletionPolicy.EITHER
    assert config.client_can_complete and config.apprentice_can_complete


def test_invalid_completion_policy():
    with pytest.raises(ValueError, match="Invalid completion policy"):
        MarketplaceConfig(completion_policy="anyone")


def test_invalid_title_length():
    with pytest.raises(ValueError):
        MarketplaceConfig(max_title_length=0)


class TestFromEnv:
    def test_empty_environment_keeps_defaults(self):
        assert MarketplaceConfig.from_env({}) == MarketplaceConfig()

    def test_reads_prefixed_variables(self):
        config = MarketplaceConfig.from_env(
            {
                "CRAFTIVA_REJECT_SIBLINGS_ON_ACCEPT": "false",
                "CRAFTIVA_COMPLETION_POLICY": " Apprentice ",
                "CRAFTIVA_MAX_SKILLS": "5",
                "CRAFTIVA_RELAY_ON_COMPLETE": "off",
            }
        )
        assert config.reject_siblings_on_accept is False
        assert config.completion_policy is CompletionPolicy.APPRENTICE
        assert config.max_skills == 5
        assert config.relay_on_complete is False

    def test_bad_boolean(self):
        with pytest.raises(ValueError, match="CRAFTIVA_ALLOW_PAST_DEADLINE"):
            MarketplaceConfig.from_env({"CRAFTIVA_ALLOW_PAST_DEADLINE": "maybe"})

    def test_bad_integer(self):
        with pytest.raises(ValueError, match="must be an integer"):
            MarketplaceConfig.from_env({"CRAFTIVA_MAX_TITLE_LENGTH": "long"})

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("CRAFTIVA_CONCEAL_FORBIDDEN_ROWS", "0")
        assert MarketplaceConfig.from_env().conceal_forbidden_rows is False
