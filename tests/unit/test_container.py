"""Tests for service construction."""

from unittest.mock import patch

from avatar_engine.core.config import Settings
from avatar_engine.services.container import build_services
from avatar_engine.services.step_policies import EmailCaptureStepPolicy


def make_settings(config_dir, tmp_path, **overrides) -> Settings:
    return Settings(
        _env_file=None,
        config_dir=config_dir,
        database_path=tmp_path / "engine.db",
        **overrides,
    )


def test_services_share_collaborators(config_dir, tmp_path):
    services = build_services(
        make_settings(config_dir, tmp_path),
        classification_client=None,
        generation_client=None,
    )

    service = services.avatar_service
    assert service.catalog is services.catalog
    assert service.memory is services.memory
    assert service.flow_engine.memory is services.memory
    assert service.locks is services.locks
    assert services.sweeper.locks is services.locks
    assert service.generation_client is None
    assert services.classifier.llm_client is None


def test_settings_applied(config_dir, tmp_path):
    config = make_settings(
        config_dir,
        tmp_path,
        continuation_window_seconds=12,
        flow_idle_timeout_seconds=90,
        sweep_interval_seconds=15,
        email_provided_intent="contact_shared",
    )

    services = build_services(config, classification_client=None, generation_client=None)

    assert services.memory.continuation_window_seconds == 12
    assert services.classifier.continuation_window_seconds == 12
    assert services.flow_engine.idle_timeout_seconds == 90
    assert services.sweeper.interval_seconds == 15
    assert services.sweeper.idle_seconds == 90
    policy = services.avatar_service.policies.get("email_capture")
    assert isinstance(policy, EmailCaptureStepPolicy)
    assert policy.email_provided_intent == "contact_shared"


def test_clients_resolved_from_settings(config_dir, tmp_path):
    with patch("avatar_engine.services.container.get_optional_llm_client") as factory:
        factory.return_value = None

        build_services(make_settings(config_dir, tmp_path))

    assert [c.args[0] for c in factory.call_args_list] == ["classification", "generation"]


async def test_sweeper_lock_blocks_turns_for_same_session(config_dir, tmp_path):
    services = build_services(
        make_settings(config_dir, tmp_path),
        classification_client=None,
        generation_client=None,
    )

    async with services.locks.acquire("s1"):
        assert services.avatar_service.locks.is_locked("s1")
        assert not services.avatar_service.locks.is_locked("s2")
