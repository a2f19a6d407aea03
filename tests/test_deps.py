import pytest

from storybook.api.deps import StorybookServices, build_services
from storybook.core import settings as settings_module
from storybook.core.exceptions import ConfigurationError


def test_build_services_wires_one_store(fake_gemini):
    services = build_services(fake_gemini)
    assert isinstance(services, StorybookServices)
    assert services.orchestrator._store is services.store


def test_build_services_applies_retry_settings(fake_gemini, monkeypatch):
    monkeypatch.setattr(settings_module.settings, "retry_max_attempts", 5)
    services = build_services(fake_gemini)
    assert services.analyzer._retry_policy.max_attempts == 5
    assert services.orchestrator._retry_policy.max_attempts == 5


def test_build_services_rejects_inverted_scene_range(fake_gemini, monkeypatch):
    monkeypatch.setattr(settings_module.settings, "analysis_min_scenes", 10)
    monkeypatch.setattr(settings_module.settings, "analysis_max_scenes", 5)
    with pytest.raises(ConfigurationError):
        build_services(fake_gemini)
