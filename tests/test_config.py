"""Tests for runtime settings."""

import pytest

from production_control import ProductionService
from production_control.config import DEFAULT_STAGE_NAMES, DEFAULT_STAGES, Settings
from production_control.repository import InMemoryStore
from production_control.storage import ProductionDatabase

ENV_NAMES = (
    "PRODUCTION_CONTROL_DB",
    "PRODUCTION_CONTROL_LOG_LEVEL",
    "PRODUCTION_CONTROL_STAGES",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.db is None
        assert settings.log_level == "INFO"
        assert settings.stages == DEFAULT_STAGE_NAMES
        assert settings.stage_descriptors == DEFAULT_STAGES

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PRODUCTION_CONTROL_DB", str(tmp_path / "env.sqlite3"))
        monkeypatch.setenv("PRODUCTION_CONTROL_LOG_LEVEL", "debug")
        monkeypatch.setenv("PRODUCTION_CONTROL_STAGES", "Cut, Sew ,,Pack")

        settings = Settings()

        assert settings.log_level == "DEBUG"
        assert [(stage.name, stage.position) for stage in settings.stage_descriptors] == [
            ("Cut", 1),
            ("Sew", 2),
            ("Pack", 3),
        ]
        service = ProductionService.from_settings(settings)
        try:
            assert isinstance(service.store, ProductionDatabase)
            order = service.create_order("SO-1", "Acme")
            assert len(service.steps_for(order.id)) == 3
        finally:
            service.close()

    def test_empty_variables_fall_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("PRODUCTION_CONTROL_DB", "")
        monkeypatch.setenv("PRODUCTION_CONTROL_STAGES", "")

        settings = Settings()

        assert settings.db is None
        assert settings.stages == DEFAULT_STAGE_NAMES

    def test_unknown_log_level_rejected(self, monkeypatch):
        with pytest.raises(ValueError):
            Settings(log_level="VERBOSE")

        monkeypatch.setenv("PRODUCTION_CONTROL_LOG_LEVEL", "chatty")
        with pytest.raises(ValueError):
            Settings()

    def test_stage_list_cannot_be_blank(self):
        with pytest.raises(ValueError):
            Settings(stages=" , ,")

    def test_in_memory_without_database(self):
        service = ProductionService.from_settings(Settings())

        assert isinstance(service.store, InMemoryStore)
