# tests/conftest.py
import pathlib

import pytest
import yaml

from charsmith.content.catalog import Catalog
from charsmith.engine.config import EngineSettings
from charsmith.models.character import AbilityScores, Character

FIXTURES = pathlib.Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def _clean_engine_env(monkeypatch):
    # setenv first so values loaded from .env files during a test are undone too
    for name in ("CHARSMITH_DEFAULT_SOURCE", "CHARSMITH_KEEP_LEGACY_COMBINED", "CHARSMITH_MAX_LEVEL"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture(scope="session")
def catalog_data():
    return yaml.safe_load((FIXTURES / "catalog.yaml").read_text(encoding="utf-8"))


@pytest.fixture(scope="session")
def catalog(catalog_data):
    return Catalog.from_data(catalog_data)


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def character():
    return Character(
        name="Tess",
        ability_scores=AbilityScores(str=15, dex=13, con=14, int=12, wis=10, cha=8),
    )
