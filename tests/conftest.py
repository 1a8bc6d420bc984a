from __future__ import annotations

from pathlib import Path

import pytest
from fakes import build_test_engine, make_broker

from decision_engine.config import Settings
from decision_engine.engine import EngineContext
from decision_engine.exec.paper import PaperBroker


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(journal_dir=tmp_path / "journal")


@pytest.fixture
def broker(settings: Settings) -> PaperBroker:
    return make_broker(settings)


@pytest.fixture
def engine_ctx(settings: Settings, broker: PaperBroker) -> EngineContext:
    return build_test_engine(settings, broker)
