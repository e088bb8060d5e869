from __future__ import annotations

from pathlib import Path

import pytest

from upm.actions import ActionContext
from upm.config import UpmConfig


@pytest.fixture
def config(tmp_path: Path) -> UpmConfig:
    return UpmConfig(
        output_dir=tmp_path / "reports",
        log_dir=tmp_path / "logs",
        cache_dir=tmp_path / "cache",
    )


@pytest.fixture
def ctx(config: UpmConfig) -> ActionContext:
    return ActionContext.from_config(config)
