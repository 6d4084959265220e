import sys
from pathlib import Path

import pytest
import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from auth_profiles.config import AuthProfilesConfig
from auth_profiles.manager import AuthProfileManager
from auth_profiles.storage import AuthProfileStorage
from auth_profiles.utils import clock as clock_module


HOUR_MS = 60 * 60 * 1000
START_MS = 1_800_000_000_000


class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(clock_module, "now_ms", fake)
    return fake


@pytest.fixture
def config(tmp_path: Path) -> AuthProfilesConfig:
    return AuthProfilesConfig(data_dir=tmp_path / "xopcbot", failure_log_dir=None)


@pytest.fixture
def storage(config: AuthProfilesConfig) -> AuthProfileStorage:
    return AuthProfileStorage(config.store_path, legacy_path=config.legacy_path)


@pytest_asyncio.fixture
async def manager(config: AuthProfilesConfig) -> AuthProfileManager:
    async with AuthProfileManager(config) as handle:
        yield handle
