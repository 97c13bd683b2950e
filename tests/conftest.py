from pathlib import Path

import pytest

from fantasy_viz.settings import AppSettings


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        yahoo_client_id="client-id-1234",
        yahoo_client_secret="client-secret-5678",
        base_url="http://localhost:5000",
        season=2024,
        current_week=5,
        data_root=tmp_path / "data",
        request_timeout=5.0,
        min_request_interval=0.0,
        log_level="DEBUG",
    )
