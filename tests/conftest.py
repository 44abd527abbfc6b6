from __future__ import annotations

import os
import sys
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

# Detect CI environment (GitHub Actions sets CI=true)
IS_CI = os.environ.get("CI", "").lower() == "true"


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "local_only: marks tests that require local environment (skip in CI)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip local_only tests when running in CI."""
    if not IS_CI:
        return
    skip_ci = pytest.mark.skip(reason="Skipped in CI (requires local environment)")
    for item in items:
        if "local_only" in item.keywords:
            item.add_marker(skip_ci)


ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

FAKE_BACKEND_SCRIPT = Path(__file__).resolve().parent / "mocks" / "fake_backend.py"

from askcmd.core.audit import AuditLog  # noqa: E402
from askcmd.core.backend import BackendResult  # noqa: E402
from askcmd.core.breaker import CircuitBreaker  # noqa: E402
from askcmd.core.cache import CommandCache  # noqa: E402
from askcmd.core.pipeline import CommandPipeline  # noqa: E402
from askcmd.core.rate_limit import RateLimiter  # noqa: E402
from askcmd.core.state import MemoryStateStore  # noqa: E402


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """In-process backend: replays canned replies or raises canned errors."""

    def __init__(self, replies: Sequence[str | BaseException] = ("find . -name '*.py'",)) -> None:
        self.replies = list(replies)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def invoke(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies[min(len(self.prompts), len(self.replies)) - 1]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeRunner:
    """BackendRunner that records argv and returns canned process results."""

    def __init__(self, results: Sequence[BackendResult]) -> None:
        self.results = list(results)
        self.calls: list[list[str]] = []

    async def run(self, argv: Sequence[str], timeout: float) -> BackendResult:
        self.calls.append(list(argv))
        return self.results[min(len(self.calls), len(self.results)) - 1]


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture(autouse=True)
def isolate_config(tmp_path: Path, monkeypatch: Any) -> Path:
    """Point config and state to a temp home so tests don't touch user state."""
    for key in list(os.environ):
        if key.startswith("ASKCMD_"):
            monkeypatch.delenv(key)
    # Delivery must never type into the developer's terminal
    monkeypatch.delenv("TMUX", raising=False)
    home = tmp_path / "askcmd-home"
    monkeypatch.setenv("ASKCMD_HOME", str(home))
    monkeypatch.setenv("ASKCMD_CONFIG", str(home / "config.toml"))
    return home


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def fake_backend_factory() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def fake_runner_factory() -> Callable[..., FakeRunner]:
    return FakeRunner


@pytest.fixture
def audit_log(tmp_path: Path) -> AuditLog:
    return AuditLog(tmp_path / "logs", trace_id="test-trace")


@pytest.fixture
def make_pipeline(
    clock: FakeClock, audit_log: AuditLog
) -> Callable[..., tuple[CommandPipeline, FakeBackend]]:
    """Build a pipeline over in-memory state and a FakeBackend."""

    def factory(
        replies: Sequence[str | BaseException] = ("find . -name '*.py'",),
        *,
        safe_mode: bool = False,
        ttl: int = 3600,
        max_calls: int = 10,
        use_cache: bool = True,
        **kwargs: Any,
    ) -> tuple[CommandPipeline, FakeBackend]:
        backend = FakeBackend(replies)
        pipeline = CommandPipeline(
            cache=CommandCache(MemoryStateStore(), ttl, clock=clock),
            rate_limiter=RateLimiter(MemoryStateStore(), max_calls, 60.0, clock=clock),
            backend=backend,
            audit=audit_log,
            safe_mode=safe_mode,
            use_cache=use_cache,
            **kwargs,
        )
        return pipeline, backend

    return factory


@pytest.fixture
def breaker_factory(
    memory_store: MemoryStateStore, clock: FakeClock
) -> Callable[..., CircuitBreaker]:
    def factory(threshold: int = 3, cooldown: float = 60.0, **kwargs: Any) -> CircuitBreaker:
        return CircuitBreaker(memory_store, threshold, cooldown, clock=clock, **kwargs)

    return factory


@pytest.fixture
def fake_backend_env(monkeypatch: Any, tmp_path: Path) -> Callable[..., Path]:
    """Configure the CLI to use tests/mocks/fake_backend.py as its backend.

    Returns a setter taking the reply text and optional exit code / delay;
    the returned path is the file where every invocation is counted.
    """
    counter = tmp_path / "backend-calls.log"
    monkeypatch.setenv(
        "ASKCMD_BACKEND__COMMAND", f'["{sys.executable}", "{FAKE_BACKEND_SCRIPT}"]'
    )
    monkeypatch.setenv("FAKE_BACKEND_COUNTER", str(counter))

    def configure(reply: str = "find . -name '*.py'", exit_code: int = 0, delay: float = 0.0) -> Path:
        monkeypatch.setenv("FAKE_BACKEND_REPLY", reply)
        monkeypatch.setenv("FAKE_BACKEND_EXIT", str(exit_code))
        monkeypatch.setenv("FAKE_BACKEND_DELAY", str(delay))
        return counter

    return configure
