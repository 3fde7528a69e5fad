"""Shared fixtures: a throwaway data directory and an orchestrator with fake I/O."""

from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from termpost.config import Config
from termpost.dispatcher import DispatchOutcome
from termpost.models import HttpResponse, ResolvedRequest
from termpost.orchestrator import Orchestrator
from termpost.storage import StorageBackend


@pytest.fixture
def anyio_backend():
    return "asyncio"


@dataclass
class FakeHandle:
    """Completion handle whose outcome is released by the test."""

    resolved: ResolvedRequest
    outcome: Optional[DispatchOutcome] = None
    consumed: bool = False

    def succeed(self, status: int = 200, body: bytes = b'{"ok": true}', elapsed_ms: int = 12):
        response = HttpResponse(
            status=status,
            status_text="OK" if status < 400 else "Error",
            headers=[("Content-Type", "application/json")],
            body=body,
            elapsed_ms=elapsed_ms,
        )
        self.outcome = DispatchOutcome(
            request_id=self.resolved.source_id,
            resolved=self.resolved,
            response=response,
            elapsed_ms=elapsed_ms,
        )

    def fail(self, error: str):
        self.outcome = DispatchOutcome(
            request_id=self.resolved.source_id,
            resolved=self.resolved,
            error=error,
            elapsed_ms=5,
        )

    def poll(self) -> Optional[DispatchOutcome]:
        if self.consumed or self.outcome is None:
            return None
        self.consumed = True
        return self.outcome


@dataclass
class FakeDispatcher:
    handles: List[FakeHandle] = field(default_factory=list)

    def dispatch(self, resolved: ResolvedRequest) -> FakeHandle:
        handle = FakeHandle(resolved)
        self.handles.append(handle)
        return handle

    async def close(self):
        pass


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(data_dir=tmp_path / "data")


@pytest.fixture
def store(config) -> StorageBackend:
    return StorageBackend(config)


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def clipboard() -> List[str]:
    return []


@pytest.fixture
def orchestrator(store, dispatcher, clipboard) -> Orchestrator:
    return Orchestrator(store, dispatcher, clipboard=clipboard.append, clock=lambda: 100.0)
