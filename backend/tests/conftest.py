"""Shared fixtures: a scratch SQLite database per test and scripted network fakes."""
import asyncio
import os
import socket

# Cheap hashes keep the API tests fast; must be set before dxmonitor.config loads
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import timedelta
from typing import Dict, List, Optional

import pytest

from dxmonitor.database import build_engine, build_sessionmaker, create_tables
from dxmonitor.models import MonitorState
from dxmonitor.services.checker import ProbeResult
from dxmonitor.services.ping_service import PingService
from dxmonitor.services.reliability import ReliabilityAggregator
from dxmonitor.services.storage import MonitorStore
from dxmonitor.utils.timeutils import utcnow

UP = ProbeResult(MonitorState.UP, 120)
DOWN = ProbeResult(MonitorState.DOWN, None)


class ScriptedChecker:
    """Stands in for CheckerService; answers from a per-URL script."""

    def __init__(self, results: Optional[Dict[str, object]] = None, default: ProbeResult = UP):
        self.results = dict(results or {})
        self.default = default
        self.probed: List[str] = []

    async def probe(self, url: str) -> ProbeResult:
        self.probed.append(url)
        outcome = self.results.get(url, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, list):
            return outcome.pop(0)
        return outcome


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'dxmonitor-test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine) -> MonitorStore:
    return MonitorStore(build_sessionmaker(engine))


@pytest.fixture
def aggregator(store) -> ReliabilityAggregator:
    return ReliabilityAggregator(store)


@pytest.fixture
def checker() -> ScriptedChecker:
    return ScriptedChecker()


@pytest.fixture
def pinger(store, checker, aggregator) -> PingService:
    return PingService(store=store, checker=checker, aggregator=aggregator, tick_seconds=30)


@pytest.fixture
def make_monitor(store):
    """Create a monitor; ``checked_ago`` backdates its last check."""
    counter = {"n": 0}

    async def _make(
        url: Optional[str] = None,
        interval: int = 5,
        checked_ago: Optional[timedelta] = None,
        password: str = "secret-pass",
    ):
        counter["n"] += 1
        monitor = await store.create_monitor(
            name=f"Site {counter['n']}",
            url=url or f"https://site{counter['n']}.example.com",
            interval=interval,
            password=password,
        )
        if checked_ago is not None:
            monitor = await store.update_monitor_status(
                monitor.id, MonitorState.UP, 80, utcnow() - checked_ago
            )
        return monitor

    return _make


async def _drain_request(reader) -> bytes:
    request_line = await reader.readline()
    while (await reader.readline()) not in (b"\r\n", b""):
        pass
    return request_line


@pytest.fixture
async def dripping_server():
    """Local HTTP server that rejects HEAD and streams a never-ending GET body.

    Yields the base URL. The body is one chunked byte every 0.2s, like a
    radio stream or camera feed.
    """
    writers = set()
    handlers = set()

    async def handle(reader, writer):
        writers.add(writer)
        handlers.add(asyncio.current_task())
        try:
            request_line = await _drain_request(reader)
            if request_line.startswith(b"HEAD"):
                writer.write(
                    b"HTTP/1.1 405 Method Not Allowed\r\n"
                    b"Content-Length: 0\r\nConnection: close\r\n\r\n"
                )
                await writer.drain()
                return
            writer.write(
                b"HTTP/1.1 200 OK\r\nContent-Type: audio/mpeg\r\n"
                b"Transfer-Encoding: chunked\r\n\r\n"
            )
            for _ in range(300):
                writer.write(b"1\r\nx\r\n")
                await writer.drain()
                await asyncio.sleep(0.2)
        except ConnectionError:
            pass
        finally:
            writers.discard(writer)
            handlers.discard(asyncio.current_task())
            writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    yield f"http://127.0.0.1:{port}"

    for task in list(handlers):
        task.cancel()
    await asyncio.gather(*handlers, return_exceptions=True)
    for writer in list(writers):
        writer.close()
    server.close()
    await server.wait_closed()


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
