"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import asyncio
import socket
from contextlib import closing
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from redis_lite.cache.keyspace import Keyspace
from redis_lite.client import AsyncClient
from redis_lite.engine.engine import CommandEngine
from redis_lite.network.tcp_server import RedisLiteServer
from redis_lite.persistence.aof import AppendOnlyLog
from redis_lite.protocol.codec import ProtocolCodec


def find_free_port() -> int:
    """Find an available port for testing."""
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(('', 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


async def start_server(srv: RedisLiteServer) -> asyncio.Task:
    """Start a server in a background task and wait until it accepts."""
    task = asyncio.create_task(srv.start())
    await asyncio.wait_for(srv.ready.wait(), timeout=5)
    return task


async def stop_server(srv: RedisLiteServer, task: asyncio.Task) -> None:
    """Stop a server started with start_server()."""
    await srv.stop()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def keyspace() -> Keyspace:
    """Create a fresh, empty Keyspace."""
    return Keyspace()


@pytest.fixture
def engine(keyspace: Keyspace) -> CommandEngine:
    """Create a CommandEngine over the keyspace fixture."""
    return CommandEngine(keyspace)


@pytest.fixture
def codec() -> ProtocolCodec:
    """Create a ProtocolCodec instance."""
    return ProtocolCodec()


# ============================================================================
# Persistence Fixtures
# ============================================================================

@pytest.fixture
def aof_path(tmp_path: Path) -> Path:
    """Path of a not-yet-existing AOF file in a temporary directory."""
    return tmp_path / "appendonly.aof"


@pytest.fixture
def aof(aof_path: Path, engine: CommandEngine):
    """Open an AOF bound to the engine fixture; closed after the test."""
    log = AppendOnlyLog.open(aof_path, engine, flush_interval=0.05)
    yield log
    log.close()


# ============================================================================
# Server Fixtures
# ============================================================================

@pytest.fixture
def server_port() -> int:
    """Get a free port for server testing."""
    return find_free_port()


@pytest_asyncio.fixture
async def server(
    server_port: int,
    engine: CommandEngine,
    aof: AppendOnlyLog,
) -> AsyncGenerator[RedisLiteServer, None]:
    """
    Create and start a server instance for testing.

    This fixture:
    1. Creates a RedisLiteServer on a random free port, backed by the
       engine and aof fixtures
    2. Starts it in a background task
    3. Yields the server for testing
    4. Cleans up after the test
    """
    srv = RedisLiteServer(
        host='127.0.0.1',
        port=server_port,
        engine=engine,
        aof=aof,
        flush_interval=0.05,
    )
    task = await start_server(srv)

    yield srv

    await stop_server(srv, task)


@pytest.fixture
def client_factory(server_port: int):
    """
    Factory fixture to create test clients.

    Usage:
        async def test_something(server, client_factory):
            async with client_factory() as client:
                response = await client.get("key")
    """
    def factory() -> AsyncClient:
        return AsyncClient('127.0.0.1', server_port)
    return factory


@pytest_asyncio.fixture
async def client_reader_writer(
    server: RedisLiteServer,
    server_port: int
) -> AsyncGenerator[tuple, None]:
    """
    Create a raw reader/writer pair connected to the server.

    Useful for low-level protocol testing.
    """
    reader, writer = await asyncio.open_connection('127.0.0.1', server_port)

    yield reader, writer

    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError):
        pass


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
