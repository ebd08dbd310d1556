import asyncio
from typing import Awaitable, Callable, Optional

import pytest

from config import ServerConfig
from server import handle_client
from store import Store


class ChunkReader:
    """Hands out queued chunks, then end-of-stream."""

    def __init__(self, chunks: list[bytes]):
        self._chunks = list(chunks)

    async def read(self, _: int) -> bytes:
        await asyncio.sleep(0)
        return self._chunks.pop(0) if self._chunks else b""


class RecordingWriter:
    def __init__(self) -> None:
        self.writes: list[bytes] = []
        self.closed = False
        self.drain_calls = 0

    def get_extra_info(self, name: str):
        return ("127.0.0.1", 50000) if name == "peername" else None

    def write(self, data: bytes) -> None:
        self.writes.append(data)

    async def drain(self) -> None:
        self.drain_calls += 1
        await asyncio.sleep(0)

    def close(self) -> None:
        self.closed = True


RunClient = Callable[..., Awaitable[RecordingWriter]]


@pytest.fixture
def store() -> Store:
    return Store()


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def run_client(store: Store, writer: RecordingWriter) -> RunClient:
    """Feed chunks through one connection and return what it wrote."""

    async def _run(chunks: list[bytes], config: Optional[ServerConfig] = None) -> RecordingWriter:
        await handle_client(ChunkReader(chunks), writer, store, config)
        return writer

    return _run
