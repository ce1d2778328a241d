"""Pytest fixtures for storjcli tests."""
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from storjcli.core.crypto import EncryptStream, FileSecret, calculate_file_id
from storjcli.core.exceptions import BridgeError, BridgeNotFoundError
from storjcli.core.keyring import MemoryKeyRing
from storjcli.core.transfer import (
    FarmerContact,
    FileMetadata,
    ResourcePressureMonitor,
    ShardPointer,
    Token,
)


def make_pointer(node_id: str, index: int = 0) -> ShardPointer:
    """Shard pointer naming a farmer."""
    return ShardPointer(
        index=index,
        hash=f"hash{index}",
        size=1,
        token='shard-token',
        farmer=FarmerContact(node_id=node_id, address='127.0.0.1', port=4000)
    )


class FakeShardStream:
    """Shard stream over in-memory bytes that can fail midway."""

    def __init__(self, chunks: List[bytes], length: Optional[int], failure: Optional[BaseException] = None):
        self._chunks = chunks
        self._length = length
        self._failure = failure
        self.closed = False

    @property
    def length(self) -> Optional[int]:
        return self._length

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for i, chunk in enumerate(self._chunks):
            yield chunk
            if self._failure is not None and i == 0:
                raise self._failure

    async def close(self) -> None:
        self.closed = True


class FakeBridgeClient:
    """
    In-memory bridge.

    Stores encrypted file bytes per bucket and lets tests inject token
    failures, slow stores and stream failures.
    """

    def __init__(self):
        self.files: Dict[str, Dict[str, Tuple[FileMetadata, bytes]]] = {}
        self.token_failures = 0
        self.token_calls = 0
        self.store_delay = 0.0
        self.store_failures: Dict[str, BaseException] = {}
        self.active_stores = 0
        self.max_active_stores = 0
        self.stored_order: List[str] = []
        self.stream_failures: List[BaseException] = []
        self.stream_excludes: List[List[str]] = []
        self.streams: List[FakeShardStream] = []
        self.info_calls = 0

    async def create_token(self, bucket: str, operation: str) -> Token:
        self.token_calls += 1
        if self.token_failures > 0:
            self.token_failures -= 1
            raise BridgeError("Token service unavailable", status=503)
        return Token(token='token', bucket=bucket, operation=operation)

    async def get_file_info(self, bucket: str, file_id: str) -> FileMetadata:
        self.info_calls += 1
        await asyncio.sleep(0)
        try:
            return self.files[bucket][file_id][0]
        except KeyError:
            raise BridgeNotFoundError("File not found", status=404)

    async def store_file(self, bucket, token, path, filename=None, shard_concurrency=3) -> FileMetadata:
        path = Path(path)
        filename = filename or path.name
        self.active_stores += 1
        self.max_active_stores = max(self.max_active_stores, self.active_stores)
        try:
            await asyncio.sleep(self.store_delay)
            failure = self.store_failures.get(filename)
            if failure is not None:
                raise failure
            data = path.read_bytes()
        finally:
            self.active_stores -= 1

        meta = FileMetadata(
            filename=filename,
            mimetype=mimetypes.guess_type(filename)[0] or 'application/octet-stream',
            size=len(data),
            id=calculate_file_id(bucket, filename)
        )
        self.files.setdefault(bucket, {})[meta.id] = (meta, data)
        self.stored_order.append(filename)
        return meta

    async def create_file_stream(self, bucket, file_id, exclude=()) -> FakeShardStream:
        self.stream_excludes.append(list(exclude))
        meta, data = self.files[bucket][file_id]
        failure = self.stream_failures.pop(0) if self.stream_failures else None
        half = max(1, len(data) // 2)
        stream = FakeShardStream([data[:half], data[half:]], len(data), failure)
        self.streams.append(stream)
        return stream

    async def get_file_pointers(self, bucket, file_id, token, skip=0, limit=6, exclude=()):
        return [make_pointer('farmer-a', index=skip)]

    def add_file(self, bucket: str, filename: str, plaintext: bytes, secret: FileSecret) -> FileMetadata:
        """Store a file as if it had been uploaded."""
        encrypter = EncryptStream(secret)
        data = encrypter.update(plaintext) + encrypter.finalize()
        meta = FileMetadata(
            filename=filename,
            mimetype='application/octet-stream',
            size=len(data),
            id=calculate_file_id(bucket, filename)
        )
        self.files.setdefault(bucket, {})[meta.id] = (meta, data)
        return meta


@pytest.fixture
def bridge():
    """Fake bridge client."""
    return FakeBridgeClient()


@pytest.fixture
def keyring():
    """In-memory key-ring."""
    return MemoryKeyRing()


@pytest.fixture
def healthy_monitor():
    """Monitor reporting plenty of free memory."""
    return ResourcePressureMonitor(health_source=lambda: 10 ** 12, interval=0.01)


@pytest.fixture
def make_files(tmp_path):
    """Factory creating {name: content} files under tmp_path/src."""
    source_dir = tmp_path / 'src'
    source_dir.mkdir()

    def factory(files: Dict[str, bytes]) -> List[Path]:
        paths = []
        for name, content in files.items():
            path = source_dir / name
            path.write_bytes(content)
            paths.append(path)
        return paths
    return factory


@pytest.fixture
def secret():
    """Random file secret."""
    return FileSecret.generate()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handlers installed by CLI runs so caplog sees records."""
    yield
    root = logging.getLogger('storjcli')
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.propagate = True


@pytest.fixture
def pointer():
    """Factory for shard pointers: pointer(node_id, index=0)."""
    return make_pointer
