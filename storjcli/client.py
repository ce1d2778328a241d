"""
StorjClient - High-level async client for the storage network.

Example:
    >>> async with StorjClient(config, keyring) as storj:
    ...     report = await storj.upload(bucket_id, ['~/photos/*.jpg'])
    ...     path = await storj.download(bucket_id, file_id, './downloads/')
"""
from pathlib import Path
from typing import Optional, List, Iterable, Union, Any, Callable, Dict

from .core.api import AsyncBridgeClient, BridgeConfig
from .core.keyring import KeyRingProtocol, MemoryKeyRing
from .core.logging import get_logger
from .core.transfer import (
    BucketInfo,
    FarmerContact,
    FileMetadata,
    FrameInfo,
    ShardPointer,
    Token,
    UploadReport,
)
from .core.upload import UploadPipeline
from .core.download import DownloadPipeline

logger = get_logger('storjcli')


class StorjClient:
    """
    High-level async client.

    Bundles the bridge client and the key-ring, and runs upload and
    download pipelines against them.

    Args:
        config: Bridge configuration (or an already built bridge client)
        keyring: Key-ring for file secrets (in-memory if omitted)
    """

    def __init__(
        self,
        config: Optional[Union[BridgeConfig, AsyncBridgeClient]] = None,
        keyring: Optional[KeyRingProtocol] = None
    ):
        if isinstance(config, AsyncBridgeClient):
            self._bridge = config
        else:
            self._bridge = AsyncBridgeClient(config or BridgeConfig.from_env())
        self._keyring = keyring if keyring is not None else MemoryKeyRing()

    @property
    def bridge(self) -> AsyncBridgeClient:
        return self._bridge

    @property
    def keyring(self) -> KeyRingProtocol:
        return self._keyring

    async def __aenter__(self) -> 'StorjClient':
        await self._bridge.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the bridge connection."""
        await self._bridge.close()

    # Transfers

    async def upload(
        self,
        bucket: str,
        file_paths: Iterable[Union[str, Path]],
        file_concurrency: int = UploadPipeline.DEFAULT_FILE_CONCURRENCY,
        shard_concurrency: int = UploadPipeline.DEFAULT_SHARD_CONCURRENCY,
        on_event: Optional[Dict[str, Callable]] = None,
        **kwargs
    ) -> UploadReport:
        """
        Encrypt and upload files into a bucket.

        Args:
            bucket: Bucket id
            file_paths: Paths or glob patterns
            file_concurrency: Files in flight at once
            shard_concurrency: Shards in flight per file
            on_event: Optional {event name: handler} for pipeline events

        Returns:
            Report of uploaded files
        """
        pipeline = UploadPipeline(
            self._bridge,
            self._keyring,
            bucket,
            file_paths,
            file_concurrency=file_concurrency,
            shard_concurrency=shard_concurrency,
            **kwargs
        )
        for event, handler in (on_event or {}).items():
            pipeline.on(event, handler)
        return await pipeline.run()

    async def download(
        self,
        bucket: str,
        file_id: str,
        destination: Union[str, Path],
        excluded_peers: Iterable[str] = (),
        progress_callback: Optional[Callable[[int, Optional[int]], None]] = None,
        **kwargs
    ) -> Path:
        """
        Download and decrypt a file.

        Args:
            bucket: Bucket id
            file_id: File id
            destination: File path or existing directory
            excluded_peers: Farmer node ids to avoid
            progress_callback: Called with (received, total)

        Returns:
            Path the file was written to
        """
        pipeline = DownloadPipeline(
            self._bridge,
            self._keyring,
            bucket,
            file_id,
            destination,
            excluded_peers=excluded_peers,
            progress_callback=progress_callback,
            **kwargs
        )
        return await pipeline.run()

    async def stream(
        self,
        bucket: str,
        file_id: str,
        sink: Any,
        excluded_peers: Iterable[str] = ()
    ) -> FileMetadata:
        """Decrypt a file into a binary sink (e.g. stdout)."""
        pipeline = DownloadPipeline(
            self._bridge,
            self._keyring,
            bucket,
            file_id,
            excluded_peers=excluded_peers
        )
        return await pipeline.stream_to(sink)

    # Bridge wrappers

    async def get_info(self) -> Dict[str, Any]:
        return await self._bridge.get_info()

    async def register(self, email: str, password: str) -> Dict[str, Any]:
        return await self._bridge.register(email, password)

    async def reset_password(self, email: str, new_password: str) -> Dict[str, Any]:
        return await self._bridge.reset_password(email, new_password)

    async def list_contacts(self, page: int = 1, connected: bool = False) -> List[FarmerContact]:
        return await self._bridge.list_contacts(page, connected=connected)

    async def get_contact(self, node_id: str) -> FarmerContact:
        return await self._bridge.get_contact(node_id)

    async def list_buckets(self) -> List[BucketInfo]:
        return await self._bridge.list_buckets()

    async def get_bucket(self, bucket: str) -> BucketInfo:
        return await self._bridge.get_bucket(bucket)

    async def add_bucket(self, name: str) -> BucketInfo:
        return await self._bridge.add_bucket(name)

    async def remove_bucket(self, bucket: str) -> None:
        await self._bridge.remove_bucket(bucket)

    async def update_bucket(
        self,
        bucket: str,
        name: Optional[str] = None,
        storage: Optional[int] = None,
        transfer: Optional[int] = None
    ) -> BucketInfo:
        return await self._bridge.update_bucket(bucket, name=name, storage=storage, transfer=transfer)

    async def add_frame(self) -> FrameInfo:
        return await self._bridge.add_frame()

    async def list_frames(self) -> List[FrameInfo]:
        return await self._bridge.list_frames()

    async def get_frame(self, frame_id: str) -> FrameInfo:
        return await self._bridge.get_frame(frame_id)

    async def remove_frame(self, frame_id: str) -> None:
        await self._bridge.remove_frame(frame_id)

    async def list_files(self, bucket: str) -> List[FileMetadata]:
        return await self._bridge.list_files(bucket)

    async def get_file_info(self, bucket: str, file_id: str) -> FileMetadata:
        return await self._bridge.get_file_info(bucket, file_id)

    async def remove_file(self, bucket: str, file_id: str) -> None:
        """Delete a file and forget its secret."""
        await self._bridge.remove_file(bucket, file_id)
        self._keyring.delete(file_id)
        logger.info(f"File {file_id} was removed from bucket {bucket}")

    async def create_mirrors(self, bucket: str, file_id: str, redundancy: int = 3) -> List[List[Any]]:
        """Replicate each shard of a file to ``redundancy`` extra farmers."""
        logger.info(f"Establishing {redundancy} mirrors per shard for redundancy")
        return await self._bridge.create_mirrors(bucket, file_id, redundancy)

    async def create_token(self, bucket: str, operation: str) -> Token:
        return await self._bridge.create_token(bucket, operation)

    async def get_pointers(
        self,
        bucket: str,
        file_id: str,
        skip: int = 0,
        limit: int = 6,
        exclude: Iterable[str] = ()
    ) -> List[ShardPointer]:
        """Resolve shard locations using a fresh pull token."""
        token = await self._bridge.create_token(bucket, 'PULL')
        return await self._bridge.get_file_pointers(
            bucket, file_id, token, skip=skip, limit=limit, exclude=exclude
        )
