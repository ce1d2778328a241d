"""
Protocol definitions for the transfer pipelines.

The pipelines only depend on these narrow interfaces, so the concrete
bridge client can be swapped for a fake in tests.
"""
from typing import Protocol, AsyncIterator, Iterable, Optional, List, Union
from pathlib import Path

from .models import FileMetadata, Token, ShardPointer


class ShardStreamProtocol(Protocol):
    """
    Readable stream of a file's (encrypted) shard bytes.
    
    Iterating yields byte chunks. A failure attributable to one peer is
    raised as NetworkTransferError carrying that shard's pointer.
    """
    
    @property
    def length(self) -> Optional[int]:
        """Total number of bytes the stream will yield, if known."""
        ...
    
    def __aiter__(self) -> AsyncIterator[bytes]:
        ...
    
    async def close(self) -> None:
        """Release any open connection."""
        ...


class BridgeClientProtocol(Protocol):
    """Protocol for the storage network client used by the pipelines."""
    
    async def create_token(self, bucket: str, operation: str) -> Token:
        """
        Create a push or pull token.
        
        Args:
            bucket: Bucket id
            operation: 'PUSH' or 'PULL'
        """
        ...
    
    async def get_file_info(self, bucket: str, file_id: str) -> FileMetadata:
        """
        Fetch file metadata.
        
        Raises:
            BridgeNotFoundError: If the file does not exist
        """
        ...
    
    async def store_file(
        self,
        bucket: str,
        token: Token,
        path: Union[str, Path],
        filename: Optional[str] = None,
        shard_concurrency: int = 3
    ) -> FileMetadata:
        """
        Transfer a staged (already encrypted) file and register it.
        
        Args:
            bucket: Bucket id
            token: Push token
            path: Staged file path
            filename: Name to register the file under
            shard_concurrency: Maximum shards in flight for this file
        """
        ...
    
    async def create_file_stream(
        self,
        bucket: str,
        file_id: str,
        exclude: Iterable[str] = ()
    ) -> ShardStreamProtocol:
        """
        Open a readable stream of the file's shards.
        
        Args:
            bucket: Bucket id
            file_id: File id
            exclude: Peer node ids not to download from
        """
        ...
    
    async def get_file_pointers(
        self,
        bucket: str,
        file_id: str,
        token: str,
        skip: int = 0,
        limit: int = 6,
        exclude: Iterable[str] = ()
    ) -> List[ShardPointer]:
        """Resolve shard pointers for a range of a file."""
        ...
