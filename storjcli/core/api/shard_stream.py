"""
Readable stream over a stored file's shards.

Pointers are resolved lazily in batches; each shard is streamed straight
from the farmer holding it.
"""
from typing import AsyncIterator, Iterable, Optional, List, TYPE_CHECKING

from ..logging import get_logger
from ..transfer.models import Token

if TYPE_CHECKING:
    from .bridge_client import AsyncBridgeClient

logger = get_logger('storjcli.api.stream')


class ShardStream:
    """
    Async iterator of encrypted file bytes, in shard order.

    A shard that can't be fetched raises NetworkTransferError carrying
    that shard's pointer, so callers can retry without the failed farmer.
    """

    POINTER_BATCH_SIZE = 6

    def __init__(
        self,
        client: 'AsyncBridgeClient',
        bucket: str,
        file_id: str,
        token: Token,
        exclude: Iterable[str] = (),
        length: Optional[int] = None
    ):
        self._client = client
        self._bucket = bucket
        self._file_id = file_id
        self._token = token
        self._exclude: List[str] = list(exclude)
        self._length = length
        self._iterator: Optional[AsyncIterator[bytes]] = None

    @property
    def length(self) -> Optional[int]:
        return self._length

    @property
    def exclude(self) -> List[str]:
        return list(self._exclude)

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._iterator is None:
            self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncIterator[bytes]:
        skip = 0
        while True:
            pointers = await self._client.get_file_pointers(
                self._bucket,
                self._file_id,
                self._token,
                skip=skip,
                limit=self.POINTER_BATCH_SIZE,
                exclude=self._exclude
            )
            if not pointers:
                return

            for pointer in pointers:
                logger.debug(
                    f"Fetching shard {pointer.index} from {pointer.farmer.node_id}"
                )
                async for chunk in self._client.read_shard(pointer):
                    yield chunk

            skip += len(pointers)

    async def close(self) -> None:
        """Stop iterating and release the open farmer connection."""
        if self._iterator is not None:
            await self._iterator.aclose()
            self._iterator = None
