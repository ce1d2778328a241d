"""
Async bridge client.

Talks to the storage bridge over HTTP for accounts, buckets, files,
frames, tokens and contacts, and to farmers for the shard bytes themselves.
"""
import json
import math
import asyncio
import mimetypes
from pathlib import Path
from typing import Dict, Optional, Any, List, Iterable, Union, AsyncIterator

import aiohttp
import aiofiles

from .config import BridgeConfig
from .shard_stream import ShardStream
from ..crypto import sha256, rmd160_sha256
from ..exceptions import BridgeError, BridgeNotFoundError, NetworkTransferError, ValidationError
from ..logging import get_logger
from ..transfer.models import FileMetadata, BucketInfo, FrameInfo, FarmerContact, Token, ShardPointer
from ..transfer.tokens import PULL


class AsyncBridgeClient:
    """
    Asynchronous storage bridge client.

    Features:
    - Full async/await support
    - HTTP basic auth (password sent as its SHA-256 digest)
    - Automatic retry with exponential backoff on network errors and 5xx
    - Connection pooling
    - Shard transfers bounded per file, with farmer failover on upload

    Example:
        >>> config = BridgeConfig(user='me@example.com', password='secret')
        >>> async with AsyncBridgeClient(config) as client:
        ...     buckets = await client.list_buckets()
    """

    SHARD_SIZE = 8 * 1024 * 1024
    MAX_REDUNDANCY = 12
    READ_CHUNK_SIZE = 64 * 1024
    MAX_SHARD_ATTEMPTS = 6

    def __init__(self, config: Optional[BridgeConfig] = None):
        """
        Initialize async bridge client.

        Args:
            config: Bridge configuration (uses defaults if not provided)
        """
        self._config = config or BridgeConfig.default()
        self._session: Optional[aiohttp.ClientSession] = None
        self._connector: Optional[aiohttp.TCPConnector] = None
        self._closed = False
        self._logger = get_logger('storjcli.api')

    @property
    def config(self) -> BridgeConfig:
        """Get current configuration."""
        return self._config

    async def __aenter__(self) -> 'AsyncBridgeClient':
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session is created and open."""
        if self._session is None or self._session.closed:
            self._connector = aiohttp.TCPConnector(
                **self._config.get_connector_kwargs()
            )
            self._session = aiohttp.ClientSession(
                connector=self._connector,
                **self._config.get_session_kwargs()
            )
        return self._session

    async def close(self):
        """Close client and release resources."""
        self._closed = True

        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

        if self._connector and not self._connector.closed:
            await self._connector.close()
            self._connector = None

    def _auth(self) -> Optional[aiohttp.BasicAuth]:
        if not self._config.has_credentials:
            return None
        secret = self._config.password_hash or sha256(self._config.password).hex()
        return aiohttp.BasicAuth(self._config.user, secret)

    def _build_url(self, path: str) -> str:
        return f"{self._config.url.rstrip('/')}{path}"

    @staticmethod
    def _parse_response(text: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    @staticmethod
    def _error_message(payload: Any, status: int) -> str:
        if isinstance(payload, dict) and payload.get('error'):
            return str(payload['error'])
        if isinstance(payload, str) and payload:
            return payload
        return f"Bridge responded with status {status}"

    async def request(
        self,
        method: str,
        path: str,
        json_data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        retry: bool = True,
        retry_count: int = 0
    ) -> Any:
        """
        Make a request to the bridge.

        Args:
            method: HTTP method
            path: Path below the bridge URL
            json_data: JSON body
            params: Query string parameters
            headers: Extra headers
            retry: Whether network errors and retryable statuses are retried
            retry_count: Current retry attempt (internal use)

        Returns:
            Decoded JSON response (None for empty bodies)

        Raises:
            BridgeNotFoundError: On 404
            BridgeError: On any other error status or network failure
        """
        if self._closed:
            raise BridgeError("Client is closed")

        session = await self._ensure_session()
        url = self._build_url(path)
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}

        self._logger.debug(f"{method} {url} params={params}")

        try:
            async with session.request(
                method,
                url,
                json=json_data,
                params=params,
                headers=headers,
                auth=self._auth()
            ) as response:
                status = response.status
                payload = self._parse_response(await response.text())
        except aiohttp.ClientError as e:
            self._logger.error(f"Network error: {e}")

            if retry and retry_count < self._config.retry.max_retries:
                delay = self._config.retry.calculate_delay(retry_count)
                await asyncio.sleep(delay)
                return await self.request(
                    method, path, json_data, params, headers, retry, retry_count + 1
                )

            raise BridgeError(f"Network error: {e}") from e

        self._logger.debug(f"Response {status}: {str(payload)[:1000]}")

        if (retry and status in self._config.retry.retry_on_status
                and retry_count < self._config.retry.max_retries):
            delay = self._config.retry.calculate_delay(retry_count)
            self._logger.warning(
                f"Retrying after status {status}, attempt {retry_count + 1}"
            )
            await asyncio.sleep(delay)
            return await self.request(
                method, path, json_data, params, headers, retry, retry_count + 1
            )

        if status == 404:
            raise BridgeNotFoundError(self._error_message(payload, status), status, payload)
        if status >= 400:
            raise BridgeError(self._error_message(payload, status), status, payload)

        return payload

    # Account

    async def get_info(self) -> Dict[str, Any]:
        """Get bridge API information."""
        return await self.request('GET', '/')

    # Account

    async def register(self, email: str, password: str) -> Dict[str, Any]:
        """Create a bridge account; the bridge emails an activation link."""
        return await self.request('POST', '/users', json_data={
            'email': email,
            'password': sha256(password).hex(),
        })

    async def reset_password(self, email: str, new_password: str) -> Dict[str, Any]:
        """Request a password reset; takes effect once confirmed by email."""
        return await self.request('PATCH', f'/users/{email}', json_data={
            'password': sha256(new_password).hex(),
        })

    # Contacts

    async def list_contacts(self, page: int = 1, connected: bool = False) -> List[FarmerContact]:
        params = {'page': page, 'connected': 'true' if connected else None}
        data = await self.request('GET', '/contacts', params=params)
        return [FarmerContact.from_dict(item) for item in data or []]

    async def get_contact(self, node_id: str) -> FarmerContact:
        data = await self.request('GET', f'/contacts/{node_id}')
        return FarmerContact.from_dict(data)

    # Buckets

    async def list_buckets(self) -> List[BucketInfo]:
        data = await self.request('GET', '/buckets')
        return [BucketInfo.from_dict(item) for item in data or []]

    async def get_bucket(self, bucket: str) -> BucketInfo:
        data = await self.request('GET', f'/buckets/{bucket}')
        return BucketInfo.from_dict(data)

    async def add_bucket(self, name: str) -> BucketInfo:
        data = await self.request('POST', '/buckets', json_data={'name': name})
        return BucketInfo.from_dict(data)

    async def remove_bucket(self, bucket: str) -> None:
        await self.request('DELETE', f'/buckets/{bucket}')

    async def update_bucket(
        self,
        bucket: str,
        name: Optional[str] = None,
        storage: Optional[int] = None,
        transfer: Optional[int] = None
    ) -> BucketInfo:
        """Change a bucket's name or limits; fields left as None are unchanged."""
        changes = {
            key: value
            for key, value in (('name', name), ('storage', storage), ('transfer', transfer))
            if value is not None
        }
        data = await self.request('PATCH', f'/buckets/{bucket}', json_data=changes)
        return BucketInfo.from_dict(data)

    # Frames

    async def add_frame(self) -> FrameInfo:
        data = await self.request('POST', '/frames')
        return FrameInfo.from_dict(data)

    async def list_frames(self) -> List[FrameInfo]:
        data = await self.request('GET', '/frames')
        return [FrameInfo.from_dict(item) for item in data or []]

    async def get_frame(self, frame_id: str) -> FrameInfo:
        data = await self.request('GET', f'/frames/{frame_id}')
        return FrameInfo.from_dict(data)

    async def remove_frame(self, frame_id: str) -> None:
        await self.request('DELETE', f'/frames/{frame_id}')

    # Files

    async def list_files(self, bucket: str) -> List[FileMetadata]:
        data = await self.request('GET', f'/buckets/{bucket}/files')
        return [FileMetadata.from_dict(item) for item in data or []]

    async def get_file_info(self, bucket: str, file_id: str) -> FileMetadata:
        data = await self.request('GET', f'/buckets/{bucket}/files/{file_id}/info')
        return FileMetadata.from_dict(data)

    async def remove_file(self, bucket: str, file_id: str) -> None:
        await self.request('DELETE', f'/buckets/{bucket}/files/{file_id}')

    async def create_mirrors(self, bucket: str, file_id: str, redundancy: int = 3) -> List[List[Any]]:
        """
        Ask the bridge to replicate every shard of a file to more farmers.

        Returns:
            One list of established mirrors per shard

        Raises:
            ValidationError: If redundancy is outside 1..MAX_REDUNDANCY
        """
        if not 1 <= redundancy <= self.MAX_REDUNDANCY:
            raise ValidationError(f"{redundancy} is an invalid redundancy value (1-{self.MAX_REDUNDANCY})")
        data = await self.request(
            'POST',
            f'/buckets/{bucket}/mirrors',
            json_data={'file': file_id, 'redundancy': redundancy}
        )
        return list(data or [])

    async def create_token(self, bucket: str, operation: str) -> Token:
        """
        Create a push or pull token for a bucket.

        Args:
            bucket: Bucket id
            operation: 'PUSH' or 'PULL'

        Attempts are counted by TokenBroker, so this call is not retried here.
        """
        data = await self.request(
            'POST',
            f'/buckets/{bucket}/tokens',
            json_data={'operation': operation},
            retry=False
        )
        return Token.from_dict({'bucket': bucket, 'operation': operation, **(data or {})})

    async def get_file_pointers(
        self,
        bucket: str,
        file_id: str,
        token: Token,
        skip: int = 0,
        limit: int = 6,
        exclude: Iterable[str] = ()
    ) -> List[ShardPointer]:
        """
        Resolve where a file's shards are stored.

        Args:
            bucket: Bucket id
            file_id: File id
            token: Pull token
            skip: Index of the first shard
            limit: Number of shards
            exclude: Farmer node ids to avoid
        """
        exclude = list(exclude)
        data = await self.request(
            'GET',
            f'/buckets/{bucket}/files/{file_id}',
            params={
                'skip': skip,
                'limit': limit,
                'exclude': ','.join(exclude) if exclude else None,
            },
            headers={'x-token': token.token}
        )
        return [ShardPointer.from_dict(item) for item in data or []]

    # Shard transfers

    async def _send_shard(self, pointer: ShardPointer, data: bytes) -> None:
        """Send one shard to the farmer named by ``pointer``."""
        session = await self._ensure_session()
        url = f"{pointer.farmer.url}/shards/{pointer.hash}"
        try:
            async with session.post(
                url,
                params={'token': pointer.token},
                data=data,
                timeout=self._config.timeout.to_transfer_timeout()
            ) as response:
                if response.status >= 400:
                    raise NetworkTransferError(
                        f"Farmer {pointer.farmer.node_id} responded {response.status}",
                        pointer=pointer,
                        error_code=response.status
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkTransferError(
                f"Farmer {pointer.farmer.node_id} unreachable: {e}",
                pointer=pointer
            ) from e

    async def read_shard(self, pointer: ShardPointer) -> AsyncIterator[bytes]:
        """
        Stream one shard's bytes from its farmer.

        Raises:
            NetworkTransferError: Carrying ``pointer`` on any failure
        """
        session = await self._ensure_session()
        url = f"{pointer.farmer.url}/shards/{pointer.hash}"
        try:
            async with session.get(
                url,
                params={'token': pointer.token},
                timeout=self._config.timeout.to_transfer_timeout()
            ) as response:
                if response.status != 200:
                    raise NetworkTransferError(
                        f"Farmer {pointer.farmer.node_id} responded {response.status} "
                        f"for shard {pointer.index}",
                        pointer=pointer,
                        error_code=response.status
                    )
                async for chunk in response.content.iter_chunked(self.READ_CHUNK_SIZE):
                    yield chunk
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkTransferError(
                f"Failed to download shard {pointer.index} from "
                f"{pointer.farmer.node_id}: {e}",
                pointer=pointer
            ) from e

    async def _store_shard(self, frame_id: str, index: int, data: bytes) -> ShardPointer:
        """
        Place one shard, asking the bridge for a different farmer after
        each failure.
        """
        shard_hash = rmd160_sha256(data)
        excluded: List[str] = []
        last_error: Optional[NetworkTransferError] = None

        for attempt in range(self.MAX_SHARD_ATTEMPTS):
            response = await self.request(
                'PUT',
                f'/frames/{frame_id}',
                json_data={
                    'hash': shard_hash,
                    'size': len(data),
                    'index': index,
                    'exclude': list(excluded),
                }
            )
            pointer = ShardPointer.from_dict({
                'index': index,
                'hash': shard_hash,
                'size': len(data),
                **(response or {})
            })

            try:
                await self._send_shard(pointer, data)
            except NetworkTransferError as e:
                last_error = e
                excluded.append(pointer.farmer.node_id)
                self._logger.warning(
                    f"Shard {index} upload failed (attempt {attempt + 1}), "
                    f"retrying with another farmer: {e}"
                )
                continue

            self._logger.debug(f"Shard {index} stored on {pointer.farmer.node_id}")
            return pointer

        raise NetworkTransferError(
            f"Shard {index} could not be stored after {self.MAX_SHARD_ATTEMPTS} attempts",
            pointer=last_error.pointer if last_error else None
        ) from last_error

    async def store_file(
        self,
        bucket: str,
        token: Token,
        path: Union[str, Path],
        filename: Optional[str] = None,
        shard_concurrency: int = 3
    ) -> FileMetadata:
        """
        Store an already encrypted file.

        Args:
            bucket: Bucket id
            token: Push token
            path: Encrypted staging file
            filename: Name to register the file under
            shard_concurrency: Maximum shards in flight

        Returns:
            Metadata of the created bucket entry
        """
        path = Path(path)
        filename = filename or path.name
        size = path.stat().st_size
        shard_count = max(1, math.ceil(size / self.SHARD_SIZE))

        frame_id = (await self.add_frame()).id
        self._logger.debug(f"Created frame {frame_id} for {filename} ({shard_count} shards)")

        semaphore = asyncio.Semaphore(shard_concurrency)

        async def transfer(index: int) -> ShardPointer:
            async with semaphore:
                async with aiofiles.open(path, 'rb') as f:
                    await f.seek(index * self.SHARD_SIZE)
                    data = await f.read(self.SHARD_SIZE)
                return await self._store_shard(frame_id, index, data)

        tasks = [asyncio.create_task(transfer(i)) for i in range(shard_count)]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        mimetype = mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        data = await self.request(
            'POST',
            f'/buckets/{bucket}/files',
            json_data={
                'frame': frame_id,
                'mimetype': mimetype,
                'filename': filename,
            },
            headers={'x-token': token.token}
        )
        return FileMetadata.from_dict({
            'filename': filename,
            'mimetype': mimetype,
            'size': size,
            **(data or {})
        })

    async def create_file_stream(
        self,
        bucket: str,
        file_id: str,
        exclude: Iterable[str] = ()
    ) -> ShardStream:
        """
        Open a readable stream of a file's encrypted bytes.

        Args:
            bucket: Bucket id
            file_id: File id
            exclude: Farmer node ids to avoid
        """
        token = await self.create_token(bucket, PULL)
        info = await self.get_file_info(bucket, file_id)
        return ShardStream(
            self,
            bucket,
            file_id,
            token,
            exclude=exclude,
            length=info.size or None
        )
