"""
Download pipeline.

Orchestrates: metadata lookup -> destination resolution -> key-ring lookup
-> stream acquisition -> decrypt-and-write. A shard failure attributed to
a single peer restarts the whole sequence with that peer excluded.
"""
import os
import inspect
from pathlib import Path
from typing import Optional, Iterable, Union, Callable, Any

import aiofiles

from ..crypto import DecryptStream, FileSecret
from ..events import EventEmitter
from ..exceptions import (
    StorjError,
    EncryptionKeyMissingError,
    CleanupError,
    NetworkTransferError,
)
from ..keyring import KeyRingProtocol
from ..logging import get_logger
from ..transfer import (
    JobStage,
    TransferJob,
    TransferProgress,
    FileMetadata,
    NameCollisionResolver,
    RetryController,
    BridgeClientProtocol,
    ShardStreamProtocol,
    strip_iso_prefix,
)

logger = get_logger('storjcli.download')

ProgressCallback = Callable[[int, Optional[int]], None]


class DownloadPipeline:
    """
    Downloads and decrypts one file.

    Events:
        stage(job): the attempt entered a new stage
        progress(received, total): bytes written so far
        retry(error, excluded): an attempt failed and is being restarted
        complete(error, path): the download finished; fires exactly once

    Example:
        >>> pipeline = DownloadPipeline(client, keyring, bucket, file_id, './out/')
        >>> path = await pipeline.run()
    """

    def __init__(
        self,
        client: BridgeClientProtocol,
        keyring: KeyRingProtocol,
        bucket: str,
        file_id: str,
        destination: Optional[Union[str, Path]] = None,
        excluded_peers: Iterable[str] = (),
        retry: Optional[RetryController] = None,
        progress_callback: Optional[ProgressCallback] = None,
        events: Optional[EventEmitter] = None
    ):
        """
        Initialize a download.

        Args:
            client: Bridge client
            keyring: Key-ring holding the file's secret
            bucket: Bucket id
            file_id: Remote file id
            destination: File path or existing directory; optional when
                         only ``stream_to`` is used
            excluded_peers: Peers to avoid from the first attempt on
            progress_callback: Called with (received, total) per chunk

        Raises:
            OverwriteRefusedError: If a file exists at destination
            InvalidDestinationError: If the destination directory is absent
        """
        if destination is not None:
            NameCollisionResolver.validate_download_target(destination)

        self._client = client
        self._keyring = keyring
        self._bucket = bucket
        self._file_id = file_id
        self._destination = str(destination) if destination is not None else None
        self._retry = retry or RetryController(excluded_peers)
        self._progress_callback = progress_callback
        self._events = events or EventEmitter()
        self._job: Optional[TransferJob] = None
        self._metadata: Optional[FileMetadata] = None
        self._finished = False
        self._sink_written = 0

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def file_id(self) -> str:
        return self._file_id

    @property
    def excluded(self):
        """Peers excluded so far."""
        return self._retry.excluded

    @property
    def job(self) -> Optional[TransferJob]:
        """State of the current (or last) attempt."""
        return self._job

    def on(self, event: str, callback: Callable) -> 'DownloadPipeline':
        """Register an event handler."""
        self._events.on(event, callback)
        return self

    async def run(self) -> Path:
        """
        Download into the destination.

        Returns:
            Path the file was written to

        Raises:
            NotFoundError: If the remote file doesn't exist
            EncryptionKeyMissingError: If the key-ring has no secret for it
            CleanupError: If a partial file could not be removed
            RetriesExhaustedError: If too many peers failed
            NetworkTransferError: If the transfer failed without a peer
        """
        if self._destination is None:
            raise ValueError("A destination is required to download to a file")
        return await self._execute(None)

    async def stream_to(self, sink: Any) -> FileMetadata:
        """
        Decrypt the file into a binary sink instead of a file.

        Args:
            sink: Object with ``write(bytes)`` (sync or async)

        Returns:
            Remote metadata of the streamed file
        """
        await self._execute(sink)
        return self._metadata

    async def _execute(self, sink: Any) -> Any:
        error: Optional[BaseException] = None
        result = None
        try:
            while True:
                try:
                    result = await self._attempt(sink)
                    break
                except StorjError as e:
                    if not self._retry.should_retry(e):
                        raise
                    self._events.emit('retry', e, self._retry.excluded.to_list())
        except Exception as e:
            error = e
            raise
        finally:
            self._finish(error, result)
        return result

    def _finish(self, error: Optional[BaseException], result: Any) -> None:
        if self._finished:
            return
        self._finished = True
        if error is not None:
            logger.error(f"Download of {self._file_id} failed: {error}")
        self._events.emit('complete', error, result)

    def _enter(self, job: TransferJob, stage: JobStage) -> None:
        job.stage = stage
        logger.debug(f"{self._file_id}: {stage.value}")
        self._events.emit('stage', job)

    async def _attempt(self, sink: Any) -> Optional[Path]:
        """One pass through the state machine."""
        job = TransferJob(source=Path(self._destination or '-'), name='', remote_id=self._file_id)
        self._job = job
        try:
            metadata = await self._fetch_info(job)
            target = self._resolve_location(job, metadata, sink)
            secret = self._load_key(job)
            if sink is None:
                await self._download_to_file(job, target, secret)
            else:
                await self._download_to_sink(job, sink, secret)
        except Exception as e:
            job.error = e
            job.stage = JobStage.FAILED
            raise

        self._enter(job, JobStage.COMPLETED)
        if target is not None:
            logger.info(f"File downloaded and written to {target}.")
        return target

    async def _fetch_info(self, job: TransferJob) -> FileMetadata:
        metadata = await self._client.get_file_info(self._bucket, self._file_id)
        self._metadata = metadata
        job.name = strip_iso_prefix(metadata.filename)
        logger.info(
            f"Name: {job.name}, Type: {metadata.mimetype}, "
            f"Size: {metadata.size} bytes, ID: {metadata.id}"
        )
        self._enter(job, JobStage.INFO_FETCHED)
        return metadata

    def _resolve_location(
        self,
        job: TransferJob,
        metadata: FileMetadata,
        sink: Any
    ) -> Optional[Path]:
        target = None
        if sink is None:
            target = NameCollisionResolver.resolve_download_path(
                self._destination, metadata.filename
            )
            job.staged_path = target
        self._enter(job, JobStage.LOCATION_RESOLVED)
        return target

    def _load_key(self, job: TransferJob) -> FileSecret:
        secret = self._keyring.get(self._file_id)
        if secret is None:
            raise EncryptionKeyMissingError(
                "No decryption key found in key ring!",
                file_id=self._file_id
            )
        job.secret = secret
        self._enter(job, JobStage.KEYRING_LOADED)
        return secret

    async def _open_stream(self, job: TransferJob) -> ShardStreamProtocol:
        stream = await self._client.create_file_stream(
            self._bucket,
            self._file_id,
            exclude=self._retry.excluded.to_list()
        )
        self._enter(job, JobStage.STREAM_OPENED)
        return stream

    async def _download_to_file(self, job: TransferJob, target: Path, secret: FileSecret) -> None:
        try:
            async with aiofiles.open(target, 'wb') as writer:
                await self._pump(job, secret, writer.write)
        except BaseException as e:
            self._remove_partial(target, e)
            raise

    async def _download_to_sink(self, job: TransferJob, sink: Any, secret: FileSecret) -> None:
        # A restarted attempt replays the file; skip what the sink already has
        skip = self._sink_written

        async def write(data: bytes) -> None:
            nonlocal skip
            if skip:
                if len(data) <= skip:
                    skip -= len(data)
                    return
                data = data[skip:]
                skip = 0
            result = sink.write(data)
            if inspect.isawaitable(result):
                await result
            self._sink_written += len(data)

        await self._pump(job, secret, write)
        flush = getattr(sink, 'flush', None)
        if flush is not None:
            result = flush()
            if inspect.isawaitable(result):
                await result

    async def _pump(self, job: TransferJob, secret: FileSecret, write: Callable) -> None:
        """Move bytes from the shard stream through the decrypter into ``write``."""
        stream = await self._open_stream(job)
        decrypter = DecryptStream(secret)
        progress = TransferProgress(total=stream.length)
        self._enter(job, JobStage.STREAMING)
        try:
            async for chunk in stream:
                await write(decrypter.update(chunk))
                progress.received += len(chunk)
                self._report_progress(progress)
            tail = decrypter.finalize()
            if tail:
                await write(tail)
        except NetworkTransferError as e:
            logger.warning(f"Failed to download shard, reason: {e}")
            raise
        finally:
            await stream.close()

    def _report_progress(self, progress: TransferProgress) -> None:
        if progress.total:
            logger.debug(f"Received {progress.received} of {progress.total} bytes")
        if self._progress_callback:
            self._progress_callback(progress.received, progress.total)
        self._events.emit('progress', progress.received, progress.total)

    @staticmethod
    def _remove_partial(target: Path, cause: BaseException) -> None:
        """Delete a partially written file, raising CleanupError on failure."""
        try:
            os.unlink(target)
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to unlink partial file {target}: {e}")
            raise CleanupError(
                "Failed to unlink partial file.",
                path=str(target)
            ) from cause
        logger.debug(f"Removed partial file {target}")


async def run_download(
    client: BridgeClientProtocol,
    keyring: KeyRingProtocol,
    bucket: str,
    file_id: str,
    destination: Union[str, Path],
    excluded_peers: Iterable[str] = (),
    **kwargs
) -> Path:
    """
    Download and decrypt one file.

    Args:
        client: Bridge client
        keyring: Key-ring holding the file's secret
        bucket: Bucket id
        file_id: Remote file id
        destination: File path or existing directory
        excluded_peers: Peers to avoid from the start
        **kwargs: Extra options forwarded to DownloadPipeline

    Returns:
        Path the file was written to
    """
    pipeline = DownloadPipeline(
        client,
        keyring,
        bucket,
        file_id,
        destination,
        excluded_peers=excluded_peers,
        **kwargs
    )
    return await pipeline.run()
