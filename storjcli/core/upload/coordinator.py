"""
Upload pipeline.

Orchestrates, per file: collision check -> token -> staging -> encryption
-> commit -> cleanup. Runs a bounded number of files concurrently while the
bridge client paces shard transfers inside each file.
"""
import asyncio
from collections import deque
from pathlib import Path
from typing import Dict, Optional, List, Iterable, Union, Callable, Deque

import aiofiles

from ..crypto import EncryptStream, FileSecret, calculate_file_id
from ..events import EventEmitter
from ..exceptions import (
    StorjError,
    ValidationError,
    NotFoundError,
    StagingError,
    CleanupError,
    NetworkTransferError,
)
from ..keyring import KeyRingProtocol
from ..logging import get_logger
from ..transfer import (
    JobStage,
    TransferJob,
    PipelineRun,
    UploadReport,
    PathResolver,
    TempStagingManager,
    NameCollisionResolver,
    TokenBroker,
    ResourcePressureMonitor,
    BridgeClientProtocol,
    PUSH,
)

logger = get_logger('storjcli.upload')


class UploadPipeline:
    """
    Uploads a set of files into one bucket.

    Every collaborator is injected, making the pipeline:
    - Testable (fake bridge client, in-memory key-ring)
    - Observable (stage/encrypted/committed/complete events)

    Events:
        stage(job): a job entered a new stage
        encrypted(job): a file was fully staged
        committed(job, metadata): a file was stored on the network
        complete(error, report): the run finished; fires exactly once
    """

    DEFAULT_FILE_CONCURRENCY = 1
    DEFAULT_SHARD_CONCURRENCY = 3
    MAX_SAFE_FILE_CONCURRENCY = 6
    READ_CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        client: BridgeClientProtocol,
        keyring: KeyRingProtocol,
        bucket: str,
        file_paths: Iterable[Union[str, Path]],
        file_concurrency: int = DEFAULT_FILE_CONCURRENCY,
        shard_concurrency: int = DEFAULT_SHARD_CONCURRENCY,
        path_resolver: Optional[PathResolver] = None,
        staging: Optional[TempStagingManager] = None,
        token_broker: Optional[TokenBroker] = None,
        name_resolver: Optional[NameCollisionResolver] = None,
        monitor: Optional[ResourcePressureMonitor] = None,
        events: Optional[EventEmitter] = None
    ):
        """
        Initialize and validate an upload run.

        Args:
            client: Bridge client
            keyring: Key-ring receiving the secret of every uploaded file
            bucket: Target bucket id
            file_paths: Paths or glob patterns to upload
            file_concurrency: Files in flight at once
            shard_concurrency: Shards in flight per file

        Raises:
            ValidationError: On bad concurrency values or zero files
            NotFoundError: If a path specifier matches nothing
        """
        self._validate_concurrency(file_concurrency, shard_concurrency)

        self._client = client
        self._keyring = keyring
        self._bucket = bucket
        self._file_concurrency = file_concurrency
        self._shard_concurrency = shard_concurrency
        self._staging = staging or TempStagingManager()
        self._tokens = token_broker or TokenBroker(client)
        self._names = name_resolver or NameCollisionResolver(client)
        self._monitor = monitor or ResourcePressureMonitor()
        self._events = events or EventEmitter()

        self._filepaths: List[Path] = (path_resolver or PathResolver()).resolve(file_paths)
        if not self._filepaths:
            raise ValidationError("0 files specified to be uploaded.")

        self._run: Optional[PipelineRun] = None
        self._report = UploadReport()

    def _validate_concurrency(self, file_concurrency: int, shard_concurrency: int) -> None:
        if file_concurrency < 1:
            raise ValidationError("File Concurrency cannot be less than 1")
        if shard_concurrency < 1:
            raise ValidationError("Shard Concurrency cannot be less than 1")
        if file_concurrency > self.MAX_SAFE_FILE_CONCURRENCY:
            logger.warning(
                f"A file concurrency of {file_concurrency} may result in issues!"
            )

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def filepaths(self) -> List[Path]:
        return list(self._filepaths)

    @property
    def file_count(self) -> int:
        return len(self._filepaths)

    @property
    def uploaded_count(self) -> int:
        """Jobs that reached a terminal stage in the current run."""
        return self._run.completed_count if self._run else 0

    @property
    def file_concurrency(self) -> int:
        return self._file_concurrency

    @property
    def shard_concurrency(self) -> int:
        return self._shard_concurrency

    @property
    def report(self) -> UploadReport:
        return self._report

    @property
    def jobs(self) -> Dict[Path, TransferJob]:
        return dict(self._run.jobs) if self._run else {}

    def on(self, event: str, callback: Callable) -> 'UploadPipeline':
        """Register an event handler."""
        self._events.on(event, callback)
        return self

    async def run(self) -> UploadReport:
        """
        Execute the upload run.

        Files are admitted in order; at most ``file_concurrency`` are in
        flight. A failing file doesn't stop its siblings. A memory
        pressure abort cancels every in-flight file (their cleanup still
        runs) and admits no more.

        Returns:
            Report of uploaded files

        Raises:
            ResourceExhaustedError: If the run was aborted
            StorjError: The first per-file error, once every file finished
        """
        run = PipelineRun(total_count=len(self._filepaths))
        self._run = run
        self._report = UploadReport()

        queue: Deque[Path] = deque(self._filepaths)
        active: Dict[asyncio.Task, Path] = {}
        fatal: Optional[BaseException] = None

        run.monitor_subscription = self._monitor.subscribe(
            lambda err: logger.error(f"Aborting upload run: {err}")
        )
        self._monitor.start()
        tripped = asyncio.create_task(self._monitor.tripped.wait())

        logger.info(
            f"Uploading {run.total_count} file(s) to bucket {self._bucket} "
            f"(file concurrency {self._file_concurrency}, "
            f"shard concurrency {self._shard_concurrency})"
        )

        try:
            while queue or active:
                while queue and len(active) < self._file_concurrency:
                    filepath = queue.popleft()
                    task = asyncio.create_task(self._process(run, filepath))
                    active[task] = filepath

                done, _ = await asyncio.wait(
                    set(active) | {tripped},
                    return_when=asyncio.FIRST_COMPLETED
                )

                if tripped in done:
                    fatal = self._monitor.error
                    break

                for task in done:
                    active.pop(task, None)
        finally:
            if active:
                for task in active:
                    task.cancel()
                await asyncio.gather(*active, return_exceptions=True)
            tripped.cancel()
            await self._monitor.stop()
            if run.monitor_subscription:
                run.monitor_subscription()
                run.monitor_subscription = None

        error = fatal or self._first_failure()
        self._finish(run, error)

        if error is not None:
            raise error
        return self._report

    def _first_failure(self) -> Optional[BaseException]:
        for filepath in self._filepaths:
            error = self._report.failures.get(str(filepath))
            if error is not None:
                return error
        return None

    def _finish(self, run: PipelineRun, error: Optional[BaseException]) -> None:
        if not run.finish():
            return
        if error is None:
            logger.info(f"All {run.completed_count} file(s) uploaded")
        else:
            logger.error(
                f"Upload run finished with errors: {len(self._report.failures)} "
                f"of {run.total_count} file(s) failed"
            )
        self._events.emit('complete', error, self._report)

    def _enter(self, job: TransferJob, stage: JobStage) -> None:
        job.stage = stage
        logger.debug(f"{job.source}: {stage.value}")
        self._events.emit('stage', job)

    async def _process(self, run: PipelineRun, filepath: Path) -> None:
        """Drive one file through every stage; never raises job errors."""
        job = TransferJob(source=filepath, name=filepath.name)
        run.jobs[filepath] = job

        cleanup_error: Optional[CleanupError] = None
        try:
            self._enumerate(job)
            await self._check_name(job)
            await self._tokenize(job)
            self._stage(job)
            await self._encrypt(job)
            await self._commit(job)
        except asyncio.CancelledError:
            job.error = self._monitor.error
            job.stage = JobStage.FAILED
            raise
        except Exception as e:
            logger.error(f"Upload of {filepath} failed after stage {job.stage.value}: {e}")
            job.error = e
            job.stage = JobStage.FAILED
        finally:
            cleanup_error = self._cleanup(job)

        if cleanup_error is not None and job.error is None:
            job.error = cleanup_error
            job.stage = JobStage.FAILED

        if job.error is not None:
            self._report.failures[str(filepath)] = job.error
        else:
            self._enter(job, JobStage.CLEANED)

        count = run.mark_completed()
        logger.info(f"{count} of {run.total_count} files processed")

    def _enumerate(self, job: TransferJob) -> None:
        if not job.source.is_file():
            raise NotFoundError(f"No file found at {job.source}")
        self._enter(job, JobStage.ENUMERATED)

    async def _check_name(self, job: TransferJob) -> None:
        job.name = await self._names.resolve_upload_name(self._bucket, job.source.name)
        self._enter(job, JobStage.NAME_CHECKED)

    async def _tokenize(self, job: TransferJob) -> None:
        job.token = await self._tokens.acquire(self._bucket, PUSH)
        self._enter(job, JobStage.TOKENIZED)

    def _stage(self, job: TransferJob) -> None:
        job.staging = self._staging.acquire()
        job.file_id = calculate_file_id(self._bucket, job.name)
        job.staged_path = job.staging.file_path(job.name)
        job.secret = self._create_secret(job)
        logger.info(f"Encrypting file {job.source}")
        self._enter(job, JobStage.STAGED)

    def _create_secret(self, job: TransferJob) -> FileSecret:
        """Secret from the token's key material, else a fresh key-ring key."""
        if job.token is not None and job.token.encryption_key:
            return FileSecret.deterministic(job.token.encryption_key, job.file_id)
        return self._keyring.generate_file_key(self._bucket, job.file_id)

    async def _encrypt(self, job: TransferJob) -> None:
        encrypter = EncryptStream(job.secret)
        try:
            async with aiofiles.open(job.source, 'rb') as reader, \
                    aiofiles.open(job.staged_path, 'wb') as writer:
                while True:
                    chunk = await reader.read(self.READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    await writer.write(encrypter.update(chunk))
                await writer.write(encrypter.finalize())
        except OSError as e:
            raise StagingError(
                f"Failed to encrypt {job.source}: {e}",
                path=str(job.source)
            ) from e

        logger.info(f"Encryption complete: {job.name} ({encrypter.bytes_processed} bytes)")
        self._enter(job, JobStage.ENCRYPTED)
        self._events.emit('encrypted', job)

    async def _commit(self, job: TransferJob) -> None:
        logger.info(f"Storing file {job.name}, hang tight!")
        try:
            metadata = await self._client.store_file(
                self._bucket,
                job.token,
                job.staged_path,
                filename=job.name,
                shard_concurrency=self._shard_concurrency
            )
        except StorjError:
            raise
        except Exception as e:
            raise NetworkTransferError(f"Failed to store {job.name}: {e}") from e

        job.remote_id = metadata.id
        self._keyring.set(metadata.id, job.secret)
        self._report.uploaded.append(metadata)

        logger.info(
            f"Name: {metadata.filename}, Type: {metadata.mimetype}, "
            f"Size: {metadata.size} bytes, ID: {metadata.id}"
        )
        self._enter(job, JobStage.COMMITTED)
        self._events.emit('committed', job, metadata)

    def _cleanup(self, job: TransferJob) -> Optional[CleanupError]:
        """Release the job's temp resources; returns the error, if any."""
        if job.staging is None:
            return None

        logger.info(f"Cleaning up {job.source}")
        try:
            job.staging.release()
        except CleanupError as e:
            logger.error(f"Failed to clean up {job.source}: {e}")
            return e
        logger.info(f"Finished cleaning {job.source}")
        return None


async def run_upload(
    client: BridgeClientProtocol,
    keyring: KeyRingProtocol,
    bucket: str,
    file_paths: Iterable[Union[str, Path]],
    file_concurrency: int = UploadPipeline.DEFAULT_FILE_CONCURRENCY,
    shard_concurrency: int = UploadPipeline.DEFAULT_SHARD_CONCURRENCY,
    **kwargs
) -> UploadReport:
    """
    Upload files into a bucket.

    Args:
        client: Bridge client
        keyring: Key-ring receiving the file secrets
        bucket: Bucket id
        file_paths: Paths or glob patterns
        file_concurrency: Files in flight at once
        shard_concurrency: Shards in flight per file
        **kwargs: Extra collaborators forwarded to UploadPipeline

    Returns:
        Report of uploaded files
    """
    pipeline = UploadPipeline(
        client,
        keyring,
        bucket,
        file_paths,
        file_concurrency=file_concurrency,
        shard_concurrency=shard_concurrency,
        **kwargs
    )
    return await pipeline.run()
