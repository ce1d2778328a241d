"""
Data models for the transfer pipelines.

Uses dataclasses for fixed-field value types. Bridge responses are loosely
shaped JSON; every model offers ``from_dict`` so the rest of the code only
sees typed attributes.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Any, Optional, List, Iterable, Iterator, Callable


@dataclass(frozen=True)
class FileMetadata:
    """
    Remote-authoritative record of a stored file.

    Example:
        >>> meta = FileMetadata.from_dict({
        ...     'filename': 'report.pdf', 'mimetype': 'application/pdf',
        ...     'size': 1024, 'id': 'abc123'
        ... })
        >>> meta.filename
        'report.pdf'
    """
    filename: str
    mimetype: str
    size: int
    id: str
    shard_count: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileMetadata':
        """Create from bridge JSON."""
        return cls(
            filename=data.get('filename', ''),
            mimetype=data.get('mimetype', 'application/octet-stream'),
            size=int(data.get('size') or 0),
            id=data.get('id', ''),
            shard_count=data.get('shards')
        )

    def with_filename(self, filename: str) -> 'FileMetadata':
        """Return a copy carrying a different local filename."""
        return FileMetadata(
            filename=filename,
            mimetype=self.mimetype,
            size=self.size,
            id=self.id,
            shard_count=self.shard_count
        )


@dataclass(frozen=True)
class BucketInfo:
    """Bucket record returned by the bridge."""
    id: str
    name: str
    storage: int = 0
    transfer: int = 0
    status: str = 'Active'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BucketInfo':
        """Create from bridge JSON."""
        return cls(
            id=data.get('id', ''),
            name=data.get('name', ''),
            storage=int(data.get('storage') or 0),
            transfer=int(data.get('transfer') or 0),
            status=data.get('status', 'Active')
        )


@dataclass(frozen=True)
class FrameInfo:
    """File staging frame: shards are placed into a frame before the file entry exists."""
    id: str
    created: Optional[str] = None
    shard_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FrameInfo':
        """Create from bridge JSON."""
        return cls(
            id=data.get('id', ''),
            created=data.get('created'),
            shard_count=len(data.get('shards') or [])
        )


@dataclass(frozen=True)
class Token:
    """
    Short-lived authorization token for one bucket and direction.

    Attributes:
        token: Authorization string sent in the ``x-token`` header
        bucket: Bucket the token is scoped to
        operation: 'PUSH' or 'PULL'
        encryption_key: Optional pre-assigned key material (push only)
        expires: Expiry timestamp as reported by the bridge
    """
    token: str
    bucket: str
    operation: str
    encryption_key: Optional[str] = None
    expires: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Token':
        """Create from bridge JSON."""
        return cls(
            token=data.get('token', ''),
            bucket=data.get('bucket', ''),
            operation=data.get('operation', ''),
            encryption_key=data.get('encryptionKey') or None,
            expires=data.get('expires')
        )


@dataclass(frozen=True)
class FarmerContact:
    """Network contact of a storage peer."""
    node_id: str
    address: str
    port: int
    last_seen: Optional[str] = None
    protocol: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FarmerContact':
        """Create from bridge JSON."""
        return cls(
            node_id=data.get('nodeID', ''),
            address=data.get('address', ''),
            port=int(data.get('port') or 0),
            last_seen=data.get('lastSeen'),
            protocol=data.get('protocol')
        )

    @property
    def url(self) -> str:
        """Base HTTP URL of the farmer's shard server."""
        return f"http://{self.address}:{self.port}"


@dataclass(frozen=True)
class ShardPointer:
    """Location of one shard: which farmer holds it and how to fetch it."""
    index: int
    hash: str
    size: int
    token: str
    farmer: FarmerContact

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShardPointer':
        """Create from bridge JSON."""
        return cls(
            index=int(data.get('index') or 0),
            hash=data.get('hash', ''),
            size=int(data.get('size') or 0),
            token=data.get('token', ''),
            farmer=FarmerContact.from_dict(data.get('farmer') or {})
        )


class JobStage(str, Enum):
    """Lifecycle stages of a transfer job, in pipeline order."""
    # upload
    ENUMERATED = 'enumerated'
    NAME_CHECKED = 'name_checked'
    TOKENIZED = 'tokenized'
    STAGED = 'staged'
    ENCRYPTED = 'encrypted'
    COMMITTED = 'committed'
    CLEANED = 'cleaned'
    # download
    INFO_FETCHED = 'info_fetched'
    LOCATION_RESOLVED = 'location_resolved'
    KEYRING_LOADED = 'keyring_loaded'
    STREAM_OPENED = 'stream_opened'
    STREAMING = 'streaming'
    COMPLETED = 'completed'
    # terminal failure
    FAILED = 'failed'


@dataclass
class TransferJob:
    """
    One file's transfer state.

    Owned by exactly one pipeline run. ``staging`` holds the temp
    resources (if any) so the cleanup stage can release them.
    """
    source: Path
    name: str
    file_id: Optional[str] = None
    remote_id: Optional[str] = None
    stage: JobStage = JobStage.ENUMERATED
    staging: Any = None
    secret: Any = None
    staged_path: Optional[Path] = None
    token: Optional[Token] = None
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        """Whether the job reached COMMITTED/CLEANED or FAILED."""
        return self.stage in (JobStage.CLEANED, JobStage.FAILED, JobStage.COMPLETED)


class ExclusionSet:
    """
    Ordered, append-only set of peer node ids to avoid.

    Example:
        >>> excluded = ExclusionSet(['a'])
        >>> excluded.add('b')
        True
        >>> excluded.add('a')
        False
        >>> list(excluded)
        ['a', 'b']
    """

    def __init__(self, peers: Optional[Iterable[str]] = None):
        self._peers: List[str] = []
        for peer in peers or ():
            self.add(peer)

    def add(self, peer_id: str) -> bool:
        """
        Append a peer.

        Returns:
            True if the peer was not excluded before
        """
        peer_id = (peer_id or '').strip()
        if not peer_id or peer_id in self._peers:
            return False
        self._peers.append(peer_id)
        return True

    def to_list(self) -> List[str]:
        """Snapshot of the excluded peers in insertion order."""
        return list(self._peers)

    @classmethod
    def parse(cls, value: Optional[str]) -> 'ExclusionSet':
        """Build from a comma-separated command-line value."""
        if not value:
            return cls()
        return cls(part for part in value.split(','))

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._peers

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._peers))

    def __len__(self) -> int:
        return len(self._peers)

    def __repr__(self) -> str:
        return f"ExclusionSet({self._peers!r})"


@dataclass
class PipelineRun:
    """
    Aggregate state of one pipeline invocation.

    ``completed_count`` never exceeds ``total_count``; ``finish`` may only
    succeed once so the run's completion fires exactly once.
    """
    total_count: int
    jobs: Dict[Path, TransferJob] = field(default_factory=dict)
    completed_count: int = 0
    monitor_subscription: Optional[Callable[[], None]] = None
    finished: bool = False

    def mark_completed(self) -> int:
        """Count one more terminal job and return the new count."""
        if self.completed_count >= self.total_count:
            raise RuntimeError(
                f"Completed count would exceed total ({self.total_count})"
            )
        self.completed_count += 1
        return self.completed_count

    @property
    def is_done(self) -> bool:
        """Whether every job has reached a terminal stage."""
        return self.completed_count == self.total_count

    def finish(self) -> bool:
        """Flag the run as finished; returns False if it already was."""
        if self.finished:
            return False
        self.finished = True
        return True


@dataclass
class UploadReport:
    """Outcome of an upload run."""
    uploaded: List[FileMetadata] = field(default_factory=list)
    failures: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class TransferProgress:
    """Byte-level progress of a single file transfer."""
    received: int = 0
    total: Optional[int] = None

    @property
    def percentage(self) -> float:
        """Progress as a percentage (0 when the total is unknown)."""
        if not self.total:
            return 0.0
        return (self.received / self.total) * 100
