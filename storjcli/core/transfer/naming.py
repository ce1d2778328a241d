"""
Name collision handling for uploads and downloads.

Uploads never overwrite a remote file: a colliding name gets a timestamp
prefix. Downloads never overwrite a local file: the pipeline refuses.
"""
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union, Callable

from ..crypto import calculate_file_id
from ..exceptions import (
    BridgeNotFoundError,
    InvalidDestinationError,
    OverwriteRefusedError
)
from ..logging import get_logger
from .protocols import BridgeClientProtocol

logger = get_logger('storjcli.transfer.naming')

ISO_PREFIX_RE = re.compile(r'^\(\d{4}-\d{2}-\d{2}T\d{2};\d{2};\d{2}\.\d{3}Z\)-')


def iso_timestamp(now: Optional[datetime] = None) -> str:
    """
    ISO-8601 UTC timestamp with millisecond precision and ';' for ':'.
    
    Example:
        >>> iso_timestamp(datetime(2016, 5, 1, 12, 0, tzinfo=timezone.utc))
        '2016-05-01T12;00;00.000Z'
    """
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S')
    stamp = f"{stamp}.{now.microsecond // 1000:03d}Z"
    return stamp.replace(':', ';')


def prefix_with_timestamp(filename: str, now: Optional[datetime] = None) -> str:
    """Prefix a name with a bracketed timestamp: ``(stamp)-name``."""
    return f"({iso_timestamp(now)})-{filename}"


def strip_iso_prefix(filename: str) -> str:
    """Remove a collision prefix added by prefix_with_timestamp."""
    return ISO_PREFIX_RE.sub('', filename, count=1)


def local_filename(remote_filename: str) -> str:
    """
    Reduce a bridge-reported name to a single safe path component.
    
    Raises:
        InvalidDestinationError: If nothing usable is left
    """
    name = strip_iso_prefix(remote_filename).replace('\\', '/')
    name = os.path.basename(name.rstrip('/'))
    if name in ('', '.', '..'):
        raise InvalidDestinationError(
            f"Remote file name {remote_filename!r} is not a valid local name",
            path=remote_filename
        )
    return name


class NameCollisionResolver:
    """
    Applies the rename/refuse policy on both transfer directions.
    
    Args:
        client: Bridge client used to look up remote files
        clock: Callable returning the current time (for tests)
    """
    
    def __init__(
        self,
        client: Optional[BridgeClientProtocol] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
    
    async def resolve_upload_name(self, bucket: str, filename: str) -> str:
        """
        Return the name a file should be uploaded under.
        
        Args:
            bucket: Target bucket id
            filename: Original file name
            
        Returns:
            ``filename`` if free, otherwise the timestamp-prefixed name
        """
        if self._client is None:
            raise RuntimeError("A bridge client is required for upload names")
        
        file_id = calculate_file_id(bucket, filename)
        try:
            await self._client.get_file_info(bucket, file_id)
        except BridgeNotFoundError:
            return filename
        
        new_name = prefix_with_timestamp(filename, self._clock())
        logger.warning(
            f"{filename} Already exists in bucket. Uploading to {new_name}"
        )
        return new_name
    
    @staticmethod
    def validate_download_target(destination: Union[str, Path]) -> None:
        """
        Construction-time checks of a download destination.
        
        Raises:
            OverwriteRefusedError: If a regular file exists at destination
            InvalidDestinationError: If the parent directory is missing, or
                                     a trailing separator names a missing
                                     directory
        """
        destination = str(destination)
        
        if os.path.isfile(destination):
            raise OverwriteRefusedError(
                f"Refusing to overwrite file at {destination}",
                path=destination
            )
        
        if destination.endswith(os.sep):
            if not os.path.isdir(destination):
                raise InvalidDestinationError(
                    f"{destination} is not an existing folder",
                    path=destination
                )
            return
        
        parent = os.path.dirname(os.path.abspath(destination))
        if not os.path.isdir(parent):
            raise InvalidDestinationError(
                f"{parent} is not an existing folder",
                path=destination
            )
    
    @staticmethod
    def resolve_download_path(
        destination: Union[str, Path],
        remote_filename: str
    ) -> Path:
        """
        Compute where a download is written.
        
        Args:
            destination: User supplied path (file or directory)
            remote_filename: Name reported by the bridge
            
        Returns:
            Final write path
            
        Raises:
            OverwriteRefusedError: If the final path already exists
            InvalidDestinationError: If a directory was expected but is absent
        """
        destination = str(destination)
        
        if os.path.exists(destination):
            if os.path.isdir(destination):
                full_path = Path(destination) / local_filename(remote_filename)
                if full_path.resolve().parent != Path(destination).resolve():
                    raise InvalidDestinationError(
                        f"{full_path} is outside {destination}",
                        path=str(full_path)
                    )
                if full_path.exists():
                    raise OverwriteRefusedError(
                        f"Refusing to overwrite file at {full_path}",
                        path=str(full_path)
                    )
                return full_path
            raise OverwriteRefusedError(
                f"Refusing to overwrite file at {destination}",
                path=destination
            )
        
        if destination.endswith(os.sep):
            raise InvalidDestinationError(
                f"{destination} is not an existing folder",
                path=destination
            )
        
        return Path(destination)
