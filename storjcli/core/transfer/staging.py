"""
Temporary staging directories.

Each in-flight upload encrypts its source into a private temp directory
before the encrypted copy is committed to the network.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..exceptions import CleanupError, StagingError
from ..logging import get_logger

logger = get_logger('storjcli.transfer.staging')


class StagingArea:
    """
    A process-unique temp directory and its release function.
    
    ``release()`` may be called any number of times; only the first call
    removes the directory.
    """
    
    def __init__(self, path: Path):
        self._path = path
        self._released = False
    
    @property
    def path(self) -> Path:
        return self._path
    
    @property
    def released(self) -> bool:
        return self._released
    
    def file_path(self, name: str) -> Path:
        """Path of the encrypted copy of ``name`` inside this area."""
        return self._path / f"{name}.crypt"
    
    def release(self) -> bool:
        """
        Remove the directory and everything in it.
        
        Returns:
            True if this call removed the directory, False if it was
            already released
            
        Raises:
            CleanupError: If the directory exists but can't be removed
        """
        if self._released:
            return False
        self._released = True
        
        try:
            shutil.rmtree(self._path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CleanupError(
                f"Failed to remove temp directory {self._path}: {e}",
                path=str(self._path)
            ) from e
        
        logger.debug(f"Released staging area {self._path}")
        return True
    
    async def __aenter__(self) -> 'StagingArea':
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()
    
    def __repr__(self) -> str:
        return f"StagingArea({str(self._path)!r}, released={self._released})"


class TempStagingManager:
    """
    Allocates staging areas.
    
    Directories are created with mode 0700 under ``base_dir`` (the system
    temp dir by default) and prefixed with ``storj-``.
    """
    
    PREFIX = 'storj-'
    
    def __init__(self, base_dir: Optional[Union[str, Path]] = None):
        self._base_dir = str(base_dir) if base_dir else None
    
    def acquire(self) -> StagingArea:
        """
        Create a new staging area.
        
        Raises:
            StagingError: If the directory can't be created
        """
        try:
            path = tempfile.mkdtemp(prefix=self.PREFIX, dir=self._base_dir)
            os.chmod(path, 0o700)
        except OSError as e:
            raise StagingError(f"Unable to create temp directory: {e}") from e
        
        logger.debug(f"Created staging area {path}")
        return StagingArea(Path(path))
