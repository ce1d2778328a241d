"""
Source path resolution for uploads.

Expands the path specifiers given on the command line (plain paths or glob
patterns) into the ordered list of files to upload.
"""
import glob
import os
from pathlib import Path
from typing import Iterable, List, Union

from ..exceptions import NotFoundError, SourcePermissionError
from ..logging import get_logger

logger = get_logger('storjcli.transfer.paths')

GLOB_CHARS = ('*', '?', '[')


class PathResolver:
    """
    Resolves path specifiers into absolute file paths.
    
    Responsibilities:
    - Expand glob patterns
    - Check existence and readability
    - Skip empty files and directories (with a warning)
    
    Never touches the filesystem beyond stat/access checks.
    """
    
    MIN_FILE_SIZE = 1
    
    def resolve(self, specifiers: Iterable[Union[str, Path]]) -> List[Path]:
        """
        Resolve specifiers into an ordered, deduplicated file list.
        
        Args:
            specifiers: Paths or glob patterns
            
        Returns:
            Absolute paths, in specifier order
            
        Raises:
            NotFoundError: If a specifier matches nothing
            SourcePermissionError: If a matched file is unreadable
        """
        resolved: List[Path] = []
        seen = set()
        
        for pattern in specifiers:
            for path in self._expand(str(pattern)):
                if path in seen:
                    continue
                if not self._is_eligible(path):
                    continue
                seen.add(path)
                resolved.append(path)
        
        return resolved
    
    def _expand(self, pattern: str) -> List[Path]:
        """Expand one specifier into existing absolute paths."""
        expanded = os.path.expanduser(pattern)
        
        if any(char in expanded for char in GLOB_CHARS):
            matches = sorted(glob.glob(expanded, recursive=True))
        else:
            matches = [expanded] if os.path.exists(expanded) else []
        
        if not matches:
            raise NotFoundError(f"{pattern} could not be found")
        
        return [Path(os.path.abspath(match)) for match in matches]
    
    def _is_eligible(self, path: Path) -> bool:
        """Check a single matched path, warning about skipped ones."""
        if path.is_dir():
            logger.warning(f"Skipping [ {path} ]... directories are not uploaded.")
            return False
        
        size = path.stat().st_size
        if size < self.MIN_FILE_SIZE:
            logger.warning(
                f"Skipping [ {path} ]... we don't support files smaller than 1 Byte."
            )
            return False
        
        if not os.access(path, os.R_OK):
            raise SourcePermissionError(f"{path} is not readable", path=str(path))
        
        return True
