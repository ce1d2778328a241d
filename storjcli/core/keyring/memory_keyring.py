"""
In-memory key-ring implementation.

Provides non-persistent secret storage for testing and temporary use.
"""
from typing import Dict, Optional, Iterator

from ..crypto import FileSecret


class MemoryKeyRing:
    """
    In-memory key-ring.
    
    Data is lost when the object is destroyed.
    
    Example:
        >>> keyring = MemoryKeyRing()
        >>> secret = keyring.generate_file_key('bucket', 'fileid')
        >>> keyring.set('fileid', secret)
        >>> keyring.get('fileid') is secret
        True
    """
    
    def __init__(self, seed: Optional[str] = None):
        """
        Initialize memory key-ring.
        
        Args:
            seed: Optional seed; when set, generated secrets are
                  deterministic per (bucket, file id)
        """
        self._secrets: Dict[str, FileSecret] = {}
        self._seed = seed
    
    @property
    def seed(self) -> Optional[str]:
        return self._seed
    
    def get(self, file_id: str) -> Optional[FileSecret]:
        return self._secrets.get(file_id)
    
    def set(self, file_id: str, secret: FileSecret) -> None:
        self._secrets[file_id] = secret
    
    def delete(self, file_id: str) -> None:
        self._secrets.pop(file_id, None)
    
    def generate_file_key(self, bucket: str, file_id: str) -> FileSecret:
        if self._seed:
            return FileSecret.from_seed(self._seed, bucket, file_id)
        return FileSecret.generate()
    
    def __contains__(self, file_id: object) -> bool:
        return file_id in self._secrets
    
    def __iter__(self) -> Iterator[str]:
        return iter(list(self._secrets))
    
    def __len__(self) -> int:
        return len(self._secrets)
