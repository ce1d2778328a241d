"""
Key-ring protocols.

Defines the narrow capability interface the pipelines depend on.
"""
from typing import Protocol, Optional, runtime_checkable

from ..crypto import FileSecret


@runtime_checkable
class KeyRingProtocol(Protocol):
    """
    Protocol for key-ring implementations.
    
    Maps file ids to the secrets needed to decrypt them. The upload
    pipeline writes entries, the download pipeline only reads them.
    """
    
    def get(self, file_id: str) -> Optional[FileSecret]:
        """
        Look up the secret for a file.
        
        Args:
            file_id: Remote file id
            
        Returns:
            FileSecret if known, None otherwise
        """
        ...
    
    def set(self, file_id: str, secret: FileSecret) -> None:
        """
        Store the secret for a file.
        
        Args:
            file_id: Remote file id
            secret: Secret used to encrypt the file
        """
        ...
    
    def delete(self, file_id: str) -> None:
        """Forget the secret for a file."""
        ...
    
    def generate_file_key(self, bucket: str, file_id: str) -> FileSecret:
        """
        Produce a fresh secret for a file about to be uploaded.
        
        Args:
            bucket: Bucket id
            file_id: Deterministic file id
        """
        ...
