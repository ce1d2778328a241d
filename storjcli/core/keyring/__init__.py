"""
Key-ring module.

Maps remote file ids to the secrets needed to decrypt them.
"""
from .protocols import KeyRingProtocol
from .memory_keyring import MemoryKeyRing
from .file_keyring import FileKeyRing

__all__ = [
    'KeyRingProtocol',
    'MemoryKeyRing',
    'FileKeyRing',
]
