"""Crypto module: file secrets, identifiers and stream transforms."""
from .hashing import sha256, rmd160, rmd160_sha256, calculate_file_id
from .keys import FileSecret
from .streams import EncryptStream, DecryptStream

__all__ = [
    'sha256',
    'rmd160',
    'rmd160_sha256',
    'calculate_file_id',
    'FileSecret',
    'EncryptStream',
    'DecryptStream',
]
