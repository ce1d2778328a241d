"""
Per-file encryption secrets.

A FileSecret is a pass-phrase and a salt. The AES key and IV used by the
encryption streams are derived from them, so only the two hex strings need
to be stored in the key-ring.
"""
import hashlib
from dataclasses import dataclass
from functools import cached_property
from typing import Dict

from Crypto.Random import get_random_bytes

from .hashing import rmd160

KEY_SIZE = 32
IV_SIZE = 16
PBKDF2_ITERATIONS = 25000


@dataclass
class FileSecret:
    """
    Symmetric secret bound to one file id.

    Example:
        >>> secret = FileSecret.deterministic('token-key', 'fileid')
        >>> len(secret.cipher_key), len(secret.cipher_iv)
        (32, 16)
    """
    passphrase: str
    salt: str

    @classmethod
    def generate(cls) -> 'FileSecret':
        """Create a random secret."""
        return cls(
            passphrase=get_random_bytes(KEY_SIZE).hex(),
            salt=get_random_bytes(KEY_SIZE).hex()
        )

    @classmethod
    def deterministic(cls, encryption_key: str, file_id: str) -> 'FileSecret':
        """
        Derive the secret from a token's pre-assigned key material.

        Args:
            encryption_key: Key material returned with a push token
            file_id: File id the secret is bound to
        """
        passphrase = hashlib.sha512(
            (encryption_key + file_id).encode('utf-8')
        ).hexdigest()
        return cls(passphrase=passphrase, salt=file_id)

    @classmethod
    def from_seed(cls, seed: str, bucket: str, file_id: str) -> 'FileSecret':
        """Derive the secret from a key-ring seed, bucket and file id."""
        bucket_key = hashlib.sha512((seed + bucket).encode('utf-8')).hexdigest()
        return cls.deterministic(bucket_key, file_id)

    @cached_property
    def cipher_key(self) -> bytes:
        """32-byte AES key (PBKDF2-HMAC-SHA512)."""
        return hashlib.pbkdf2_hmac(
            'sha512',
            self.passphrase.encode('utf-8'),
            self.salt.encode('utf-8'),
            PBKDF2_ITERATIONS,
            KEY_SIZE
        )

    @cached_property
    def cipher_iv(self) -> bytes:
        """16-byte initial counter block."""
        return rmd160(self.salt)[:IV_SIZE]

    def to_dict(self) -> Dict[str, str]:
        """Serializable form stored in the key-ring."""
        return {'pass': self.passphrase, 'salt': self.salt}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'FileSecret':
        """Inverse of to_dict."""
        return cls(passphrase=data['pass'], salt=data['salt'])
