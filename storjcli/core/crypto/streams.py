"""
Incremental encryption transforms.

AES-256-CTR keyed by a FileSecret. Both transforms are fed chunk by chunk
so files never need to be held in memory.
"""
from Crypto.Cipher import AES

from .keys import FileSecret


class _CTRStream:
    """Shared CTR state for the encrypt/decrypt transforms."""

    def __init__(self, secret: FileSecret):
        if secret is None:
            raise ValueError("A file secret is required")
        self._secret = secret
        self._cipher = AES.new(
            secret.cipher_key,
            AES.MODE_CTR,
            nonce=b'',
            initial_value=secret.cipher_iv
        )
        self._processed = 0
        self._finalized = False

    @property
    def secret(self) -> FileSecret:
        return self._secret

    @property
    def bytes_processed(self) -> int:
        """Number of bytes passed through the transform so far."""
        return self._processed

    def _transform(self, data: bytes) -> bytes:
        raise NotImplementedError

    def update(self, data: bytes) -> bytes:
        """Transform the next chunk."""
        if self._finalized:
            raise ValueError("Stream already finalized")
        if not data:
            return b''
        self._processed += len(data)
        return self._transform(data)

    def finalize(self) -> bytes:
        """Close the transform. CTR mode has no trailing block."""
        self._finalized = True
        return b''


class EncryptStream(_CTRStream):
    """Encrypting transform."""

    def _transform(self, data: bytes) -> bytes:
        return self._cipher.encrypt(data)


class DecryptStream(_CTRStream):
    """Decrypting transform."""

    def _transform(self, data: bytes) -> bytes:
        return self._cipher.decrypt(data)
