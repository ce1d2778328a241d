"""
Encrypted on-disk key-ring.

Stores file secrets as JSON encrypted with AES-GCM. The key protecting the
file is derived from the user's pass-phrase with PBKDF2-HMAC-SHA512, so the
key-ring is unreadable without it.
"""
import json
import os
import shutil
import hashlib
from pathlib import Path
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple, Union, Any

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes

from ..crypto import FileSecret
from ..exceptions import KeyRingError, NotFoundError
from ..logging import get_logger
from .memory_keyring import MemoryKeyRing

logger = get_logger('storjcli.keyring')


class FileKeyRing(MemoryKeyRing):
    """
    Pass-phrase protected key-ring persisted to a single file.
    
    Every mutation is written through immediately, so a crash after an
    upload commits never loses the secret needed to decrypt it.
    
    Example:
        >>> keyring = FileKeyRing.open('~/.storjcli/keyring.json', 'hunter2')
        >>> keyring.set(file_id, secret)
    """
    
    FILENAME = 'keyring.json'
    FORMAT_VERSION = 1
    KDF_ITERATIONS = 100000
    SALT_SIZE = 16
    
    def __init__(
        self,
        path: Union[str, Path],
        passphrase: str,
        secrets: Optional[Dict[str, FileSecret]] = None,
        seed: Optional[str] = None
    ):
        """
        Initialize key-ring (use open() to load an existing file).
        
        Args:
            path: Location of the key-ring file
            passphrase: Pass-phrase protecting the file
            secrets: Initial secrets
            seed: Optional deterministic seed
        """
        super().__init__(seed=seed)
        self._path = Path(path).expanduser()
        self._passphrase = passphrase
        self._salt: Optional[bytes] = None
        self._key: Optional[bytes] = None
        for file_id, secret in (secrets or {}).items():
            self._secrets[file_id] = secret
    
    @property
    def path(self) -> Path:
        """Get key-ring file path."""
        return self._path
    
    @classmethod
    def exists(cls, path: Union[str, Path]) -> bool:
        """Whether a key-ring file is present at path."""
        return Path(path).expanduser().is_file()
    
    @classmethod
    def open(cls, path: Union[str, Path], passphrase: str) -> 'FileKeyRing':
        """
        Unlock an existing key-ring or create a new one.
        
        Args:
            path: Location of the key-ring file
            passphrase: Pass-phrase protecting the file
            
        Returns:
            Unlocked key-ring
            
        Raises:
            KeyRingError: If the pass-phrase is wrong or the file is corrupt
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.info(f"Creating new key-ring at {path}")
            keyring = cls(path, passphrase)
            keyring.save()
            return keyring
        
        payload, salt, key = cls._unlock(path, passphrase)
        secrets = {
            file_id: FileSecret.from_dict(data)
            for file_id, data in payload.get('secrets', {}).items()
        }
        logger.debug(f"Key-ring unlocked: {len(secrets)} entries")
        keyring = cls(path, passphrase, secrets=secrets, seed=payload.get('seed'))
        keyring._salt, keyring._key = salt, key
        return keyring
    
    @classmethod
    def _derive_key(cls, passphrase: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac(
            'sha512',
            passphrase.encode('utf-8'),
            salt,
            cls.KDF_ITERATIONS,
            32
        )
    
    @classmethod
    def _decrypt_file(cls, path: Path, passphrase: str) -> Dict[str, Any]:
        return cls._unlock(path, passphrase)[0]
    
    @classmethod
    def _unlock(cls, path: Path, passphrase: str) -> Tuple[Dict[str, Any], bytes, bytes]:
        try:
            envelope = json.loads(path.read_text(encoding='utf-8'))
            salt = bytes.fromhex(envelope['salt'])
            nonce = bytes.fromhex(envelope['nonce'])
            tag = bytes.fromhex(envelope['tag'])
            data = bytes.fromhex(envelope['data'])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise KeyRingError(f"Key-ring at {path} is corrupt: {e}") from e
        
        key = cls._derive_key(passphrase, salt)
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        try:
            plaintext = cipher.decrypt_and_verify(data, tag)
        except ValueError as e:
            raise KeyRingError("Could not unlock keyring, bad password?") from e
        
        return json.loads(plaintext.decode('utf-8')), salt, key
    
    def _serialize(self) -> Dict[str, Any]:
        return {
            'seed': self._seed,
            'secrets': {
                file_id: secret.to_dict()
                for file_id, secret in self._secrets.items()
            }
        }
    
    def _envelope_key(self) -> Tuple[bytes, bytes]:
        """Salt and key for the file, derived once per pass-phrase."""
        if self._key is None:
            self._salt = get_random_bytes(self.SALT_SIZE)
            self._key = self._derive_key(self._passphrase, self._salt)
        return self._salt, self._key
    
    def save(self) -> None:
        """Encrypt and write the key-ring atomically."""
        salt, key = self._envelope_key()
        cipher = AES.new(key, AES.MODE_GCM)
        plaintext = json.dumps(self._serialize()).encode('utf-8')
        data, tag = cipher.encrypt_and_digest(plaintext)
        envelope = {
            'version': self.FORMAT_VERSION,
            'salt': salt.hex(),
            'nonce': cipher.nonce.hex(),
            'tag': tag.hex(),
            'data': data.hex(),
        }
        
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + '.tmp')
        tmp_path.write_text(json.dumps(envelope), encoding='utf-8')
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self._path)
    
    def set(self, file_id: str, secret: FileSecret) -> None:
        super().set(file_id, secret)
        self.save()
    
    def delete(self, file_id: str) -> None:
        super().delete(file_id)
        self.save()
    
    def change_passphrase(self, new_passphrase: str) -> None:
        """Re-encrypt the key-ring under a new pass-phrase."""
        if not new_passphrase:
            raise KeyRingError("Pass-phrase cannot be empty")
        self._passphrase = new_passphrase
        self._salt = self._key = None
        self.save()
    
    def export_to(self, directory: Union[str, Path]) -> Path:
        """
        Copy the encrypted key-ring into a directory.
        
        Args:
            directory: Existing target directory
            
        Returns:
            Path of the exported file
        """
        directory = Path(directory).expanduser()
        if not directory.is_dir():
            raise NotFoundError(f"{directory} is not an existing folder")
        
        stamp = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
        target = directory / f"keyring-{stamp}.json"
        shutil.copyfile(self._path, target)
        logger.info(f"Key-ring exported to {target}")
        return target
    
    def import_from(self, path: Union[str, Path], passphrase: str) -> int:
        """
        Merge entries of another key-ring file into this one.
        
        Existing entries are kept; only unknown file ids are added.
        
        Args:
            path: Key-ring file to import
            passphrase: Pass-phrase of the imported file
            
        Returns:
            Number of entries added
        """
        path = Path(path).expanduser()
        if not path.is_file():
            raise NotFoundError(f"{path} does not exist")
        
        payload = self._decrypt_file(path, passphrase)
        added = 0
        for file_id, data in payload.get('secrets', {}).items():
            if file_id not in self._secrets:
                self._secrets[file_id] = FileSecret.from_dict(data)
                added += 1
        
        self.save()
        logger.info(f"Imported {added} key-ring entries from {path}")
        return added
    
    def reset(self) -> None:
        """Forget every entry and rewrite an empty key-ring."""
        self._secrets.clear()
        self._seed = None
        self.save()
