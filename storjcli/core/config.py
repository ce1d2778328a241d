"""
Command-line configuration.

Resolves where the CLI keeps its state (key-ring, saved credentials) and
which bridge it talks to, from STORJ_* environment variables.
"""
import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict

from .api.config import BridgeConfig, DEFAULT_BRIDGE_URL
from .crypto import sha256
from .exceptions import StorjError
from .keyring.file_keyring import FileKeyRing
from .logging import get_logger

logger = get_logger('storjcli.config')

DEFAULT_DATADIR = '~/.storjcli'
CREDENTIALS_FILENAME = 'credentials.json'


@dataclass
class CLIConfig:
    """
    Settings shared by every command.

    Example:
        >>> config = CLIConfig.from_env()
        >>> config.keyring_path.name
        'keyring.json'
    """
    datadir: Path = field(default_factory=lambda: Path(DEFAULT_DATADIR).expanduser())
    bridge_url: str = DEFAULT_BRIDGE_URL
    keypass: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    password_hash: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        bridge_url: Optional[str] = None,
        keypass: Optional[str] = None,
        datadir: Optional[str] = None
    ) -> 'CLIConfig':
        """
        Build configuration from the environment.

        Explicit arguments (command-line options) take precedence over
        STORJ_BRIDGE, STORJ_KEYPASS and STORJ_DATADIR.
        """
        config = cls(
            datadir=Path(datadir or os.environ.get('STORJ_DATADIR') or DEFAULT_DATADIR).expanduser(),
            bridge_url=bridge_url or os.environ.get('STORJ_BRIDGE') or DEFAULT_BRIDGE_URL,
            keypass=keypass or os.environ.get('STORJ_KEYPASS') or None,
            user=os.environ.get('STORJ_BRIDGE_USER') or None,
            password=os.environ.get('STORJ_BRIDGE_PASS') or None,
        )
        if not config.has_credentials:
            saved = config.load_credentials()
            if saved.get('user') and saved.get('password_hash'):
                config.user = saved['user']
                config.password = None
                config.password_hash = saved['password_hash']
        return config

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and (self.password or self.password_hash))

    @property
    def keyring_path(self) -> Path:
        return self.datadir / FileKeyRing.FILENAME

    @property
    def credentials_path(self) -> Path:
        return self.datadir / CREDENTIALS_FILENAME

    def ensure_datadir(self) -> Path:
        """Create the data directory (owner-only) if missing."""
        self.datadir.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.datadir

    def load_credentials(self) -> Dict[str, str]:
        """Credentials saved by ``login``, or an empty dict."""
        path = self.credentials_path
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credentials file {path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save_credentials(self, user: str, password: str) -> Path:
        """
        Persist bridge credentials with owner-only permissions.

        Only the SHA-256 digest the bridge authenticates with is written.
        """
        self.ensure_datadir()
        path = self.credentials_path
        password_hash = sha256(password).hex()
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump({'user': user, 'password_hash': password_hash}, f)
        self.user = user
        self.password = None
        self.password_hash = password_hash
        logger.debug(f"Saved credentials to {path}")
        return path

    def clear_credentials(self) -> bool:
        """Remove saved credentials; returns False if none were saved."""
        try:
            self.credentials_path.unlink()
        except FileNotFoundError:
            return False
        self.user = None
        self.password = None
        self.password_hash = None
        return True

    def bridge_config(self) -> BridgeConfig:
        """Bridge client configuration for these settings."""
        return BridgeConfig(
            url=self.bridge_url,
            user=self.user,
            password=self.password,
            password_hash=self.password_hash
        )

    def open_keyring(self, passphrase: Optional[str] = None) -> FileKeyRing:
        """
        Unlock (or create) the key-ring in the data directory.

        Raises:
            StorjError: If no pass-phrase is available
            KeyRingError: If the pass-phrase is wrong
        """
        passphrase = passphrase or self.keypass
        if not passphrase:
            raise StorjError("A key-ring pass-phrase is required (set STORJ_KEYPASS)")
        self.ensure_datadir()
        return FileKeyRing.open(self.keyring_path, passphrase)
