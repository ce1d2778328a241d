"""
Bridge client configuration module.

Provides configuration for the storage bridge client: endpoint,
credentials, timeouts, retry policy and connection pooling.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, Any
import os
import ssl


DEFAULT_BRIDGE_URL = 'https://api.storj.io'


@dataclass
class SSLConfig:
    """
    SSL/TLS configuration.

    Allows customization of SSL behavior for self-hosted bridges.
    """
    verify: bool = True
    ca_file: Optional[str] = None
    check_hostname: bool = True

    def create_ssl_context(self) -> Any:
        """Create SSL context from configuration (False disables checks)."""
        if not self.verify:
            return False

        context = ssl.create_default_context()
        if self.ca_file:
            context.load_verify_locations(self.ca_file)
        context.check_hostname = self.check_hostname
        return context


@dataclass
class TimeoutConfig:
    """
    Timeout configuration.

    ``request`` bounds bridge API calls; ``transfer`` bounds each shard
    transfer to or from a farmer.
    """
    request: float = 10.0
    connect: float = 10.0
    transfer: float = 300.0
    sock_read: float = 60.0

    def to_aiohttp_timeout(self):
        """Convert to aiohttp ClientTimeout for bridge requests."""
        import aiohttp
        return aiohttp.ClientTimeout(
            total=self.request,
            connect=self.connect,
            sock_read=self.sock_read
        )

    def to_transfer_timeout(self):
        """Convert to aiohttp ClientTimeout for shard transfers."""
        import aiohttp
        return aiohttp.ClientTimeout(
            total=self.transfer,
            connect=self.connect,
            sock_read=self.sock_read
        )


@dataclass
class RetryConfig:
    """
    Retry configuration.

    Controls retry behavior for failed bridge requests.
    """
    max_retries: int = 4
    base_delay: float = 0.25
    max_delay: float = 16.0
    exponential_base: float = 2.0
    retry_on_status: tuple = (500, 502, 503, 504)

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class BridgeConfig:
    """
    Complete bridge client configuration.

    Example:
        >>> config = BridgeConfig(user='me@example.com', password='secret')
        >>> config.url
        'https://api.storj.io'
    """
    url: str = DEFAULT_BRIDGE_URL
    user_agent: str = 'storjcli/1.0.0'

    # Basic auth credentials; password_hash is the SHA-256 hex digest of the password
    user: Optional[str] = None
    password: Optional[str] = None
    password_hash: Optional[str] = None

    # Sub-configurations
    ssl: SSLConfig = field(default_factory=SSLConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    extra_headers: Dict[str, str] = field(default_factory=dict)

    # Connection pool settings
    limit_per_host: int = 10
    limit: int = 100

    @classmethod
    def default(cls) -> 'BridgeConfig':
        """Create default configuration."""
        return cls()

    @classmethod
    def from_env(cls, **kwargs) -> 'BridgeConfig':
        """
        Create configuration from STORJ_* environment variables.

        Reads STORJ_BRIDGE, STORJ_BRIDGE_USER and STORJ_BRIDGE_PASS;
        keyword arguments take precedence.
        """
        values = {
            'url': os.environ.get('STORJ_BRIDGE') or DEFAULT_BRIDGE_URL,
            'user': os.environ.get('STORJ_BRIDGE_USER') or None,
            'password': os.environ.get('STORJ_BRIDGE_PASS') or None,
        }
        values.update({k: v for k, v in kwargs.items() if v is not None})
        return cls(**values)

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and (self.password or self.password_hash))

    def get_connector_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for aiohttp TCPConnector."""
        return {
            'limit': self.limit,
            'limit_per_host': self.limit_per_host,
            'ssl': self.ssl.create_ssl_context(),
        }

    def get_session_kwargs(self) -> Dict[str, Any]:
        """Get kwargs for aiohttp ClientSession."""
        headers = {
            'User-Agent': self.user_agent,
            **self.extra_headers
        }

        return {
            'headers': headers,
            'timeout': self.timeout.to_aiohttp_timeout(),
        }
