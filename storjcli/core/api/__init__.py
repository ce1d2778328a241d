"""Bridge API module."""
from .config import BridgeConfig, SSLConfig, TimeoutConfig, RetryConfig, DEFAULT_BRIDGE_URL
from .bridge_client import AsyncBridgeClient
from .shard_stream import ShardStream

__all__ = [
    # Client
    'AsyncBridgeClient',
    'ShardStream',

    # Configuration
    'BridgeConfig',
    'SSLConfig',
    'TimeoutConfig',
    'RetryConfig',
    'DEFAULT_BRIDGE_URL',
]
