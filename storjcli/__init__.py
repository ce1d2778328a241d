"""
storjcli - Async command line client for the Storj network.

Usage:
    >>> from storjcli import StorjClient, BridgeConfig
    >>>
    >>> async with StorjClient(BridgeConfig.from_env()) as storj:
    ...     report = await storj.upload(bucket_id, ['./photos/*.jpg'])
"""
import logging

from .core.logging import configure_logging
from .client import StorjClient

# Configuration
from .core.api import (
    BridgeConfig,
    SSLConfig,
    TimeoutConfig,
    RetryConfig,
    AsyncBridgeClient,
)

# Pipelines
from .core.upload import UploadPipeline, run_upload
from .core.download import DownloadPipeline, run_download

# Key-ring
from .core.keyring import KeyRingProtocol, MemoryKeyRing, FileKeyRing

__version__ = '1.0.0'


def setup_logging(level=logging.INFO, handler=None):
    """
    Configure logging for storjcli modules.

    Args:
        level: Logging level (default: logging.INFO)
        handler: Optional handler owning all storjcli output
    """
    configure_logging(level, handler)


__all__ = [
    'StorjClient',
    'BridgeConfig',
    'SSLConfig',
    'TimeoutConfig',
    'RetryConfig',
    'AsyncBridgeClient',
    'UploadPipeline',
    'run_upload',
    'DownloadPipeline',
    'run_download',
    'KeyRingProtocol',
    'MemoryKeyRing',
    'FileKeyRing',
    'setup_logging',
]
