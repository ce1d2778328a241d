"""
Download module.

Streams a stored file from the network, decrypts it and writes it locally.
"""
from .coordinator import DownloadPipeline, run_download

__all__ = [
    'DownloadPipeline',
    'run_download',
]
