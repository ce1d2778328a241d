"""
Upload module.

Encrypts local files into temporary staging areas and stores them on the
network, several files at a time.
"""
from .coordinator import UploadPipeline, run_upload

__all__ = [
    'UploadPipeline',
    'run_upload',
]
