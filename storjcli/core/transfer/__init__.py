"""
Shared building blocks of the upload and download pipelines.
"""
from .models import (
    FileMetadata,
    BucketInfo,
    FrameInfo,
    Token,
    FarmerContact,
    ShardPointer,
    JobStage,
    TransferJob,
    ExclusionSet,
    PipelineRun,
    UploadReport,
    TransferProgress,
)
from .paths import PathResolver
from .staging import StagingArea, TempStagingManager
from .naming import NameCollisionResolver, local_filename, strip_iso_prefix, prefix_with_timestamp
from .tokens import TokenBroker, PUSH, PULL
from .retry import RetryController
from .monitor import ResourcePressureMonitor, MIN_FREE_MEMORY
from .protocols import BridgeClientProtocol, ShardStreamProtocol

__all__ = [
    'FileMetadata',
    'BucketInfo',
    'FrameInfo',
    'Token',
    'FarmerContact',
    'ShardPointer',
    'JobStage',
    'TransferJob',
    'ExclusionSet',
    'PipelineRun',
    'UploadReport',
    'TransferProgress',
    'PathResolver',
    'StagingArea',
    'TempStagingManager',
    'NameCollisionResolver',
    'local_filename',
    'strip_iso_prefix',
    'prefix_with_timestamp',
    'TokenBroker',
    'PUSH',
    'PULL',
    'RetryController',
    'ResourcePressureMonitor',
    'MIN_FREE_MEMORY',
    'BridgeClientProtocol',
    'ShardStreamProtocol',
]
