"""
Core layer for SCIFIO worker communication.

This package contains the process supervision, pipe framing and protocol
encoding used to talk to the SCIFIO worker process.
"""

from .errors import (
    ScifioError,
    ConfigurationError,
    ProcessLaunchError,
    ProtocolError,
    MetadataError,
    MissingMetadataError,
    ConversionError,
    UnknownPixelTypeError,
    DataError,
    ValidationError,
    ErrorCodes,
)
from .config import BridgeConfig, load_config
from .pipe_reader import PipeChannel, PipeEvent, PipeReader
from .worker_process import WorkerSession, WorkerState, ProcessState
from .frame_reader import FrameReader, FrameState
from .transfer import TransferEngine

__all__ = [
    'ScifioError',
    'ConfigurationError',
    'ProcessLaunchError',
    'ProtocolError',
    'MetadataError',
    'MissingMetadataError',
    'ConversionError',
    'UnknownPixelTypeError',
    'DataError',
    'ValidationError',
    'ErrorCodes',
    'BridgeConfig',
    'load_config',
    # Worker pipes
    'PipeChannel',
    'PipeEvent',
    'PipeReader',
    'WorkerSession',
    'WorkerState',
    'ProcessState',
    'FrameReader',
    'FrameState',
    'TransferEngine',
]
