"""
Data models for py2scifio.

This package contains the image structures exchanged with the worker.
"""

from .image import (
    AXES,
    ByteOrder,
    ImageDescriptor,
    LookupTable,
    PixelKind,
    PixelType,
    Region,
)

__all__ = [
    'AXES',
    'ByteOrder',
    'ImageDescriptor',
    'LookupTable',
    'PixelKind',
    'PixelType',
    'Region',
]
