# py2scifio package
"""
Pipe bridge to the SCIFIO image-format worker.

The worker (loci.formats.itk.ITKBridgePipes) decodes and encodes the image
files; this package supervises it and speaks its pipe protocol.
"""

__version__ = "0.1.0"

from .bridge import ScifioBridge
from .core.config import BridgeConfig, load_config
from .core.errors import ScifioError
from .models.image import ImageDescriptor, Region, PixelType, ByteOrder, PixelKind, LookupTable

__all__ = [
    "ScifioBridge",
    "BridgeConfig",
    "load_config",
    "ScifioError",
    "ImageDescriptor",
    "Region",
    "PixelType",
    "ByteOrder",
    "PixelKind",
    "LookupTable",
]
