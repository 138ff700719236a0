"""Image models exchanged with the SCIFIO worker.

The worker always describes images in five dimensions ordered X, Y, Z, T, C.
Regions may use fewer axes; the missing trailing axes are index 0, extent 1.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from functools import reduce
from typing import Dict, List, Optional, Sequence, Tuple
import operator

import numpy as np

from py2scifio.core.errors import ValidationError, ErrorCodes

AXES = ('X', 'Y', 'Z', 'T', 'C')
MAX_DIMENSIONS = len(AXES)


class PixelType(IntEnum):
    """Pixel component types, numbered as the worker numbers them."""
    INT8 = 0
    UINT8 = 1
    INT16 = 2
    UINT16 = 3
    INT32 = 4
    UINT32 = 5
    FLOAT = 6
    DOUBLE = 7

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_PIXEL_DTYPES[self])

    @property
    def size(self) -> int:
        """Bytes per component."""
        return self.dtype.itemsize


_PIXEL_DTYPES: Dict[PixelType, str] = {
    PixelType.INT8: 'int8',
    PixelType.UINT8: 'uint8',
    PixelType.INT16: 'int16',
    PixelType.UINT16: 'uint16',
    PixelType.INT32: 'int32',
    PixelType.UINT32: 'uint32',
    PixelType.FLOAT: 'float32',
    PixelType.DOUBLE: 'float64',
}


class ByteOrder(Enum):
    """Byte order of pixel components."""
    LITTLE_ENDIAN = "little"
    BIG_ENDIAN = "big"

    @property
    def numpy_code(self) -> str:
        return '<' if self is ByteOrder.LITTLE_ENDIAN else '>'


class PixelKind(Enum):
    """How the channel components of one pixel are interpreted."""
    SCALAR = "scalar"
    RGB = "rgb"
    VECTOR = "vector"

    @classmethod
    def from_channel_count(cls, count: int) -> "PixelKind":
        if count == 1:
            return cls.SCALAR
        if count == 3:
            return cls.RGB
        return cls.VECTOR


@dataclass(frozen=True)
class Region:
    """
    Axis-aligned block of an image.

    Attributes:
        index: Start index per axis (X first)
        size: Extent per axis, same length as index

    Example:
        >>> region = Region(index=(0, 0), size=(10, 20))
        >>> region.padded_size()
        (10, 20, 1, 1, 1)
    """

    index: Tuple[int, ...]
    size: Tuple[int, ...]

    def __post_init__(self):
        object.__setattr__(self, 'index', tuple(int(i) for i in self.index))
        object.__setattr__(self, 'size', tuple(int(s) for s in self.size))

        if len(self.index) != len(self.size):
            raise ValidationError(
                f"Region index has {len(self.index)} axes but size has {len(self.size)}",
                field_name='index'
            )
        if not 1 <= len(self.size) <= MAX_DIMENSIONS:
            raise ValidationError(
                f"Region must have between 1 and {MAX_DIMENSIONS} axes, got {len(self.size)}",
                field_name='size',
                error_code=ErrorCodes.OUT_OF_RANGE
            )
        if any(i < 0 for i in self.index):
            raise ValidationError(f"Region index must not be negative: {self.index}", field_name='index')
        if any(s < 1 for s in self.size):
            raise ValidationError(f"Region extents must be positive: {self.size}", field_name='size')

    @classmethod
    def from_size(cls, size: Sequence[int]) -> "Region":
        """Region starting at the origin."""
        return cls(index=(0,) * len(size), size=tuple(size))

    @property
    def dimension(self) -> int:
        return len(self.size)

    def padded_index(self) -> Tuple[int, ...]:
        return self.index + (0,) * (MAX_DIMENSIONS - self.dimension)

    def padded_size(self) -> Tuple[int, ...]:
        return self.size + (1,) * (MAX_DIMENSIONS - self.dimension)

    @property
    def number_of_pixels(self) -> int:
        return reduce(operator.mul, self.size, 1)

    @property
    def number_of_planes(self) -> int:
        """Number of XY planes, i.e. the product of the extents beyond Y."""
        return reduce(operator.mul, self.padded_size()[2:], 1)


@dataclass(frozen=True)
class LookupTable:
    """Indexed-colour lookup table carried in the image metadata."""

    bits: int
    entries: Tuple[Tuple[int, int, int], ...]

    def __post_init__(self):
        object.__setattr__(self, 'entries', tuple(tuple(int(v) for v in e) for e in self.entries))
        for entry in self.entries:
            if len(entry) != 3:
                raise ValidationError(f"Lookup table entries need 3 values, got {entry}",
                                      field_name='entries')

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class ImageDescriptor:
    """Image information decoded from the worker's metadata.

    Attributes:
        size: Extent of the X, Y, Z, T, C axes
        spacing: Physical spacing of the X, Y, Z, T, C axes
        pixel_type: Component type
        byte_order: Byte order of the components
        channel_count: Components per pixel
        interleaved: Whether the worker reported interleaved channels
        lookup_table: Optional indexed-colour table
        metadata: Ordered key/value metadata the descriptor was built from
    """

    size: Tuple[int, ...]
    spacing: Tuple[float, ...]
    pixel_type: PixelType
    byte_order: ByteOrder = ByteOrder.LITTLE_ENDIAN
    channel_count: int = 1
    interleaved: bool = False
    lookup_table: Optional[LookupTable] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def dimension(self) -> int:
        return MAX_DIMENSIONS

    @property
    def pixel_kind(self) -> PixelKind:
        return PixelKind.from_channel_count(self.channel_count)

    @property
    def component_size(self) -> int:
        return self.pixel_type.size

    @property
    def pixel_size(self) -> int:
        """Bytes per pixel including all channel components."""
        return self.component_size * self.channel_count

    @property
    def dtype(self) -> np.dtype:
        return self.pixel_type.dtype.newbyteorder(self.byte_order.numpy_code)

    def full_region(self) -> Region:
        return Region.from_size(self.size)

    def byte_count(self, region: Region) -> int:
        return self.pixel_size * region.number_of_pixels

    def array_shape(self, region: Region) -> List[int]:
        """numpy shape of a region buffer: reversed axes, components last."""
        shape = list(reversed(region.size))
        if self.channel_count > 1:
            shape.append(self.channel_count)
        return shape
