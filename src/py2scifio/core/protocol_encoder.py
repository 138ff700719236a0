"""
Command encoding for the SCIFIO worker pipe protocol.

Every request is one line of tab-separated ASCII fields ending with a single
newline. The first field is the verb.

COMMANDS:
=========
    canRead   <path>
    canWrite  <path>
    info      <path>
    read      <path> (<index> <extent>) x 5
    write     <path> <byteOrder> <regionDim> <extent> x 5 <spacing> x 5
              <pixelType> <channels> (<index> <extent>) x 5 <lut>

    lut:  0                                       no lookup table
          1 <bits> <length> (<r> <g> <b>) x length

The worker has a fixed five-dimensional contract (X, Y, Z, T, C). Regions
with fewer axes are padded: index 0 and extent 1 for positions, spacing 1.
Every field of the write command is followed by a tab.

Usage Example:
    >>> from py2scifio.models.image import Region
    >>> encode_read("/data/cells.tif", Region.from_size((10, 20)))
    b'read\\t/data/cells.tif\\t0\\t10\\t0\\t20\\t0\\t1\\t0\\t1\\t0\\t1\\n'
"""

import logging
from typing import Iterable, List, Optional, Sequence, Union

from py2scifio.core.errors import ValidationError, ErrorCodes
from py2scifio.models.image import (
    ByteOrder,
    LookupTable,
    MAX_DIMENSIONS,
    PixelType,
    Region,
)

logger = logging.getLogger(__name__)


class Verb:
    """Command verbs understood by the worker."""
    CAN_READ = "canRead"
    CAN_WRITE = "canWrite"
    INFO = "info"
    READ = "read"
    WRITE = "write"


FIELD_SEPARATOR = "\t"
COMMAND_TERMINATOR = "\n"

INT8_RANGE = (0, 255)
INT16_RANGE = (-32768, 32767)


def format_number(value: Union[int, float]) -> str:
    """
    Format a number the way a default C++ output stream does.

    Integers are written as-is; floating point values use six significant
    digits with trailing zeros removed (printf "%g").
    """
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, int):
        return str(value)
    return format(float(value), 'g')


def _check_path(path: str) -> str:
    path = str(path)
    if not path:
        raise ValidationError("File path must not be empty", field_name='path')
    if any(c in path for c in ("\t", "\n", "\r")):
        raise ValidationError(
            f"File path cannot contain tabs or line breaks: {path!r}",
            field_name='path'
        )
    return path


def _line(fields: Iterable[str]) -> bytes:
    command = FIELD_SEPARATOR.join(fields) + COMMAND_TERMINATOR
    logger.debug(f"Encoded command: {command!r}")
    return command.encode('utf-8')


def encode_can_read(path: str) -> bytes:
    """Ask whether the worker can read a file."""
    return _line([Verb.CAN_READ, _check_path(path)])


def encode_can_write(path: str) -> bytes:
    """Ask whether the worker can write a file."""
    return _line([Verb.CAN_WRITE, _check_path(path)])


def encode_info(path: str) -> bytes:
    """Ask the worker for the metadata of a file."""
    return _line([Verb.INFO, _check_path(path)])


def encode_read(path: str, region: Region) -> bytes:
    """
    Request the pixels of a region.

    Args:
        path: Image file path
        region: Region to read; axes beyond its dimensionality are index 0, extent 1

    Returns:
        Encoded command line
    """
    fields = [Verb.READ, _check_path(path)]
    for index, extent in zip(region.padded_index(), region.padded_size()):
        fields.append(str(index))
        fields.append(str(extent))
    return _line(fields)


def byte_order_flag(byte_order) -> int:
    """1 for big-endian, 0 for little-endian and anything unrecognized."""
    if byte_order is ByteOrder.BIG_ENDIAN:
        return 1
    return 0


def _padded_spacing(spacing: Sequence[float], dimension: int) -> List[float]:
    spacing = list(spacing)
    if len(spacing) < dimension:
        raise ValidationError(
            f"Spacing has {len(spacing)} values but the region has {dimension} axes",
            field_name='spacing'
        )
    return spacing[:dimension] + [1] * (MAX_DIMENSIONS - dimension)


def _lookup_table_fields(lookup_table: Optional[LookupTable]) -> List[str]:
    if lookup_table is None:
        return ["0"]

    fields = ["1", str(lookup_table.bits), str(len(lookup_table))]
    low, high = INT8_RANGE if lookup_table.bits == 8 else INT16_RANGE
    for i, entry in enumerate(lookup_table.entries):
        for value in entry:
            if not low <= value <= high:
                raise ValidationError(
                    f"Lookup table entry {i} value {value} does not fit "
                    f"a {lookup_table.bits}-bit table",
                    field_name='lookup_table',
                    error_code=ErrorCodes.OUT_OF_RANGE
                )
            # one field per value at every depth, no empty field after wide entries
            fields.append(str(value))
    return fields


def encode_write(
    path: str,
    byte_order: ByteOrder,
    region: Region,
    spacing: Sequence[float],
    pixel_type: Union[PixelType, int],
    channel_count: int,
    lookup_table: Optional[LookupTable] = None
) -> bytes:
    """
    Announce a write of a region to the worker.

    Args:
        path: Destination file path
        byte_order: Byte order of the pixel buffer
        region: Region being written
        spacing: Physical spacing of at least the region's axes
        pixel_type: Component type code
        channel_count: Components per pixel
        lookup_table: Optional indexed-colour table

    Returns:
        Encoded command line

    Raises:
        ValidationError: If spacing or the lookup table do not fit
    """
    if channel_count < 1:
        raise ValidationError(f"Channel count must be positive, got {channel_count}",
                              field_name='channel_count')

    dimension = region.dimension
    fields = [
        Verb.WRITE,
        _check_path(path),
        str(byte_order_flag(byte_order)),
        str(dimension),
    ]
    fields.extend(str(extent) for extent in region.padded_size())
    fields.extend(format_number(s) for s in _padded_spacing(spacing, dimension))
    fields.append(str(int(pixel_type)))
    fields.append(str(channel_count))
    for index, extent in zip(region.padded_index(), region.padded_size()):
        fields.append(str(index))
        fields.append(str(extent))
    fields.extend(_lookup_table_fields(lookup_table))

    command = "".join(f + FIELD_SEPARATOR for f in fields) + COMMAND_TERMINATOR
    logger.debug(f"Encoded command: {command!r}")
    return command.encode('utf-8')
