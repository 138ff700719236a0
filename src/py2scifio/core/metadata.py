"""
Metadata codec for the SCIFIO worker's text frames.

An info reply is a sequence of key and value lines:

    SizeX
    512
    PixelsPhysicalSizeX
    0.325
    ...
    <blank line>

Values escape backslashes as "\\\\" and line breaks as "\\n". Empty lines
where a key is expected are padding. The first occurrence of a key wins;
later duplicates in the same frame are ignored so an already validated
field cannot be overwritten.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Type, TypeVar

from py2scifio.core.errors import (
    ConversionError,
    ErrorCodes,
    MissingMetadataError,
    UnknownPixelTypeError,
)
from py2scifio.models.image import (
    AXES,
    ByteOrder,
    ImageDescriptor,
    LookupTable,
    PixelType,
)

logger = logging.getLogger(__name__)

T = TypeVar('T', bool, int, float, str)

# Keys read from an info reply
INTERLEAVED = "Interleaved"
LITTLE_ENDIAN = "LittleEndian"
PIXEL_TYPE = "PixelType"
CHANNEL_COUNT = "RGBChannelCount"
USE_LUT = "UseLUT"
LUT_BITS = "LUTBits"
LUT_LENGTH = "LUTLength"

SIZE_KEYS = tuple(f"Size{axis}" for axis in AXES)
SPACING_KEYS = tuple(f"PixelsPhysicalSize{axis}" for axis in AXES)

_TRUE_TOKENS = ("1", "true")
_FALSE_TOKENS = ("0", "false")


def unescape(value: str) -> str:
    """
    Decode the worker's value escapes.

    "\\\\" becomes a backslash and "\\n" a line feed. Any other character
    after a backslash is dropped together with the backslash, and so is a
    trailing lone backslash.
    """
    parts = []
    position = 0
    while position < len(value):
        slash = value.find("\\", position)
        if slash == -1:
            parts.append(value[position:])
            break
        parts.append(value[position:slash])
        if slash < len(value) - 1:
            escaped = value[slash + 1]
            if escaped == "\\":
                parts.append("\\")
            elif escaped == "n":
                parts.append("\n")
        position = slash + 2
    return "".join(parts)


def escape(value: str) -> str:
    """Inverse of unescape for values written by the worker."""
    return value.replace("\\", "\\\\").replace("\n", "\\n")


def insert_first(metadata: Dict[str, str], key: str, value: str) -> bool:
    """
    Store value under key unless the key is already present.

    Returns:
        True if the value was stored
    """
    if key in metadata:
        logger.debug(f"Metadata {key} = {value} ignored because the key is already defined")
        return False
    metadata[key] = value
    return True


def parse_metadata(text: str, terminator: str = "\n") -> Dict[str, str]:
    """
    Parse a text frame into an ordered key/value dictionary.

    Args:
        text: Decoded frame
        terminator: Line terminator used by the worker

    Returns:
        Ordered mapping of unescaped values
    """
    metadata: Dict[str, str] = {}
    lines = text.split(terminator)
    position = 0

    while position < len(lines):
        key = lines[position]
        position += 1
        if not key:
            continue

        if position >= len(lines):
            logger.warning(f"Metadata key {key!r} has no value line")
            break

        value = lines[position]
        position += 1
        if not value:
            continue

        stored = unescape(value)
        if insert_first(metadata, key, stored):
            logger.debug(f"Storing metadata: {key} ---> {stored}")

    return metadata


def format_metadata(metadata: Dict[str, str], terminator: str = "\n") -> str:
    """Encode a dictionary as an info frame, blank line included."""
    lines = []
    for key, value in metadata.items():
        lines.append(key)
        lines.append(escape(value))
    return "".join(line + terminator for line in lines) + terminator


def value_of_string(text: str, value_type: Type[T], key: Optional[str] = None) -> T:
    """
    Convert a metadata string into bool, int, float or str.

    Booleans accept "0"/"1" first and "true"/"false" second.

    Raises:
        ConversionError: If the text cannot be converted
    """
    token = text.strip()

    if value_type is bool:
        lowered = token.lower()
        if lowered in _TRUE_TOKENS:
            return True
        if lowered in _FALSE_TOKENS:
            return False
    elif value_type is str:
        return text
    else:
        # the whole token must parse: "4.5" is not an int, "10abc" is not a number
        try:
            return value_type(token)
        except (TypeError, ValueError):
            pass

    raise ConversionError(
        f"Error while converting: {text!r} to {value_type.__name__}",
        key=key,
        value=text,
        error_code=ErrorCodes.CONVERSION_FAILED
    )


def get_typed(metadata: Dict[str, str], key: str, value_type: Type[T]) -> T:
    """
    Fetch and convert one metadata value.

    Raises:
        MissingMetadataError: If key is absent
        ConversionError: If the value cannot be converted
    """
    if key not in metadata:
        raise MissingMetadataError(
            f"{key} is not in the metadata dictionary",
            key=key,
            error_code=ErrorCodes.MISSING_KEY
        )
    return value_of_string(metadata[key], value_type, key=key)


def get_optional(metadata: Dict[str, str], key: str, value_type: Type[T], default: Any = None):
    """Like get_typed, returning default when the key is absent."""
    if key not in metadata:
        return default
    return get_typed(metadata, key, value_type)


def lookup_table_from_metadata(metadata: Dict[str, str]) -> Optional[LookupTable]:
    """
    Extract the indexed-colour table announced by UseLUT.

    Returns:
        LookupTable, or None when UseLUT is absent or false
    """
    if not get_optional(metadata, USE_LUT, bool, False):
        return None

    bits = get_typed(metadata, LUT_BITS, int)
    length = get_typed(metadata, LUT_LENGTH, int)
    logger.debug(f"Found a LUT of length {length} and {bits} bits")

    entries = []
    for i in range(length):
        entries.append((
            get_typed(metadata, f"LUTR{i}", int),
            get_typed(metadata, f"LUTG{i}", int),
            get_typed(metadata, f"LUTB{i}", int),
        ))
    return LookupTable(bits=bits, entries=tuple(entries))


def _pixel_type(metadata: Dict[str, str]) -> PixelType:
    code = get_typed(metadata, PIXEL_TYPE, int)
    try:
        return PixelType(code)
    except ValueError:
        raise UnknownPixelTypeError(
            f"Unknown pixel type: {code}",
            code=code,
            error_code=ErrorCodes.UNKNOWN_PIXEL_TYPE
        )


def _per_axis(metadata: Dict[str, str], keys: Iterable[str], value_type) -> Tuple:
    values = []
    for key in keys:
        value = get_typed(metadata, key, value_type)
        logger.debug(f"Setting {key}: {value}")
        values.append(value)
    return tuple(values)


def build_descriptor(metadata: Dict[str, str]) -> ImageDescriptor:
    """
    Turn an info reply into an ImageDescriptor.

    Fields are read in a fixed order: Interleaved, LittleEndian, PixelType,
    the five sizes, RGBChannelCount, then the five physical spacings.

    Raises:
        MissingMetadataError: If a required key is absent
        ConversionError: If a value has the wrong type
        UnknownPixelTypeError: If the pixel type code is unknown
    """
    if PIXEL_TYPE not in metadata:
        raise MissingMetadataError(
            "PixelType is not in the metadata dictionary!",
            key=PIXEL_TYPE,
            error_code=ErrorCodes.MISSING_KEY
        )

    interleaved = get_optional(metadata, INTERLEAVED, bool, False)
    logger.debug(f"Interleaved ---> {interleaved}")

    little_endian = get_typed(metadata, LITTLE_ENDIAN, bool)
    byte_order = ByteOrder.LITTLE_ENDIAN if little_endian else ByteOrder.BIG_ENDIAN
    logger.debug(f"Setting LittleEndian ---> {little_endian}")

    pixel_type = _pixel_type(metadata)
    logger.debug(f"Setting ComponentType: {pixel_type.name}")

    size = _per_axis(metadata, SIZE_KEYS, int)

    channel_count = get_typed(metadata, CHANNEL_COUNT, int)
    logger.debug(f"Setting RGBChannelCount: {channel_count}")

    spacing = _per_axis(metadata, SPACING_KEYS, float)

    return ImageDescriptor(
        size=size,
        spacing=spacing,
        pixel_type=pixel_type,
        byte_order=byte_order,
        channel_count=channel_count,
        interleaved=interleaved,
        lookup_table=lookup_table_from_metadata(metadata),
        metadata=metadata,
    )
