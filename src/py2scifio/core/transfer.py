"""
Request/response exchanges with the SCIFIO worker, including bulk pixel transfer.

Read path:
    read command ──> worker streams exactly pixel_size * pixels bytes

Write path:
    write command ──> worker replies "<bytesPerPlane>" (text frame)
    for each plane:
        for each chunk of the plane:  chunk ──> ack frame
        plane complete ──> ack frame

Nothing is retried. Any fault tears the worker down and raises; a partly
transferred buffer is never returned.
"""

import logging
from typing import Optional

from py2scifio.core.errors import DataError, ErrorCodes
from py2scifio.core.frame_reader import FrameReader
from py2scifio.core.metadata import value_of_string
from py2scifio.core.protocol_encoder import Verb
from py2scifio.models.image import Region

logger = logging.getLogger(__name__)


class TransferEngine:
    """
    Drives complete exchanges over one worker session.

    Example:
        >>> engine = TransferEngine(session, sentinel=b"\\n\\n")
        >>> reply = engine.exchange_text(encode_info(path), Verb.INFO)
    """

    def __init__(self, session, sentinel: bytes, terminator: str = "\n",
                 write_chunk_size: int = 10000):
        """
        Args:
            session: WorkerSession to talk through
            sentinel: Byte sequence closing text frames
            terminator: Line terminator of the worker's text output
            write_chunk_size: Largest chunk sent before waiting for an acknowledgement
        """
        self._session = session
        self._sentinel = sentinel
        self._terminator = terminator
        self.write_chunk_size = write_chunk_size

    def _reader(self, verb: str) -> FrameReader:
        return FrameReader(self._session, self._sentinel, verb)

    @staticmethod
    def _byte_view(buffer, byte_count: Optional[int] = None, writable: bool = False) -> memoryview:
        """Flat byte view of a caller buffer, checked before anything is sent."""
        try:
            view = memoryview(buffer).cast('B')
        except TypeError as e:
            raise DataError(
                "Pixel buffer must be a C-contiguous bytes-like object",
                error_code=ErrorCodes.BUFFER_LAYOUT,
                cause=e
            )
        if writable and view.readonly:
            raise DataError("Destination buffer is read-only", error_code=ErrorCodes.BUFFER_LAYOUT)
        if byte_count is not None and len(view) != byte_count:
            raise DataError(
                f"Destination holds {len(view)} bytes, region needs {byte_count}",
                error_code=ErrorCodes.BUFFER_SIZE_MISMATCH
            )
        return view

    def exchange_text(self, command: bytes, verb: str) -> str:
        """Send a command and return its text reply frame."""
        reader = self._reader(verb)
        self._session.send(command)
        try:
            frame = reader.read_text_frame()
        except Exception:
            self._session.shutdown()
            raise
        return frame.decode('utf-8', errors='replace')

    def first_line(self, text: str) -> str:
        return text.split(self._terminator, 1)[0]

    def read_pixels(self, command: bytes, byte_count: int, destination=None):
        """
        Send a read command and collect exactly byte_count pixel bytes.

        Args:
            command: Encoded read command
            byte_count: Pixel size times number of pixels in the region
            destination: Optional writable C-contiguous buffer of byte_count bytes

        Returns:
            The filled buffer (a new bytearray unless destination was given)

        Raises:
            DataError: If destination cannot take the pixels; nothing is sent then
            ProtocolError: If the worker stops before every byte arrived
        """
        if destination is None:
            destination = bytearray(byte_count)
        view = self._byte_view(destination, byte_count, writable=True)

        reader = self._reader(Verb.READ)
        self._session.send(command)
        try:
            reader.read_binary(view, count=byte_count)
        except Exception:
            self._session.shutdown()
            raise

        logger.debug(f"Read {byte_count} pixel bytes")
        return destination

    def write_pixels(self, command: bytes, region: Region, source) -> int:
        """
        Send a write command and stream the pixel planes with acknowledgements.

        Args:
            command: Encoded write command
            region: Region announced in the command
            source: Bytes-like pixel buffer holding every plane of the region

        Returns:
            Number of planes written

        Raises:
            ProtocolError: If the worker stops or replies malformed data
            DataError: If source does not hold exactly the announced planes
        """
        data = self._byte_view(source)
        planes = region.number_of_planes

        reader = self._reader(Verb.WRITE)
        self._session.send(command)
        try:
            reply = reader.read_text_frame().decode('utf-8', errors='replace')
            logger.debug(f"Write reply: {reply!r}")
            bytes_per_plane = value_of_string(self.first_line(reply), int, key='bytesPerPlane')

            expected = planes * bytes_per_plane
            logger.debug(f"Bytes per plane: {bytes_per_plane}, planes: {planes}")
            if bytes_per_plane < 0 or len(data) != expected:
                raise DataError(
                    f"Pixel buffer holds {len(data)} bytes but the worker expects "
                    f"{planes} planes of {bytes_per_plane} bytes",
                    error_code=ErrorCodes.BUFFER_SIZE_MISMATCH
                )

            offset = 0
            for plane in range(planes):
                sent = 0
                while sent < bytes_per_plane:
                    length = min(self.write_chunk_size, bytes_per_plane - sent)
                    logger.debug(f"Writing {length} bytes to plane {plane}. Bytes sent: {sent}")
                    self._session.send(data[offset:offset + length])
                    offset += length
                    sent += length
                    reader.read_text_frame()

                reader.read_text_frame()
                logger.debug(f"Plane {plane} complete")
        except Exception:
            # stream position of the worker is unknown from here on
            self._session.shutdown()
            raise

        return planes
