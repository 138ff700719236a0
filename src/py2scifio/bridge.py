"""
High-level bridge between an image host and the SCIFIO worker.

ScifioBridge owns one worker session and exposes the operations a host
image-IO adapter needs: probing files, describing them, and reading or
writing pixel regions. Every operation starts the worker on demand; after
any failure the worker is torn down and a fresh one is spawned by the next
call.

Example:
    >>> with ScifioBridge() as bridge:
    ...     if bridge.probe_readable("/data/cells.tif"):
    ...         descriptor = bridge.describe("/data/cells.tif")
    ...         pixels = bridge.read_array("/data/cells.tif", descriptor)
"""

import logging
import threading
from typing import Optional, Sequence

import numpy as np

from py2scifio.core.config import BridgeConfig
from py2scifio.core.errors import DataError, ErrorCodes, ScifioError
from py2scifio.core.metadata import build_descriptor, parse_metadata, value_of_string
from py2scifio.core.protocol_encoder import (
    Verb,
    encode_can_read,
    encode_can_write,
    encode_info,
    encode_read,
    encode_write,
)
from py2scifio.core.transfer import TransferEngine
from py2scifio.core.worker_process import WorkerSession
from py2scifio.models.image import ImageDescriptor, Region


class ScifioBridge:
    """
    Reads and writes scientific image files through a SCIFIO worker process.

    One bridge drives one worker; calls on the same bridge are serialized.
    Independent bridges run independent workers.
    """

    def __init__(self, config: Optional[BridgeConfig] = None,
                 argv: Optional[Sequence[str]] = None):
        """
        Initialize the bridge without starting the worker.

        Args:
            config: Bridge settings (default: read from the environment)
            argv: Worker command overriding the one built from config

        Raises:
            ConfigurationError: If no config is given and SCIFIO_PATH is not set
        """
        self.logger = logging.getLogger(__name__)
        self.config = config if config is not None else BridgeConfig.from_environment()
        self._lock = threading.Lock()

        command = list(argv) if argv is not None else self.config.command()
        self.session = WorkerSession(command, read_chunk_size=self.config.read_chunk_size)
        self._engine = TransferEngine(
            self.session,
            sentinel=self.config.frame_sentinel,
            terminator=self.config.line_terminator,
            write_chunk_size=self.config.write_chunk_size,
        )

    def _ask(self, command: bytes, verb: str) -> bool:
        with self._lock:
            self.session.ensure_running()
            reply = self._engine.exchange_text(command, verb)
            answer = self._engine.first_line(reply)
            self.logger.debug(f"{verb} result: {answer}")
            try:
                return value_of_string(answer, bool, key=verb)
            except Exception:
                self.session.shutdown()
                raise

    def probe_readable(self, path: str) -> bool:
        """Whether the worker can read the file."""
        self.logger.debug(f"canRead: {path}")
        return self._ask(encode_can_read(path), Verb.CAN_READ)

    def probe_writable(self, path: str) -> bool:
        """Whether the worker can write the file."""
        self.logger.debug(f"canWrite: {path}")
        return self._ask(encode_can_write(path), Verb.CAN_WRITE)

    def describe(self, path: str) -> ImageDescriptor:
        """
        Read the image information of a file.

        Args:
            path: Image file path

        Returns:
            ImageDescriptor whose metadata attribute holds every key the worker sent

        Raises:
            ProtocolError: If the worker stops while replying
            MetadataError: If the reply lacks or garbles a required field
        """
        self.logger.debug(f"info: {path}")
        with self._lock:
            self.session.ensure_running()
            reply = self._engine.exchange_text(encode_info(path), Verb.INFO)
            try:
                descriptor = build_descriptor(parse_metadata(reply, self.config.line_terminator))
            except ScifioError as e:
                self.logger.error(f"Cannot describe {path}: {e.format_log_message()}")
                self.session.shutdown()
                raise
            except Exception:
                self.session.shutdown()
                raise

        self.logger.info(
            f"Described {path}: size={descriptor.size} type={descriptor.pixel_type.name} "
            f"channels={descriptor.channel_count}"
        )
        return descriptor

    def read(self, path: str, descriptor: ImageDescriptor,
             region: Optional[Region] = None, destination=None):
        """
        Read the raw pixel bytes of a region.

        Args:
            path: Image file path
            descriptor: Descriptor returned by describe()
            region: Region to read (default: the whole image)
            destination: Optional writable buffer to fill

        Returns:
            Buffer holding exactly pixel_size * region pixels bytes
        """
        region = region or descriptor.full_region()
        byte_count = descriptor.byte_count(region)
        self.logger.debug(f"read: {path} index={region.index} size={region.size}")

        with self._lock:
            self.session.ensure_running()
            return self._engine.read_pixels(encode_read(path, region), byte_count, destination)

    def read_array(self, path: str, descriptor: ImageDescriptor,
                   region: Optional[Region] = None) -> np.ndarray:
        """
        Read a region as a numpy array.

        The array axes are the region axes reversed (slowest first), with the
        channel components as a last axis when there is more than one.
        """
        region = region or descriptor.full_region()
        array = np.empty(descriptor.array_shape(region), dtype=descriptor.dtype)
        self.read(path, descriptor, region, destination=array)
        return array

    def write(self, path: str, descriptor: ImageDescriptor, buffer,
              region: Optional[Region] = None) -> None:
        """
        Write a region of pixels to a file.

        Args:
            path: Destination file path
            descriptor: Pixel type, byte order, spacing, channels and lookup table
            buffer: Bytes-like object or numpy array with the region's pixels
            region: Region being written (default: the whole image)

        Raises:
            ProtocolError: If the worker stops during the handshake
            DataError: If the buffer size does not match the region
        """
        region = region or descriptor.full_region()

        if isinstance(buffer, np.ndarray):
            if buffer.dtype.newbyteorder('=') != descriptor.pixel_type.dtype.newbyteorder('='):
                raise DataError(
                    f"Array dtype {buffer.dtype} does not match pixel type "
                    f"{descriptor.pixel_type.name}",
                    file_path=path,
                    error_code=ErrorCodes.BUFFER_LAYOUT
                )
            # the worker is told descriptor.byte_order, so the bytes must follow it
            buffer = np.ascontiguousarray(buffer, dtype=descriptor.dtype)

        nbytes = memoryview(buffer).nbytes
        expected = descriptor.byte_count(region)
        if nbytes != expected:
            raise DataError(
                f"Pixel buffer holds {nbytes} bytes, region needs {expected}",
                file_path=path,
                error_code=ErrorCodes.BUFFER_SIZE_MISMATCH
            )

        command = encode_write(
            path,
            descriptor.byte_order,
            region,
            descriptor.spacing,
            descriptor.pixel_type,
            descriptor.channel_count,
            descriptor.lookup_table,
        )
        self.logger.debug(f"write: {path} index={region.index} size={region.size}")

        with self._lock:
            self.session.ensure_running()
            planes = self._engine.write_pixels(command, region, buffer)

        self.logger.info(f"Wrote {planes} planes to {path}")

    def close(self) -> None:
        """
        Stop the worker and release its pipes.

        Does not wait for a running operation: killing the worker makes a call
        blocked on it fail with ProtocolError, which is the only way out of a
        hung worker.
        """
        self.session.shutdown()

    def __enter__(self) -> "ScifioBridge":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
