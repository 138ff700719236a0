"""
Response framing for the SCIFIO worker pipe protocol.

The worker's stdout carries two kinds of frames:

- Text frames (boolean replies, metadata dumps, write acknowledgements) end
  with the doubled platform line terminator. Their length is not known in
  advance, so the reader watches the tail of the buffer for the sentinel.
- Binary frames (pixel data) have no terminator. Pixel bytes can contain
  anything, including the sentinel, so their length is always negotiated
  beforehand and the reader simply counts bytes.

stderr chunks can arrive at any point; they are collected verbatim and only
ever used as the detail of an error message.

States:
    ACCUMULATING_TEXT ──sentinel seen──────> DONE
    STREAMING_BINARY  ──remaining == 0─────> DONE
    either            ──worker exit/error──> ABORTED (worker torn down)
"""

import logging
from enum import Enum
from typing import Optional

from py2scifio.core.errors import ErrorCodes, ProtocolError
from py2scifio.core.pipe_reader import PipeEvent

logger = logging.getLogger(__name__)


class FrameState(Enum):
    """State of the frame reader."""
    ACCUMULATING_TEXT = "accumulating_text"
    STREAMING_BINARY = "streaming_binary"
    DONE = "done"
    ABORTED = "aborted"


class FrameReader:
    """
    Reads one response frame at a time from a worker session.

    A reader is created for one protocol operation and collects the worker's
    diagnostics for the whole of that operation.
    """

    def __init__(self, session, sentinel: bytes, verb: str):
        """
        Initialize the frame reader.

        Args:
            session: WorkerSession (anything with wait_for_data() and shutdown())
            sentinel: Byte sequence closing every text frame
            verb: Command verb, used in error messages
        """
        self._session = session
        self._sentinel = sentinel
        self._verb = verb
        self._diagnostics = bytearray()
        self.state = FrameState.DONE
        self.remaining = 0

    @property
    def diagnostics(self) -> str:
        """Everything the worker wrote to stderr so far."""
        return self._diagnostics.decode('utf-8', errors='replace')

    def read_text_frame(self) -> bytes:
        """
        Read output until it ends with the frame sentinel.

        Returns:
            The whole frame, sentinel included

        Raises:
            ProtocolError: If the worker stops before the frame is complete
        """
        buffer = bytearray()
        self.state = FrameState.ACCUMULATING_TEXT

        while self.state is FrameState.ACCUMULATING_TEXT:
            event = self._session.wait_for_data()
            if event.is_output:
                buffer += event.data
                # only the tail can complete the frame
                if buffer.endswith(self._sentinel):
                    self.state = FrameState.DONE
            elif event.is_diagnostic:
                self._diagnostics += event.data
            else:
                self._abort(event)

        logger.debug(f"'{self._verb}' text frame complete: {len(buffer)} bytes")
        self._log_diagnostics()
        return bytes(buffer)

    def read_binary(self, destination, offset: int = 0, count: Optional[int] = None) -> int:
        """
        Copy exactly count output bytes into destination.

        Args:
            destination: Writable buffer (bytearray, memoryview, numpy array)
            offset: First byte of destination to fill
            count: Bytes to read (default: rest of destination)

        Returns:
            Number of bytes copied

        Raises:
            ProtocolError: If the worker stops early or sends more than count
        """
        view = memoryview(destination).cast('B')
        if count is None:
            count = len(view) - offset
        if count < 0 or offset + count > len(view):
            raise ValueError(f"Cannot read {count} bytes at offset {offset} into {len(view)} bytes")

        position = offset
        self.remaining = count
        self.state = FrameState.STREAMING_BINARY if count else FrameState.DONE

        while self.state is FrameState.STREAMING_BINARY:
            event = self._session.wait_for_data()
            if event.is_output:
                length = len(event.data)
                if length > self.remaining:
                    self._overrun(length)
                view[position:position + length] = event.data
                position += length
                self.remaining -= length
                if self.remaining == 0:
                    self.state = FrameState.DONE
            elif event.is_diagnostic:
                self._diagnostics += event.data
            else:
                self._abort(event)

        logger.debug(f"'{self._verb}' binary frame complete: {count} bytes")
        self._log_diagnostics()
        return count

    def _log_diagnostics(self):
        if self._diagnostics:
            logger.debug(f"'{self._verb}' error output: {self.diagnostics}")

    def _abort(self, event: PipeEvent):
        self.state = FrameState.ABORTED
        self._session.shutdown()
        error = ProtocolError(
            f"'ITKBridgePipes {self._verb}' exited abnormally. {self.diagnostics}".rstrip(),
            verb=self._verb,
            diagnostics=self.diagnostics,
            error_code=ErrorCodes.ABNORMAL_EXIT,
            context={'channel': event.channel.value, 'detail': event.detail}
        )
        logger.error(error.format_log_message())
        raise error

    def _overrun(self, length: int):
        self.state = FrameState.ABORTED
        self._session.shutdown()
        error = ProtocolError(
            f"'ITKBridgePipes {self._verb}' sent more data than expected "
            f"({length} bytes, {self.remaining} remaining)",
            verb=self._verb,
            diagnostics=self.diagnostics,
            error_code=ErrorCodes.STREAM_OVERRUN
        )
        logger.error(error.format_log_message())
        raise error
