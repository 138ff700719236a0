"""
Background pipe readers for the SCIFIO worker process.

The worker writes protocol frames to stdout and free-form diagnostics to
stderr. One daemon thread per pipe drains it and posts the chunks, tagged
with the channel they came from, into a single queue. Consumers then block
on that queue and see the chunks in arrival order, which gives the
"wait for next chunk on any channel" primitive the protocol is built on.

Architecture:
    PipeReader (stdout thread) ──┐
                                 ├── queue.Queue[PipeEvent] ── wait_for_data()
    PipeReader (stderr thread) ──┘
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Optional
import time

logger = logging.getLogger(__name__)


class PipeChannel(Enum):
    """Where a PipeEvent came from."""
    STDOUT = "stdout"
    STDERR = "stderr"
    # stdout reached EOF: the worker closed its output or died
    EXITED = "exited"
    # reading a pipe failed at the OS level
    ERROR = "error"


@dataclass
class PipeEvent:
    """One chunk (or signal) received from the worker."""
    channel: PipeChannel
    data: bytes = b''
    detail: str = ''
    timestamp: float = field(default_factory=time.time)

    @property
    def is_output(self) -> bool:
        return self.channel is PipeChannel.STDOUT

    @property
    def is_diagnostic(self) -> bool:
        return self.channel is PipeChannel.STDERR

    @property
    def is_abnormal(self) -> bool:
        return self.channel in (PipeChannel.EXITED, PipeChannel.ERROR)


class PipeReader:
    """
    Background thread that continuously drains one worker pipe.

    Chunks are posted to the shared event queue as soon as they arrive, so the
    OS pipe buffer never fills up while the consumer is busy elsewhere.
    """

    def __init__(self, stream: BinaryIO, channel: PipeChannel,
                 events: "queue.Queue[PipeEvent]", chunk_size: int = 65536,
                 signal_eof: bool = False):
        """
        Initialize the pipe reader.

        Args:
            stream: Binary pipe to read from
            channel: Channel tag for the posted chunks
            events: Queue shared with the other reader of the same worker
            chunk_size: Largest chunk read at once
            signal_eof: Post an EXITED event when the pipe reaches EOF
        """
        self._stream = stream
        self._channel = channel
        self._events = events
        self._chunk_size = chunk_size
        self._signal_eof = signal_eof
        self._thread: Optional[threading.Thread] = None

        self._stats = {
            'chunks_read': 0,
            'bytes_read': 0,
        }

    def start(self):
        """Start the background reader thread."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning(f"PipeReader for {self._channel.value} already running")
            return

        self._thread = threading.Thread(
            target=self._read_loop,
            name=f"PipeReader-{self._channel.value}",
            daemon=True
        )
        self._thread.start()
        logger.debug(f"PipeReader for {self._channel.value} started")

    def join(self, timeout: float = 2.0):
        """Wait for the thread to finish after its pipe was closed."""
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"PipeReader for {self._channel.value} did not stop cleanly")

    def _read_chunk(self) -> bytes:
        read1 = getattr(self._stream, 'read1', None)
        if read1 is not None:
            return read1(self._chunk_size)
        return self._stream.read(self._chunk_size)

    def _read_loop(self):
        """Main read loop - runs in background thread."""
        try:
            while True:
                chunk = self._read_chunk()
                if not chunk:
                    break
                self._stats['chunks_read'] += 1
                self._stats['bytes_read'] += len(chunk)
                self._events.put(PipeEvent(self._channel, chunk))

            if self._signal_eof:
                self._events.put(PipeEvent(PipeChannel.EXITED, detail=f"{self._channel.value} closed"))

        except (OSError, ValueError) as e:
            # ValueError: the pipe was closed underneath us during shutdown
            logger.debug(f"PipeReader for {self._channel.value} stopped: {e}")
            self._events.put(PipeEvent(PipeChannel.ERROR, detail=str(e)))

        logger.debug(f"PipeReader for {self._channel.value} exiting. Stats: {self._stats}")

