"""
Process supervision for the SCIFIO worker.

This module owns the worker subprocess and its three pipes. The worker is
started lazily, reused while it keeps running, and torn down (killed and
reaped) whenever a fault is detected, so the next request always starts
from a fresh process.

Lifecycle:
    ABSENT ──ensure_running()──> SPAWNING ──> RUNNING
       ^                             │            │
       └──────── shutdown() ─────────┴── DEAD <───┘ (worker exited)
"""

import logging
import queue
import signal
import subprocess
import threading
from enum import Enum
from typing import Dict, List, Optional, Sequence

from py2scifio.core.errors import (
    ErrorCodes,
    ProcessLaunchError,
    ProtocolError,
    wrap_external_error,
)
from py2scifio.core.pipe_reader import PipeChannel, PipeEvent, PipeReader


class WorkerState(Enum):
    """Lifecycle of the worker session."""
    ABSENT = "absent"
    SPAWNING = "spawning"
    RUNNING = "running"
    DEAD = "dead"


class ProcessState(Enum):
    """State of the operating-system process behind the session."""
    STARTING = "starting"
    EXECUTING = "executing"
    EXITED = "exited"
    ERROR = "error"
    EXCEPTION = "exception"
    EXPIRED = "expired"
    KILLED = "killed"
    DISOWNED = "disowned"
    UNKNOWN = "unknown"


_STATE_CODES: Dict[ProcessState, int] = {
    ProcessState.EXITED: ErrorCodes.PROCESS_EXITED,
    ProcessState.ERROR: ErrorCodes.PROCESS_SPAWN_FAILED,
    ProcessState.EXCEPTION: ErrorCodes.PROCESS_KILLED,
    ProcessState.KILLED: ErrorCodes.PROCESS_KILLED,
}


class WorkerSession:
    """
    Owns one worker process and the pipes connecting the bridge to it.

    The protocol over these pipes is strictly request/response: a caller
    must drain the full response to one command before sending the next.

    Example:
        >>> session = WorkerSession(["java", "-cp", "jars/*",
        ...                          "loci.formats.itk.ITKBridgePipes", "waitForInput"])
        >>> session.ensure_running()
        >>> session.send(b"canRead\\t/data/cells.tif\\n")
        >>> event = session.wait_for_data()
        >>> session.shutdown()
    """

    def __init__(self, argv: Sequence[str], read_chunk_size: int = 65536):
        """
        Initialize the session without starting the worker.

        Args:
            argv: Worker argument vector, built once from configuration
            read_chunk_size: Largest chunk read from a worker pipe at once
        """
        self.logger = logging.getLogger(__name__)
        self._argv: List[str] = list(argv)
        self._read_chunk_size = read_chunk_size

        self._process: Optional[subprocess.Popen] = None
        self._events: Optional["queue.Queue[PipeEvent]"] = None
        self._readers: List[PipeReader] = []
        self._state = WorkerState.ABSENT
        self._exit_detail = ''
        self._teardown_lock = threading.Lock()

    @property
    def argv(self) -> List[str]:
        return list(self._argv)

    @property
    def state(self) -> WorkerState:
        if self._state is WorkerState.RUNNING and self.probe_state() is not ProcessState.EXECUTING:
            self._state = WorkerState.DEAD
        return self._state

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def is_running(self) -> bool:
        return self.state is WorkerState.RUNNING

    def probe_state(self) -> ProcessState:
        """
        Classify the operating-system state of the worker process.

        Returns:
            ProcessState.EXECUTING while the process runs, otherwise the
            reason it stopped
        """
        if self._process is None:
            return ProcessState.UNKNOWN

        return_code = self._process.poll()
        if return_code is None:
            return ProcessState.EXECUTING

        if return_code >= 0:
            self._exit_detail = f"exited with return value: {return_code}"
            return ProcessState.EXITED

        # Negative return codes are POSIX signals
        signum = -return_code
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self._exit_detail = f"terminated by signal {name}"
        if signum == getattr(signal, 'SIGKILL', None):
            return ProcessState.KILLED
        return ProcessState.EXCEPTION

    def ensure_running(self) -> None:
        """
        Make sure a live worker process is available.

        Reuses the current worker while it executes. A stale or dead worker is
        torn down and replaced.

        Raises:
            ProcessLaunchError: If the worker cannot be started or is not
                executing right after launch
        """
        if self._process is not None:
            if self.probe_state() is ProcessState.EXECUTING:
                return
            self.logger.info(f"Worker process {self._process.pid} is no longer running; restarting")
            self.shutdown()

        self._state = WorkerState.SPAWNING
        self.logger.info(f"Starting worker: {' '.join(self._argv)}")

        try:
            self._process = subprocess.Popen(
                self._argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            self._state = WorkerState.ABSENT
            error = ProcessLaunchError(
                f"Worker process error: {e}",
                state=ProcessState.ERROR.name,
                detail=str(e),
                error_code=ErrorCodes.PROCESS_SPAWN_FAILED,
                cause=e,
                suggestions=["Check JAVA_HOME and that the java executable exists"]
            )
            self.logger.error(error.format_log_message())
            raise error

        state = self.probe_state()
        if state is not ProcessState.EXECUTING:
            detail = self._describe_state(state)
            self.shutdown()
            error = ProcessLaunchError(
                f"Worker process {detail}",
                state=state.name,
                detail=detail,
                error_code=_STATE_CODES.get(state, ErrorCodes.PROCESS_UNKNOWN_STATE)
            )
            self.logger.error(error.format_log_message())
            raise error

        self._start_readers()
        self._state = WorkerState.RUNNING
        self.logger.info(f"Worker process {self._process.pid} running")

    def _describe_state(self, state: ProcessState) -> str:
        if state in (ProcessState.EXITED, ProcessState.EXCEPTION, ProcessState.KILLED):
            return self._exit_detail or state.value
        if state is ProcessState.ERROR:
            return f"error: {self._exit_detail}" if self._exit_detail else "error"
        if state in (ProcessState.EXPIRED, ProcessState.DISOWNED):
            return f"internal error: worker {state.value}"
        return "internal error: worker is in unknown state"

    def _start_readers(self):
        self._events = queue.Queue()
        self._readers = [
            PipeReader(self._process.stdout, PipeChannel.STDOUT, self._events,
                       chunk_size=self._read_chunk_size, signal_eof=True),
            PipeReader(self._process.stderr, PipeChannel.STDERR, self._events,
                       chunk_size=self._read_chunk_size),
        ]
        for reader in self._readers:
            reader.start()

    def send(self, data: bytes) -> None:
        """
        Write raw bytes to the worker's stdin.

        Args:
            data: Command line or pixel chunk

        Raises:
            ProtocolError: If the worker is not running or the pipe is broken
        """
        process = self._process
        if process is None or self._state is not WorkerState.RUNNING:
            raise ProtocolError("Worker process is not running",
                                error_code=ErrorCodes.BROKEN_PIPE)

        try:
            process.stdin.write(data)
            process.stdin.flush()
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to write to worker: {e}")
            self.shutdown()
            raise wrap_external_error(e, "Cannot write to worker process", ProtocolError)

        self.logger.debug(f"Sent {len(data)} bytes to worker")

    def wait_for_data(self) -> PipeEvent:
        """
        Block until the worker produces output, diagnostics, or stops.

        Returns:
            The next PipeEvent in arrival order
        """
        events = self._events
        if events is None:
            return PipeEvent(PipeChannel.ERROR, detail="worker process is not running")
        return events.get()

    def shutdown(self) -> None:
        """
        Kill the worker if it runs and release every pipe.

        Safe to call at any time, including when no worker exists and from a
        thread other than the one blocked in wait_for_data(); that thread then
        receives the EXITED event of the killed worker.
        """
        with self._teardown_lock:
            process = self._process
            if process is None:
                self._state = WorkerState.ABSENT
                return

            if process.poll() is None:
                self.logger.info(f"Killing worker process {process.pid}")
                try:
                    process.kill()
                except OSError as e:
                    self.logger.warning(f"Error killing worker process: {e}")
                process.wait()

            # Readers stop on their own once the dead worker's pipes hit EOF
            for reader in self._readers:
                reader.join()

            for name, pipe in (('stdin', process.stdin), ('stdout', process.stdout),
                               ('stderr', process.stderr)):
                if pipe is None:
                    continue
                try:
                    pipe.close()
                except OSError as e:
                    self.logger.debug(f"Error closing worker {name}: {e}")

            self.logger.info("Worker process destroyed")
            self._process = None
            self._readers = []
            self._events = None
            self._state = WorkerState.ABSENT

    def __enter__(self) -> "WorkerSession":
        self.ensure_running()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
