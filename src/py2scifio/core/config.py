"""
Worker configuration for the SCIFIO pipe bridge.

The worker command line is resolved once per bridge from process-wide
settings:

    SCIFIO_PATH       directory holding the SCIFIO JAR files (required)
    JAVA_HOME         Java installation used to locate bin/java (optional)
    SCIFIO_MAX_HEAP   JVM maximum heap, e.g. "512m" (optional, default 256m)
    SCIFIO_JVM_FLAGS  extra whitespace-separated JVM flags (optional)

A YAML file can override any of these through load_config().
"""

import os
import shlex
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from py2scifio.core.errors import ConfigurationError, ErrorCodes

logger = logging.getLogger(__name__)

DEFAULT_MAIN_CLASS = "loci.formats.itk.ITKBridgePipes"
DEFAULT_MODE = "waitForInput"
DEFAULT_MAX_HEAP = "256m"
DEFAULT_WRITE_CHUNK_SIZE = 10000
DEFAULT_READ_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class BridgeConfig:
    """
    Immutable settings for one bridge instance.

    Attributes:
        scifio_path: Directory containing the SCIFIO JAR files
        java_home: Java installation directory; None means "java" on PATH
        max_heap: JVM -Xmx value
        extra_jvm_flags: Additional JVM flags placed before -cp
        main_class: Java class implementing the pipe protocol
        mode: Mode argument passed to the worker
        line_terminator: Line terminator the worker writes
        write_chunk_size: Largest chunk sent before waiting for an acknowledgement
        read_chunk_size: Largest chunk pulled from a worker pipe at once

    Example:
        >>> config = BridgeConfig(scifio_path="/opt/scifio/jars")
        >>> config.command()[-2:]
        ['loci.formats.itk.ITKBridgePipes', 'waitForInput']
    """

    scifio_path: str
    java_home: Optional[str] = None
    max_heap: str = DEFAULT_MAX_HEAP
    extra_jvm_flags: Tuple[str, ...] = field(default_factory=tuple)
    main_class: str = DEFAULT_MAIN_CLASS
    mode: str = DEFAULT_MODE
    line_terminator: str = os.linesep
    write_chunk_size: int = DEFAULT_WRITE_CHUNK_SIZE
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE

    def __post_init__(self):
        # YAML and callers may hand over lists
        if not isinstance(self.extra_jvm_flags, tuple):
            object.__setattr__(self, 'extra_jvm_flags', tuple(self.extra_jvm_flags))

    @property
    def frame_sentinel(self) -> bytes:
        """Doubled line terminator that closes every text frame."""
        return (self.line_terminator * 2).encode('ascii')

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the configuration.

        Returns:
            Tuple of (is_valid, list_of_error_messages)
        """
        errors = []

        if not self.scifio_path or not str(self.scifio_path).strip():
            errors.append("scifio_path must not be empty")

        if self.line_terminator not in ("\n", "\r\n"):
            errors.append(
                f"line_terminator must be '\\n' or '\\r\\n', got {self.line_terminator!r}"
            )

        if not isinstance(self.write_chunk_size, int) or self.write_chunk_size <= 0:
            errors.append(f"write_chunk_size must be a positive integer, got {self.write_chunk_size}")

        if not isinstance(self.read_chunk_size, int) or self.read_chunk_size <= 0:
            errors.append(f"read_chunk_size must be a positive integer, got {self.read_chunk_size}")

        if not self.max_heap:
            errors.append("max_heap must not be empty")

        if not self.main_class:
            errors.append("main_class must not be empty")

        return len(errors) == 0, errors

    def java_command(self) -> str:
        """Path of the java executable, or plain "java" when JAVA_HOME is unset."""
        if not self.java_home:
            return "java"
        return os.path.join(self.java_home, "bin", "java")

    def classpath(self) -> str:
        return os.path.join(self.scifio_path, "*")

    def command(self) -> List[str]:
        """
        Build the worker argument vector.

        Returns:
            List of arguments suitable for subprocess.Popen
        """
        args = [self.java_command(), f"-Xmx{self.max_heap}", "-Djava.awt.headless=true"]
        args.extend(self.extra_jvm_flags)
        args.extend(["-cp", self.classpath(), self.main_class, self.mode])
        return args

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "BridgeConfig":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ)
            **overrides: Field values that take precedence over the environment

        Returns:
            Validated BridgeConfig

        Raises:
            ConfigurationError: If SCIFIO_PATH is not set or a value is invalid
        """
        env = os.environ if environ is None else environ

        values: Dict[str, Any] = {}

        scifio_path = env.get("SCIFIO_PATH", "")
        if scifio_path:
            values['scifio_path'] = scifio_path

        java_home = env.get("JAVA_HOME", "")
        if java_home:
            values['java_home'] = java_home

        max_heap = env.get("SCIFIO_MAX_HEAP", "")
        if max_heap:
            values['max_heap'] = max_heap

        jvm_flags = env.get("SCIFIO_JVM_FLAGS", "")
        if jvm_flags:
            values['extra_jvm_flags'] = tuple(shlex.split(jvm_flags))

        values.update(overrides)
        return cls._build(values)

    @classmethod
    def _build(cls, values: Dict[str, Any]) -> "BridgeConfig":
        if not values.get('scifio_path'):
            raise ConfigurationError(
                "SCIFIO_PATH is not set. This environment variable must point to "
                "the directory containing the SCIFIO JAR files",
                setting_name='SCIFIO_PATH',
                error_code=ErrorCodes.MISSING_SETTING,
                suggestions=["export SCIFIO_PATH=/path/to/scifio/jars"]
            )

        if not values.get('java_home'):
            logger.warning("JAVA_HOME not set; assuming Java is on the path")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                error_code=ErrorCodes.CONFIG_INVALID
            )

        config = cls(**values)
        valid, errors = config.validate()
        if not valid:
            raise ConfigurationError(
                "Invalid bridge configuration: " + "; ".join(errors),
                error_code=ErrorCodes.CONFIG_INVALID
            )

        logger.debug(f"Worker command: {config.command()}")
        return config


def load_config(
    path: Union[str, Path],
    environ: Optional[Mapping[str, str]] = None
) -> BridgeConfig:
    """
    Load a bridge configuration from a YAML file.

    The file holds a mapping of BridgeConfig field names. Values from the file
    take precedence over the environment variables.

    Args:
        path: YAML file path
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated BridgeConfig

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            error_code=ErrorCodes.CONFIG_NOT_FOUND
        )

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Cannot parse configuration file {path}",
            error_code=ErrorCodes.CONFIG_INVALID,
            cause=e
        )

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {path} must contain a mapping",
            error_code=ErrorCodes.CONFIG_INVALID
        )

    logger.info(f"Loaded bridge configuration from {path}")
    return BridgeConfig.from_environment(environ, **data)
