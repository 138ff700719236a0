"""
Error hierarchy for the SCIFIO pipe bridge.

Every fault raised by the bridge is a ScifioError. Besides the message it
carries a numeric code, a context dictionary (verb, key, setting, ...) and
optional hints for the caller, and renders itself as a single log line.

Error Code Ranges:
- 1000-1999: Worker process errors
- 2000-2999: Protocol errors
- 4000-4999: Metadata/Data errors
- 6000-6999: Configuration errors
- 7000-7999: Validation errors
- 9000-9999: Unknown/System errors
"""

from typing import Optional, Dict, Any, List
from datetime import datetime


class ScifioError(Exception):
    """
    Base exception for all bridge errors.

    Subclasses set DEFAULT_CODE and CATEGORY; the category is always present
    in the context so log lines can be filtered by it.
    """

    DEFAULT_CODE = 9000
    CATEGORY = 'SYSTEM'

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """
        Args:
            message: What went wrong, in terms of the bridge operation
            error_code: One of ErrorCodes (default: the class DEFAULT_CODE)
            context: Extra values identifying the failing exchange
            cause: Lower-level exception that triggered this one
            suggestions: Hints shown after the message
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = {'category': self.CATEGORY}
        self.context.update(context or {})
        self.cause = cause
        self.suggestions = list(suggestions or [])
        self.timestamp = datetime.now()

        if cause is not None:
            self.__cause__ = cause
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    def format_log_message(self) -> str:
        """One-line rendering used when the bridge logs the error."""
        line = f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        details = {k: v for k, v in self.context.items() if k != 'category'}
        if details:
            line += f" | Context: {details}"
        if self.cause is not None:
            line += f" | Caused by: {self.cause}"
        if self.suggestions:
            line += f" | Try: {'; '.join(self.suggestions)}"
        return line


class ConfigurationError(ScifioError):
    """Required environment or configuration file settings are missing or invalid."""
    DEFAULT_CODE = 6001
    CATEGORY = 'CONFIGURATION'

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if setting_name:
            self.context['setting'] = setting_name


class ProcessLaunchError(ScifioError):
    """The worker process could not be started or is not executing after launch."""
    DEFAULT_CODE = 1001
    CATEGORY = 'PROCESS'

    def __init__(self, message: str, state: Optional[str] = None,
                 detail: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if state:
            self.context['state'] = state
        if detail:
            self.context['detail'] = detail


class ProtocolError(ScifioError):
    """The worker broke the request/response exchange."""
    DEFAULT_CODE = 2001
    CATEGORY = 'PROTOCOL'

    def __init__(self, message: str, verb: Optional[str] = None,
                 diagnostics: str = '', **kwargs):
        super().__init__(message, **kwargs)
        self.diagnostics = diagnostics
        if verb:
            self.context['verb'] = verb
        if diagnostics:
            self.context['diagnostics'] = diagnostics


class MetadataError(ScifioError):
    """Metadata returned by the worker cannot be turned into an image descriptor."""
    DEFAULT_CODE = 4004
    CATEGORY = 'METADATA'

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.key = key
        if key:
            self.context['key'] = key


class MissingMetadataError(MetadataError):
    """A required key is absent from the metadata dictionary."""
    DEFAULT_CODE = 4006


class ConversionError(MetadataError):
    """A metadata value cannot be parsed into the requested type."""
    DEFAULT_CODE = 4007

    def __init__(self, message: str, value: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if value is not None:
            self.context['value'] = value


class UnknownPixelTypeError(MetadataError):
    """The worker reported a pixel type code the bridge does not know."""
    DEFAULT_CODE = 4008

    def __init__(self, message: str, code: Optional[int] = None, **kwargs):
        super().__init__(message, key='PixelType', **kwargs)
        if code is not None:
            self.context['pixel_type_code'] = code


class DataError(ScifioError):
    """Pixel buffers do not match what the exchange requires."""
    DEFAULT_CODE = 4001
    CATEGORY = 'DATA'

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if file_path:
            self.context['file_path'] = file_path


class ValidationError(ScifioError):
    """Errors related to input validation and parameter checking."""
    DEFAULT_CODE = 7001
    CATEGORY = 'VALIDATION'

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if field_name:
            self.context['field'] = field_name


class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Worker process errors (1000-1999)
    PROCESS_EXITED = 1001
    PROCESS_SPAWN_FAILED = 1002
    PROCESS_KILLED = 1003
    PROCESS_UNKNOWN_STATE = 1004

    # Protocol errors (2000-2999)
    ABNORMAL_EXIT = 2001
    BROKEN_PIPE = 2002
    STREAM_OVERRUN = 2003

    # Metadata/Data errors (4000-4999)
    BUFFER_SIZE_MISMATCH = 4001
    BUFFER_LAYOUT = 4002
    MISSING_KEY = 4006
    CONVERSION_FAILED = 4007
    UNKNOWN_PIXEL_TYPE = 4008

    # Configuration errors (6000-6999)
    MISSING_SETTING = 6001
    CONFIG_INVALID = 6002
    CONFIG_NOT_FOUND = 6003

    # Validation errors (7000-7999)
    OUT_OF_RANGE = 7002

    # System errors (9000-9999)
    UNKNOWN_ERROR = 9000


def wrap_external_error(e: Exception, message: str, error_class=ScifioError, **context) -> ScifioError:
    """
    Turn an OS or library exception into a bridge error of the given class.

    Keyword arguments become context entries of the new error.
    """
    return error_class(message, context=context, cause=e)
