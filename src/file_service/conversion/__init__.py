"""
Domain layer for file conversion.
Provides the converter protocol, the immutable converter registry and the
service that dispatches a request to the best converter, so front-ends (HTTP
or others) can share the same core logic.
"""

from .errors import ConversionError, InvalidFileError, UnsupportedConversionError
from .interfaces import (
    ConversionFailure,
    ConversionRequest,
    ConversionResult,
    ConversionSuccess,
    FailureReason,
    FileConverter,
)
from .registry import ConverterRegistry
from .service import ConversionService
