"""Exceptions raised by converters while converting a payload."""


class ConversionError(Exception):
    """Base exception for converter failures."""


class UnsupportedConversionError(ConversionError):
    """Raised when a converter is asked for a (source, target) pair it does not handle."""

    def __init__(self, source_format: str, target_format: str, message: str | None = None) -> None:
        self.source_format = source_format
        self.target_format = target_format
        super().__init__(
            message or f"Conversion from '{source_format}' to '{target_format}' is not supported"
        )


class InvalidFileError(ConversionError):
    """Raised when the payload cannot be decoded or the requested parameters are invalid."""
