from dataclasses import dataclass
from typing import Protocol, Union


class FileConverter(Protocol):
    priority: int

    def supports(self, source_format: str, target_format: str) -> bool:
        """Return True when this converter can turn `source_format` into `target_format`.

        Formats are compared case-insensitively.
        """

    def convert(self, data: bytes, source_format: str, target_format: str) -> bytes:
        """Convert the given payload synchronously and return the output buffer.
        This is a blocking call; callers should offload to threads if needed.
        """


class FailureReason:
    EMPTY_INPUT = "empty_input"
    UNDETERMINED_FORMAT = "undetermined_format"
    UNSUPPORTED_CONVERSION = "unsupported_conversion"
    INVALID_FILE = "invalid_file"
    CONVERSION_FAILED = "conversion_failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ConversionRequest:
    data: bytes
    original_filename: str | None
    source_format: str
    target_format: str


@dataclass(frozen=True)
class ConversionSuccess:
    data: bytes
    original_filename: str | None
    converted_filename: str
    source_format: str
    target_format: str

    @property
    def ok(self) -> bool:
        return True

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ConversionFailure:
    reason: str
    message: str
    original_filename: str | None
    source_format: str
    target_format: str

    @property
    def ok(self) -> bool:
        return False


ConversionResult = Union[ConversionSuccess, ConversionFailure]
