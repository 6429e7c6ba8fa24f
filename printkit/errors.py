class PrintKitError(Exception):
    """Base class for failures reported to the caller."""

    code = "print_kit_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class InputError(PrintKitError):
    """Upload missing, too large or not an image."""

    code = "input_error"
    status_code = 400


class DecodeError(PrintKitError):
    """Bytes are not a supported image container."""

    code = "decode_error"
    status_code = 400


class UnsupportedFormatError(PrintKitError):
    """Image decodes but cannot be brought into sRGB."""

    code = "unsupported_format"
    status_code = 415


class DetectorFailure(PrintKitError):
    """Content-aware detector could not produce a crop. Never leaves the Cropper."""

    code = "detector_failure"


class EncodeError(PrintKitError):
    """A resample, crop or JPEG encode did not produce valid output."""

    code = "encode_error"


class StageTimeoutError(EncodeError):
    code = "stage_timeout"


class PipelineCancelled(PrintKitError):
    code = "cancelled"
    status_code = 499
