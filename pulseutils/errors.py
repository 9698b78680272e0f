class PulseScanError(Exception):
    """Base class for everything a measurement or scan can fail with."""

    title = "Error"

    @property
    def user_message(self) -> str:
        return str(self) or "Something went wrong"


class PermissionDenied(PulseScanError):
    title = "Permission required"

    def __init__(self, retriable=True) -> None:
        super().__init__("We need camera permission to measure your heart rate.")
        self.retriable = retriable


class CaptureFailed(PulseScanError):
    def __init__(self, reason) -> None:
        super().__init__(reason)
        self.reason = reason


class NoFileProduced(PulseScanError):
    def __init__(self, message="No video captured") -> None:
        super().__init__(message)


class UploadError(PulseScanError):
    title = "Upload failed"


class NetworkError(UploadError):
    def __init__(self, cause, timed_out=False) -> None:
        if timed_out:
            message = "The server took too long to respond. Please try again."
        else:
            message = f"Could not reach the server: {cause}" if str(cause) else "Could not reach the server"
        super().__init__(message)
        self.cause = cause
        self.timed_out = timed_out


class ServerError(UploadError):
    def __init__(self, status, detail=None, default="Server error while analyzing video") -> None:
        super().__init__(detail if detail else default)
        self.status = status
        self.detail = detail


class MalformedResponse(UploadError):
    def __init__(self, raw_body, message="Server returned non-JSON response") -> None:
        super().__init__(message)
        self.raw_body = raw_body


class MissingResultField(UploadError):
    def __init__(self, field="bpm") -> None:
        super().__init__("Could not read a result from the server. Please try again.")
        self.field = field
