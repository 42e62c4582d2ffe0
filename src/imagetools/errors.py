from __future__ import annotations


class ImageToolsError(RuntimeError):
    pass


class DecodeError(ImageToolsError):
    pass


class DecodeFailure(ImageToolsError):
    pass


class ContextUnavailable(ImageToolsError):
    pass


class EncodeFailure(ImageToolsError):
    pass


class InvalidRequest(ImageToolsError):
    pass


class TransportError(ImageToolsError):
    def __init__(self, status: int | None, status_text: str) -> None:
        if status is None:
            message = f"Request failed: {status_text}"
        else:
            message = f"Request failed: HTTP {status} {status_text}".rstrip()
        super().__init__(message)
        self.status = status
        self.status_text = status_text


class DecodeStreamError(ImageToolsError):
    pass


class ResponseFormatError(ImageToolsError):
    pass


class ToolBusyError(ImageToolsError):
    pass


class ToolCancelled(ImageToolsError):
    pass
