from typing import Optional


class ChatError(Exception):
    """Base class for recoverable chat failures.

    `kind` is the stable taxonomy name surfaced to clients and logs.
    """

    kind: str = "ChatError"
    default_message: str = "An unexpected error occurred. Please try again later."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(ChatError):
    kind = "Unauthenticated"
    default_message = "User not authenticated. Please log in."


class NotConfiguredError(ChatError):
    kind = "NotConfigured"
    default_message = "Lambda function not configured."


class RequestTimeoutError(ChatError):
    kind = "Timeout"
    default_message = "The request timed out. The service might be busy or unavailable. Please try again."


class RemoteFunctionError(ChatError):
    kind = "RemoteFunctionError"
    default_message = "Unknown Lambda error"


class InvalidResponseError(ChatError):
    kind = "InvalidResponse"
    default_message = "Received an invalid response from the service."


class NetworkError(ChatError):
    kind = "NetworkError"
    default_message = "Network error. Please check your connection."


class StorageError(ChatError):
    kind = "StorageError"
    default_message = "Could not save chat history. Storage might be full."


class NotFoundError(ChatError):
    kind = "NotFound"
    default_message = "Not found"
