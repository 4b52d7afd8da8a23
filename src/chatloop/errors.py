"""Chatloop exception hierarchy.

All Chatloop-specific exceptions inherit from ChatloopError. Tool and branch
failures are converted to data before they reach the stream; provider
failures end the stream; persistence failures are logged and dropped.
"""


class ChatloopError(Exception):
    """Base exception for all Chatloop errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProviderError(ChatloopError):
    """Error communicating with a model backend."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class ToolError(ChatloopError):
    """Error executing a tool."""


class ToolValidationError(ToolError):
    """Tool arguments do not match the declared schema."""


class ToolExecutionError(ToolError):
    """A tool's external dependency failed."""


class BranchLaunchError(ToolError):
    """A concurrent branch could not be launched."""


class StorageError(ChatloopError):
    """Error uploading a binary object."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class PersistenceError(ChatloopError):
    """Error saving chats, messages or documents."""


class ConfigError(ChatloopError):
    """Invalid or missing configuration."""


class BadRequestError(ChatloopError):
    """The request is missing required input, such as a user message."""


class ChatAccessError(ChatloopError):
    """The principal does not own the chat it addressed."""
