"""Error types raised by the pubsub shell.

Only StartupError is allowed to end the process; the console catches every
other ShellError where it happens and turns it into a single printed line.
"""

from typing import Optional


class ShellError(Exception):
    """Base class for all pubsub shell errors"""


class StartupError(ShellError):
    """The node could not be started. The console must not be entered."""


class OperationError(ShellError):
    """A node or pubsub operation failed after startup"""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"{operation}: {reason}")
        self.operation = operation
        self.reason = reason


class IpfsApiError(OperationError):
    """The node's RPC API answered with an error"""

    def __init__(self, endpoint: str, reason: str, status: Optional[int] = None):
        super().__init__(endpoint, reason)
        self.endpoint = endpoint
        self.status = status


class CommandParseError(ShellError):
    """A console line is missing required arguments"""

    def __init__(self, usage: str):
        super().__init__(usage)
        self.usage = usage


class DecodeError(ShellError):
    """An inbound payload could not be rendered as text"""


__all__ = [
    "ShellError",
    "StartupError",
    "OperationError",
    "IpfsApiError",
    "CommandParseError",
    "DecodeError",
]
