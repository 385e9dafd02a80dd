"""Inbound message delivery."""

import logging

from pubsub_shell.errors import DecodeError
from pubsub_shell.ipfs_api import PubSubMessage
from pubsub_shell.output import ConsoleOutput

logger = logging.getLogger(__name__)


def decode_payload(data: bytes) -> str:
    """
    Render a payload as text.

    Raises:
        DecodeError: If the payload is not valid UTF-8
    """
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"payload is not valid UTF-8 ({len(data)} bytes): {e.reason}") from e


def format_message(message: PubSubMessage) -> str:
    """The console line for one inbound message; decode failures are logged."""
    try:
        text = decode_payload(message.data)
    except DecodeError as e:
        logger.warning(f"Decode failure on {message.topic} from {message.sender}: {e}")
        return f"Received undecodable message on {message.topic} from {message.sender}"
    return f"Received message on {message.topic} from {message.sender}: {text}"


class MessageSink:
    """
    Prints messages from subscription streams.

    Holds no per-message state, so overlapping deliveries on any number of
    topics are fine. Every line goes through the shared ConsoleOutput.
    """

    def __init__(self, output: ConsoleOutput):
        self.output = output

    def __call__(self, message: PubSubMessage) -> None:
        self.deliver(message)

    def deliver(self, message: PubSubMessage) -> None:
        self.output.message(format_message(message))

    def deliver_threadsafe(self, message: PubSubMessage) -> None:
        """Deliver from a thread that does not run the event loop."""
        self.output.message_threadsafe(format_message(message))
