"""
PubSub operations on top of a running node.

The facade is what the console talks to. It turns text into wire bytes, hands
inbound messages to the sink and makes sure every failure reaches the caller as
an OperationError, whatever the node raised.
"""

import logging
from typing import List

from pubsub_shell.errors import OperationError
from pubsub_shell.node import IpfsNode, MessageCallback

logger = logging.getLogger(__name__)


def encode_message(text: str) -> bytes:
    return text.encode("utf-8")


class PubSubFacade:
    """Subscribe, publish and inspect topics on a node"""

    def __init__(self, node: IpfsNode, sink: MessageCallback):
        """
        Initialize the facade.

        Args:
            node: Running node handle
            sink: Callback receiving every inbound message
        """
        self.node = node
        self.sink = sink

    async def subscribe(self, topic: str) -> None:
        if not topic:
            raise OperationError("subscribe", "topic must not be empty")
        try:
            await self.node.pubsub_subscribe(topic, self.sink)
        except OperationError:
            raise
        except Exception as e:
            logger.debug(f"subscribe({topic}) failed", exc_info=True)
            raise OperationError("subscribe", str(e) or type(e).__name__) from e
        logger.info(f"Subscribed to {topic}")

    async def unsubscribe(self, topic: str) -> None:
        try:
            await self.node.pubsub_unsubscribe(topic)
        except OperationError:
            raise
        except Exception as e:
            raise OperationError("unsubscribe", str(e) or type(e).__name__) from e
        logger.info(f"Unsubscribed from {topic}")

    async def publish(self, topic: str, text: str) -> None:
        """Publish text as opaque UTF-8 bytes, no framing."""
        try:
            payload = encode_message(text)
        except UnicodeEncodeError as e:
            raise OperationError("publish", f"cannot encode message: {e}") from e
        try:
            await self.node.pubsub_publish(topic, payload)
        except OperationError:
            raise
        except Exception as e:
            raise OperationError("publish", str(e) or type(e).__name__) from e
        logger.debug(f"Published {len(payload)} bytes to {topic}")

    async def list_topics(self) -> List[str]:
        """Topics this node is subscribed to, in the node's order."""
        try:
            return await self.node.pubsub_list_topics()
        except OperationError:
            raise
        except Exception as e:
            raise OperationError("list topics", str(e) or type(e).__name__) from e

    async def list_peers(self, topic: str) -> List[str]:
        """Peers subscribed to a topic; may be empty."""
        try:
            return await self.node.pubsub_list_peers(topic)
        except OperationError:
            raise
        except Exception as e:
            raise OperationError("list peers", str(e) or type(e).__name__) from e
