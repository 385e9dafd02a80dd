"""
Interactive command console.

Reads one command per line, dispatches it to the pubsub facade or the node and
prints the outcome. A line is only read once the previous command has settled
and the prompt has been redrawn. The console ends on ``quit``, end of input or
a termination signal; all three go through the same shutdown task, so the node
is stopped exactly once.
"""

import asyncio
import logging
import os
import signal
import stat
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, AsyncIterator, Dict, List, Optional, Union

from pubsub_shell.errors import CommandParseError, OperationError
from pubsub_shell.node import IpfsNode
from pubsub_shell.output import ConsoleOutput
from pubsub_shell.pubsub import PubSubFacade

logger = logging.getLogger(__name__)

HELP_LINES = [
    "=== IPFS PubSub Interface ===",
    "Available commands:",
    "1. sub <topic> - Subscribe to a topic",
    "2. pub <topic> <message> - Publish message to a topic",
    "3. topics - List subscribed topics",
    "4. peers <topic> - List peers in a topic",
    "5. info - Show node information",
    "6. swarm - Show connected peers",
    "7. unsub <topic> - Unsubscribe from a topic",
    "8. help - Show this list",
    "9. quit - Exit the application",
]

USAGE: Dict[str, str] = {
    "sub": "Usage: sub <topic>",
    "unsub": "Usage: unsub <topic>",
    "pub": "Usage: pub <topic> <message>",
    "peers": "Usage: peers <topic>",
}

REQUIRED_ARGS: Dict[str, int] = {
    "sub": 1,
    "unsub": 1,
    "pub": 2,
    "peers": 1,
}

FAILURE_LABELS: Dict[str, str] = {
    "sub": "subscribe",
    "unsub": "unsubscribe",
    "pub": "publish",
    "topics": "list topics",
    "peers": "list peers",
    "info": "get node info",
    "swarm": "list swarm peers",
}

UNKNOWN_COMMAND = "Unknown command. Type help for available commands."


class ConsoleState(Enum):
    """Console loop state"""
    AWAITING_LINE = 0
    DISPATCHING = 1
    TERMINATED = 2


@dataclass
class Command:
    """A parsed console line"""
    verb: str
    args: List[str] = field(default_factory=list)

    @property
    def topic(self) -> str:
        return self.args[0]

    @property
    def message(self) -> str:
        """Everything after the topic, spacing kept as typed."""
        return " ".join(self.args[1:])


def parse_command(line: str) -> Optional[Command]:
    """
    Parse a console line.

    Args:
        line: Raw input line

    Returns:
        Command, or None for a blank line

    Raises:
        CommandParseError: If a known verb is missing required arguments
    """
    line = line.strip()
    if not line:
        return None

    # Verb and topic are split off; the remainder stays verbatim
    parts = line.split(maxsplit=2)
    verb, args = parts[0], parts[1:]
    if len(args) < REQUIRED_ARGS.get(verb, 0):
        raise CommandParseError(USAGE[verb])
    return Command(verb=verb, args=args)


def _decode_line(line: Union[str, bytes]) -> str:
    if isinstance(line, bytes):
        line = line.decode("utf-8", "replace")
    return line.rstrip("\r\n")


async def stdin_lines(stream: Optional[IO] = None) -> AsyncIterator[str]:
    """
    Yield lines from stdin without blocking the event loop.

    Terminals, pipes and sockets are read through a pipe transport. Regular
    files (``pubsub-shell start < commands.txt``) cannot be, so their lines
    are read in the default executor instead.
    """
    stream = stream or sys.stdin
    loop = asyncio.get_running_loop()

    if stat.S_ISREG(os.fstat(stream.fileno()).st_mode):
        while True:
            line = await loop.run_in_executor(None, stream.readline)
            if not line:
                return
            yield _decode_line(line)

    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, stream)
    while True:
        line = await reader.readline()
        if not line:
            return
        yield _decode_line(line)


async def _read_line(line_iter: AsyncIterator[str]) -> Optional[str]:
    """Next input line, or None at end of input."""
    try:
        return await line_iter.__anext__()
    except StopAsyncIteration:
        return None


class CommandConsole:
    """Line-oriented command loop for a running node"""

    def __init__(self, node: IpfsNode, facade: PubSubFacade, output: ConsoleOutput):
        self.node = node
        self.facade = facade
        self.output = output
        self.state = ConsoleState.AWAITING_LINE

        self._shutdown_task: Optional[asyncio.Task] = None
        self._terminated = asyncio.Event()

    def print_help(self) -> None:
        for line in HELP_LINES:
            self.output.write(line)

    async def handle_line(self, line: str) -> None:
        """Parse and dispatch one line, printing the outcome."""
        if self.state is ConsoleState.TERMINATED:
            return
        self.state = ConsoleState.DISPATCHING
        try:
            command = parse_command(line)
            if command is not None:
                await self.dispatch(command)
        except CommandParseError as e:
            self.output.write(e.usage)
        except Exception as e:
            logger.exception(f"Error processing command {line!r}")
            self.output.write(f"Error processing command: {e}")
        finally:
            if self.state is ConsoleState.DISPATCHING:
                self.state = ConsoleState.AWAITING_LINE

    async def dispatch(self, command: Command) -> None:
        handler = getattr(self, f"cmd_{command.verb}", None)
        if handler is None:
            self.output.write(UNKNOWN_COMMAND)
            return
        try:
            await handler(command)
        except OperationError as e:
            label = FAILURE_LABELS.get(command.verb, command.verb)
            self.output.write(f"Failed to {label}: {e.reason}")

    async def cmd_sub(self, command: Command) -> None:
        await self.facade.subscribe(command.topic)
        self.output.write(f"Subscribed to topic: {command.topic}")

    async def cmd_unsub(self, command: Command) -> None:
        await self.facade.unsubscribe(command.topic)
        self.output.write(f"Unsubscribed from topic: {command.topic}")

    async def cmd_pub(self, command: Command) -> None:
        await self.facade.publish(command.topic, command.message)
        self.output.write(f"Published message to {command.topic}")

    async def cmd_topics(self, command: Command) -> None:
        topics = await self.facade.list_topics()
        self.output.write("Subscribed topics:")
        for topic in topics:
            self.output.write(f"- {topic}")

    async def cmd_peers(self, command: Command) -> None:
        peers = await self.facade.list_peers(command.topic)
        self.output.write(f"Peers subscribed to {command.topic}:")
        for peer in peers:
            self.output.write(f"- {peer}")

    async def cmd_info(self, command: Command) -> None:
        identity = await self.node.id()
        self.output.write(f"Node ID: {identity.id}")
        self.output.write("Addresses:")
        for addr in identity.addresses:
            self.output.write(f"- {addr}")

    async def cmd_swarm(self, command: Command) -> None:
        peers = await self.node.swarm_peers()
        self.output.write(f"Connected peers: {len(peers)}")
        for peer in peers:
            self.output.write(f"- {peer.peer}: {peer.addr}")

    async def cmd_help(self, command: Command) -> None:
        self.print_help()

    async def cmd_quit(self, command: Command) -> None:
        await asyncio.shield(self.request_shutdown("quit"))

    def request_shutdown(self, reason: str = "signal") -> asyncio.Task:
        """
        Start shutting down, or join a shutdown already in progress.

        Returns:
            The one shutdown task; awaiting it waits for the node to stop
        """
        if self._shutdown_task is None:
            self.state = ConsoleState.TERMINATED
            self._shutdown_task = asyncio.create_task(self._shutdown(reason))
        return self._shutdown_task

    async def _shutdown(self, reason: str) -> None:
        logger.info(f"Shutdown requested ({reason})")
        if reason == "quit":
            self.output.write("Shutting down...")
        else:
            self.output.message("Shutting down IPFS node...")
        try:
            await self.node.stop()
        except Exception:
            logger.exception("Error while stopping node")
        finally:
            self._terminated.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self.request_shutdown, signum.name)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Cannot install handler for {signum.name}")

    def remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(signum)
            except (NotImplementedError, RuntimeError):
                pass

    async def run(self, lines: AsyncIterator[str]) -> int:
        """
        Run the console until it terminates.

        Args:
            lines: Source of input lines

        Returns:
            Process exit code
        """
        self.output.start()
        self.output.prompt()
        terminated = asyncio.create_task(self._terminated.wait())
        line_iter = lines.__aiter__()

        try:
            while self.state is not ConsoleState.TERMINATED:
                next_line = asyncio.create_task(_read_line(line_iter))
                await asyncio.wait({next_line, terminated},
                                   return_when=asyncio.FIRST_COMPLETED)
                if not next_line.done():
                    next_line.cancel()
                    break
                line = next_line.result()
                if line is None:
                    await self.request_shutdown("end of input")
                    break

                self.output.hide_prompt()
                dispatch = asyncio.create_task(self.handle_line(line))
                await asyncio.wait({dispatch, terminated},
                                   return_when=asyncio.FIRST_COMPLETED)
                if not dispatch.done():
                    # Shut down underneath a command that is still in flight
                    dispatch.cancel()
                    break
                if self.state is not ConsoleState.TERMINATED:
                    self.output.prompt()

            if self._shutdown_task is not None:
                await self._shutdown_task
        finally:
            terminated.cancel()
            await self.output.close()
        return 0
