"""pubsub-shell - An interactive IPFS pubsub console."""

__version__ = "0.1.0"

# Core modules
from pubsub_shell.ports import PortSet, allocate_ports
from pubsub_shell.node import IpfsNode, NodeConfig, NodeLifecycle, build_node_config
from pubsub_shell.pubsub import PubSubFacade
from pubsub_shell.sink import MessageSink
from pubsub_shell.output import ConsoleOutput
from pubsub_shell.console import CommandConsole
from pubsub_shell.config import ShellConfig

__all__ = [
    "__version__",
    "PortSet",
    "allocate_ports",
    "IpfsNode",
    "NodeConfig",
    "NodeLifecycle",
    "build_node_config",
    "PubSubFacade",
    "MessageSink",
    "ConsoleOutput",
    "CommandConsole",
    "ShellConfig",
]
