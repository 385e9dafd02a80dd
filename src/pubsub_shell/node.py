"""
IPFS node lifecycle management.

This module prepares a per-instance Kubo repository, launches the daemon as a
child process and exposes the running node as an IpfsNode handle. The handle
owns the daemon process, the RPC client and the subscription streams, and
releases all of them exactly once.
"""

import asyncio
import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from pubsub_shell.errors import IpfsApiError, OperationError, StartupError
from pubsub_shell.ipfs_api import IpfsApiClient, NodeIdentity, PubSubMessage, SwarmPeer
from pubsub_shell.ports import PortSet

logger = logging.getLogger(__name__)

READY_LINE = "Daemon is ready"

MessageCallback = Callable[[PubSubMessage], None]


def repo_path_for(swarm_port: int, prefix: str = "ipfs-repo", repo_dir: str = ".") -> str:
    """Repository path for an instance; one per swarm port."""
    return os.path.join(repo_dir, f"{prefix}-{swarm_port}")


@dataclass(frozen=True)
class NodeConfig:
    """Everything needed to bring up one node"""
    repo_path: str
    swarm_addresses: Tuple[str, ...]
    api_address: str
    gateway_address: str
    api_port: int
    bootstrap: Tuple[str, ...] = ()
    pubsub_enabled: bool = True
    pubsub_router: str = "gossipsub"

    @property
    def api_url(self) -> str:
        return f"http://127.0.0.1:{self.api_port}"

    def to_ipfs_settings(self) -> List[Tuple[str, str]]:
        """Kubo config keys and their JSON encoded values."""
        return [
            ("Addresses.Swarm", json.dumps(list(self.swarm_addresses))),
            ("Addresses.API", json.dumps(self.api_address)),
            ("Addresses.Gateway", json.dumps(self.gateway_address)),
            ("Bootstrap", json.dumps(list(self.bootstrap))),
            ("Pubsub.Enabled", json.dumps(self.pubsub_enabled)),
            ("Pubsub.Router", json.dumps(self.pubsub_router)),
        ]


def build_node_config(ports: PortSet, bootstrap: Sequence[str] = (),
                      repo_dir: str = ".", repo_prefix: str = "ipfs-repo",
                      pubsub_router: str = "gossipsub") -> NodeConfig:
    """
    Derive the node configuration from an allocated port set.

    Args:
        ports: Allocated listener ports
        bootstrap: Bootstrap peer multiaddresses
        repo_dir: Directory that holds instance repositories
        repo_prefix: Repository directory name prefix
        pubsub_router: Pubsub routing algorithm

    Returns:
        NodeConfig instance
    """
    return NodeConfig(
        repo_path=repo_path_for(ports.swarm_port, repo_prefix, repo_dir),
        swarm_addresses=(
            f"/ip4/0.0.0.0/tcp/{ports.swarm_port}",
            f"/ip4/127.0.0.1/tcp/{ports.ws_port}/ws",
        ),
        api_address=f"/ip4/127.0.0.1/tcp/{ports.api_port}",
        gateway_address=f"/ip4/127.0.0.1/tcp/{ports.gateway_port}",
        api_port=ports.api_port,
        bootstrap=tuple(bootstrap),
        pubsub_enabled=True,
        pubsub_router=pubsub_router,
    )


@dataclass
class Subscription:
    """An active topic registration and the task pumping its stream"""
    topic: str
    callback: MessageCallback
    task: Optional[asyncio.Task] = field(default=None, repr=False)


class IpfsNode:
    """Handle to a running node"""

    def __init__(self, config: NodeConfig, api: IpfsApiClient,
                 process: Optional[asyncio.subprocess.Process] = None,
                 shutdown_timeout: float = 10.0):
        self.config = config
        self.api = api
        self.process = process
        self.shutdown_timeout = shutdown_timeout
        self.identity: Optional[NodeIdentity] = None

        self.subscriptions: Dict[str, Subscription] = {}
        self._output_task: Optional[asyncio.Task] = None

        self._stop_lock = threading.Lock()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def _ensure_running(self, operation: str) -> None:
        if self._stopped:
            raise OperationError(operation, "node is stopped")

    async def id(self) -> NodeIdentity:
        """Node identity; fetched once and cached."""
        if self.identity is None:
            self._ensure_running("id")
            self.identity = await self.api.id()
        return self.identity

    async def swarm_peers(self) -> List[SwarmPeer]:
        self._ensure_running("swarm peers")
        return await self.api.swarm_peers()

    async def pubsub_subscribe(self, topic: str, callback: MessageCallback) -> None:
        """
        Register a callback for a topic.

        Raises:
            OperationError: If the topic is already subscribed or the daemon
                refuses the subscription
        """
        self._ensure_running("subscribe")
        if topic in self.subscriptions:
            raise OperationError("subscribe", f"already subscribed to topic: {topic}")

        subscription = Subscription(topic=topic, callback=callback)
        # Reserve the topic while the stream is opening
        self.subscriptions[topic] = subscription
        try:
            resp = await self.api.pubsub_sub(topic)
        except BaseException:
            self.subscriptions.pop(topic, None)
            raise

        if self._stopped:
            # stop() ran while the stream was opening
            resp.release()
            self.subscriptions.pop(topic, None)
            raise OperationError("subscribe", "node is stopped")

        subscription.task = asyncio.create_task(self._pump(subscription, resp))
        logger.debug(f"Subscription stream opened for {topic}")

    async def pubsub_unsubscribe(self, topic: str) -> None:
        self._ensure_running("unsubscribe")
        subscription = self.subscriptions.pop(topic, None)
        if subscription is None:
            raise OperationError("unsubscribe", f"not subscribed to topic: {topic}")
        await self._cancel(subscription)

    async def pubsub_publish(self, topic: str, payload: bytes) -> None:
        self._ensure_running("publish")
        await self.api.pubsub_pub(topic, payload)

    async def pubsub_list_topics(self) -> List[str]:
        self._ensure_running("list topics")
        return await self.api.pubsub_ls()

    async def pubsub_list_peers(self, topic: str) -> List[str]:
        self._ensure_running("list peers")
        return await self.api.pubsub_peers(topic)

    async def _pump(self, subscription: Subscription, resp: aiohttp.ClientResponse) -> None:
        """Feed one subscription stream into its callback until it ends."""
        topic = subscription.topic
        try:
            async for message in self.api.iter_messages(topic, resp):
                try:
                    subscription.callback(message)
                except Exception:
                    logger.exception(f"Message callback for {topic} failed")
            logger.info(f"Subscription stream for {topic} closed by the node")
        except asyncio.CancelledError:
            logger.debug(f"Subscription stream for {topic} cancelled")
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Subscription stream for {topic} failed: {e}")
        finally:
            resp.release()
            if self.subscriptions.get(topic) is subscription:
                del self.subscriptions[topic]

    async def _cancel(self, subscription: Subscription) -> None:
        task = subscription.task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def watch_output(self, stream: asyncio.StreamReader) -> None:
        """Keep draining daemon output so its pipe never fills up."""
        async def drain():
            while True:
                line = await stream.readline()
                if not line:
                    break
                logger.debug(f"ipfs: {line.decode('utf-8', 'replace').rstrip()}")

        self._output_task = asyncio.create_task(drain())

    async def stop(self) -> bool:
        """
        Release the node's resources.

        Safe to call from several shutdown paths; only the first call does any
        work.

        Returns:
            True if this call stopped the node, False if it was already stopped
        """
        with self._stop_lock:
            if self._stopped:
                return False
            self._stopped = True

        logger.info(f"Stopping node {self.config.repo_path}")

        subscriptions = list(self.subscriptions.values())
        self.subscriptions.clear()
        for subscription in subscriptions:
            await self._cancel(subscription)

        if self.process is not None and self.process.returncode is None:
            try:
                await self.api.shutdown()
            except IpfsApiError as e:
                logger.warning(f"Shutdown request failed: {e}")
        await self.api.close()

        await self._wait_for_exit()

        if self._output_task is not None:
            self._output_task.cancel()
            try:
                await self._output_task
            except asyncio.CancelledError:
                pass
        return True

    async def _wait_for_exit(self) -> None:
        process = self.process
        if process is None:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning("Daemon did not exit in time, terminating")

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.shutdown_timeout)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("Daemon ignored SIGTERM, killing")
            process.kill()
            await process.wait()

    async def __aenter__(self) -> "IpfsNode":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class NodeLifecycle:
    """Starts IpfsNode instances from a NodeConfig"""

    def __init__(self, ipfs_binary: str = "ipfs", startup_timeout: float = 60.0,
                 request_timeout: float = 30.0, shutdown_timeout: float = 10.0):
        self.ipfs_binary = ipfs_binary
        self.startup_timeout = startup_timeout
        self.request_timeout = request_timeout
        self.shutdown_timeout = shutdown_timeout

    def _env(self, config: NodeConfig) -> Dict[str, str]:
        env = dict(os.environ)
        env["IPFS_PATH"] = str(Path(config.repo_path).resolve())
        return env

    async def _run_ipfs(self, config: NodeConfig, *args: str) -> str:
        """Run a one-shot ipfs command against the instance repository."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ipfs_binary, *args,
                env=self._env(config),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise StartupError(f"ipfs binary not found: {self.ipfs_binary}") from e
        except OSError as e:
            raise StartupError(f"cannot run {self.ipfs_binary}: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip() or f"exit code {proc.returncode}"
            raise StartupError(f"ipfs {' '.join(args[:2])} failed: {detail}")
        return stdout.decode("utf-8", "replace")

    async def prepare_repo(self, config: NodeConfig) -> None:
        """Initialise the repository if needed and write the generated config."""
        repo = Path(config.repo_path)
        try:
            repo.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StartupError(f"cannot create repository {repo}: {e}") from e

        if not (repo / "config").exists():
            logger.info(f"Initialising repository {repo}")
            await self._run_ipfs(config, "init")
        else:
            logger.info(f"Reusing repository {repo}")

        for key, value in config.to_ipfs_settings():
            await self._run_ipfs(config, "config", "--json", key, value)

    async def _launch_daemon(self, config: NodeConfig) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self.ipfs_binary, "daemon", "--enable-pubsub-experiment",
                env=self._env(config),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise StartupError(f"cannot launch daemon: {e}") from e

    async def _wait_until_ready(self, process: asyncio.subprocess.Process) -> None:
        output: List[str] = []
        while True:
            line = await process.stdout.readline()
            if not line:
                await process.wait()
                tail = " | ".join(output[-5:]) or "no output"
                raise StartupError(
                    f"daemon exited with code {process.returncode} before ready: {tail}"
                )
            text = line.decode("utf-8", "replace").rstrip()
            logger.debug(f"ipfs: {text}")
            output.append(text)
            if READY_LINE in text:
                return

    async def start(self, config: NodeConfig) -> IpfsNode:
        """
        Start a node.

        Args:
            config: Node configuration

        Returns:
            Running IpfsNode with its identity loaded

        Raises:
            StartupError: If the node cannot be brought up
        """
        await self.prepare_repo(config)

        process = await self._launch_daemon(config)
        try:
            await asyncio.wait_for(self._wait_until_ready(process),
                                   timeout=self.startup_timeout)
        except asyncio.TimeoutError as e:
            await _kill(process)
            raise StartupError(
                f"daemon not ready after {self.startup_timeout:.0f}s"
            ) from e
        except BaseException:
            await _kill(process)
            raise

        node = IpfsNode(
            config,
            IpfsApiClient(config.api_url, request_timeout=self.request_timeout),
            process=process,
            shutdown_timeout=self.shutdown_timeout,
        )
        node.watch_output(process.stdout)

        try:
            await node.id()
        except IpfsApiError as e:
            await node.stop()
            raise StartupError(f"node API unreachable: {e}") from e

        logger.info(f"Node {node.identity.id} ready at {config.api_url}")
        return node


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
