"""
Test the command-line interface.
"""

import asyncio
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from click.testing import CliRunner

# Add src and this directory to path
test_dir = Path(__file__).parent
sys.path.insert(0, str(test_dir.parent.parent))
sys.path.insert(0, str(test_dir))

from fake_ipfs import running_fake_ipfs
from pubsub_shell.cli import cli, run_shell
from pubsub_shell.errors import StartupError
from pubsub_shell.ipfs_api import IpfsApiClient
from pubsub_shell.node import IpfsNode, NodeLifecycle, build_node_config
from pubsub_shell.ports import PortSet


async def list_lines(lines):
    for line in lines:
        yield line


class TestCli(unittest.TestCase):
    """Test click commands"""

    def setUp(self):
        """Set up test fixtures"""
        self.temp_dir = tempfile.mkdtemp()
        self.runner = CliRunner()

    def tearDown(self):
        """Clean up test fixtures"""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_ports(self):
        """ports prints a fresh allocation and its repository"""
        result = self.runner.invoke(cli, ["ports"])
        self.assertEqual(result.exit_code, 0, result.output)

        values = dict(line.split(": ", 1) for line in result.output.splitlines())
        swarm = int(values["Swarm port"])
        self.assertTrue(4002 <= swarm < 4999)
        self.assertTrue(5000 <= int(values["WebSocket port"]) < 5999)
        self.assertTrue(6000 <= int(values["API port"]) < 6999)
        self.assertTrue(7000 <= int(values["Gateway port"]) < 7999)
        self.assertTrue(values["Repository path"].endswith(f"ipfs-repo-{swarm}"))

    def test_clean(self):
        """clean removes instance repositories and nothing else"""
        for name in ("ipfs-repo-4100", "ipfs-repo-4200", "ipfs-repo-notes", "other"):
            os.makedirs(os.path.join(self.temp_dir, name))

        result = self.runner.invoke(cli, ["clean", "--repo-dir", self.temp_dir, "--yes"])

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Removed 2 repositories", result.output)
        self.assertEqual(sorted(os.listdir(self.temp_dir)), ["ipfs-repo-notes", "other"])

    def test_clean_aborted(self):
        """Declining the prompt keeps everything"""
        os.makedirs(os.path.join(self.temp_dir, "ipfs-repo-4100"))
        result = self.runner.invoke(cli, ["clean", "--repo-dir", self.temp_dir], input="n\n")
        self.assertIn("Aborted", result.output)
        self.assertTrue(os.path.isdir(os.path.join(self.temp_dir, "ipfs-repo-4100")))

    def test_clean_nothing_to_do(self):
        result = self.runner.invoke(cli, ["clean", "--repo-dir", self.temp_dir])
        self.assertIn("No repositories to remove", result.output)

    def test_start_failure_exits_nonzero(self):
        """A startup error ends the process before the console"""
        with patch.object(NodeLifecycle, "start",
                          AsyncMock(side_effect=StartupError("ipfs binary not found: ipfs"))):
            with patch("pubsub_shell.cli.stdin_lines") as stdin_lines:
                result = self.runner.invoke(
                    cli, ["start", "--repo-dir", self.temp_dir, "--no-bootstrap"]
                )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Failed to start node: ipfs binary not found: ipfs", result.output)
        stdin_lines.assert_not_called()

    def test_start_passes_options(self):
        """CLI options end up in the node configuration"""
        captured = {}

        async def fake_run_shell(config, ports, lifecycle, prompt="> "):
            captured["config"] = config
            captured["lifecycle"] = lifecycle
            return 0

        with patch("pubsub_shell.cli.run_shell", fake_run_shell):
            result = self.runner.invoke(cli, [
                "start", "--repo-dir", self.temp_dir, "--ipfs-binary", "/opt/ipfs",
                "--bootstrap", "/ip4/10.0.0.1/tcp/4001/p2p/QmA",
            ])

        self.assertEqual(result.exit_code, 0, result.output)
        config = captured["config"]
        self.assertEqual(config.bootstrap, ("/ip4/10.0.0.1/tcp/4001/p2p/QmA",))
        self.assertTrue(config.repo_path.startswith(self.temp_dir))
        self.assertEqual(captured["lifecycle"].ipfs_binary, "/opt/ipfs")

    def test_start_logs_settings(self):
        """The effective settings are logged at debug level"""
        async def fake_run_shell(config, ports, lifecycle, prompt="> "):
            return 0

        with patch("pubsub_shell.cli.run_shell", fake_run_shell):
            with self.assertLogs('pubsub_shell.cli', level='DEBUG') as logs:
                result = self.runner.invoke(
                    cli, ["start", "--repo-dir", self.temp_dir, "--debug"]
                )

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Settings: {", logs.output[0])
        self.assertIn("'startup_timeout':", logs.output[0])


class TestRunShell(unittest.TestCase):
    """Test the startup banner and console wiring"""

    def test_session_stops_node(self):
        """A session ending in quit stops the node once"""
        async def test():
            async with running_fake_ipfs() as (fake, url):
                port = int(url.rstrip("/").rsplit(":", 1)[1])
                ports = PortSet(swarm_port=4100, ws_port=5100, api_port=port, gateway_port=7100)
                config = build_node_config(ports)
                node = IpfsNode(config, IpfsApiClient(config.api_url))
                node_stop = node.stop
                results = []

                async def recording_stop():
                    result = await node_stop()
                    results.append(result)
                    return result

                node.stop = recording_stop

                lifecycle = NodeLifecycle()
                lifecycle.start = AsyncMock(return_value=node)
                with patch("pubsub_shell.cli.stdin_lines",
                           return_value=list_lines(["info", "quit"])):
                    code = await run_shell(config, ports, lifecycle)
                return code, node, results

        with patch("click.echo"):
            code, node, results = asyncio.run(test())
        self.assertEqual(code, 0)
        self.assertTrue(node.stopped)
        # quit releases the node; the cleanup call afterwards is a no-op
        self.assertEqual(results, [True, False])


if __name__ == '__main__':
    unittest.main()
