"""
Test configuration management.

This test verifies that the configuration system works correctly.
"""

import unittest
import sys
import os
import tempfile
from pathlib import Path

# Add src to path
src_dir = Path(__file__).parent.parent.parent
sys.path.insert(0, str(src_dir))

from pubsub_shell.config import DEFAULT_BOOTSTRAP, ShellConfig


class TestShellConfig(unittest.TestCase):
    """Test ShellConfig class"""

    def test_default_values(self):
        """Test that default values are returned when no config file exists"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "nonexistent.conf"
            config = ShellConfig(str(config_path))

            self.assertEqual(config.get('ipfs_binary'), 'ipfs')
            self.assertEqual(config.get('repo_prefix'), 'ipfs-repo')
            self.assertEqual(config.get('pubsub_router'), 'gossipsub')
            self.assertEqual(config.getfloat('startup_timeout'), 60.0)
            self.assertEqual(config.getlist('bootstrap'), DEFAULT_BOOTSTRAP)
            self.assertFalse(config.getboolean('debug'))
            self.assertTrue(config.getboolean('logtimestamps'))

    def test_config_file_loading(self):
        """Test loading configuration from a file"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "test.conf"
            config_path.write_text("""[node]
ipfs_binary=/opt/kubo/ipfs
repo_prefix=shell-repo

[timeouts]
startup_timeout=15

[logging]
debug=1
""")

            config = ShellConfig(str(config_path))

            self.assertEqual(config.get('ipfs_binary'), '/opt/kubo/ipfs')
            self.assertEqual(config.get('repo_prefix'), 'shell-repo')
            self.assertEqual(config.getfloat('startup_timeout'), 15.0)
            self.assertTrue(config.getboolean('debug'))

    def test_environment_variable_override(self):
        """Test that environment variables override config file"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "test.conf"
            config_path.write_text("[DEFAULT]\nipfs_binary=/usr/bin/ipfs\n")

            os.environ['PUBSUB_SHELL_IPFS_BINARY'] = '/usr/local/bin/ipfs'

            try:
                config = ShellConfig(str(config_path))
                self.assertEqual(config.get('ipfs_binary'), '/usr/local/bin/ipfs')
            finally:
                del os.environ['PUBSUB_SHELL_IPFS_BINARY']

    def test_bootstrap_list(self):
        """Test that bootstrap peers may be split across lines or commas"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "test.conf"
            config_path.write_text("""[DEFAULT]
bootstrap =
    /ip4/10.0.0.1/tcp/4001/p2p/QmA
    /ip4/10.0.0.2/tcp/4001/p2p/QmB, /ip4/10.0.0.3/tcp/4001/p2p/QmC
""")

            config = ShellConfig(str(config_path))
            self.assertEqual(config.getlist('bootstrap'), [
                '/ip4/10.0.0.1/tcp/4001/p2p/QmA',
                '/ip4/10.0.0.2/tcp/4001/p2p/QmB',
                '/ip4/10.0.0.3/tcp/4001/p2p/QmC',
            ])

    def test_broken_file_falls_back_to_defaults(self):
        """Test that an unparsable file is ignored"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "broken.conf"
            config_path.write_text("this is not an ini file\n")

            with self.assertLogs('pubsub_shell.config', level='WARNING'):
                config = ShellConfig(str(config_path))
            self.assertEqual(config.get('ipfs_binary'), 'ipfs')

    def test_getfloat(self):
        """Test numeric accessors"""
        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = Path(tmpdir) / "test.conf"
            config_path.write_text("[DEFAULT]\nrequest_timeout=2.5\nshutdown_timeout=abc\n")

            config = ShellConfig(str(config_path))
            self.assertEqual(config.getfloat('request_timeout'), 2.5)
            self.assertEqual(config.getfloat('nonexistent'), 0.0)
            with self.assertLogs('pubsub_shell.config', level='WARNING'):
                self.assertEqual(config.getfloat('shutdown_timeout'), 10.0)

    def test_to_dict(self):
        """Test converting config to dictionary"""
        config = ShellConfig()
        config_dict = config.to_dict()

        for key in ('ipfs_binary', 'repo_dir', 'repo_prefix', 'bootstrap',
                    'startup_timeout', 'debug', 'log_timestamps'):
            self.assertIn(key, config_dict)

        self.assertIsInstance(config_dict['bootstrap'], list)
        self.assertIsInstance(config_dict['startup_timeout'], float)
        self.assertIsInstance(config_dict['debug'], bool)


if __name__ == '__main__':
    unittest.main()
