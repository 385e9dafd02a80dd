"""
Configuration management for the pubsub shell.

This module provides configuration file support for the shell, allowing users
to point it at a different ipfs binary, change where node repositories are
created, replace the bootstrap list and tune timeouts via a configuration file
or environment variables.
"""

import configparser
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "PUBSUB_SHELL_"

DEFAULT_BOOTSTRAP = [
    "/dnsaddr/bootstrap.libp2p.io/p2p/QmNnooDu7bfjPFoTZYxMNLWUQJyrVwtbZg5gBMjTezGAJN",
    "/dnsaddr/bootstrap.libp2p.io/p2p/QmQCU2EcMqAqQPR2i9bChDtGNJchTbq5TbXJJ16u19uLTa",
    "/dnsaddr/bootstrap.libp2p.io/p2p/QmbLHAnMoJPWSCR5Zhtx6BHJX9KiKNN6tpvbUcqanj75Nb",
]


def default_config_path() -> Path:
    return Path.home() / ".pubsub-shell" / "pubsub-shell.conf"


class ShellConfig:
    """Shell configuration manager"""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file (default: ~/.pubsub-shell/pubsub-shell.conf)
        """
        if config_path is None:
            config_path = default_config_path()

        self.config_path = Path(config_path)
        self.config = configparser.ConfigParser()

        # Default values
        self.defaults: Dict[str, Optional[str]] = {
            'ipfs_binary': 'ipfs',
            'repo_dir': '.',
            'repo_prefix': 'ipfs-repo',
            'bootstrap': ",".join(DEFAULT_BOOTSTRAP),
            'pubsub_router': 'gossipsub',
            'startup_timeout': '60',
            'request_timeout': '30',
            'shutdown_timeout': '10',
            'prompt': '> ',
            'debug': '0',
            'logtimestamps': '1',
        }

        # Load config if exists
        if self.config_path.exists():
            try:
                self.config.read(self.config_path)
            except configparser.Error as e:
                logger.warning(f"Error reading config file {self.config_path}: {e}")
                self.config = configparser.ConfigParser()

    def get(self, key: str, section: str = 'DEFAULT') -> Optional[str]:
        """
        Get config value.

        Priority order:
        1. Environment variable (PUBSUB_SHELL_<KEY>)
        2. Config file value
        3. Default value

        Args:
            key: Config key
            section: Config section (default: 'DEFAULT')

        Returns:
            Config value or default
        """
        env_value = os.environ.get(f"{ENV_PREFIX}{key.upper()}")
        if env_value:
            return env_value

        # Named section first, then DEFAULT, then any section holding the key
        if self.config.has_option(section, key):
            return self.config.get(section, key)
        if key in self.config.defaults():
            return self.config.defaults()[key]
        for name in self.config.sections():
            if self.config.has_option(name, key):
                return self.config.get(name, key)

        return self.defaults.get(key)

    def getfloat(self, key: str, section: str = 'DEFAULT') -> float:
        """Get config value as float, falling back to the built-in default."""
        value = self.get(key, section)
        try:
            return float(value) if value is not None else 0.0
        except ValueError:
            logger.warning(f"Config value {key}={value!r} is not a number")
            default = self.defaults.get(key)
            return float(default) if default else 0.0

    def getboolean(self, key: str, section: str = 'DEFAULT') -> bool:
        """Get config value as boolean."""
        value = self.get(key, section)
        if value is None:
            return False
        return value.strip().lower() in ('1', 'true', 'yes', 'on')

    def getlist(self, key: str, section: str = 'DEFAULT') -> List[str]:
        """
        Get config value as a list.

        Items may be separated by commas or newlines; blanks are dropped.
        """
        value = self.get(key, section)
        if not value:
            return []
        items = value.replace("\n", ",").split(",")
        return [item.strip() for item in items if item.strip()]

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert config to dictionary.

        Returns:
            Dictionary with all configuration values
        """
        return {
            'ipfs_binary': self.get('ipfs_binary'),
            'repo_dir': self.get('repo_dir'),
            'repo_prefix': self.get('repo_prefix'),
            'bootstrap': self.getlist('bootstrap'),
            'pubsub_router': self.get('pubsub_router'),
            'startup_timeout': self.getfloat('startup_timeout'),
            'request_timeout': self.getfloat('request_timeout'),
            'shutdown_timeout': self.getfloat('shutdown_timeout'),
            'prompt': self.get('prompt'),
            'debug': self.getboolean('debug'),
            'log_timestamps': self.getboolean('logtimestamps'),
        }
