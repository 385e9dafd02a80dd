"""Random listener port allocation.

Every node instance needs its own swarm, websocket, API and gateway ports so
several shells can run side by side on one machine. Ports are drawn
independently from disjoint ranges; no coordination between processes is
attempted, so two instances can still collide, just not often.
"""

import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

# Half-open [min, max) ranges
SWARM_PORT_RANGE: Tuple[int, int] = (4002, 4999)
WS_PORT_RANGE: Tuple[int, int] = (5000, 5999)
API_PORT_RANGE: Tuple[int, int] = (6000, 6999)
GATEWAY_PORT_RANGE: Tuple[int, int] = (7000, 7999)


@dataclass(frozen=True)
class PortSet:
    """Listener ports for one node instance"""
    swarm_port: int
    ws_port: int
    api_port: int
    gateway_port: int

    def __str__(self) -> str:
        return (
            f"swarm={self.swarm_port} ws={self.ws_port} "
            f"api={self.api_port} gateway={self.gateway_port}"
        )


def random_port(min_port: int, max_port: int,
                rng: Optional[Callable[[], float]] = None) -> int:
    """
    Draw a port uniformly from [min_port, max_port).

    Args:
        min_port: Lowest port (inclusive)
        max_port: Highest port (exclusive)
        rng: Source of floats in [0, 1), defaults to random.random

    Returns:
        Port number
    """
    if rng is None:
        rng = random.random
    return int(min_port + rng() * (max_port - min_port))


def allocate_ports(rng: Optional[Callable[[], float]] = None) -> PortSet:
    """Allocate one port from each listener range."""
    return PortSet(
        swarm_port=random_port(*SWARM_PORT_RANGE, rng=rng),
        ws_port=random_port(*WS_PORT_RANGE, rng=rng),
        api_port=random_port(*API_PORT_RANGE, rng=rng),
        gateway_port=random_port(*GATEWAY_PORT_RANGE, rng=rng),
    )
