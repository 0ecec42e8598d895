"""
Docker client access and network management.

The tunnel's Docker network is a plain bridge network whose bridge name is
fixed so that the forward rules can refer to it.
"""

from __future__ import annotations

import docker

from wgnet.exceptions import DockerConnectionError
from wgnet.models.tunnel import NetworkDescriptor
from wgnet.utils.logger import get_logger

logger = get_logger(__name__)

BRIDGE_NAME_OPTION = "com.docker.network.bridge.name"
MTU_OPTION = "com.docker.network.driver.mtu"


def connect_docker(timeout: int | None = None):
    """
    Create a Docker client from the environment.

    Raises:
        DockerConnectionError: If connection to Docker daemon fails.
    """
    try:
        client = docker.from_env(timeout=timeout)
        client.ping()
        logger.debug("Docker client initialized successfully")
        return client
    except docker.errors.DockerException as e:
        logger.error(f"Failed to connect to Docker daemon: {e}")
        raise DockerConnectionError(f"Failed to connect to Docker: {e}") from e


def get_network(client, name: str):
    """Return a Docker network by name, or None if it does not exist."""
    try:
        return client.networks.get(name)
    except docker.errors.NotFound:
        return None


def network_bridge_name(network) -> str:
    """Name of the Linux bridge backing a bridge-driver network."""
    options = network.attrs.get("Options") or {}
    bridge = options.get(BRIDGE_NAME_OPTION)
    if bridge:
        return bridge
    # Docker's default naming for user-defined bridges
    return f"br-{network.id[:12]}"


def create_network_sync(client, descriptor: NetworkDescriptor) -> None:
    """Create the Docker bridge network with the configured subnet and MTU."""
    logger.info(
        f"Creating Docker network {descriptor.name} "
        f"on bridge {descriptor.bridge_name} with subnet {descriptor.subnet}"
    )

    ipam_pool = docker.types.IPAMPool(
        subnet=str(descriptor.subnet),
        gateway=str(descriptor.gateway),
    )
    ipam_config = docker.types.IPAMConfig(pool_configs=[ipam_pool])

    client.networks.create(
        descriptor.name,
        driver="bridge",
        ipam=ipam_config,
        options={
            BRIDGE_NAME_OPTION: descriptor.bridge_name,
            MTU_OPTION: str(descriptor.mtu),
        },
    )

    logger.info(f"Created Docker network {descriptor.name}")


def remove_network_sync(client, name: str) -> None:
    network = get_network(client, name)
    if network is None:
        return
    network.remove()
    logger.info(f"Removed Docker network {name}")
