"""Exception classes for tunnel network orchestration."""


class WgNetError(Exception):
    """Base exception for wgnet operations."""

    pass


class ConfigNotFound(WgNetError):
    """Tunnel configuration file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Tunnel config not found: {path}")


class ConfigMalformed(WgNetError):
    """Tunnel configuration file has no usable Address line."""

    def __init__(self, message: str, path: str):
        self.path = path
        super().__init__(f"Malformed tunnel config {path}: {message}")


class InvalidNetworkConfig(WgNetError):
    """Network descriptor or routing policy values are out of range."""

    pass


class StepFailed(WgNetError):
    """A step's postcondition never held within its attempt budget."""

    def __init__(self, step: str, last_observed_state):
        self.step = step
        self.last_observed_state = last_observed_state
        super().__init__(
            f"Step '{step}' failed, last observed state: {last_observed_state}"
        )


class LockTimeout(WgNetError):
    """Another invocation holds the lock for this network."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(
            f"Could not acquire lock '{name}' within {timeout}s "
            f"(another invocation is in progress)"
        )


class DockerConnectionError(WgNetError):
    """Failed to connect to the Docker daemon."""

    pass


class RoutingTableCollision(Warning):
    """Routing table is already used by rules this tunnel did not create."""

    def __init__(self, table: int, owners: list[str]):
        self.table = table
        self.owners = owners
        super().__init__(
            f"Routing table {table} is already in use by: "
            f"{', '.join(owners) or 'unknown routes'}"
        )


class NetworkStillInUse(Warning):
    """Docker network was left in place because containers are attached."""

    def __init__(self, name: str, connections: int):
        self.name = name
        self.connections = connections
        super().__init__(
            f"Docker network {name} still has {connections} attached container(s), "
            f"leaving it in place"
        )
