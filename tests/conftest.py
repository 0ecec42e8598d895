"""
Pytest configuration and fixtures.

The fakes below stand in for the kernel (a pyroute2 IPRoute handle), the
Docker daemon, iptables and the wg tool, so the orchestrator can be driven
through full up/down cycles without root.
"""

import subprocess

import docker
import pytest

from wgnet.config import TunnelNetConfig
from wgnet.services.orchestrator import TunnelNetworkOrchestrator
from wgnet.services.step_executor import StepExecutor

RTN_UNICAST = 1
RTN_BLACKHOLE = 6

WG_CONFIG = """\
[Interface]
PrivateKey = yAnz5TF+lXXJte14tji3zlMNq+hd2rYUIgJBgB3fBmk=
Address = 10.20.0.2/24
DNS = 1.1.1.1
ListenPort = 51820

[Peer]
PublicKey = xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg=
Endpoint = 192.0.2.10:51820
AllowedIPs = 0.0.0.0/0
"""

HOST_IP = "198.51.100.1"
VPN_IP = "203.0.113.7"


# =============================================================================
# Netlink
# =============================================================================


class FakeMsg(dict):
    """Netlink message: header fields as items, NLAs through get_attr."""

    def __init__(self, fields, attrs):
        super().__init__(fields)
        self.attrs = attrs

    def get_attr(self, name):
        return self.attrs.get(name)


class FakeIPRoute:
    """In-memory model of links, addresses, rules and routes."""

    def __init__(self):
        self.links = {}
        self.addrs = {}
        self.rules = [
            {"table": 255, "priority": 0, "src": None, "src_len": 0},
            {"table": 254, "priority": 32766, "src": None, "src_len": 0},
            {"table": 253, "priority": 32767, "src": None, "src_len": 0},
        ]
        self.routes = []
        self.calls = []
        self.carrier_on_up = True
        self.closed = False
        self._next_index = 10

    # -- links ----------------------------------------------------------------

    def add_link(self, name, kind="dummy", up=False):
        self._next_index += 1
        self.links[name] = {
            "index": self._next_index,
            "kind": kind,
            "flags": 1 if up else 0,
            "carrier": 1 if up else 0,
            "mtu": 1500,
            "wg": {"private_key": "(none)", "listen_port": 0, "peers": []},
        }
        self.addrs[self._next_index] = []
        return self._next_index

    def _by_index(self, index):
        for name, link in self.links.items():
            if link["index"] == index:
                return name, link
        raise OSError(19, "No such device")

    def get_links(self):
        return [
            FakeMsg(
                {"index": link["index"], "flags": link["flags"]},
                {
                    "IFLA_IFNAME": name,
                    "IFLA_CARRIER": link["carrier"],
                    "IFLA_MTU": link["mtu"],
                },
            )
            for name, link in self.links.items()
        ]

    def link(self, op, **kwargs):
        self.calls.append(("link", op, kwargs))
        if op == "add":
            if kwargs["ifname"] in self.links:
                raise FileExistsError(17, "File exists")
            self.add_link(kwargs["ifname"], kind=kwargs.get("kind"))
        elif op == "set":
            _, link = self._by_index(kwargs["index"])
            if "mtu" in kwargs:
                link["mtu"] = kwargs["mtu"]
            if kwargs.get("state") == "up":
                link["flags"] |= 1
                link["carrier"] = 1 if self.carrier_on_up else 0
            elif kwargs.get("state") == "down":
                link["flags"] &= ~1
                link["carrier"] = 0
        elif op == "del":
            name, link = self._by_index(kwargs["index"])
            del self.links[name]
            del self.addrs[link["index"]]
            # Kernel drops routes through a deleted device
            self.routes = [r for r in self.routes if r.get("oif") != link["index"]]

    # -- addresses ------------------------------------------------------------

    def addr(self, op, index, address, prefixlen):
        self.calls.append(("addr", op, address))
        self._by_index(index)
        if op == "add":
            self.addrs[index].append((address, prefixlen))

    def get_addr(self, index=None, **kwargs):
        return [
            FakeMsg({"prefixlen": prefixlen}, {"IFA_ADDRESS": address})
            for address, prefixlen in self.addrs.get(index, [])
        ]

    # -- rules ----------------------------------------------------------------

    @staticmethod
    def _rule_key(rule):
        return (rule["table"], rule["priority"], rule["src"], rule["src_len"])

    def rule(self, op, table, priority, family=None, src=None, src_len=0, **kwargs):
        self.calls.append(("rule", op, table, priority))
        new = {"table": table, "priority": priority, "src": src, "src_len": src_len}
        new.update(kwargs)
        existing = [r for r in self.rules if self._rule_key(r) == self._rule_key(new)]
        if op == "add":
            if existing:
                raise FileExistsError(17, "File exists")
            self.rules.append(new)
        elif op == "del":
            if not existing:
                raise FileNotFoundError(2, "No such file or directory")
            self.rules.remove(existing[0])

    def get_rules(self, family=None, **kwargs):
        return [
            FakeMsg(
                # Header holds RT_TABLE_COMPAT for tables that don't fit a byte
                {"table": r["table"] if r["table"] < 256 else 252, "src_len": r["src_len"]},
                {
                    "FRA_TABLE": r["table"],
                    "FRA_PRIORITY": r["priority"],
                    "FRA_SRC": r["src"],
                },
            )
            for r in self.rules
        ]

    # -- routes ---------------------------------------------------------------

    def route(self, op, table, dst_len, priority, type=None, oif=None, **kwargs):
        self.calls.append(("route", op, table, priority))
        rtype = RTN_BLACKHOLE if type == "blackhole" else RTN_UNICAST
        existing = [
            r
            for r in self.routes
            if r["table"] == table
            and r["dst_len"] == dst_len
            and r["priority"] == priority
        ]
        if op == "add":
            if existing:
                raise FileExistsError(17, "File exists")
            if rtype == RTN_UNICAST:
                self._by_index(oif)
            self.routes.append(
                {
                    "table": table,
                    "dst_len": dst_len,
                    "priority": priority,
                    "type": rtype,
                    "oif": oif,
                    **kwargs,
                }
            )
        elif op == "del":
            if not existing:
                raise FileNotFoundError(3, "No such process")
            self.routes.remove(existing[0])

    def get_routes(self, family=None, table=None, **kwargs):
        return [
            FakeMsg(
                {"table": r["table"], "dst_len": r["dst_len"], "type": r["type"]},
                {
                    "RTA_TABLE": r["table"],
                    "RTA_PRIORITY": r["priority"],
                    "RTA_OIF": r["oif"],
                },
            )
            for r in self.routes
            if table is None or r["table"] == table
        ]

    def close(self):
        self.closed = True

    def mutation_count(self):
        return len(self.calls)


# =============================================================================
# Docker
# =============================================================================


class FakeContainer:
    def __init__(self, output, hang=False):
        self.output = output
        self.hang = hang
        self.removed = False

    def wait(self, timeout=None):
        if self.hang:
            raise ConnectionError("Read timed out")
        return {"StatusCode": 0}

    def logs(self, stdout=True, stderr=True):
        return self.output.encode()

    def remove(self, force=False):
        self.removed = True


class FakeContainers:
    def __init__(self, docker_client):
        self.docker = docker_client
        self.started = []

    def run(self, image, command, network=None, detach=False, **kwargs):
        container = FakeContainer(
            self.docker.egress.get(network, HOST_IP), hang=self.docker.hang
        )
        self.started.append((image, command, network, container))
        return container


class FakeNetwork:
    def __init__(self, client, name, options, network_id):
        self.client = client
        self.name = name
        self.id = network_id
        self.attrs = {"Name": name, "Options": options, "Containers": {}}

    def reload(self):
        pass

    def remove(self):
        self.client.calls.append(("network", "remove", self.name))
        del self.client.networks.items[self.name]


class FakeNetworks:
    def __init__(self, client):
        self.client = client
        self.items = {}

    def get(self, name):
        if name not in self.items:
            raise docker.errors.NotFound(f"network {name} not found")
        return self.items[name]

    def create(self, name, driver=None, ipam=None, options=None):
        self.client.calls.append(("network", "create", name))
        network = FakeNetwork(self.client, name, dict(options or {}), f"{len(self.items):064x}")
        network.attrs["IPAM"] = ipam
        self.items[name] = network
        return network


class FakeDocker:
    def __init__(self):
        self.calls = []
        self.networks = FakeNetworks(self)
        self.containers = FakeContainers(self)
        # Apparent public address per network
        self.egress = {}
        self.hang = False

    def attach(self, network, container_id):
        self.networks.get(network).attrs["Containers"][container_id] = {}


# =============================================================================
# Commands (iptables, wg)
# =============================================================================


class FakeHost:
    """Dispatches subprocess.run for iptables and wg against fake state."""

    def __init__(self, ipr):
        self.ipr = ipr
        self.iptables = set()
        self.commands = []
        self.wg_loaded = {}

    def run(self, cmd, check=False, capture_output=False, text=False, **kwargs):
        self.commands.append(list(cmd))
        program = cmd[0].rsplit("/", 1)[-1]
        if program == "iptables":
            returncode, stdout = self._iptables(cmd[1:]), ""
        elif program == "wg":
            returncode, stdout = self._wg(cmd[1:])
        else:
            returncode, stdout = 1, ""

        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd)
        if not text:
            stdout = stdout.encode()
        return subprocess.CompletedProcess(cmd, returncode, stdout, "" if text else b"")

    def _iptables(self, args):
        table, op, chain = args[1], args[2], args[3]
        key = (table, chain, tuple(args[4:]))
        if op == "-C":
            return 0 if key in self.iptables else 1
        if op == "-A":
            self.iptables.add(key)
            return 0
        if op == "-D":
            if key not in self.iptables:
                return 1
            self.iptables.discard(key)
            return 0
        return 2

    def _wg(self, args):
        if args[0] == "setconf":
            device, path = args[1], args[2]
            if device not in self.ipr.links:
                return 1, ""
            with open(path) as f:
                content = f.read()
            self.wg_loaded[device] = content
            self.ipr.links[device]["wg"] = self._parse_setconf(content)
            return 0, ""
        if args[0] == "show" and args[2:] == ["dump"]:
            link = self.ipr.links.get(args[1])
            if link is None:
                return 1, ""
            wg = link["wg"]
            lines = [f"{wg['private_key']}\t(none)\t{wg['listen_port']}\toff"]
            lines += [
                f"{peer}\t(none)\t(none)\t0.0.0.0/0\t0\t0\t0\toff" for peer in wg["peers"]
            ]
            return 0, "\n".join(lines) + "\n"
        return 1, ""

    @staticmethod
    def _parse_setconf(content):
        """What the kernel keeps from a setconf file; wg-quick keys are rejected."""
        wg = {"private_key": "(none)", "listen_port": 0, "peers": []}
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or line.startswith("["):
                continue
            key, _, value = line.partition("=")
            key, value = key.strip().lower(), value.strip()
            if key in ("address", "dns"):
                raise AssertionError(f"wg setconf rejects {key}")
            if key == "privatekey":
                wg["private_key"] = value
            elif key == "listenport":
                wg["listen_port"] = int(value)
            elif key == "publickey":
                wg["peers"].append(value)
        return wg

    def iptables_mutations(self):
        return [
            c for c in self.commands if c[0] == "iptables" and c[3] in ("-A", "-D")
        ]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ipr():
    return FakeIPRoute()


@pytest.fixture
def docker_client():
    client = FakeDocker()
    client.egress["wg0-net"] = VPN_IP
    return client


@pytest.fixture
def host(monkeypatch, ipr):
    fake = FakeHost(ipr)
    monkeypatch.setattr(subprocess, "run", fake.run)
    return fake


@pytest.fixture
def wg_config(tmp_path):
    path = tmp_path / "wg0.conf"
    path.write_text(WG_CONFIG)
    return str(path)


@pytest.fixture
def ip_forward(tmp_path):
    path = tmp_path / "ip_forward"
    path.write_text("0\n")
    return str(path)


@pytest.fixture
def cfg(tmp_path, wg_config):
    return TunnelNetConfig(
        NETWORK_NAME="wg0-net",
        NETWORK_SUBNET="10.20.0.0/16",
        DEVICE_NAME="wg0-docker",
        CONFIG_PATH=wg_config,
        MTU=1420,
        ROUTING_TABLE=100,
        LOCK_DIR=str(tmp_path / "lock"),
        LOCK_TIMEOUT_SECONDS=0.2,
        POLL_INTERVAL_SECONDS=0,
        MAX_ATTEMPTS=3,
    )


def make_orchestrator(cfg, ipr, docker_client, ip_forward):
    orchestrator = TunnelNetworkOrchestrator(
        cfg,
        ipr=ipr,
        docker_client=docker_client,
        executor=StepExecutor(poll_interval=0, max_attempts=3, sleep=lambda s: None),
        ip_forward_path=ip_forward,
    )

    def external_address(via=None, timeout=5.0):
        import ipaddress

        if via is None:
            return ipaddress.IPv4Address(HOST_IP)
        if via not in docker_client.networks.items:
            return None
        # Traffic only leaves with the VPN address while the device is up
        link = ipr.links.get(cfg.DEVICE_NAME)
        if link is None or not link["flags"] & 1:
            return ipaddress.IPv4Address(HOST_IP)
        return ipaddress.IPv4Address(docker_client.egress.get(via, HOST_IP))

    orchestrator.probe.external_address = external_address
    return orchestrator


@pytest.fixture
def orchestrator(cfg, ipr, docker_client, host, ip_forward):
    return make_orchestrator(cfg, ipr, docker_client, ip_forward)
