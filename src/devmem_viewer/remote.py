"""HTTP access to the remote memory agent."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

import requests

from .errors import ShortRead, TransportFailure

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0

BDF = re.compile(
    r"^(?:(?P<domain>[0-9a-fA-F]{1,4}):)?(?P<bus>[0-9a-fA-F]{1,2}):"
    r"(?P<device>[0-9a-fA-F]{1,2})\.(?P<function>[0-7])$"
)


class PageFetchPort(Protocol):
    """Anything that can read a byte range from a remote host."""

    def fetch(self, host: str, offset: int, length: int) -> bytes:
        """Return exactly ``length`` bytes starting at ``offset``."""


class HTTPSession(Protocol):
    """The part of :class:`requests.Session` the agent relies on."""

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        """Issue a GET request."""


@dataclass(frozen=True)
class PciDevice:
    """PCI function address plus the agent's human readable description."""

    domain: int
    bus: int
    device: int
    function: int
    description: str = ""

    @property
    def bdf(self) -> str:
        """Return the sysfs style ``dddd:bb:dd.f`` name."""
        return f"{self.domain:04x}:{self.bus:02x}:{self.device:02x}.{self.function:x}"

    @classmethod
    def parse(cls, text: str) -> PciDevice:
        """Parse ``[domain:]bus:device.function`` in hex."""
        match = BDF.match(text.strip())
        if match is None:
            msg = f"not a PCI address: {text!r}"
            raise ValueError(msg)
        return cls(
            domain=int(match.group("domain") or "0", 16),
            bus=int(match.group("bus"), 16),
            device=int(match.group("device"), 16),
            function=int(match.group("function"), 16),
        )


def build_host_address(host: str, port: int | None = None, scheme: str = "http") -> str:
    """Return ``scheme://host[:port]``, leaving an existing scheme in place."""
    stripped = host.strip().rstrip("/")
    if not stripped:
        msg = "host must not be empty"
        raise ValueError(msg)
    if "://" not in stripped:
        stripped = f"{scheme}://{stripped}"
    if port is not None:
        stripped = f"{stripped}:{port}"
    return stripped


class HttpAgent(PageFetchPort):
    """Client for the agent's ``/devmem`` and ``/pci`` endpoints."""

    def __init__(
        self, timeout: float = DEFAULT_TIMEOUT, session: HTTPSession | None = None,
    ) -> None:
        """Keep one pooled session for every request made by the viewer."""
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _get(self, url: str, params: dict[str, int] | None = None) -> requests.Response:
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            msg = f"request to {url} failed: {exc}"
            raise TransportFailure(msg) from exc
        if resp.status_code != 200:
            msg = f"{url} answered HTTP {resp.status_code}"
            raise TransportFailure(msg, status=resp.status_code)
        return resp

    def fetch(self, host: str, offset: int, length: int) -> bytes:
        """Read ``length`` bytes of physical memory at ``offset``."""
        resp = self._get(f"{host}/devmem", {"offset": int(offset), "length": int(length)})
        data = resp.content
        if len(data) != length:
            raise ShortRead(length, len(data))
        logger.debug("Read %d bytes at 0x%X from %s", length, offset, host)
        return data

    def list_pci_devices(self, host: str) -> list[PciDevice]:
        """Return the PCI functions the agent enumerates."""
        resp = self._get(f"{host}/pci/devices")
        try:
            entries = resp.json()
            return [
                PciDevice(
                    domain=int(entry["domain"]),
                    bus=int(entry["bus"]),
                    device=int(entry["device"]),
                    function=int(entry["function"]),
                    description=str(entry.get("description", "")),
                )
                for entry in entries
            ]
        except (ValueError, TypeError, KeyError) as exc:
            msg = f"malformed PCI device list from {host}: {exc}"
            raise TransportFailure(msg) from exc

    def read_pci_config(self, host: str, device: PciDevice) -> bytes:
        """Return the configuration space of ``device``."""
        resp = self._get(
            f"{host}/pci/device/config",
            {
                "domain": device.domain,
                "bus": device.bus,
                "device": device.device,
                "function": device.function,
            },
        )
        return resp.content
