"""Device identity for sync writers.

The device id must be stable across restarts so one machine always
reconciles as the same writer.  ``HostDeviceIdentity`` hashes the
hostname, the non-loopback hardware (MAC) addresses and the platform.
Tests and pinned deployments use ``StaticDeviceIdentity``.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import socket
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

_NULL_MAC = "00:00:00:00:00:00"


class DeviceIdentityProvider(Protocol):
    def device_id(self) -> str:
        ...  # pragma: no cover

    def device_name(self) -> str:
        ...  # pragma: no cover

    def platform(self) -> str:
        ...  # pragma: no cover


def hardware_addresses() -> list[str]:
    """Sorted, de-duplicated MAC addresses of non-loopback interfaces."""
    macs: set[str] = set()
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as exc:
        logger.warning("Could not enumerate network interfaces: %s", exc)
        return []
    for name, addresses in interfaces.items():
        if name == "lo" or name.lower().startswith("loopback"):
            continue
        for addr in addresses:
            if addr.family != psutil.AF_LINK or not addr.address:
                continue
            mac = addr.address.lower().replace("-", ":")
            if mac != _NULL_MAC:
                macs.add(mac)
    return sorted(macs)


def derive_device_id(hostname: str, macs: list[str], system: str) -> str:
    """Deterministic 32-hex-char id from host identity parts."""
    material = "|".join([hostname, ",".join(sorted(macs)), system])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:32]


class HostDeviceIdentity:
    """Identity derived from this host.  Computed once per instance."""

    def __init__(self, name: str | None = None) -> None:
        self._hostname = socket.gethostname()
        self._platform = platform.system().lower() or "unknown"
        self._name = name or self._hostname
        self._device_id = derive_device_id(
            self._hostname, hardware_addresses(), self._platform
        )

    def device_id(self) -> str:
        return self._device_id

    def device_name(self) -> str:
        return self._name

    def platform(self) -> str:
        return self._platform


class StaticDeviceIdentity:
    """Fixed identity."""

    def __init__(
        self,
        device_id: str,
        name: str | None = None,
        platform_name: str = "test",
    ) -> None:
        self._device_id = device_id
        self._name = name or device_id
        self._platform = platform_name

    def device_id(self) -> str:
        return self._device_id

    def device_name(self) -> str:
        return self._name

    def platform(self) -> str:
        return self._platform
