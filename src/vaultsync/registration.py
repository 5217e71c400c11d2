"""
Forwarding-sink registration on the source Vault.

The sink is a ``socket`` audit device named after the engine's id,
pointing at the address where the audit listener can be reached.
"""

from __future__ import annotations

import logging

from .client import VaultError, VaultNotFoundError
from .session import StoreSession

logger = logging.getLogger("vaultsync.registration")

DEVICE_TYPE = "socket"
DEVICE_DESCRIPTION = "vaultsync change feed"


class RegistrationManager:
    """Registers and removes this engine's audit device on the source.

    Args:
        source: Session for the source store.
        device_id: Audit device path (the engine's identity).
    """

    def __init__(self, source: StoreSession, device_id: str):
        self.source = source
        self.device_id = device_id.strip("/")

    def exists(self, device_id: str = "") -> bool:
        """Check whether an audit device is enabled under ``device_id``.

        Raises:
            VaultError: If the device list cannot be read.
        """
        key = (device_id or self.device_id).strip("/") + "/"
        return key in self.source.list_audit_devices()

    def deregister(self, device_id: str = "") -> bool:
        """Disable the audit device. An absent device counts as success.

        Never raises; failures are logged and reported as False.
        """
        device_id = (device_id or self.device_id).strip("/")
        try:
            self.source.disable_audit_device(device_id)
        except VaultNotFoundError:
            pass
        except VaultError as exc:
            logger.warning("Failed to remove audit device %s: %s", device_id, exc)
            return False
        logger.info("Audit device %s removed", device_id)
        return True

    def register(self, callback_address: str, device_id: str = "") -> None:
        """Enable a socket audit device streaming to ``callback_address``.

        Any device already registered under the same id is replaced.

        Raises:
            VaultError: If the device cannot be enabled.
        """
        device_id = (device_id or self.device_id).strip("/")
        if self.exists(device_id):
            self.source.disable_audit_device(device_id)
        self.source.enable_audit_device(
            device_id,
            DEVICE_TYPE,
            {"address": callback_address, "socket_type": "tcp", "format": "json"},
            description=DEVICE_DESCRIPTION,
        )
        logger.info("Audit device %s added, streaming to %s", device_id, callback_address)

    def shutdown(self) -> bool:
        return self.deregister()
