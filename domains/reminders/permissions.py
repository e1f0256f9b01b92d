"""Notification permission gate.

States:
- GRANTED: notifications may be shown, never re-prompt
- DENIED: user refused, never re-prompt (the platform owns this decision)
- DEFAULT: undetermined, prompt exactly once
"""

from enum import Enum
from typing import Protocol

from logger import logger


class Permission(Enum):
    """Notification permission states."""
    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class NotificationPlatform(Protocol):
    """Something that can show notifications and owns a permission decision."""

    @property
    def supported(self) -> bool: ...

    @property
    def permission(self) -> Permission: ...

    def request(self) -> Permission: ...


class PermissionGate:
    """Capability check for emitting notifications. Holds no state of its own."""

    def __init__(self, platform: NotificationPlatform | None):
        self.platform = platform

    def request_permission(self) -> bool:
        """Ask for permission to emit notifications.

        Returns:
            True if notifications are authorized
        """
        if self.platform is None or not self.platform.supported:
            logger.info("Notifications are not supported on this platform")
            return False

        state = self.platform.permission
        if state == Permission.GRANTED:
            return True
        if state == Permission.DENIED:
            logger.info("Notification permission previously denied, not prompting")
            return False

        try:
            outcome = self.platform.request()
        except Exception as e:
            logger.error(f"Notification permission prompt failed: {e}")
            return False

        logger.info(f"Notification permission: {outcome.value}")
        return outcome == Permission.GRANTED
