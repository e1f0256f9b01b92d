"""Notification sinks - where fired reminders are actually shown.

The engine only calls `deliver(title, body, tag)`. Stock sinks double as the
permission platform: they remember the user's decision in the key-value store
and quietly decline to render until permission is granted.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Protocol

import httpx

from logger import logger
from . import config
from .permissions import Permission
from .store import KeyValueStore


class NotificationSink(Protocol):
    """Renders a notification to the user."""

    def deliver(self, title: str, body: str, tag: str) -> None: ...


class BaseSink(ABC):
    """Permission-aware sink.

    Args:
        kv: Store used to remember the permission decision (None = in memory)
        prompt: Asks the user once; returns True to allow, False to deny,
            None when nobody could be asked. No prompt = allow.
    """

    def __init__(
        self,
        kv: Optional[KeyValueStore] = None,
        prompt: Optional[Callable[[], Optional[bool]]] = None
    ):
        self.kv = kv
        self.prompt = prompt
        self._permission = Permission.DEFAULT

    @property
    def supported(self) -> bool:
        return True

    @property
    def permission(self) -> Permission:
        if self.kv is not None:
            stored = self.kv.get(config.PERMISSION_KEY)
            if stored is not None:
                try:
                    return Permission(stored)
                except ValueError:
                    logger.warning(f"Ignoring unknown stored permission '{stored}'")
        return self._permission

    def request(self) -> Permission:
        """Prompt the user and remember the answer.

        An undecided prompt leaves the permission at DEFAULT and stores
        nothing, so the next start asks again.
        """
        allowed = self.prompt() if self.prompt is not None else True
        if allowed is None:
            logger.info("Notification permission undecided, will ask again next start")
            return Permission.DEFAULT
        self._permission = Permission.GRANTED if allowed else Permission.DENIED
        if self.kv is not None:
            self.kv.set(config.PERMISSION_KEY, self._permission.value)
        return self._permission

    def deliver(self, title: str, body: str, tag: str) -> None:
        if not self.supported:
            logger.debug(f"Notification sink unsupported, dropping '{tag}'")
            return
        if self.permission != Permission.GRANTED:
            logger.debug(f"Notification permission not granted, dropping '{tag}'")
            return
        self._render(title, body, tag)

    @abstractmethod
    def _render(self, title: str, body: str, tag: str) -> None:
        """Actually show the notification."""
        pass


class LogSink(BaseSink):
    """Writes notifications to the application log."""

    def _render(self, title: str, body: str, tag: str) -> None:
        logger.info(f"[notification:{tag}] {title} - {body}")


class WebhookSink(BaseSink):
    """Posts notifications as JSON to a webhook (ntfy topic, chat webhook, ...)."""

    def __init__(
        self,
        url: str,
        kv: Optional[KeyValueStore] = None,
        prompt: Optional[Callable[[], Optional[bool]]] = None,
        timeout: float = 10
    ):
        super().__init__(kv=kv, prompt=prompt)
        self.url = url
        self.timeout = timeout

    @property
    def supported(self) -> bool:
        return bool(self.url)

    def _render(self, title: str, body: str, tag: str) -> None:
        response = httpx.post(
            self.url,
            json={"title": title, "body": body, "tag": tag},
            timeout=self.timeout
        )
        response.raise_for_status()
        logger.info(f"Sent notification '{tag}' to webhook")
