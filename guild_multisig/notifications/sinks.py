"""
Notification sinks — console, webhook, chat and email delivery.

Every sink implements ``deliver(event) -> bool`` and reports failure by
returning False instead of raising. Timeouts are enforced inside each sink
(HTTP sinks through httpx, email through the SMTP socket timeout); the
fanout never waits on a sink's behalf.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, TextIO

import httpx
from rich.console import Console

from guild_multisig.config import NotificationSettings
from guild_multisig.core.schema import Urgency
from guild_multisig.notifications.events import EventKind, NotificationEvent, webhook_payload

logger = logging.getLogger(__name__)


class NotificationSink(ABC):
    """A delivery channel for notification events."""

    name: str = "sink"

    @abstractmethod
    async def deliver(self, event: NotificationEvent) -> bool:
        """Deliver ``event``; True on success."""

    async def close(self) -> None:
        return None


# ════════════════════════════════════════════════════════════════
# Console
# ════════════════════════════════════════════════════════════════


class ConsoleSink(NotificationSink):
    """Prints a framed multi-line message through rich."""

    name = "console"

    def __init__(self, stream: TextIO | None = None) -> None:
        self.console = Console(file=stream or sys.stdout, highlight=False, soft_wrap=True)

    async def deliver(self, event: NotificationEvent) -> bool:
        style = "bold red" if event.urgency == Urgency.EMERGENCY else "bold blue"
        try:
            self.console.rule(f"[{style}]📢 {event.kind.value.replace('_', ' ').upper()}")
            self.console.print(event.body, markup=False)
            self.console.rule(style="dim")
        except (ValueError, OSError) as exc:
            logger.warning("Console sink cannot write: %s", exc)
            return False
        return True


# ════════════════════════════════════════════════════════════════
# HTTP sinks
# ════════════════════════════════════════════════════════════════


@dataclass
class RetryConfig:
    """Retry policy for HTTP sinks."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay after the ``attempt``-th failed try (0-based)."""
        return min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class HttpSink(NotificationSink):
    """Shared POST-with-retry plumbing for webhook style sinks."""

    def __init__(
        self,
        url: str,
        retry: RetryConfig | None = None,
        timeout_ms: int = 5000,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self.retry = retry or RetryConfig()
        self.timeout = timeout_ms / 1000
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client
        self._sleep = sleep

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(headers=self._headers, timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _post(self, payload: dict[str, Any]) -> bool:
        client = await self._ensure_client()
        for attempt in range(self.retry.max_attempts):
            try:
                resp = await client.post(self.url, json=payload, timeout=self.timeout)
            except httpx.TransportError as exc:
                logger.warning(
                    "%s delivery attempt %d/%d failed: %s",
                    self.name, attempt + 1, self.retry.max_attempts, exc,
                )
            else:
                if resp.status_code < 400:
                    return True
                if not _is_transient(resp.status_code):
                    logger.warning(
                        "%s delivery rejected with HTTP %d; not retrying",
                        self.name, resp.status_code,
                    )
                    return False
                logger.warning(
                    "%s delivery attempt %d/%d got HTTP %d",
                    self.name, attempt + 1, self.retry.max_attempts, resp.status_code,
                )
            if attempt + 1 < self.retry.max_attempts:
                await self._sleep(self.retry.get_delay(attempt))
        logger.error("%s delivery to %s gave up after %d attempts", self.name, self.url, self.retry.max_attempts)
        return False


class WebhookSink(HttpSink):
    """POSTs ``{event, timestamp, groupId, proposalId?, urgency?, body}``."""

    name = "webhook"

    async def deliver(self, event: NotificationEvent) -> bool:
        return await self._post(webhook_payload(event))


CHAT_EMOJI = {
    EventKind.NEW_PROPOSAL: ":memo:",
    EventKind.APPROVAL: ":white_check_mark:",
    EventKind.EXECUTED: ":rocket:",
    EventKind.URGENT_PROPOSAL: ":rotating_light:",
    EventKind.READY_FOR_EXECUTION: ":rocket:",
    EventKind.DAILY_SUMMARY: ":bar_chart:",
}

CHAT_COLORS = {
    EventKind.NEW_PROPOSAL: "#36a64f",
    EventKind.APPROVAL: "#36a64f",
    EventKind.EXECUTED: "#ff9500",
    EventKind.URGENT_PROPOSAL: "#ff0000",
    EventKind.READY_FOR_EXECUTION: "#ff9500",
    EventKind.DAILY_SUMMARY: "#439fe0",
}


def chat_color(event: NotificationEvent) -> str:
    if event.urgency == Urgency.EMERGENCY:
        return "danger"
    if event.urgency == Urgency.HIGH:
        return "warning"
    return CHAT_COLORS.get(event.kind, "#439fe0")


def chat_message(event: NotificationEvent, username: str = "Multisig Bot") -> dict[str, Any]:
    emoji = CHAT_EMOJI.get(event.kind, ":gear:")
    return {
        "text": f"{emoji} {event.title}",
        "username": username,
        "icon_emoji": ":robot_face:",
        "attachments": [
            {
                "color": chat_color(event),
                "title": event.title,
                "text": event.body,
                "footer": f"Multisig: {event.group_name}",
                "ts": int(event.timestamp.timestamp()),
            }
        ],
    }


class ChatSink(HttpSink):
    """Chat webhook (Slack-compatible attachments)."""

    name = "chat"

    def __init__(self, url: str, username: str = "Multisig Bot", **kwargs: Any) -> None:
        super().__init__(url, **kwargs)
        self.username = username

    async def deliver(self, event: NotificationEvent) -> bool:
        return await self._post(chat_message(event, self.username))


# ════════════════════════════════════════════════════════════════
# Email
# ════════════════════════════════════════════════════════════════


class EmailSink(NotificationSink):
    """Best-effort SMTP delivery, run in a worker thread."""

    name = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        sender: str,
        recipients: list[str],
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout_ms: int = 5000,
        send: Callable[[EmailMessage], None] | None = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout_ms / 1000
        self._send = send or self._send_smtp

    def build_message(self, event: NotificationEvent) -> EmailMessage:
        msg = EmailMessage()
        severity = (event.urgency or Urgency.NORMAL).value.upper()
        msg["Subject"] = f"[{severity}] {event.group_name}: {event.title}"
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        msg.set_content(event.body)
        return msg

    def _send_smtp(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def deliver(self, event: NotificationEvent) -> bool:
        if not self.recipients:
            return False
        msg = self.build_message(event)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Email delivery failed: %s", exc)
            return False
        return True


def build_sinks(config: NotificationSettings) -> list[NotificationSink]:
    """Sinks enabled by the notification settings, in a fixed order."""
    sinks: list[NotificationSink] = []
    if config.console.enabled:
        sinks.append(ConsoleSink())
    if config.webhook.enabled and config.webhook.url:
        sinks.append(
            WebhookSink(
                config.webhook.url,
                retry=RetryConfig(max_attempts=config.webhook.retries),
                timeout_ms=config.webhook.timeout_ms,
            )
        )
    if config.chat.enabled and config.chat.endpoint:
        sinks.append(
            ChatSink(
                config.chat.endpoint,
                username=config.chat.username,
                timeout_ms=config.chat.timeout_ms,
            )
        )
    if config.email.enabled and config.email.smtp_host:
        sinks.append(
            EmailSink(
                smtp_host=config.email.smtp_host,
                smtp_port=config.email.smtp_port,
                sender=config.email.sender,
                recipients=list(config.email.recipients),
                username=config.email.username,
                password=config.email.password,
                use_tls=config.email.use_tls,
                timeout_ms=config.email.timeout_ms,
            )
        )
    return sinks
