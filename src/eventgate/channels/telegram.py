"""Telegram approval channel.

Presents proposals as Markdown messages with an inline keyboard
(``✅ Create`` / ``❌ Skip``), turns ``callback_query`` updates into router
calls, answers each tap with ``answerCallbackQuery``, and edits the original
message into the outcome.

Supports polling mode (dev, no public URL needed) and webhook mode
(production, updates arrive at ``POST /api/telegram/webhook`` and must carry
the secret named by ``webhook_secret_env``). Configured
via [eventgate.telegram] in ``eventgate.toml``; the bot token is read from
the environment variable named by ``token_env``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

import httpx
from pydantic import BaseModel, ConfigDict, field_validator

from eventgate.proposals.channel import ApprovalChannel, build_callback_data, parse_callback_data
from eventgate.proposals.models import ApprovalAction, ApprovalMessageHandle, EventProposal

if TYPE_CHECKING:
    from eventgate.proposals.router import CallbackOutcome, CallbackRouter

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}"
CHAT_ID_PREFIX = "tg:"
_ENV_VAR_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MARKDOWN_SPECIALS = re.compile(r"([_*`\[])")


class TelegramApiError(RuntimeError):
    """Telegram answered ``ok: false``."""


class TelegramConfig(BaseModel):
    """Configuration from [eventgate.telegram]."""

    mode: str = "polling"  # "polling" or "webhook"
    webhook_url: str | None = None
    webhook_secret_env: str | None = None
    poll_interval: float = 1.0
    token_env: str = "EVENTGATE_TELEGRAM_TOKEN"
    request_timeout: float = 30.0
    model_config = ConfigDict(extra="forbid")

    @field_validator("mode")
    @classmethod
    def _validate_mode(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ("polling", "webhook"):
            raise ValueError("eventgate.telegram.mode must be 'polling' or 'webhook'")
        return normalized

    @field_validator("token_env", "webhook_secret_env")
    @classmethod
    def _validate_env_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        name = value.strip()
        if not _ENV_VAR_NAME_RE.fullmatch(name):
            raise ValueError(
                "eventgate.telegram env var names must use letters, numbers and underscores "
                "and cannot start with a number"
            )
        return name


def escape_markdown(text: str) -> str:
    """Escape characters that legacy Telegram Markdown treats as markup."""
    return _MARKDOWN_SPECIALS.sub(r"\\\1", text)


def _format_day(value: Any) -> str:
    return f"{value:%a} {value.day} {value:%b}"


def render_proposal_message(proposal: EventProposal, timezone: str) -> str:
    """Build the Markdown body of an approval message.

    Example::

        📅 *Lunch with Sam*
        Sat 18 Oct, 12:30 – 13:30
        Attendees: sam@example.com
        Location: Cafe

        Catch up about the trip
    """
    tz = ZoneInfo(timezone)
    start = proposal.start_at.astimezone(tz)
    end = proposal.end_at.astimezone(tz)
    if start.date() == end.date():
        when = f"{_format_day(start)}, {start:%H:%M} – {end:%H:%M}"
    else:
        when = f"{_format_day(start)}, {start:%H:%M} – {_format_day(end)}, {end:%H:%M}"

    lines = [f"📅 *{escape_markdown(proposal.title)}*", when]
    if proposal.attendees:
        lines.append(f"Attendees: {escape_markdown(', '.join(proposal.attendees))}")
    if proposal.location:
        lines.append(f"Location: {escape_markdown(proposal.location)}")
    text = "\n".join(lines)
    if proposal.description:
        text += f"\n\n{escape_markdown(proposal.description)}"
    return text


def approval_keyboard(proposal: EventProposal) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [
                {
                    "text": "✅ Create",
                    "callback_data": build_callback_data(ApprovalAction.APPROVE, proposal.id),
                },
                {
                    "text": "❌ Skip",
                    "callback_data": build_callback_data(ApprovalAction.REJECT, proposal.id),
                },
            ]
        ]
    }


def chat_id_from_conversation(conversation_id: str) -> str:
    """Strip the ``tg:`` routing prefix from a conversation id."""
    if conversation_id.startswith(CHAT_ID_PREFIX):
        return conversation_id[len(CHAT_ID_PREFIX) :]
    return conversation_id


def _extract_callback_handle(callback_query: dict[str, Any]) -> ApprovalMessageHandle | None:
    message = callback_query.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    message_id = message.get("message_id")
    if not isinstance(chat, dict) or chat.get("id") is None or message_id is None:
        return None
    return ApprovalMessageHandle(chat_id=str(chat["id"]), message_id=str(message_id))


class TelegramApprovalChannel(ApprovalChannel):
    """Telegram Bot API implementation of :class:`ApprovalChannel`."""

    def __init__(
        self,
        config: TelegramConfig | dict[str, Any] | None = None,
        *,
        timezone: str = "UTC",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = (
            config if isinstance(config, TelegramConfig) else TelegramConfig(**(config or {}))
        )
        self._timezone = timezone
        self._client = http_client
        self._owns_client = http_client is None
        self._router: CallbackRouter | None = None
        self._poll_task: asyncio.Task[None] | None = None
        self._last_update_id: int = 0

    @property
    def config(self) -> TelegramConfig:
        return self._config

    def set_router(self, router: CallbackRouter) -> None:
        self._router = router

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start polling or register the webhook based on config."""
        if self._config.mode == "webhook":
            if not self._config.webhook_url:
                raise RuntimeError("eventgate.telegram.webhook_url is required in webhook mode")
            if self.webhook_secret() is None:
                raise RuntimeError(
                    "eventgate.telegram.webhook_secret_env must name a set environment "
                    "variable in webhook mode"
                )
            await self._set_webhook(self._config.webhook_url)
        else:
            self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Cancel polling and close the HTTP client."""
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # ApprovalChannel
    # ------------------------------------------------------------------

    async def present(self, proposal: EventProposal) -> ApprovalMessageHandle | None:
        chat_id = chat_id_from_conversation(proposal.origin_conversation_id)
        try:
            result = await self._api_call(
                "sendMessage",
                {
                    "chat_id": chat_id,
                    "text": render_proposal_message(proposal, self._timezone),
                    "parse_mode": "Markdown",
                    "reply_markup": approval_keyboard(proposal),
                },
            )
        except (httpx.HTTPError, RuntimeError, ValueError):
            logger.exception(
                "Failed to send event proposal",
                extra={"proposal_id": str(proposal.id), "chat_id": chat_id},
            )
            return None

        message_id = result.get("message_id") if isinstance(result, dict) else None
        if message_id is None:
            logger.error(
                "Telegram sendMessage returned no message_id",
                extra={"proposal_id": str(proposal.id), "chat_id": chat_id},
            )
            return None
        return ApprovalMessageHandle(chat_id=chat_id, message_id=str(message_id))

    async def resolve(
        self,
        handle: ApprovalMessageHandle,
        outcome_text: str,
        *,
        retry_actions_for: EventProposal | None = None,
    ) -> bool:
        reply_markup = (
            approval_keyboard(retry_actions_for)
            if retry_actions_for is not None
            else {"inline_keyboard": []}
        )
        try:
            await self._api_call(
                "editMessageText",
                {
                    "chat_id": handle.chat_id,
                    "message_id": int(handle.message_id),
                    "text": outcome_text,
                    "reply_markup": reply_markup,
                },
            )
        except (httpx.HTTPError, RuntimeError, ValueError):
            logger.exception(
                "Failed to update approval message",
                extra={"chat_id": handle.chat_id, "message_id": handle.message_id},
            )
            return False
        return True

    async def acknowledge(self, callback_id: str, text: str) -> None:
        try:
            await self._api_call(
                "answerCallbackQuery",
                {"callback_query_id": callback_id, "text": text},
            )
        except (httpx.HTTPError, RuntimeError, ValueError):
            logger.exception(
                "Failed to answer callback query", extra={"callback_id": callback_id}
            )

    # ------------------------------------------------------------------
    # Inbound updates
    # ------------------------------------------------------------------

    async def process_update(self, update: dict[str, Any]) -> CallbackOutcome | None:
        """Route a ``callback_query`` update; every other update is ignored."""
        callback_query = update.get("callback_query")
        if not isinstance(callback_query, dict):
            return None

        parsed = parse_callback_data(callback_query.get("data"))
        if parsed is None:
            return None
        proposal_id, action = parsed

        if self._router is None:
            logger.warning(
                "Dropping approval callback: no router attached",
                extra={"proposal_id": str(proposal_id)},
            )
            return None

        outcome = await self._router.handle(
            proposal_id,
            action,
            message_handle=_extract_callback_handle(callback_query),
        )
        callback_id = callback_query.get("id")
        if callback_id is not None:
            await self.acknowledge(str(callback_id), outcome.ack_text)
        return outcome

    def webhook_secret(self) -> str | None:
        """Secret expected in ``X-Telegram-Bot-Api-Secret-Token``, if configured."""
        if not self._config.webhook_secret_env:
            return None
        return os.environ.get(self._config.webhook_secret_env) or None

    # ------------------------------------------------------------------
    # Bot API plumbing
    # ------------------------------------------------------------------

    def _get_bot_token(self) -> str:
        token = os.environ.get(self._config.token_env)
        if not token:
            raise RuntimeError(
                f"Missing Telegram bot token for eventgate.telegram: set {self._config.token_env}"
            )
        return token

    def _base_url(self) -> str:
        return TELEGRAM_API_BASE.format(token=self._get_bot_token())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.request_timeout)
        return self._client

    async def _api_call(self, method: str, payload: dict[str, Any]) -> Any:
        """POST a Bot API method and return its ``result``."""
        url = f"{self._base_url()}/{method}"
        resp = await self._get_client().post(url, json=payload)
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        if not data.get("ok", False):
            raise TelegramApiError(
                f"Telegram {method} failed: {data.get('description', 'unknown error')}"
            )
        return data.get("result")

    async def _set_webhook(self, url: str) -> None:
        payload: dict[str, Any] = {"url": url, "allowed_updates": ["callback_query"]}
        secret = self.webhook_secret()
        if secret:
            payload["secret_token"] = secret
        await self._api_call("setWebhook", payload)
        logger.info("Registered Telegram webhook", extra={"webhook_url": url})

    async def _get_updates(self) -> list[dict[str, Any]]:
        url = f"{self._base_url()}/getUpdates"
        params: dict[str, Any] = {
            "timeout": 0,
            "allowed_updates": json.dumps(["callback_query"]),
        }
        if self._last_update_id:
            params["offset"] = self._last_update_id + 1

        resp = await self._get_client().get(url, params=params)
        resp.raise_for_status()
        updates: list[dict[str, Any]] = resp.json().get("result", [])
        if updates:
            self._last_update_id = updates[-1]["update_id"]
        return updates

    async def _poll_loop(self) -> None:
        """Long-polling loop for dev mode."""
        while True:
            try:
                updates = await self._get_updates()
                for update in updates:
                    try:
                        await self.process_update(update)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception(
                            "Error handling Telegram update",
                            extra={"update_id": update.get("update_id")},
                        )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error polling Telegram updates")

            await asyncio.sleep(self._config.poll_interval)
