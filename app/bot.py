from __future__ import annotations

import base64
import logging
import re
from io import BytesIO

import httpx
import qrcode
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import MappingError
from app.service import create_with_random_path, utcnow

logger = logging.getLogger(__name__)

TG_API_BASE = "https://api.telegram.org/bot"
URL_PATTERN = re.compile(r"https?://\S+")

HELP_TEXT = (
    "Send a message containing a link (for example https://example.com) "
    "and I will reply with a short link and its QR code.\n"
    "In groups, mention me together with the link."
)


def qr_png(data: str) -> bytes:
    img = qrcode.make(data)
    buffer = BytesIO()
    img.save(buffer)
    return buffer.getvalue()


def qr_data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def send_message(client: httpx.Client, chat_id: int, text: str, reply_to: int | None = None) -> None:
    payload = {"chat_id": chat_id, "text": text}
    if reply_to:
        payload["reply_to_message_id"] = reply_to
    resp = client.post(f"{TG_API_BASE}{settings.tg_bot_token}/sendMessage", json=payload)
    if resp.status_code >= 400:
        logger.warning("sendMessage failed: HTTP %s %s", resp.status_code, resp.text[:200])


def send_photo(
    client: httpx.Client,
    chat_id: int,
    photo: bytes,
    caption: str,
    reply_to: int | None = None,
) -> None:
    data = {"chat_id": str(chat_id), "caption": caption}
    if reply_to:
        data["reply_to_message_id"] = str(reply_to)
    resp = client.post(
        f"{TG_API_BASE}{settings.tg_bot_token}/sendPhoto",
        data=data,
        files={"photo": ("qr.png", photo, "image/png")},
    )
    if resp.status_code >= 400:
        logger.warning("sendPhoto failed: HTTP %s %s", resp.status_code, resp.text[:200])


def handle_update(db: Session, update: dict, client: httpx.Client) -> None:
    """
    Turns a Telegram message carrying a link into a never-expiring mapping
    under a random path, and replies with the short URL and its QR code.
    """
    message = update.get("message")
    if not message:
        return

    chat_id = message["chat"]["id"]
    text = message.get("text") or message.get("caption") or ""
    reply_to = message.get("message_id")

    if text.startswith("/"):
        if text in ("/start", "/help"):
            send_message(client, chat_id, HELP_TEXT, reply_to)
        else:
            send_message(client, chat_id, "Unknown command. Send a link or use /help.", reply_to)
        return

    if settings.tg_admin_id and str(chat_id) != settings.tg_admin_id:
        send_message(client, chat_id, "You are not allowed to use this bot.", reply_to)
        return

    match = URL_PATTERN.search(text)
    if not match:
        send_message(client, chat_id, "Please send a message containing a link.", reply_to)
        return

    target = match.group(0)
    png = qr_png(target)
    try:
        row = create_with_random_path(
            db,
            target,
            name=f"TG-{utcnow().date().isoformat()}",
            qr_code_data=qr_data_url(png),
        )
    except MappingError as e:
        send_message(client, chat_id, f"Failed to create short link: {e.message}", reply_to)
        return

    short_url = f"{settings.base_url.rstrip('/')}/{row.path}"
    # The mapping is committed; a failed reply must not trigger a redelivery.
    try:
        send_photo(client, chat_id, png, f"Short link created:\n{short_url}", reply_to)
    except httpx.HTTPError as e:
        logger.warning("reply for %s failed: %s", row.path, e)
