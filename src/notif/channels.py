"""
Delivery channels.

Each channel implements `send(owner_id, title, body, data)`:
returns True when handed off, raises DeliveryError otherwise.
"""
import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

from loguru import logger
from telegram import Bot
from telegram.error import TelegramError

from src.config import BOT_TOKEN, SMTP_PASSWORD, get_notification_config
from src.errors import DeliveryError
from src.notif.records import Channel
from src.notif.templates import template_email_body, template_email_subject, template_push


class DeliveryChannel(ABC):
    """Push / email / in-app surface. Fire-and-forget from the engine's side."""

    name: str = "channel"

    @abstractmethod
    async def send(self, owner_id: str, title: str, body: str, data: Dict[str, Any]) -> bool:
        ...


class TelegramChannel(DeliveryChannel):
    """Push delivery through a Telegram bot (HTML parse mode)."""

    name = Channel.PUSH.value

    def __init__(
        self,
        token: str,
        chat_ids: Optional[Dict[str, str]] = None,
        default_chat_id: Optional[str] = None,
        bot: Optional[Bot] = None,
    ):
        self.token = token
        self.chat_ids = {str(k): str(v) for k, v in (chat_ids or {}).items()}
        self.default_chat_id = str(default_chat_id) if default_chat_id else None
        self._bot = bot

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(self.token)
        return self._bot

    def chat_id_for(self, owner_id: str) -> Optional[str]:
        return self.chat_ids.get(owner_id, self.default_chat_id)

    async def send(self, owner_id: str, title: str, body: str, data: Dict[str, Any]) -> bool:
        chat_id = self.chat_id_for(owner_id)
        if not chat_id:
            raise DeliveryError(self.name, "no chat id configured", owner_id=owner_id)

        try:
            text = template_push(title, body, data, tz_name=data.get("timezone", "UTC"))
            await self.bot.send_message(chat_id=chat_id, text=text, parse_mode='HTML')
        except TelegramError as e:
            raise DeliveryError(self.name, str(e), owner_id=owner_id) from e
        except (KeyError, TypeError, ValueError) as e:
            raise DeliveryError(self.name, f"Could not build message: {e}", owner_id=owner_id) from e

        logger.debug(f"Push sent to {owner_id} (chat {chat_id})")
        return True


class EmailChannel(DeliveryChannel):
    """SMTP email delivery. smtplib is blocking, so it runs in a worker thread."""

    name = Channel.EMAIL.value

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_address: str,
        recipients: Optional[Dict[str, str]] = None,
        use_tls: bool = True,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address
        self.recipients = {str(k): v for k, v in (recipients or {}).items()}
        self.use_tls = use_tls

    def _create_message(self, to_address: str, title: str, body: str, data: Dict[str, Any]) -> MIMEText:
        tz_name = data.get("timezone", "UTC")
        message = MIMEText(template_email_body(title, body, data, tz_name=tz_name), "plain", "utf-8")
        message["Subject"] = template_email_subject(title, data)
        message["From"] = self.from_address
        message["To"] = to_address
        return message

    def _send_sync(self, message: MIMEText) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.smtp_user:
                server.login(self.smtp_user, self.smtp_password)
            server.send_message(message)

    async def send(self, owner_id: str, title: str, body: str, data: Dict[str, Any]) -> bool:
        to_address = self.recipients.get(owner_id)
        if not to_address:
            raise DeliveryError(self.name, "no email address configured", owner_id=owner_id)

        try:
            message = self._create_message(to_address, title, body, data)
            await asyncio.to_thread(self._send_sync, message)
        except smtplib.SMTPAuthenticationError as e:
            raise DeliveryError(self.name, f"Authentication failed: {e}", owner_id=owner_id) from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.name, f"SMTP error: {e}", owner_id=owner_id) from e
        except (KeyError, TypeError, ValueError) as e:
            raise DeliveryError(self.name, f"Could not build message: {e}", owner_id=owner_id) from e

        logger.debug(f"Email sent to {owner_id} <{to_address}>")
        return True


class LogChannel(DeliveryChannel):
    """Dry-run channel: logs instead of delivering."""

    def __init__(self, name: str = "log"):
        self.name = name

    async def send(self, owner_id: str, title: str, body: str, data: Dict[str, Any]) -> bool:
        logger.info(f"[dry-run] [{self.name}] {owner_id} -> {title} | {body}")
        return True


def build_channels(dry_run: bool = False) -> Dict[str, DeliveryChannel]:
    """
    Build the enabled channels from config, keyed by channel name.
    Without credentials (or with dry_run) a channel is replaced by a LogChannel.
    """
    config = get_notification_config()
    channels: Dict[str, DeliveryChannel] = {}

    push_cfg = config['channels']['push']
    if push_cfg.get('enabled', True):
        if dry_run or not BOT_TOKEN:
            if not dry_run:
                logger.warning("BOT_TOKEN not set - push notifications will be logged only")
            channels[Channel.PUSH.value] = LogChannel(Channel.PUSH.value)
        else:
            channels[Channel.PUSH.value] = TelegramChannel(
                token=BOT_TOKEN,
                chat_ids=push_cfg.get('chat_ids', {}),
                default_chat_id=push_cfg.get('default_chat_id'),
            )

    email_cfg = config['channels']['email']
    if email_cfg.get('enabled', False):
        if dry_run or not email_cfg.get('smtp_host'):
            if not dry_run:
                logger.warning("SMTP host not configured - emails will be logged only")
            channels[Channel.EMAIL.value] = LogChannel(Channel.EMAIL.value)
        else:
            channels[Channel.EMAIL.value] = EmailChannel(
                smtp_host=email_cfg['smtp_host'],
                smtp_port=int(email_cfg.get('smtp_port', 587)),
                smtp_user=email_cfg.get('username', ''),
                smtp_password=email_cfg.get('password') or SMTP_PASSWORD,
                from_address=email_cfg.get('from_address', ''),
                recipients=email_cfg.get('recipients', {}),
                use_tls=bool(email_cfg.get('use_tls', True)),
            )

    enabled: List[str] = sorted(channels)
    logger.info(f"Delivery channels: {', '.join(enabled) if enabled else 'none'}")
    return channels
