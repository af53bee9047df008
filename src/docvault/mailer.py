import asyncio
import base64
from dataclasses import dataclass
from typing import Optional

import aiohttp
from loguru import logger

from docvault.errors import EmailError

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


@dataclass(frozen=True)
class Attachment:
    content: bytes
    filename: str

    def to_payload(self) -> dict:
        return {
            "content": base64.b64encode(self.content).decode("ascii"),
            "name": self.filename,
        }


@dataclass(frozen=True)
class Sender:
    email: str
    name: Optional[str] = None


class EmailService:
    def __init__(
        self,
        api_key: Optional[str],
        endpoint_url: str = BREVO_SEND_URL,
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self.endpoint_url = endpoint_url
        self.timeout = timeout

    def build_message(
        self,
        to: str,
        sender: Sender,
        subject: str,
        body_text: str,
        attachment: Optional[Attachment] = None,
    ) -> dict:
        message = {
            "to": [{"email": to}],
            "sender": {"email": sender.email, "name": sender.name or sender.email},
            "subject": subject,
            "textContent": body_text,
            "htmlContent": body_text.replace("\n", "<br>"),
        }
        if attachment is not None:
            message["attachment"] = [attachment.to_payload()]
        return message

    async def send(
        self,
        to: str,
        sender: Sender,
        subject: str,
        body_text: str,
        attachment: Optional[Attachment] = None,
    ) -> dict:
        if not self._api_key:
            raise EmailError("Email API key is not configured")

        message = self.build_message(to, sender, subject, body_text, attachment)
        headers = {"api-key": self._api_key, "accept": "application/json"}
        logger.info(
            f"Sending email to {to} (attachment: {attachment.filename if attachment else 'none'})"
        )

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.endpoint_url,
                    json=message,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    status = response.status
                    text = await response.text()
        except aiohttp.ClientError as e:
            raise EmailError(f"Email service unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise EmailError(f"Email service timed out after {self.timeout}s") from e

        if not 200 <= status < 300:
            raise EmailError(f"Email service returned HTTP {status}: {text[:200]}")

        logger.info(f"Email sent to {to}")
        return {"status": status, "body": text}
