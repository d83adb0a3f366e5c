"""
mailer.py

Brevo transactional e-mail adapter plus the recipient grouping used by the
notification jobs. Each send either succeeds or raises MailerError; callers
record the failure and move on. Sends are never retried within a run.
"""
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple, TypeVar

import httpx

from releasetracker.errors import MailerError
from releasetracker.schemas import MovieDateUpdate, MovieSummary, UserContact
from releasetracker.services import email_templates
from releasetracker.services.email_templates import EmailTemplates

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"

T = TypeVar("T")


def group_by_recipient(items: Iterable[Tuple[UserContact, T]]) -> Dict[str, Tuple[UserContact, List[T]]]:
    """Group (user, item) pairs by e-mail address, keeping first-seen order."""
    grouped: Dict[str, Tuple[UserContact, List[T]]] = OrderedDict()
    for user, item in items:
        if user.email not in grouped:
            grouped[user.email] = (user, [])
        grouped[user.email][1].append(item)
    return grouped


class BrevoMailer:
    def __init__(
        self,
        api_key: str,
        sender_email: str = "noreply@moviereleasetracker.com",
        sender_name: str = "Movie Release Tracker",
        app_url: str = "http://localhost:3000",
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10,
    ):
        if not api_key:
            raise MailerError("BREVO_API_KEY not configured")
        self.api_key = api_key
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.templates = EmailTemplates(app_url)
        self.timeout = timeout
        self._client = http_client

    async def _send(self, to_email: str, to_name: Optional[str], subject: str, html: str) -> None:
        recipient = {"email": to_email}
        if to_name:
            recipient["name"] = to_name
        payload = {
            "sender": {"name": self.sender_name, "email": self.sender_email},
            "to": [recipient],
            "subject": subject,
            "htmlContent": html,
        }
        headers = {"api-key": self.api_key, "accept": "application/json"}
        try:
            if self._client is not None:
                resp = await self._client.post(BREVO_SEND_URL, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(BREVO_SEND_URL, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"[Mailer] Brevo rejected email to {to_email}: {e.response.status_code} {e.response.text[:200]}")
            raise MailerError(
                f"Brevo API error: {e.response.status_code}", recipient=to_email, status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[Mailer] Failed to send email to {to_email}: {e}")
            raise MailerError(f"Email transport failed: {e}", recipient=to_email) from e
        logger.info(f"[Mailer] Sent '{subject}' to {to_email}")

    async def send_date_discovered(self, user: UserContact, update: MovieDateUpdate) -> None:
        await self._send(
            user.email,
            user.name,
            email_templates.date_discovered_subject(update.movie.title),
            self.templates.date_discovered(user, update),
        )

    async def send_batch_date_discovered(self, user: UserContact, updates: List[MovieDateUpdate]) -> None:
        await self._send(
            user.email,
            user.name,
            email_templates.batch_date_discovered_subject(len(updates)),
            self.templates.batch_date_discovered(user, updates),
        )

    async def send_release(self, user: UserContact, movie: MovieSummary, theatrical: bool) -> None:
        await self._send(
            user.email,
            user.name,
            email_templates.release_subject(movie.title, theatrical),
            self.templates.release(user, movie, theatrical),
        )

    async def send_batch_release(self, user: UserContact, theatrical: List[MovieSummary], streaming: List[MovieSummary]) -> None:
        await self._send(
            user.email,
            user.name,
            email_templates.batch_release_subject(len(theatrical) + len(streaming)),
            self.templates.batch_release(user, theatrical, streaming),
        )

    async def send_test(self, to_email: str) -> None:
        await self._send(to_email, None, "Test Email - Movie Release Tracker", self.templates.test())

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
