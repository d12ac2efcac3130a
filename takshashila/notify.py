from abc import ABC, abstractmethod
from typing import List, Optional, TypedDict
import base64
import logging

import httpx

from .errors import NotificationFailed
from .model.records import Pass, PaymentRecord, UserProfile
from .rendering import pass_pdf, render_confirmation

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class Attachment(TypedDict):
    filename: str
    content: bytes


# ----------------------------
# Mail transport
# ----------------------------
class Mailer(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str,
                   attachments: Optional[List[Attachment]] = None) -> None:
        """Raises NotificationFailed when the message was not accepted."""


class ResendMailer(Mailer):
    def __init__(self, http: httpx.AsyncClient, api_key: str,
                 sender: str) -> None:
        self.http = http
        self.api_key = api_key
        self.sender = sender

    async def send(self, to: str, subject: str, html: str,
                   attachments: Optional[List[Attachment]] = None) -> None:
        body = {"from": self.sender, "to": [to], "subject": subject,
                "html": html}
        if attachments:
            body["attachments"] = [
                {"filename": a["filename"],
                 "content": base64.b64encode(a["content"]).decode()}
                for a in attachments
            ]
        try:
            r = await self.http.post(
                RESEND_URL, json=body,
                headers={"authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise NotificationFailed(f"mail transport error: {e}") from e
        if r.status_code // 100 != 2:
            raise NotificationFailed(
                f"resend returned {r.status_code}: {r.text}"
            )


class LogMailer(Mailer):
    # used when RESEND_API_KEY is not configured
    async def send(self, to: str, subject: str, html: str,
                   attachments: Optional[List[Attachment]] = None) -> None:
        logger.warning("mail disabled; dropping %r to %s (%d attachments)",
                       subject, to, len(attachments or []))


# ----------------------------
# Pass confirmation
# ----------------------------
class Notifier:
    """Best effort: nothing in here may fail the issuance it reports on."""

    def __init__(self, mailer: Mailer) -> None:
        self.mailer = mailer

    async def send_pass_confirmation(
        self, user: Optional[UserProfile], payment: PaymentRecord,
        pass_id: str, pass_doc: Pass, qr_payload: str,
    ) -> bool:
        email = (user or {}).get("email")
        if not email:
            logger.warning("no email on file for user %s; skipping pass %s",
                           payment.get("user_id"), pass_id)
            return False

        snapshot = pass_doc.get("team_snapshot") or {}
        try:
            subject, html = render_confirmation(
                name=user.get("name") or "there",
                amount=payment["amount"],
                pass_type=payment["pass_type"],
                pass_id=pass_id,
                college=user.get("college") or "-",
                phone=user.get("phone") or "-",
                qr_code=pass_doc.get("qr_code", ""),
                team_name=snapshot.get("team_name"),
                total_members=snapshot.get("total_members"),
            )
        except Exception:
            logger.exception("could not render confirmation for %s", pass_id)
            return False

        attachments: Optional[List[Attachment]] = None
        try:
            pdf = pass_pdf(
                qr_payload=qr_payload,
                pass_type=payment["pass_type"],
                amount=payment["amount"],
                user_name=user.get("name") or "User",
                email=email,
                phone=user.get("phone") or "-",
                college=user.get("college") or "-",
                team_name=snapshot.get("team_name"),
                members=snapshot.get("members") or (),
            )
            attachments = [{
                "filename": f"takshashila-pass-{payment['pass_type']}.pdf",
                "content": pdf,
            }]
        except Exception:
            logger.exception("PDF generation failed for %s; "
                             "sending without attachment", pass_id)

        try:
            await self.mailer.send(email, subject, html, attachments)
        except NotificationFailed:
            logger.exception("confirmation mail for %s not sent", pass_id)
            return False
        return True
