import base64
import json

import httpx
import pytest

from takshashila import notify
from takshashila.errors import NotificationFailed
from takshashila.notify import Notifier, ResendMailer

PAYMENT = {"user_id": "user_1", "amount": 750, "pass_type": "group_events"}
USER = {"name": "Asha", "email": "asha@example.com", "college": "CIT",
        "phone": "+919876543210"}
PASS = {
    "qr_code": "data:image/png;base64,AAAA",
    "team_snapshot": {
        "team_name": "Circuit Breakers",
        "total_members": 2,
        "members": [
            {"member_id": "user_1", "name": "Asha", "phone": "",
             "is_leader": True, "checked_in": False},
            {"member_id": "mem_1", "name": "Ravi", "phone": "",
             "is_leader": False, "checked_in": False},
        ],
    },
}


async def test_resend_mailer_posts_message():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "email_1"})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    mailer = ResendMailer(http, "re_key", "Passes <p@example.com>")
    await mailer.send("a@example.com", "Hi", "<p>hi</p>",
                      [{"filename": "pass.pdf", "content": b"%PDF-1.4"}])

    assert seen["url"] == notify.RESEND_URL
    assert seen["auth"] == "Bearer re_key"
    body = seen["body"]
    assert body["to"] == ["a@example.com"]
    assert body["from"] == "Passes <p@example.com>"
    att = body["attachments"][0]
    assert att["filename"] == "pass.pdf"
    assert base64.b64decode(att["content"]) == b"%PDF-1.4"


async def test_resend_mailer_rejection():
    http = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda req: httpx.Response(422, json={"message": "invalid from"})
    ))
    with pytest.raises(NotificationFailed):
        await ResendMailer(http, "k", "x@example.com").send(
            "a@example.com", "s", "h"
        )


async def test_group_confirmation(mailer, signer):
    qr = signer.qr_payload("pass_1", "user_1", "group_events")
    ok = await Notifier(mailer).send_pass_confirmation(
        USER, PAYMENT, "pass_1", PASS, qr
    )
    assert ok
    sent = mailer.sent[0]
    assert "Circuit Breakers" in sent["html"]
    assert "Group Events" in sent["subject"]
    assert sent["attachments"][0]["filename"] == \
        "takshashila-pass-group_events.pdf"


async def test_pdf_failure_sends_without_attachment(mailer, signer,
                                                    monkeypatch):
    def broken(**kw):
        raise RuntimeError("font missing")

    monkeypatch.setattr(notify, "pass_pdf", broken)
    ok = await Notifier(mailer).send_pass_confirmation(
        USER, PAYMENT, "pass_1", PASS, "payload"
    )
    assert ok
    assert mailer.sent[0]["attachments"] == []


async def test_no_user_profile(mailer):
    ok = await Notifier(mailer).send_pass_confirmation(
        None, PAYMENT, "pass_1", PASS, "payload"
    )
    assert not ok
    assert mailer.sent == []


async def test_mailer_failure_is_reported(mailer):
    mailer.fail = True
    ok = await Notifier(mailer).send_pass_confirmation(
        USER, PAYMENT, "pass_1", PASS, "payload"
    )
    assert not ok
