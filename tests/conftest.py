import os

# config is read at import time
os.environ["QR_SECRET_KEY"] = "test-qr-secret"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["AUTH_SECRET"] = "test-auth-secret"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["CASHFREE_APP_ID"] = "cf-app"
os.environ["CASHFREE_SECRET_KEY"] = "cf-secret"
os.environ["CASHFREE_WEBHOOK_SECRET"] = "cf-webhook-secret"
os.environ["RESEND_API_KEY"] = ""

from typing import List, Optional  # noqa: E402
import base64  # noqa: E402
import hashlib  # noqa: E402
import hmac  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402

from takshashila.cashfree import (  # noqa: E402
    PaymentGateway, verify_webhook_signature,
)
from takshashila.errors import GatewayError, NotificationFailed  # noqa: E402
from takshashila.infra.sql import make_async_engine  # noqa: E402
from takshashila.model.docstore import new_store  # noqa: E402
from takshashila.model.docstore._sql import create_schema  # noqa: E402
from takshashila.model.records import INDEXES, Records  # noqa: E402
from takshashila.notify import Mailer, Notifier  # noqa: E402
from takshashila.reconcile import Reconciler  # noqa: E402
from takshashila.tokens import QRSigner  # noqa: E402

WEBHOOK_SECRET = "cf-webhook-secret"


def sign_webhook(timestamp: str, body: bytes,
                 secret: str = WEBHOOK_SECRET) -> str:
    mac = hmac.new(secret.encode(), timestamp.encode() + body,
                   hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


class FakeGateway(PaymentGateway):
    def __init__(self) -> None:
        self.order_status = "PAID"
        self.payments: List[dict] = [{"payment_status": "SUCCESS"}]
        self.fail: Optional[GatewayError] = None
        self.created: List[tuple] = []
        self.status_calls = 0
        self.payments_calls = 0

    async def create_order(self, order_id, amount, currency, customer):
        if self.fail:
            raise self.fail
        self.created.append((order_id, amount, currency, customer))
        return {"gateway_order_id": order_id,
                "session_id": f"session_{order_id}"}

    async def get_order_status(self, order_id):
        self.status_calls += 1
        if self.fail:
            raise self.fail
        return self.order_status

    async def get_order_payments(self, order_id):
        self.payments_calls += 1
        if self.fail:
            raise self.fail
        return list(self.payments)

    def verify_webhook(self, timestamp, raw_body, signature):
        return verify_webhook_signature(timestamp, raw_body, signature,
                                        WEBHOOK_SECRET)


class FakeMailer(Mailer):
    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.fail = False

    async def send(self, to, subject, html, attachments=None):
        if self.fail:
            raise NotificationFailed("mail service down")
        self.sent.append({"to": to, "subject": subject, "html": html,
                          "attachments": attachments or []})


@pytest.fixture(params=["redis", "sql"])
async def docs(request, tmp_path):
    if request.param == "redis":
        r = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(),
                                     decode_responses=True)
        yield new_store(r=r, indexes=INDEXES, backend="redis")
        await r.aclose()
    else:
        engine, SessionAsync, gated = make_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'docs.db'}"
        )
        async with engine.begin() as conn:
            await create_schema(conn)
        yield new_store(sessions=SessionAsync, gated=gated, indexes=INDEXES,
                        backend="sql")
        await engine.dispose()


@pytest.fixture
def records(docs):
    return Records(docs)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def signer():
    return QRSigner("test-qr-secret")


@pytest.fixture
def reconciler(records, gateway, signer, mailer):
    return Reconciler(records=records, gateway=gateway, signer=signer,
                      notifier=Notifier(mailer))


@pytest.fixture
def seed_payment(records):
    async def _seed(order_id: str, user_id: str = "user_1",
                    pass_type: str = "day_pass", amount: int = 500,
                    team_id: Optional[str] = None,
                    email: Optional[str] = "asha@example.com") -> None:
        await records.users.upsert(user_id, {
            "name": "Asha", "email": email, "college": "CIT",
            "phone": "+919876543210",
        })
        await records.payments.create(order_id, {
            "user_id": user_id,
            "amount": amount,
            "pass_type": pass_type,
            "team_id": team_id,
            "team_member_count": None,
            "customer_details": {"name": "Asha", "email": email or "",
                                 "phone": "+919876543210"},
        })
    return _seed


@pytest.fixture
def seed_team(records):
    async def _seed(team_id: str, order_id: str, leader_id: str = "user_1",
                    names=("Asha", "Ravi", "Meena")) -> None:
        await records.teams.create(team_id, {
            "team_name": "Circuit Breakers",
            "leader_id": leader_id,
            "order_id": order_id,
            "members": [
                {
                    "member_id": leader_id if i == 0 else f"mem_{i}",
                    "name": name,
                    "phone": "+91987654321%d" % i,
                    "email": "",
                    "is_leader": i == 0,
                    "attendance": {"checked_in": False,
                                   "check_in_time": None,
                                   "checked_in_by": None},
                }
                for i, name in enumerate(names)
            ],
        })
    return _seed
