"""
Payment reconciliation and pass issuance.

Every entry point (gateway webhook, client verify, operator fixup) ends in
``Reconciler.settle``. They differ only in how "the gateway says this order
is paid" was established before calling it:

    webhook  signature checked by the HTTP adapter, event type
             PAYMENT_SUCCESS_WEBHOOK
    verify   confirm_via_payments(): some payment attempt is SUCCESS
    manual   confirm_via_order(): order_status is PAID

settle() then runs, strictly in this order:

    locate payment record -> advance status -> existing pass? -> issue pass
    -> team update -> notify

Issuing is a create-if-absent on the pass's payment_id, so any number of
concurrent or repeated settle() calls for one order end with exactly one
pass. Only the call that created the pass touches the team and sends mail.
Once the pass is stored the call succeeds, whatever happens afterwards.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Literal, Optional

from .cashfree import ORDER_PAID, PAYMENT_SUCCESS, PaymentGateway
from .errors import (
    PaymentNotSuccessful, PaymentRecordNotFound, TeamFetchFailed,
)
from .helpers import new_id, now_ts
from .infra.timings import timeit
from .model.records import (
    PASS_PAID, STATUS_SUCCESS, Pass, PaymentRecord, Records,
)
from .notify import Notifier
from .passtypes import is_group
from .rendering import qr_data_url
from .tokens import QRSigner

logger = logging.getLogger(__name__)

Source = Literal["webhook", "verify", "manual"]


@dataclass
class ReconcileResult:
    order_id: str
    pass_id: Optional[str] = None
    qr_code: Optional[str] = None
    # False when an earlier invocation already issued the pass
    created: bool = False
    team_attached: bool = False
    notified: bool = False
    user_id: Optional[str] = None
    pass_type: Optional[str] = None
    amount: Optional[int] = None
    steps: List[str] = field(default_factory=list)

    def step(self, msg: str) -> None:
        self.steps.append(msg)
        logger.info("[%s] %s", self.order_id, msg)


class Reconciler:
    def __init__(
        self, *, records: Records, gateway: PaymentGateway,
        signer: QRSigner, notifier: Notifier, qr_expiry_days: int = 30,
    ) -> None:
        self.records = records
        self.gateway = gateway
        self.signer = signer
        self.notifier = notifier
        self.qr_expiry_days = qr_expiry_days

    # ----------------------------
    # Establishing success
    # ----------------------------
    async def confirm_via_payments(self, order_id: str) -> str:
        """Client verify path. Any successful attempt counts: a customer may
        fail once and pay on retry within the same order."""
        async with timeit("gateway.get_order_payments"):
            payments = await self.gateway.get_order_payments(order_id)
        statuses = [p.get("payment_status") for p in payments]
        if PAYMENT_SUCCESS not in statuses:
            raise PaymentNotSuccessful(
                order_id, statuses[0] if statuses else None
            )
        return PAYMENT_SUCCESS

    async def confirm_via_order(self, order_id: str) -> str:
        """Operator path; the order status is the gateway's final word."""
        async with timeit("gateway.get_order_status"):
            status = await self.gateway.get_order_status(order_id)
        if status != ORDER_PAID:
            raise PaymentNotSuccessful(order_id, status)
        return status

    # ----------------------------
    # Entry points
    # ----------------------------
    async def verify(self, order_id: str) -> ReconcileResult:
        await self.confirm_via_payments(order_id)
        return await self.settle(order_id, source="verify")

    async def fix(self, order_id: str) -> ReconcileResult:
        status = await self.confirm_via_order(order_id)
        return await self.settle(order_id, source="manual", confirmed=status)

    # ----------------------------
    # The procedure
    # ----------------------------
    async def settle(self, order_id: str, source: Source,
                     confirmed: Optional[str] = None) -> ReconcileResult:
        manual = source == "manual"
        result = ReconcileResult(order_id=order_id)
        result.step(f"success confirmed via {source}"
                    + (f" (gateway: {confirmed})" if confirmed else ""))

        async with timeit("records.find_payment"):
            found = await self.records.payments.find_by_order(order_id)
        if found is None:
            raise PaymentRecordNotFound(order_id)
        payment_key, payment = found
        result.user_id = payment.get("user_id")
        result.pass_type = payment.get("pass_type")
        result.amount = payment.get("amount")
        result.step(f"payment record found: user={result.user_id} "
                    f"type={result.pass_type} status={payment.get('status')}")

        if payment.get("status") != STATUS_SUCCESS:
            async with timeit("records.mark_success"):
                payment = await self.records.payments.mark_success(
                    payment_key, manual=manual
                )
            result.step("payment status -> success")
        else:
            result.step("payment status already success")

        async with timeit("records.find_pass"):
            existing = await self.records.passes.find_by_payment(order_id)
        if existing is not None:
            return self._existing(result, *existing)

        pass_id = new_id()
        qr_payload = self.signer.qr_payload(
            pass_id, payment["user_id"], payment["pass_type"],
            expiry_days=self.qr_expiry_days,
        )
        doc: Pass = {
            "user_id": payment["user_id"],
            "pass_type": payment["pass_type"],
            "amount": payment["amount"],
            "payment_id": order_id,
            "status": PASS_PAID,
            "qr_code": qr_data_url(qr_payload),
            "created_at": now_ts(),
        }
        if manual:
            doc["created_manually"] = True

        team_id = payment.get("team_id")
        if is_group(payment["pass_type"]) and team_id:
            snapshot = await self._team_snapshot(team_id)
            if snapshot is not None:
                doc["team_id"] = team_id
                doc["team_snapshot"] = snapshot
                result.step(f"team {team_id} snapshot attached "
                            f"({snapshot['total_members']} members)")
            else:
                result.step(f"team {team_id} unavailable; issuing without "
                            "snapshot")

        async with timeit("records.issue_pass"):
            created, winner = await self.records.passes.issue(pass_id, doc)
        if not created:
            # another invocation got there between our check and our write
            winning = await self.records.passes.get(winner)
            return self._existing(result, winner, winning or {})

        result.pass_id = pass_id
        result.qr_code = doc["qr_code"]
        result.created = True
        result.step(f"pass {pass_id} issued")

        # the pass is the deliverable; from here on nothing may fail the call
        if "team_snapshot" in doc:
            try:
                await self.records.teams.mark_paid(team_id, pass_id)
                result.team_attached = True
                result.step(f"team {team_id} marked paid")
            except Exception:
                logger.exception("team %s update failed after issuing %s",
                                 team_id, pass_id)
                result.step(f"team {team_id} update failed")

        result.notified = await self._notify(payment, pass_id, doc,
                                             qr_payload)
        result.step("confirmation email sent" if result.notified
                    else "confirmation email not sent")
        return result

    def _existing(self, result: ReconcileResult, pass_id: str,
                  doc: Pass) -> ReconcileResult:
        result.pass_id = pass_id
        result.qr_code = doc.get("qr_code")
        result.team_attached = "team_snapshot" in doc
        result.step(f"pass {pass_id} already exists; nothing to do")
        return result

    async def _team_snapshot(self, team_id: str):
        try:
            team = await self.records.teams.get(team_id)
            if team is None:
                raise TeamFetchFailed(f"team {team_id} not found")
            return self.records.teams.snapshot(team)
        except Exception:
            logger.exception("team %s fetch failed; issuing pass without "
                             "team snapshot", team_id)
            return None

    async def _notify(self, payment: PaymentRecord, pass_id: str, doc: Pass,
                      qr_payload: str) -> bool:
        try:
            async with timeit("notify.pass_confirmation"):
                user = await self.records.users.get(payment["user_id"])
                return await self.notifier.send_pass_confirmation(
                    user, payment, pass_id, doc, qr_payload
                )
        except Exception:
            logger.exception("notification for pass %s failed", pass_id)
            return False
