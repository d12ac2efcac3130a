"""
Order creation: validates the purchase, opens the gateway order and writes
the pending payment record (plus the pending team for group passes) that
reconciliation later settles.
"""
from typing import Optional
import logging

from .cashfree import Customer, PaymentGateway
from .errors import InvalidOrder
from .helpers import is_valid_email, new_id, normalize_phone, now_ms
from .infra.timings import timeit
from .model.records import Member, Records
from .passtypes import PASS_TYPES, expected_amount, is_group

logger = logging.getLogger(__name__)

MAX_TEAM_SIZE = 20


def _text(value, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidOrder(f"{what} must be a string")
    return value.strip()


def _members(team: dict, leader_id: str) -> list[Member]:
    raw = team.get("members") or []
    if not isinstance(raw, list) or not raw:
        raise InvalidOrder("group registration needs at least one member")
    if len(raw) > MAX_TEAM_SIZE:
        raise InvalidOrder(f"teams are limited to {MAX_TEAM_SIZE} members")
    members: list[Member] = []
    for i, m in enumerate(raw):
        if not isinstance(m, dict):
            raise InvalidOrder(f"member {i + 1} is not an object")
        name = _text(m.get("name"), f"member {i + 1} name")
        if not name:
            raise InvalidOrder(f"member {i + 1} has no name")
        is_leader = bool(m.get("is_leader")) or i == 0
        members.append({
            "member_id": leader_id if i == 0 else new_id("mem_"),
            "name": name,
            "phone": normalize_phone(m.get("phone")) or "",
            "email": _text(m.get("email"), f"member {i + 1} email"),
            "is_leader": is_leader,
            "attendance": {
                "checked_in": False,
                "check_in_time": None,
                "checked_in_by": None,
            },
        })
    return members


async def create_order(
    records: Records, gateway: PaymentGateway, user_id: str, payload: dict,
    currency: str = "INR", now: Optional[int] = None,
) -> dict:
    pass_type = payload.get("pass_type")
    if pass_type not in PASS_TYPES:
        raise InvalidOrder("invalid pass type")

    team = payload.get("team") if is_group(pass_type) else None
    members: list[Member] = []
    team_id: Optional[str] = None
    if is_group(pass_type):
        if not isinstance(team, dict):
            raise InvalidOrder("group registration needs team details")
        members = _members(team, user_id)
        team_name = _text(team.get("team_name"), "team name")
        team_id = team.get("team_id")
        if team_id is not None and (not isinstance(team_id, str)
                                    or not team_id.strip()):
            raise InvalidOrder("invalid team id")
        # a client-chosen id must be new; existing teams are never replaced
        if team_id and await records.teams.exists(team_id):
            raise InvalidOrder("team id already in use")

    amount = payload.get("amount")
    expected = expected_amount(pass_type, len(members) or None)
    if isinstance(amount, bool) or not isinstance(amount, int) \
            or amount != expected:
        raise InvalidOrder("invalid amount")

    customer_in = payload.get("customer")
    if not isinstance(customer_in, dict):
        customer_in = {}
    phone = normalize_phone(customer_in.get("phone"))
    if phone is None:
        raise InvalidOrder(
            "invalid phone number; must be at least 10 digits"
        )
    name = _text(customer_in.get("name"), "customer name")
    email = _text(customer_in.get("email"), "customer email")
    if email and not is_valid_email(email):
        raise InvalidOrder("invalid email address")

    order_id = f"order_{now or now_ms()}_{user_id[:8]}"
    customer: Customer = {"customer_id": user_id, "customer_phone": phone}
    if name:
        customer["customer_name"] = name
    if email:
        customer["customer_email"] = email

    async with timeit("gateway.create_order"):
        created = await gateway.create_order(
            order_id, amount, currency, customer
        )

    # team before payment: once the payment record exists a webhook may
    # settle it, and the pass should find its team
    if is_group(pass_type):
        team_id = team_id or new_id("team_")
        created_team = await records.teams.create(team_id, {
            "team_name": team_name,
            "leader_id": user_id,
            "members": members,
            "order_id": order_id,
        })
        if not created_team:
            # lost a race for a client-chosen id; the gateway order is
            # left unpaid and expires
            raise InvalidOrder("team id already in use")

    if not await records.payments.create(order_id, {
        "user_id": user_id,
        "amount": amount,
        "pass_type": pass_type,
        "team_id": team_id,
        "team_member_count": len(members) or None,
        "customer_details": {"name": name, "email": email, "phone": phone},
    }):
        raise InvalidOrder(f"order {order_id} already exists")
    logger.info("order %s created for %s (%s, %d)",
                order_id, user_id, pass_type, amount)

    return {
        "order_id": created["gateway_order_id"],
        "session_id": created["session_id"],
        "team_id": team_id,
    }
