from __future__ import annotations
from typing import List, Optional, Tuple, TypedDict

from ..errors import DocumentNotFound
from ..helpers import now_ts
from .docstore import DocumentStore

# collections
PAYMENTS = "payments"
PASSES = "passes"
TEAMS = "teams"
USERS = "users"

# pending -> success, never back
STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
PASS_PAID = "paid"

INDEXES = {
    PAYMENTS: ("cashfree_order_id", "user_id"),
    PASSES: ("payment_id", "user_id"),
    TEAMS: ("order_id", "leader_id"),
}


# ----------------------------
# Document shapes
# ----------------------------
class CustomerDetails(TypedDict):
    name: str
    email: str
    phone: str


class PaymentRecord(TypedDict, total=False):
    user_id: str
    amount: int
    pass_type: str
    cashfree_order_id: str
    status: str
    team_id: Optional[str]
    team_member_count: Optional[int]
    customer_details: CustomerDetails
    created_at: float
    updated_at: float
    fixed_manually: bool


class Attendance(TypedDict):
    checked_in: bool
    check_in_time: Optional[float]
    checked_in_by: Optional[str]


class Member(TypedDict, total=False):
    member_id: str
    name: str
    phone: str
    email: str
    is_leader: bool
    attendance: Attendance


class Team(TypedDict, total=False):
    team_name: str
    leader_id: str
    members: List[Member]
    order_id: Optional[str]
    payment_status: str
    pass_id: Optional[str]
    created_at: float
    updated_at: float


class SnapshotMember(TypedDict):
    member_id: str
    name: str
    phone: str
    is_leader: bool
    checked_in: bool


class TeamSnapshot(TypedDict):
    team_name: str
    total_members: int
    members: List[SnapshotMember]


class Pass(TypedDict, total=False):
    user_id: str
    pass_type: str
    amount: int
    payment_id: str
    status: str
    qr_code: str
    team_id: str
    team_snapshot: TeamSnapshot
    created_manually: bool
    created_at: float


class UserProfile(TypedDict, total=False):
    name: str
    email: Optional[str]
    college: str
    phone: str
    updated_at: float


# ----------------------------
# Repositories
# ----------------------------
class PaymentStore:
    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs

    async def create(self, order_id: str, record: PaymentRecord) -> bool:
        """False when a record for order_id already exists; it is never
        clobbered, since it may already have advanced to success."""
        now = now_ts()
        return await self.docs.create(PAYMENTS, order_id, {
            **record,
            "cashfree_order_id": order_id,
            "status": STATUS_PENDING,
            "created_at": now,
            "updated_at": now,
        })

    async def get(self, order_id: str) -> Optional[PaymentRecord]:
        return await self.docs.get(PAYMENTS, order_id)

    async def find_by_order(
            self, order_id: str) -> Optional[Tuple[str, PaymentRecord]]:
        return await self.docs.query_one(
            PAYMENTS, "cashfree_order_id", order_id
        )

    async def mark_success(self, key: str,
                           manual: bool = False) -> PaymentRecord:
        fields = {"status": STATUS_SUCCESS, "updated_at": now_ts()}
        if manual:
            fields["fixed_manually"] = True
        return await self.docs.update(PAYMENTS, key, fields)


class PassStore:
    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs

    async def get(self, pass_id: str) -> Optional[Pass]:
        return await self.docs.get(PASSES, pass_id)

    async def find_by_payment(
            self, order_id: str) -> Optional[Tuple[str, Pass]]:
        return await self.docs.query_one(PASSES, "payment_id", order_id)

    async def issue(self, pass_id: str, doc: Pass) -> Tuple[bool, str]:
        """Persist doc unless a pass for doc["payment_id"] exists.

        Returns (created, pass_id of the pass that holds the payment).
        """
        return await self.docs.create_unique(
            PASSES, pass_id, doc, field="payment_id"
        )

    async def list_for_user(self, user_id: str) -> List[Tuple[str, Pass]]:
        found = await self.docs.query_all(PASSES, "user_id", user_id)
        return sorted(found, key=lambda kv: kv[1].get("created_at", 0.0),
                      reverse=True)


class TeamStore:
    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs

    async def get(self, team_id: str) -> Optional[Team]:
        return await self.docs.get(TEAMS, team_id)

    async def exists(self, team_id: str) -> bool:
        return await self.docs.get(TEAMS, team_id) is not None

    async def create(self, team_id: str, team: Team) -> bool:
        # insert only: an existing team belongs to someone else's order and
        # its pass_id and payment_status are written by reconciliation alone
        now = now_ts()
        return await self.docs.create(TEAMS, team_id, {
            **team,
            "payment_status": STATUS_PENDING,
            "pass_id": None,
            "created_at": now,
            "updated_at": now,
        })

    async def mark_paid(self, team_id: str, pass_id: str) -> None:
        # attendance lives inside members[], which we never write here
        await self.docs.update(TEAMS, team_id, {
            "pass_id": pass_id,
            "payment_status": STATUS_SUCCESS,
            "updated_at": now_ts(),
        })

    @staticmethod
    def snapshot(team: Team) -> TeamSnapshot:
        members = team.get("members") or []
        return {
            "team_name": team.get("team_name") or "",
            "total_members": len(members),
            "members": [
                {
                    "member_id": m.get("member_id", ""),
                    "name": m.get("name", ""),
                    "phone": m.get("phone", ""),
                    "is_leader": bool(m.get("is_leader")),
                    "checked_in": False,
                }
                for m in members
            ],
        }


class UserStore:
    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs

    async def get(self, user_id: str) -> Optional[UserProfile]:
        return await self.docs.get(USERS, user_id)

    async def upsert(self, user_id: str, fields: UserProfile) -> UserProfile:
        fields = {**fields, "updated_at": now_ts()}
        try:
            return await self.docs.update(USERS, user_id, fields)
        except DocumentNotFound:
            await self.docs.set(USERS, user_id, fields)
            return fields


class Records:
    """All four repositories over one document store."""

    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs
        self.payments = PaymentStore(docs)
        self.passes = PassStore(docs)
        self.teams = TeamStore(docs)
        self.users = UserStore(docs)
