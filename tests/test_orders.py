import pytest

from takshashila.errors import GatewayError, InvalidOrder
from takshashila.orders import create_order

NOW = 1733312345678


def _payload(**over):
    payload = {
        "pass_type": "day_pass",
        "amount": 500,
        "customer": {"name": "Asha", "email": "asha@example.com",
                     "phone": "98765 43210"},
    }
    payload.update(over)
    return payload


async def test_single_pass_order(records, gateway):
    out = await create_order(records, gateway, "user_abcdefghij",
                             _payload(), now=NOW)

    assert out["order_id"] == f"order_{NOW}_user_abc"
    assert out["session_id"] == f"session_order_{NOW}_user_abc"
    assert out["team_id"] is None

    order_id, amount, currency, customer = gateway.created[0]
    assert (amount, currency) == (500, "INR")
    assert customer["customer_phone"] == "+919876543210"
    assert customer["customer_id"] == "user_abcdefghij"

    payment = await records.payments.get(out["order_id"])
    assert payment["status"] == "pending"
    assert payment["cashfree_order_id"] == out["order_id"]
    assert payment["user_id"] == "user_abcdefghij"
    assert payment["customer_details"]["phone"] == "+919876543210"
    found = await records.payments.find_by_order(out["order_id"])
    assert found[0] == out["order_id"]


async def test_group_order_writes_team_first(records, gateway):
    team = {"team_name": "Circuit Breakers", "members": [
        {"name": "Asha", "phone": "9876543210"},
        {"name": "Ravi"},
        {"name": "Meena", "email": "meena@example.com"},
    ]}
    out = await create_order(
        records, gateway, "user_1",
        _payload(pass_type="group_events", amount=750, team=team), now=NOW,
    )

    assert out["team_id"].startswith("team_")
    stored = await records.teams.get(out["team_id"])
    assert stored["order_id"] == out["order_id"]
    assert stored["leader_id"] == "user_1"
    assert stored["payment_status"] == "pending"
    assert [m["is_leader"] for m in stored["members"]] == [True, False, False]
    assert stored["members"][0]["member_id"] == "user_1"
    assert stored["members"][1]["attendance"]["checked_in"] is False

    payment = await records.payments.get(out["order_id"])
    assert payment["team_id"] == out["team_id"]
    assert payment["team_member_count"] == 3


async def test_client_supplied_team_id(records, gateway):
    team = {"team_id": "team_fixed", "team_name": "X",
            "members": [{"name": "A"}, {"name": "B"}]}
    out = await create_order(
        records, gateway, "user_1",
        _payload(pass_type="group_events", amount=500, team=team),
    )
    assert out["team_id"] == "team_fixed"


async def test_existing_team_id_is_refused(records, gateway, seed_team):
    await seed_team("team_1", "order_1", leader_id="user_1")
    await records.teams.mark_paid("team_1", "pass_owner")
    team = {"team_id": "team_1", "team_name": "Takeover",
            "members": [{"name": "Mallory"}, {"name": "Eve"}]}
    with pytest.raises(InvalidOrder):
        await create_order(
            records, gateway, "user_2",
            _payload(pass_type="group_events", amount=500, team=team),
        )
    assert gateway.created == []
    kept = await records.teams.get("team_1")
    assert kept["pass_id"] == "pass_owner"
    assert kept["leader_id"] == "user_1"
    assert kept["team_name"] == "Circuit Breakers"
    assert len(kept["members"]) == 3


async def test_team_created_meanwhile_is_not_replaced(records, gateway,
                                                      seed_team, monkeypatch):
    team = {"team_id": "team_race", "team_name": "X",
            "members": [{"name": "A"}, {"name": "B"}]}

    # the id is free when checked but taken by the time the team is written
    real_create = gateway.create_order

    async def create_then_collide(*args):
        out = await real_create(*args)
        await seed_team("team_race", "order_other", leader_id="user_9")
        return out
    monkeypatch.setattr(gateway, "create_order", create_then_collide)

    with pytest.raises(InvalidOrder):
        await create_order(
            records, gateway, "user_1",
            _payload(pass_type="group_events", amount=500, team=team),
            now=NOW,
        )
    assert (await records.teams.get("team_race"))["leader_id"] == "user_9"
    assert await records.payments.get(f"order_{NOW}_user_1") is None


async def test_duplicate_order_id_keeps_first_record(records, gateway):
    await create_order(records, gateway, "user_1", _payload(), now=NOW)
    order_id = f"order_{NOW}_user_1"
    await records.payments.mark_success(order_id)
    with pytest.raises(InvalidOrder):
        await create_order(records, gateway, "user_1", _payload(), now=NOW)
    assert (await records.payments.get(order_id))["status"] == "success"


async def test_numeric_phone_is_accepted(records, gateway):
    await create_order(
        records, gateway, "user_1",
        _payload(customer={"name": "Asha", "phone": 9876543210}), now=NOW,
    )
    record = await records.payments.get(f"order_{NOW}_user_1")
    assert record["customer_details"]["phone"] == "+919876543210"


@pytest.mark.parametrize("over", [
    {"pass_type": "vip"},
    {"amount": 499},
    {"amount": "500"},
    {"amount": True},
    {"customer": {"phone": "12345"}},
    {"customer": {"phone": "9876543210", "email": "not-an-email"}},
    {"customer": None},
    {"pass_type": "group_events", "amount": 250},
    {"pass_type": "group_events", "amount": 250,
     "team": {"members": []}},
    {"pass_type": "group_events", "amount": 500,
     "team": {"members": [{"name": "A"}, {"name": " "}]}},
    {"pass_type": "group_events", "amount": 500,
     "team": {"members": [{"name": "A"}, {"name": "B"}, {"name": "C"}]}},
    {"customer": {"name": 42, "phone": "9876543210"}},
    {"customer": {"phone": ["9876543210"]}},
    {"pass_type": "group_events", "amount": 500,
     "team": {"members": [{"name": "A"}, {"name": 7}]}},
    {"pass_type": "group_events", "amount": 500,
     "team": {"team_name": 5, "members": [{"name": "A"}, {"name": "B"}]}},
    {"pass_type": "group_events", "amount": 500,
     "team": {"team_id": 12, "members": [{"name": "A"}, {"name": "B"}]}},
])
async def test_invalid_orders(records, gateway, over):
    with pytest.raises(InvalidOrder):
        await create_order(records, gateway, "user_1", _payload(**over))
    assert gateway.created == []


async def test_gateway_failure_writes_nothing(records, gateway):
    gateway.fail = GatewayError(400, {"message": "bad request"})
    with pytest.raises(GatewayError):
        await create_order(records, gateway, "user_1", _payload(), now=NOW)
    assert await records.payments.get(f"order_{NOW}_user_1") is None
