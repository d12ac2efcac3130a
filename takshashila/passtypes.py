from typing import Optional, TypedDict


class PassType(TypedDict, total=False):
    id: str
    name: str
    price: int
    price_per_person: int


GROUP_EVENTS = "group_events"

PASS_TYPES: dict[str, PassType] = {
    "test_pass": {"id": "test_pass", "name": "Test Pass", "price": 1},
    "day_pass": {"id": "day_pass", "name": "Day Pass", "price": 500},
    GROUP_EVENTS: {
        "id": GROUP_EVENTS, "name": "Group Events", "price_per_person": 250,
    },
    "proshow": {
        "id": "proshow", "name": "Day 1 Proshow + Day 3 Proshow",
        "price": 1000,
    },
    "sana_concert": {
        "id": "sana_concert", "name": "SANA Concert + All 3-Day Pass",
        "price": 1500,
    },
}


def is_group(pass_type: str) -> bool:
    return pass_type == GROUP_EVENTS


def expected_amount(pass_type: str,
                    member_count: Optional[int] = None) -> Optional[int]:
    pt = PASS_TYPES.get(pass_type)
    if pt is None:
        return None
    if is_group(pass_type):
        return (member_count or 1) * pt["price_per_person"]
    return pt["price"]


def display_name(pass_type: str) -> str:
    pt = PASS_TYPES.get(pass_type)
    return pt["name"] if pt else pass_type
