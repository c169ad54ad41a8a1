from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from core.exceptions import TransientError, ConflictError
from core.geo import haversine_km
from core.retry import retry_transient
from core.security import (
    Principal, create_access_token, create_principal_token, decode_token, principal_from_payload
)
from crud.inventory import requested_quantities, reserved_quantities
from crud.order import calculate_delivery_charge
from crud.transitions import can_transition_order, ensure_order_transition, history_entry
from models.models import OrderItem, OrderStatus, UserRole


def operational_error():
    return OperationalError("UPDATE deliveries", {}, Exception("server closed the connection"))


async def test_retry_recovers_from_transient_errors():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise operational_error()
        return "done"

    assert await retry_transient(flaky, attempts=3, base_delay=0) == "done"
    assert len(calls) == 3


async def test_retry_gives_up_with_transient_error():
    async def down():
        raise operational_error()

    with pytest.raises(TransientError):
        await retry_transient(down, attempts=2, base_delay=0)


async def test_retry_does_not_repeat_other_failures():
    calls = []

    async def broken():
        calls.append(1)
        raise IntegrityError("INSERT INTO deliveries", {}, Exception("duplicate"))

    with pytest.raises(IntegrityError):
        await retry_transient(broken, attempts=3, base_delay=0)
    assert len(calls) == 1


async def test_retry_passes_domain_errors_through():
    async def conflict():
        raise ConflictError("lost")

    with pytest.raises(ConflictError):
        await retry_transient(conflict, attempts=3, base_delay=0)


@pytest.mark.parametrize("current, target, allowed", [
    ("PENDING_APPROVAL", OrderStatus.APPROVED, True),
    ("PENDING_APPROVAL", OrderStatus.REJECTED, True),
    ("PENDING_APPROVAL", OrderStatus.CANCELLED, True),
    ("PENDING_APPROVAL", OrderStatus.DELIVERED, False),
    ("APPROVED", OrderStatus.PREPARING, True),
    ("APPROVED", OrderStatus.DELIVERED, True),
    ("APPROVED", OrderStatus.PENDING_APPROVAL, False),
    ("PREPARING", OrderStatus.CANCELLED, False),
    ("READY", OrderStatus.DELIVERED, True),
    ("DELIVERED", OrderStatus.CANCELLED, False),
    ("REJECTED", OrderStatus.APPROVED, False),
    ("CANCELLED", OrderStatus.APPROVED, False),
])
def test_order_transition_table(current, target, allowed):
    assert can_transition_order(current, target) is allowed


def test_illegal_transition_raises_conflict():
    with pytest.raises(ConflictError) as exc_info:
        ensure_order_transition("DELIVERED", OrderStatus.APPROVED)
    assert exc_info.value.message == "Cannot move order from DELIVERED to APPROVED"


def test_history_entry_records_actor_and_note():
    entry = history_entry(OrderStatus.REJECTED, 7, "out of stock")

    assert entry["status"] == "REJECTED"
    assert entry["by"] == 7
    assert entry["note"] == "out of stock"
    assert "at" in entry


def test_requested_quantities_merges_duplicate_lines():
    items = [
        OrderItem(id=3, product_id=2, quantity=1),
        OrderItem(id=1, product_id=5, quantity=2),
        OrderItem(id=2, product_id=2, quantity=4),
    ]

    assert list(requested_quantities(items).items()) == [(5, 2), (2, 5)]


def test_reserved_quantities_ignore_lines_never_deducted():
    items = [
        OrderItem(id=1, product_id=2, quantity=3, reserved_quantity=3),
        OrderItem(id=2, product_id=5, quantity=1, reserved_quantity=0),
        OrderItem(id=3, product_id=2, quantity=2, reserved_quantity=2),
    ]

    assert dict(reserved_quantities(items)) == {2: 5}


@pytest.mark.parametrize("subtotal, charge", [(0.0, 20.0), (499.99, 20.0), (500.0, 0.0), (1200.0, 0.0)])
def test_delivery_charge(subtotal, charge):
    assert calculate_delivery_charge(subtotal) == charge


def test_haversine_distance():
    # Pune to Mumbai
    distance = haversine_km(18.5204, 73.8567, 19.0760, 72.8777)

    assert 115 < distance < 125
    assert haversine_km(18.5, 73.8, 18.5, 73.8) == 0.0


def test_principal_token_round_trip():
    payload = decode_token(create_principal_token(42, UserRole.SHOPKEEPER.value))

    assert principal_from_payload(payload) == Principal(id=42, role=UserRole.SHOPKEEPER)


def test_invalid_tokens_yield_no_principal():
    assert decode_token("not-a-token") is None

    expired = create_principal_token(1, "customer", expires_delta=timedelta(minutes=-5))
    assert decode_token(expired) is None

    unknown_role = decode_token(create_access_token({"sub": "1", "role": "pirate"}))
    assert principal_from_payload(unknown_role) is None

    refresh = decode_token(create_access_token({"sub": "1", "role": "customer"}))
    refresh["type"] = "refresh"
    assert principal_from_payload(refresh) is None
