from sqlalchemy import update

from conftest import AGENT_ID, CUSTOMER_ID, auth
from models.models import Delivery, Order, OrderItem, Product, UserRole


async def cancel(client, headers, order_id, reason="changed my mind"):
    return await client.post(f"/orders/{order_id}/cancel", json={"cancellation_reason": reason}, headers=headers)


async def test_customer_cancels_pending_order(client, customer_headers, place_order, load):
    order = await place_order([(1, 2)])

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "CANCELLED"
    assert body["cancellation_reason"] == "changed my mind"
    assert body["cancelled_by"] == CUSTOMER_ID
    assert body["cancelled_at"] is not None
    assert (await load(Product, 1)).quantity == 5


async def test_cancel_requires_reason(client, customer_headers, place_order):
    order = await place_order([(1, 1)])

    response = await cancel(client, customer_headers, order["id"], reason="   ")

    assert response.status_code == 400
    assert response.json()["detail"] == "Cancellation reason is required"


async def test_cancel_approved_order_restores_stock(client, customer_headers, shopkeeper_headers,
                                                    agent_headers, place_order, load):
    order = await place_order([(3, 4)])
    accepted = await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    delivery_id = accepted.json()["delivery"]["id"]
    assert (await load(Product, 3)).quantity == 6

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 200
    assert (await load(Product, 3)).quantity == 10
    assert (await load(Delivery, delivery_id)).status == "CANCELLED"

    response = await client.post("/deliveries/accept",
                                 json={"deliveryId": delivery_id, "deliveryAgentId": AGENT_ID},
                                 headers=agent_headers)
    assert response.status_code == 409


async def test_cancel_after_assignment_but_before_pickup(client, shopkeeper_headers, agent_headers,
                                                         place_order, load):
    order = await place_order([(3, 1)])
    accepted = await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    delivery_id = accepted.json()["delivery"]["id"]
    await client.post("/deliveries/accept", json={"deliveryId": delivery_id, "deliveryAgentId": AGENT_ID},
                      headers=agent_headers)

    response = await cancel(client, shopkeeper_headers, order["id"], reason="shop closing early")

    assert response.status_code == 200
    assert (await load(Delivery, delivery_id)).status == "CANCELLED"
    assert (await load(Product, 3)).quantity == 10

    response = await client.put("/deliveries", json={"deliveryId": delivery_id, "status": "PICKED_UP"},
                                headers=agent_headers)
    assert response.status_code == 409


async def test_picked_up_order_cannot_be_cancelled(client, customer_headers, shopkeeper_headers,
                                                   agent_headers, place_order, load):
    order = await place_order([(3, 1)])
    accepted = await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    delivery_id = accepted.json()["delivery"]["id"]
    await client.post("/deliveries/accept", json={"deliveryId": delivery_id, "deliveryAgentId": AGENT_ID},
                      headers=agent_headers)
    await client.put("/deliveries", json={"deliveryId": delivery_id, "status": "PICKED_UP"},
                     headers=agent_headers)

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 409
    assert response.json()["detail"] == "Order has already been picked up for delivery"
    assert (await load(Order, order["id"])).status == "APPROVED"
    assert (await load(Product, 3)).quantity == 9


async def test_terminal_orders_cannot_be_cancelled(client, customer_headers, shopkeeper_headers, place_order):
    order = await place_order([(1, 1)])
    await client.put(f"/orders/{order['id']}/status",
                     json={"status": "REJECTED", "rejection_reason": "out of stock"},
                     headers=shopkeeper_headers)

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 409
    assert response.json()["detail"] == (
        "Cannot cancel order with status: REJECTED. Only APPROVED or PENDING_APPROVAL orders can be cancelled."
    )


async def test_preparing_order_cannot_be_cancelled(client, customer_headers, shopkeeper_headers, place_order):
    order = await place_order([(1, 1)])
    await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    await client.put(f"/orders/{order['id']}/status", json={"status": "PREPARING"}, headers=shopkeeper_headers)

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 409


async def test_strangers_cannot_cancel(client, other_shopkeeper_headers, other_agent_headers, place_order, load):
    order = await place_order([(1, 1)])

    response = await cancel(client, auth(99, UserRole.CUSTOMER.value), order["id"])
    assert response.status_code == 403

    response = await cancel(client, other_shopkeeper_headers, order["id"])
    assert response.status_code == 403

    response = await cancel(client, other_agent_headers, order["id"])
    assert response.status_code == 403

    assert (await load(Order, order["id"])).status == "PENDING_APPROVAL"


async def test_cancel_through_status_update(client, customer_headers, place_order, notifier):
    order = await place_order([(1, 1)])

    response = await client.put(f"/orders/{order['id']}/status",
                                json={"status": "CANCELLED", "notes": "ordered twice"},
                                headers=customer_headers)

    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "ordered twice"
    assert ("order", order["id"], "CANCELLED") in notifier.events


async def test_items_cannot_be_reviewed_after_acceptance(client, customer_headers, shopkeeper_headers,
                                                         place_order, load):
    order = await place_order([(1, 2), (2, 1)])
    onion_line = next(i for i in order["order_items"] if i["product_id"] == 2)
    onion_url = f"/order_items/{onion_line['id']}/approval"
    await client.put(onion_url, json={"approval_status": "REJECTED", "rejection_reason": "last one is bruised"},
                     headers=shopkeeper_headers)
    await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    assert (await load(Product, 1)).quantity == 3
    assert (await load(Product, 2)).quantity == 1

    response = await client.post(f"/orders/{order['id']}/items/approve-all", headers=shopkeeper_headers)
    assert response.status_code == 409
    assert response.json()["detail"] == "Items of an order with status APPROVED can no longer be reviewed"

    response = await client.put(onion_url, json={"approval_status": "APPROVED"}, headers=shopkeeper_headers)
    assert response.status_code == 409
    assert (await load(OrderItem, onion_line["id"])).approval_status == "REJECTED"

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 200
    assert (await load(Product, 1)).quantity == 5
    assert (await load(Product, 2)).quantity == 1


async def test_cancel_returns_what_acceptance_deducted(client, customer_headers, shopkeeper_headers,
                                                       place_order, load, session_factory):
    order = await place_order([(1, 2), (2, 1)])
    tomato_line, onion_line = sorted(order["order_items"], key=lambda i: i["product_id"])
    await client.put(f"/order_items/{onion_line['id']}/approval",
                     json={"approval_status": "REJECTED", "rejection_reason": "last one is bruised"},
                     headers=shopkeeper_headers)
    await client.post(f"/orders/{order['id']}/accept", headers=shopkeeper_headers)
    assert (await load(OrderItem, tomato_line["id"])).reserved_quantity == 2
    assert (await load(OrderItem, onion_line["id"])).reserved_quantity == 0

    # A line review that slipped in after acceptance
    async with session_factory() as session:
        await session.execute(update(OrderItem).where(OrderItem.id == onion_line["id"])
                              .values(approval_status="APPROVED"))
        await session.execute(update(OrderItem).where(OrderItem.id == tomato_line["id"])
                              .values(approval_status="REJECTED"))
        await session.commit()

    response = await cancel(client, customer_headers, order["id"])

    assert response.status_code == 200
    assert (await load(Product, 1)).quantity == 5
    assert (await load(Product, 2)).quantity == 1
    assert (await load(OrderItem, tomato_line["id"])).reserved_quantity == 0
