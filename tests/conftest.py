import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./marketplace-test.db"
os.environ.setdefault("TWILIO_ACCOUNT_SID", "")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from core.geo import AddressResolver, AddressNotFound, GeoPoint
from core.notifications import Notifier
from core.security import create_principal_token
from database import get_db, init_db
from main import app
from models.models import (
    User, Shop, Product, DeliveryAgent, UserRole, ShopStatus, DeliveryAgentStatus
)

CUSTOMER_ID = 1
SHOPKEEPER_ID = 2
OTHER_SHOPKEEPER_ID = 3
ADMIN_ID = 4
AGENT_ID = 10
OTHER_AGENT_ID = 11
OFFLINE_AGENT_ID = 12


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    async def order_status_changed(self, db, order):
        self.events.append(("order", order.id, order.status))

    async def delivery_available(self, db, delivery):
        self.events.append(("delivery_available", delivery.id, delivery.status))

    async def delivery_status_changed(self, db, delivery, order):
        self.events.append(("delivery", delivery.id, delivery.status))


class StaticResolver(AddressResolver):
    def __init__(self, points=None):
        self.points = points or {}
        self.calls = []

    async def resolve(self, address):
        self.calls.append(address)
        for fragment, point in self.points.items():
            if fragment in address:
                return point
        raise AddressNotFound(address)


def auth(user_id, role):
    return {"Authorization": f"Bearer {create_principal_token(user_id, role)}"}


@pytest.fixture
def customer_headers():
    return auth(CUSTOMER_ID, UserRole.CUSTOMER.value)


@pytest.fixture
def shopkeeper_headers():
    return auth(SHOPKEEPER_ID, UserRole.SHOPKEEPER.value)


@pytest.fixture
def other_shopkeeper_headers():
    return auth(OTHER_SHOPKEEPER_ID, UserRole.SHOPKEEPER.value)


@pytest.fixture
def admin_headers():
    return auth(ADMIN_ID, UserRole.ADMIN.value)


@pytest.fixture
def agent_headers():
    return auth(AGENT_ID, UserRole.DELIVERY_AGENT.value)


@pytest.fixture
def other_agent_headers():
    return auth(OTHER_AGENT_ID, UserRole.DELIVERY_AGENT.value)


@pytest.fixture
def offline_agent_headers():
    return auth(OFFLINE_AGENT_ID, UserRole.DELIVERY_AGENT.value)


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(db):
    """Two shopkeepers, one approved shop with stock, a customer and three agents"""
    db.add_all([
        User(id=CUSTOMER_ID, name="Asha", email="asha@example.com", phone="9000000001", role=UserRole.CUSTOMER.value),
        User(id=SHOPKEEPER_ID, name="Ravi", email="ravi@example.com", phone="9000000002", role=UserRole.SHOPKEEPER.value),
        User(id=OTHER_SHOPKEEPER_ID, name="Meena", email="meena@example.com", phone="9000000003", role=UserRole.SHOPKEEPER.value),
        User(id=ADMIN_ID, name="Admin", email="admin@example.com", role=UserRole.ADMIN.value),
    ])
    db.add_all([
        Shop(id=1, owner_id=SHOPKEEPER_ID, name="Fresh Farm", address="1 Market Road, Pune",
             latitude=18.5204, longitude=73.8567, status=ShopStatus.APPROVED.value),
        Shop(id=2, owner_id=OTHER_SHOPKEEPER_ID, name="Far Away Fruits", address="9 Hill Road, Mumbai",
             latitude=19.0760, longitude=72.8777, status=ShopStatus.APPROVED.value),
        Shop(id=3, owner_id=OTHER_SHOPKEEPER_ID, name="Pending Greens", address="3 Side Lane, Pune",
             latitude=18.53, longitude=73.85, status=ShopStatus.PENDING.value),
    ])
    db.add_all([
        Product(id=1, shop_id=1, name="Tomato", price=40.0, quantity=5),
        Product(id=2, shop_id=1, name="Onion", price=30.0, quantity=1),
        Product(id=3, shop_id=1, name="Potato", price=25.0, quantity=10),
        Product(id=4, shop_id=1, name="Mango", price=300.0, quantity=20),
        Product(id=5, shop_id=2, name="Apple", price=120.0, quantity=50),
        Product(id=6, shop_id=1, name="Old Stock", price=10.0, quantity=100, is_active=False),
    ])
    db.add_all([
        DeliveryAgent(id=AGENT_ID, name="Kiran", phone="9100000010",
                      status=DeliveryAgentStatus.APPROVED.value, is_available=True),
        DeliveryAgent(id=OTHER_AGENT_ID, name="Sunil", phone="9100000011",
                      status=DeliveryAgentStatus.APPROVED.value, is_available=True),
        DeliveryAgent(id=OFFLINE_AGENT_ID, name="Deepa", phone="9100000012",
                      status=DeliveryAgentStatus.APPROVED.value, is_available=False),
    ])
    await db.commit()
    return db


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def resolver():
    return StaticResolver({"MG Road": GeoPoint(latitude=18.5167, longitude=73.8563, city="Pune")})


@pytest.fixture
async def client(seed, session_factory, notifier, resolver):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.notifier = notifier
    app.state.address_resolver = resolver

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


MANUAL_ADDRESS = {
    "address_line1": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
    "phone": "9876543210",
}


@pytest.fixture
def place_order(client, customer_headers):
    """Place an order as the customer and return its JSON"""
    async def _place(items, shop_id=1, **extra):
        body = {
            "shop_id": shop_id,
            "items": [{"product_id": pid, "quantity": qty} for pid, qty in items],
            "delivery_address": MANUAL_ADDRESS,
            "payment_method": "cash",
        }
        body.update(extra)
        response = await client.post("/orders", json=body, headers=customer_headers)
        assert response.status_code == 201, response.text
        return response.json()
    return _place


@pytest.fixture
def load(session_factory):
    """Read a row in a fresh session, after the API has committed"""
    async def _load(model, ident):
        async with session_factory() as session:
            return await session.get(model, ident)
    return _load


@pytest.fixture
def query(session_factory):
    async def _query(statement):
        async with session_factory() as session:
            result = await session.execute(statement)
            return result.scalars().all()
    return _query
