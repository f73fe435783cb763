"""
Shared fixtures: a file-backed SQLite database per test, session factories,
product/command builders and bearer tokens. Redis and Kafka are switched off
so the suite runs without any broker.
"""
from decimal import Decimal
from typing import Optional

import pytest
import sqlalchemy as sa

from storefront.app import create_app
from storefront.common.auth import issue_token
from storefront.common.config import settings
from storefront.common.database import build_engine, build_sessionmaker, init_db
from storefront.inventory.model import Product
from storefront.orders.model import Order, OrderItem
from storefront.orders.schemas import CreateOrderCommand

ADDRESS = {
    "fullName": "Nguyễn Văn A",
    "phone": "0901234567",
    "email": "a@example.com",
    "address": "123 Đường ABC",
    "city": "Đà Lạt",
    "district": "Phường 1",
    "ward": "Xã 1",
}


def order_body(*lines, payment_method: str = "cod", notes: Optional[str] = None) -> dict:
    body = {
        "items": [{"product_id": pid, "quantity": qty} for pid, qty in lines],
        "shipping_address": dict(ADDRESS),
        "payment_method": payment_method,
    }
    if notes is not None:
        body["notes"] = notes
    return body


def command(*lines, **kwargs) -> CreateOrderCommand:
    return CreateOrderCommand.model_validate(order_body(*lines, **kwargs))


@pytest.fixture(autouse=True)
def offline(monkeypatch):
    monkeypatch.setattr(settings, "REDIS_ENABLED", False)
    monkeypatch.setattr(settings, "KAFKA_ENABLED", False)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'store.db'}"


@pytest.fixture
async def engine(db_url):
    eng = build_engine(db_url)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sessions(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def session(sessions):
    async with sessions() as s:
        yield s


@pytest.fixture
def make_product(sessions):
    async def _make(name: str = "Cà phê Buôn Ma Thuột", price: str = "100000", stock: int = 3, **extra) -> int:
        async with sessions() as s:
            async with s.begin():
                prod = Product(name=name, price=Decimal(price), stock_quantity=stock, **extra)
                s.add(prod)
            return prod.id

    return _make


@pytest.fixture
def stock_of(sessions):
    async def _stock(product_id: int) -> int:
        async with sessions() as s:
            res = await s.execute(sa.select(Product.stock_quantity).where(Product.id == product_id))
            return res.scalar_one()

    return _stock


@pytest.fixture
def row_counts(sessions):
    async def _counts():
        async with sessions() as s:
            orders = (await s.execute(sa.select(sa.func.count(Order.id)))).scalar_one()
            items = (await s.execute(sa.select(sa.func.count(OrderItem.id)))).scalar_one()
            return orders, items

    return _counts


@pytest.fixture
async def app(db_url):
    application = create_app(db_url)
    await init_db(application.db_engine)
    yield application
    await application.db_engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def app_product(app):
    async def _make(name: str = "Mứt dâu Đà Lạt", price: str = "100000", stock: int = 3) -> int:
        async with app.db_sessions() as s:
            async with s.begin():
                prod = Product(name=name, price=Decimal(price), stock_quantity=stock)
                s.add(prod)
            return prod.id

    return _make


def auth(user_id: int = 1, role: str = "customer") -> dict:
    return {"Authorization": f"Bearer {issue_token(user_id, role=role)}"}
