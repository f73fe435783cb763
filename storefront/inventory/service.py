import json
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.database import transaction
from ..common.db import MAX_INT
from ..common.errors import ProductInUse, ProductNotFound
from ..common.redis_client import get_redis, product_key, stock_key
from ..orders.model import OrderItem
from .model import Product

_logger = logging.getLogger(__name__)


class ProductCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    stock_quantity: int = Field(0, ge=0, le=MAX_INT)
    category: str = ""
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    origin: str = ""
    weight: Optional[str] = None


# product columns an update may clear
NULLABLE_FIELDS = frozenset({"original_price", "image", "weight"})


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    original_price: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    stock_quantity: Optional[int] = Field(None, ge=0, le=MAX_INT)
    category: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    origin: Optional[str] = None
    weight: Optional[str] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _reject_nulls(self) -> "ProductUpdate":
        nulls = sorted(f for f in self.model_fields_set if f not in NULLABLE_FIELDS and getattr(self, f) is None)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
        return self


async def _cache_product(data: dict) -> None:
    r = await get_redis()
    if r is None:
        return
    await r.set(product_key(data["id"]), json.dumps(data))
    await r.set(stock_key(data["id"]), int(data["stock_quantity"]))


async def _evict_product(product_id: int) -> None:
    r = await get_redis()
    if r is None:
        return
    await r.delete(product_key(product_id), stock_key(product_id))


async def list_products(session: AsyncSession, category: Optional[str] = None) -> List[dict]:
    stmt = sa.select(Product).where(Product.is_active.is_(True)).order_by(Product.id)
    if category:
        stmt = stmt.where(Product.category == category)
    res = await session.execute(stmt)
    return [p.to_dict() for p in res.scalars().all()]


async def get_product(session: AsyncSession, product_id: int) -> dict:
    r = await get_redis()
    if r is not None:
        raw = await r.get(product_key(product_id))
        if raw:
            _logger.debug("Cache hit: product | product_id=%s", product_id)
            return json.loads(raw)

    prod = await session.get(Product, product_id, populate_existing=True)
    if prod is None:
        raise ProductNotFound(product_id)
    data = prod.to_dict()
    await _cache_product(data)
    _logger.info("DB get product | product_id=%s", product_id)
    return data


async def get_stock(session: AsyncSession, product_id: int) -> int:
    r = await get_redis()
    if r is not None:
        cached = await r.get(stock_key(product_id))
        if cached is not None:
            _logger.debug("Cache hit: stock | product_id=%s stock=%s", product_id, cached)
            return int(cached)

    stock = (
        await session.execute(sa.select(Product.stock_quantity).where(Product.id == product_id))
    ).scalar_one_or_none()
    if stock is None:
        raise ProductNotFound(product_id)
    _logger.info("DB get stock | product_id=%s stock=%s (cache miss)", product_id, stock)
    if r is not None:
        await r.set(stock_key(product_id), int(stock))
    return int(stock)


async def fetch_stock_levels(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, int]:
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    res = await session.execute(sa.select(Product.id, Product.stock_quantity).where(Product.id.in_(ids)))
    return {row.id: int(row.stock_quantity) for row in res}


async def create_product(session: AsyncSession, payload: ProductCreate) -> dict:
    async with transaction(session):
        prod = Product(**payload.model_dump())
        session.add(prod)
        await session.flush()
    _logger.info("Product created | product_id=%s name=%s", prod.id, prod.name)
    return prod.to_dict()


async def update_product(session: AsyncSession, product_id: int, payload: ProductUpdate) -> dict:
    """Admin edit. Price changes apply to future orders only."""
    changes = payload.model_dump(exclude_unset=True)
    async with transaction(session):
        prod = await session.get(Product, product_id, with_for_update=True, populate_existing=True)
        if prod is None:
            raise ProductNotFound(product_id)
        for field, value in changes.items():
            setattr(prod, field, value)
        await session.flush()
    data = prod.to_dict()
    _logger.info("Product updated | product_id=%s fields=%s", product_id, ",".join(sorted(changes)))
    try:
        await _evict_product(product_id)
    except Exception as e:
        _logger.warning("Cache eviction failed | product_id=%s err=%s", product_id, e)
    return data


async def delete_product(session: AsyncSession, product_id: int) -> None:
    """Delete a product nobody ever ordered. Ordered products must be archived."""
    async with transaction(session):
        prod = await session.get(Product, product_id, with_for_update=True)
        if prod is None:
            raise ProductNotFound(product_id)
        referenced = (
            await session.execute(sa.select(OrderItem.id).where(OrderItem.product_id == product_id).limit(1))
        ).first()
        if referenced is not None:
            raise ProductInUse(product_id)
        await session.delete(prod)
    _logger.info("Product deleted | product_id=%s", product_id)
    try:
        await _evict_product(product_id)
    except Exception as e:
        _logger.warning("Cache eviction failed | product_id=%s err=%s", product_id, e)
