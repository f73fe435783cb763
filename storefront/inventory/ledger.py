import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from ..common.errors import InsufficientStock, ProductNotFound
from .model import Product

_logger = logging.getLogger(__name__)


def _require_transaction(session: AsyncSession) -> None:
    if not session.in_transaction():
        raise RuntimeError("stock changes must run inside the enclosing order transaction")


async def decrement(session: AsyncSession, product_id: int, quantity: int) -> int:
    """Take ``quantity`` units out of stock. Returns the new stock level."""
    _require_transaction(session)
    stmt = (
        sa.update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .returning(Product.stock_quantity)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    row = res.first()
    if row is not None:
        _logger.debug("Stock decremented | product_id=%s qty=%s stock=%s", product_id, quantity, row[0])
        return int(row[0])

    current = (
        await session.execute(sa.select(Product.name, Product.stock_quantity).where(Product.id == product_id))
    ).first()
    if current is None:
        raise ProductNotFound(product_id)
    raise InsufficientStock(product_id, current.name, quantity, int(current.stock_quantity))


async def increment(session: AsyncSession, product_id: int, quantity: int) -> int:
    """Put ``quantity`` units back. Returns the new stock level."""
    _require_transaction(session)
    stmt = (
        sa.update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + quantity)
        .returning(Product.stock_quantity)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    row = res.first()
    if row is None:
        raise ProductNotFound(product_id)
    _logger.debug("Stock restored | product_id=%s qty=%s stock=%s", product_id, quantity, row[0])
    return int(row[0])
