"""
SQLite locking: writers take the write lock at BEGIN, plain reads never wait on them.
"""
import asyncio

import sqlalchemy as sa

from storefront.common.database import WRITE_LOCK_OPTION, transaction
from storefront.inventory.model import Product


async def test_transaction_requests_write_lock(session):
    async with transaction(session):
        conn = await session.connection()
        assert conn.sync_connection.get_execution_options().get(WRITE_LOCK_OPTION) is True


async def test_plain_session_is_a_deferred_read(session, make_product):
    pid = await make_product(stock=3)
    await session.execute(sa.select(Product.stock_quantity).where(Product.id == pid))
    conn = await session.connection()
    assert not conn.sync_connection.get_execution_options().get(WRITE_LOCK_OPTION)


async def test_reads_do_not_wait_on_open_writer(sessions, make_product, stock_of):
    pid = await make_product(stock=3)

    async with sessions() as writer:
        async with transaction(writer):
            await writer.execute(sa.update(Product).where(Product.id == pid).values(stock_quantity=2))
            assert await asyncio.wait_for(stock_of(pid), timeout=5) == 3

    assert await stock_of(pid) == 2
