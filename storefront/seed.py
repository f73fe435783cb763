import asyncio
import logging
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import async_sessionmaker

from .common.database import build_engine, build_sessionmaker, init_db, transaction
from .inventory.model import Product

log = logging.getLogger(__name__)


SAMPLE_PRODUCTS = [
    {"name": "Cà phê Robusta Buôn Ma Thuột 500g", "price": "185000", "original_price": "210000",
     "stock_quantity": 120, "category": "coffee", "origin": "Đắk Lắk", "weight": "500g",
     "tags": ["cà phê", "rang xay"], "image": "https://picsum.photos/seed/bmt-coffee/400/300"},
    {"name": "Mứt dâu Đà Lạt", "price": "95000", "stock_quantity": 80, "category": "sweets",
     "origin": "Lâm Đồng", "weight": "300g", "tags": ["mứt", "quà Tết"],
     "image": "https://picsum.photos/seed/dalat-jam/400/300"},
    {"name": "Nước mắm Phú Quốc 40 độ đạm", "price": "120000", "stock_quantity": 60, "category": "sauces",
     "origin": "Kiên Giang", "weight": "500ml", "tags": ["nước mắm"],
     "image": "https://picsum.photos/seed/phuquoc-sauce/400/300"},
    {"name": "Trà Shan Tuyết Hà Giang", "price": "250000", "original_price": "290000",
     "stock_quantity": 40, "category": "tea", "origin": "Hà Giang", "weight": "200g",
     "tags": ["trà", "cổ thụ"], "image": "https://picsum.photos/seed/shan-tea/400/300"},
    {"name": "Bánh pía Sóc Trăng", "price": "65000", "stock_quantity": 150, "category": "sweets",
     "origin": "Sóc Trăng", "weight": "400g", "tags": ["bánh"],
     "image": "https://picsum.photos/seed/banh-pia/400/300"},
    {"name": "Hạt điều rang muối Bình Phước", "price": "230000", "stock_quantity": 70, "category": "nuts",
     "origin": "Bình Phước", "weight": "500g", "tags": ["hạt điều"],
     "image": "https://picsum.photos/seed/cashew/400/300"},
    {"name": "Mật ong hoa cà phê Tây Nguyên", "price": "160000", "stock_quantity": 3, "category": "honey",
     "origin": "Gia Lai", "weight": "500ml", "tags": ["mật ong"],
     "image": "https://picsum.photos/seed/honey/400/300"},
]


async def seed_products(sessions: async_sessionmaker) -> int:
    """Insert the sample catalog, skipping names that already exist."""
    added = 0
    async with sessions() as session:
        async with transaction(session):
            for p in SAMPLE_PRODUCTS:
                # avoid duplicates by name
                res = await session.execute(sa.select(Product.id).where(Product.name == p["name"]))
                if res.first():
                    continue
                data = dict(p)
                data["price"] = Decimal(data["price"])
                if "original_price" in data:
                    data["original_price"] = Decimal(data["original_price"])
                session.add(Product(**data))
                added += 1
    return added


async def amain():
    logging.basicConfig(level=logging.INFO)
    engine = build_engine()
    try:
        await init_db(engine)
        added = await seed_products(build_sessionmaker(engine))
        log.info("Seed complete. Added %s products.", added)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(amain())
