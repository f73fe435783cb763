from quart import Blueprint, current_app, jsonify, request

from ..common.auth import admin_required
from ..common.errors import ValidationError
from ..common.validation import parse_command
from .service import (
    ProductCreate,
    ProductUpdate,
    create_product,
    delete_product,
    get_product,
    get_stock,
    list_products,
    update_product,
)

bp = Blueprint("inventory", __name__)


async def _json_body() -> dict:
    data = await request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body must be JSON")
    return data


@bp.get("/products")
async def products_list():
    category = request.args.get("category")
    async with current_app.db_sessions() as session:
        items = await list_products(session, category=category)
    return jsonify({"status": "success", "message": "Products retrieved successfully", "data": items})


@bp.get("/products/<int:product_id>")
async def product_detail(product_id: int):
    async with current_app.db_sessions() as session:
        prod = await get_product(session, product_id)
    return jsonify({"status": "success", "message": "Product retrieved successfully", "data": prod})


@bp.get("/products/<int:product_id>/stock")
async def product_stock(product_id: int):
    async with current_app.db_sessions() as session:
        stock = await get_stock(session, product_id)
    return jsonify({"status": "success", "message": "Stock retrieved successfully",
                    "data": {"product_id": product_id, "stock_quantity": stock}})


@bp.post("/products")
@admin_required
async def product_create():
    payload = parse_command(ProductCreate, await _json_body())
    async with current_app.db_sessions() as session:
        prod = await create_product(session, payload)
    return jsonify({"status": "success", "message": "Product created successfully", "data": prod}), 201


@bp.put("/products/<int:product_id>")
@admin_required
async def product_update(product_id: int):
    payload = parse_command(ProductUpdate, await _json_body())
    async with current_app.db_sessions() as session:
        prod = await update_product(session, product_id, payload)
    return jsonify({"status": "success", "message": "Product updated successfully", "data": prod})


@bp.delete("/products/<int:product_id>")
@admin_required
async def product_delete(product_id: int):
    async with current_app.db_sessions() as session:
        await delete_product(session, product_id)
    return jsonify({"status": "success", "message": "Product deleted successfully"})
