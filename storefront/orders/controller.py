import math
from typing import Optional, Tuple

from prometheus_client import Counter
from quart import Blueprint, current_app, g, jsonify, request

from ..common.auth import admin_required, login_required
from ..common.config import settings
from ..common.errors import Forbidden, InsufficientStock, ProductNotFound, ValidationError
from ..common.validation import parse_command
from ..inventory.service import fetch_stock_levels
from . import engine, events
from .model import OrderStatus
from .queries import get_order, list_orders, serialize_order
from .schemas import CreateOrderCommand, StatusUpdateCommand
from .status import parse_status

bp = Blueprint("orders", __name__, url_prefix="/orders")

ORDERS_CREATED = Counter("orders_created_total", "Orders placed successfully", ["payment_method"])
ORDERS_REJECTED = Counter("orders_rejected_total", "Checkouts rejected by the order engine", ["reason"])
ORDERS_CANCELLED = Counter("orders_cancelled_total", "Orders cancelled with stock restored")


def _page_args(default_limit: int) -> Tuple[int, int, Optional[OrderStatus]]:
    try:
        page = int(request.args.get("page", 1))
        limit = int(request.args.get("limit", default_limit))
    except ValueError:
        raise ValidationError("page and limit must be integers")
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")
    limit = min(limit, settings.MAX_PAGE_SIZE)
    raw_status = request.args.get("status")
    status = parse_status(raw_status) if raw_status else None
    return page, limit, status


def _paginated(message: str, orders, total: int, page: int, limit: int, include_items: bool):
    return jsonify({
        "status": "success",
        "message": message,
        "data": [serialize_order(o, include_items=include_items) for o in orders],
        "meta": {"total": total, "page": page, "limit": limit, "pages": math.ceil(total / limit) if total else 0},
    })


async def _notify(event_type: str, session, order, stock_changed: bool = True) -> None:
    levels = {}
    if stock_changed:
        levels = await fetch_stock_levels(session, (item.product_id for item in order.items))
    await session.commit()  # release the read transaction before network I/O
    await events.order_changed(event_type, order, levels)


@bp.post("")
@login_required
async def order_create():
    command = parse_command(CreateOrderCommand, await request.get_json(silent=True))
    async with current_app.db_sessions() as session:
        try:
            order = await engine.create_order(session, g.caller.id, command)
        except (ProductNotFound, InsufficientStock) as e:
            ORDERS_REJECTED.labels(reason=e.reason).inc()
            raise
        ORDERS_CREATED.labels(payment_method=order.payment_method.value).inc()
        await _notify("order.created", session, order)
        order = await get_order(session, order.id)
        data = serialize_order(order)
    return jsonify({"status": "success", "message": "Order created successfully", "data": data}), 201


@bp.get("")
@admin_required
async def orders_all():
    page, limit, status = _page_args(settings.ADMIN_PAGE_SIZE)
    async with current_app.db_sessions() as session:
        orders, total = await list_orders(session, status=status, page=page, limit=limit)
        return _paginated("All orders retrieved successfully", orders, total, page, limit, include_items=False)


@bp.get("/user/<int:user_id>")
@login_required
async def orders_for_user(user_id: int):
    if g.caller.id != user_id and not g.caller.is_admin:
        raise Forbidden("You can only view your own orders")
    page, limit, status = _page_args(settings.USER_PAGE_SIZE)
    async with current_app.db_sessions() as session:
        orders, total = await list_orders(session, user_id=user_id, status=status, page=page, limit=limit)
        return _paginated("Orders retrieved successfully", orders, total, page, limit, include_items=True)


@bp.get("/<int:order_id>")
@login_required
async def order_detail(order_id: int):
    async with current_app.db_sessions() as session:
        order = await get_order(session, order_id)
        if order.user_id != g.caller.id and not g.caller.is_admin:
            raise Forbidden("You can only view your own orders")
        data = serialize_order(order)
    return jsonify({"status": "success", "message": "Order retrieved successfully", "data": data})


@bp.put("/<int:order_id>/cancel")
@login_required
async def order_cancel(order_id: int):
    async with current_app.db_sessions() as session:
        order = await engine.cancel_order(session, order_id, g.caller)
        ORDERS_CANCELLED.inc()
        await _notify("order.cancelled", session, order)
        data = serialize_order(await get_order(session, order_id))
    return jsonify({"status": "success", "message": "Order cancelled successfully", "data": data})


@bp.put("/<int:order_id>/status")
@admin_required
async def order_status_update(order_id: int):
    command = parse_command(StatusUpdateCommand, await request.get_json(silent=True))
    async with current_app.db_sessions() as session:
        order = await engine.update_status(session, order_id, command.status)
        if command.status is OrderStatus.CANCELLED:
            ORDERS_CANCELLED.inc()
            await _notify("order.cancelled", session, order)
        else:
            await _notify("order.status_changed", session, order, stock_changed=False)
        data = serialize_order(await get_order(session, order_id))
    return jsonify({"status": "success", "message": "Order status updated successfully", "data": data})
