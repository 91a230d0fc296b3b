# backend/salonerp/routes/inventory.py
"""
Inventory (Stock Ledger) routes.

SECURITY: All routes require authentication.
- Read operations require VIEW_INVENTORY
- Movements, reservations and reversals require ADJUST_STOCK
- Product creation, movement approval and consistency checks require MANAGE_INVENTORY

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive.
- Movement list filters are half-open: start <= occurred_at < end.
"""
from flask import Blueprint, current_app, g, jsonify, request

from ..errors import SalonErpError
from ..models import Product, StockMovement
from ..services import stock_service
from ..validation import PayloadPolicy, query_datetime, query_int, validate_payload, KIND_BOOL, KIND_INT, KIND_STR
from ..decorators import require_auth, require_permission
from .common import error_response, internal_error, json_body


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

PRODUCT_CREATE_POLICY = PayloadPolicy(
    writable_fields={
        "sku", "name", "category", "unit",
        "min_stock", "max_stock", "reorder_level", "reorder_quantity",
        "cost_price_cents", "unit_price_cents", "selling_price_cents",
        "expiry_date", "batch_number",
    },
    required={"sku", "name", "max_stock"},
    extra_fields={"opening_stock": KIND_INT},
)

MOVEMENT_POLICY = PayloadPolicy(
    writable_fields={
        "quantity_delta", "movement_type", "reason", "note", "movement_key",
        "reference_type", "reference_id", "unit_cost_cents", "batch_number",
    },
    required={"quantity_delta", "movement_type"},
    extra_fields={"from_reservation": KIND_BOOL},
)

QUANTITY_POLICY = PayloadPolicy(
    writable_fields=set(),
    required={"quantity"},
    extra_fields={"quantity": KIND_INT},
)

REVERSAL_POLICY = PayloadPolicy(writable_fields={"reason"}, required={"reason"})

APPROVAL_POLICY = PayloadPolicy(writable_fields=set(), extra_fields={"notes": KIND_STR})

REJECTION_POLICY = PayloadPolicy(writable_fields=set(), required={"reason"}, extra_fields={"reason": KIND_STR})


@inventory_bp.post("/products")
@require_auth
@require_permission("MANAGE_INVENTORY")
def create_product_route():
    try:
        data = validate_payload(model=Product, payload=json_body(), policy=PRODUCT_CREATE_POLICY)
        data = {k: v for k, v in data.items() if v is not None}
        product = stock_service.create_product(g.salon_context, **data)
        return jsonify(product.to_dict()), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create product")


@inventory_bp.get("/products/<int:product_id>")
@require_auth
@require_permission("VIEW_INVENTORY")
def get_product_route(product_id: int):
    try:
        product = stock_service.get_product(g.salon_context, product_id)
        return jsonify(product.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load product")


@inventory_bp.post("/products/<int:product_id>/movements")
@require_auth
@require_permission("ADJUST_STOCK")
def apply_movement_route(product_id: int):
    """
    Apply a stock movement.

    Request body:
    {
        "quantity_delta": -2,
        "movement_type": "consumption",
        "reason": "Used in hair colour service",   (optional)
        "movement_key": "client-generated-uuid",    (optional, replay-safe)
        "from_reservation": false                   (optional)
    }

    Returns:
        201: Movement recorded
        400: Invalid input
        404: Product not found in this salon
        409: Insufficient stock
    """
    try:
        data = validate_payload(model=StockMovement, payload=json_body(), policy=MOVEMENT_POLICY)
        movement = stock_service.apply_movement(
            g.salon_context,
            product_id=product_id,
            quantity_delta=data["quantity_delta"],
            movement_type=data["movement_type"],
            reason=data.get("reason"),
            note=data.get("note"),
            movement_key=data.get("movement_key"),
            from_reservation=bool(data.get("from_reservation")),
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
            unit_cost_cents=data.get("unit_cost_cents"),
            batch_number=data.get("batch_number"),
        )
        product = stock_service.get_product(g.salon_context, product_id)
        return jsonify({"movement": movement.to_dict(), "product": product.to_dict()}), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to apply stock movement")


@inventory_bp.post("/products/<int:product_id>/reserve")
@require_auth
@require_permission("ADJUST_STOCK")
def reserve_stock_route(product_id: int):
    try:
        data = validate_payload(model=Product, payload=json_body(), policy=QUANTITY_POLICY)
        product = stock_service.reserve_stock(g.salon_context, product_id=product_id, quantity=data["quantity"])
        return jsonify(product.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reserve stock")


@inventory_bp.post("/products/<int:product_id>/release")
@require_auth
@require_permission("ADJUST_STOCK")
def release_reservation_route(product_id: int):
    try:
        data = validate_payload(model=Product, payload=json_body(), policy=QUANTITY_POLICY)
        product = stock_service.release_reservation(g.salon_context, product_id=product_id, quantity=data["quantity"])
        return jsonify(product.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to release reservation")


@inventory_bp.get("/movements")
@require_auth
@require_permission("VIEW_INVENTORY")
def list_movements_route():
    try:
        result = stock_service.list_movements(
            g.salon_context,
            product_id=query_int(request.args, "product_id"),
            movement_type=request.args.get("movement_type") or None,
            approval_status=request.args.get("approval_status") or None,
            start=query_datetime(request.args, "start"),
            end=query_datetime(request.args, "end"),
            page=query_int(request.args, "page", 1),
            per_page=query_int(request.args, "per_page", 50),
        )
        return jsonify(result), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list stock movements")


@inventory_bp.post("/movements/<int:movement_id>/reverse")
@require_auth
@require_permission("ADJUST_STOCK")
def reverse_movement_route(movement_id: int):
    try:
        data = validate_payload(model=StockMovement, payload=json_body(), policy=REVERSAL_POLICY)
        reversal = stock_service.reverse_movement(g.salon_context, movement_id=movement_id, reason=data["reason"])
        current_app.logger.info(
            "Stock movement %s reversed by staff %s (salon %s)",
            movement_id, g.salon_context.staff_id, g.salon_context.salon_id,
        )
        return jsonify(reversal.to_dict()), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reverse stock movement")


@inventory_bp.get("/low-stock")
@require_auth
@require_permission("VIEW_INVENTORY")
def low_stock_route():
    try:
        products = stock_service.low_stock(g.salon_context)
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load low-stock products")


@inventory_bp.get("/expiring-soon")
@require_auth
@require_permission("VIEW_INVENTORY")
def expiring_soon_route():
    try:
        products = stock_service.expiring_soon(
            g.salon_context, window_days=query_int(request.args, "days")
        )
        return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load expiring products")


@inventory_bp.get("/stats")
@require_auth
@require_permission("VIEW_INVENTORY")
def inventory_stats_route():
    try:
        return jsonify(stock_service.inventory_stats(g.salon_context)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute inventory stats")


@inventory_bp.get("/consistency")
@require_auth
@require_permission("MANAGE_INVENTORY")
def stock_consistency_route():
    try:
        mismatches = stock_service.verify_stock_consistency(
            g.salon_context, product_id=query_int(request.args, "product_id")
        )
        return jsonify({"consistent": not mismatches, "mismatches": mismatches}), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to verify stock consistency")


@inventory_bp.get("/movements/analytics")
@require_auth
@require_permission("VIEW_INVENTORY")
def movement_analytics_route():
    """Movement breakdown by type, day and product; defaults to the last 30 days."""
    try:
        result = stock_service.movement_analytics(
            g.salon_context,
            start=query_datetime(request.args, "start"),
            end=query_datetime(request.args, "end"),
            product_id=query_int(request.args, "product_id"),
        )
        return jsonify(result), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute movement analytics")


@inventory_bp.post("/movements/<int:movement_id>/approve")
@require_auth
@require_permission("MANAGE_INVENTORY")
def approve_movement_route(movement_id: int):
    try:
        data = validate_payload(model=StockMovement, payload=json_body(), policy=APPROVAL_POLICY)
        movement = stock_service.approve_movement(
            g.salon_context, movement_id=movement_id, notes=data.get("notes")
        )
        current_app.logger.info(
            "Stock movement %s approved by staff %s (salon %s)",
            movement_id, g.salon_context.staff_id, g.salon_context.salon_id,
        )
        return jsonify(movement.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to approve stock movement")


@inventory_bp.post("/movements/<int:movement_id>/reject")
@require_auth
@require_permission("MANAGE_INVENTORY")
def reject_movement_route(movement_id: int):
    """
    Reject a pending movement and reverse its stock effect.

    Returns:
        200: Movement rejected
        400: Missing reason, or the movement never needed approval
        404: Movement not found in this salon
        409: Already decided, or the stock has since been consumed
    """
    try:
        data = validate_payload(model=StockMovement, payload=json_body(), policy=REJECTION_POLICY)
        movement = stock_service.reject_movement(
            g.salon_context, movement_id=movement_id, reason=data["reason"]
        )
        current_app.logger.info(
            "Stock movement %s rejected by staff %s (salon %s)",
            movement_id, g.salon_context.staff_id, g.salon_context.salon_id,
        )
        return jsonify(movement.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reject stock movement")
