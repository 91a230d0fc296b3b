# backend/salonerp/routes/bills.py
"""
Billing API routes.

SECURITY:
- CREATE_BILL to create bills
- VIEW_BILLS to read them
- OVERRIDE_BILL_PAYMENT for administrative payment overrides and voids
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import SalonErpError
from ..models import Bill
from ..services import billing_service
from ..validation import KIND_LIST, KIND_STR, PayloadPolicy, query_datetime, query_int, validate_payload
from ..decorators import require_auth, require_permission
from .common import error_response, internal_error, json_body


bills_bp = Blueprint("bills", __name__, url_prefix="/api/bills")

BILL_CREATE_POLICY = PayloadPolicy(
    writable_fields={"customer_id", "appointment_id", "discount_cents", "tax_cents", "bill_date", "notes"},
    required={"customer_id"},
    extra_fields={"service_lines": KIND_LIST, "product_lines": KIND_LIST},
)

PAYMENT_OVERRIDE_POLICY = PayloadPolicy(
    writable_fields={"payment_method", "paid_amount_cents", "payment_status"},
)

VOID_POLICY = PayloadPolicy(writable_fields={"void_reason"}, extra_fields={"reason": KIND_STR})


@bills_bp.post("")
@require_auth
@require_permission("CREATE_BILL")
def create_bill_route():
    """
    Create a bill.

    Request body:
    {
        "customer_id": 7,
        "service_lines": [{"service_id": 3, "quantity": 1, "stylist_staff_id": 4}],
        "product_lines": [{"product_id": 9, "quantity": 2}],
        "discount_cents": 500,   (optional)
        "tax_cents": 900         (optional)
    }

    Returns:
        201: Bill with lines
        400: Invalid input
        404: Customer not found
        409: Insufficient stock for a product line
    """
    try:
        data = validate_payload(model=Bill, payload=json_body(), policy=BILL_CREATE_POLICY)
        bill = billing_service.create_bill(
            g.salon_context,
            customer_id=data["customer_id"],
            service_lines=data.get("service_lines"),
            product_lines=data.get("product_lines"),
            discount_cents=data.get("discount_cents") or 0,
            tax_cents=data.get("tax_cents") or 0,
            appointment_id=data.get("appointment_id"),
            bill_date=data.get("bill_date"),
            notes=data.get("notes"),
        )
        return jsonify(billing_service.get_bill(g.salon_context, bill.id)), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create bill")


@bills_bp.get("")
@require_auth
@require_permission("VIEW_BILLS")
def list_bills_route():
    try:
        result = billing_service.list_bills(
            g.salon_context,
            payment_status=request.args.get("payment_status") or None,
            customer_id=query_int(request.args, "customer_id"),
            start=query_datetime(request.args, "start"),
            end=query_datetime(request.args, "end"),
            page=query_int(request.args, "page", 1),
            per_page=query_int(request.args, "per_page", 50),
        )
        return jsonify(result), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list bills")


@bills_bp.get("/<int:bill_id>")
@require_auth
@require_permission("VIEW_BILLS")
def get_bill_route(bill_id: int):
    try:
        return jsonify(billing_service.get_bill(g.salon_context, bill_id)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load bill")


@bills_bp.patch("/<int:bill_id>/payment")
@require_auth
@require_permission("OVERRIDE_BILL_PAYMENT")
def update_payment_fields_route(bill_id: int):
    """Administrative override of payment_method / paid_amount_cents / payment_status."""
    try:
        data = validate_payload(model=Bill, payload=json_body(), policy=PAYMENT_OVERRIDE_POLICY)
        bill = billing_service.update_payment_fields(g.salon_context, bill_id=bill_id, **data)
        current_app.logger.info(
            "Bill %s payment fields overridden by staff %s: %s",
            bill.bill_number, g.salon_context.staff_id, sorted(data),
        )
        return jsonify(billing_service.get_bill(g.salon_context, bill_id)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to override bill payment fields")


@bills_bp.post("/<int:bill_id>/void")
@require_auth
@require_permission("OVERRIDE_BILL_PAYMENT")
def void_bill_route(bill_id: int):
    try:
        data = validate_payload(model=Bill, payload=json_body(), policy=VOID_POLICY)
        reason = data.get("reason") or data.get("void_reason")
        bill = billing_service.void_bill(g.salon_context, bill_id=bill_id, reason=reason)
        current_app.logger.info(
            "Bill %s voided by staff %s", bill.bill_number, g.salon_context.staff_id,
        )
        return jsonify(billing_service.get_bill(g.salon_context, bill_id)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to void bill")
