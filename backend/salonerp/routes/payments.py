# backend/salonerp/routes/payments.py
"""
Payment Reconciliation API Routes

DESIGN:
- Record payments against bills (split and partial payments supported)
- Pending payments are verified or failed later
- Idempotency-Key header (or idempotency_key field) makes POSTs retry-safe

SECURITY:
- RECORD_PAYMENT to record payments
- VERIFY_PAYMENT to verify or fail pending payments
- VIEW_BILLS for payment queries
"""

from flask import Blueprint, g, jsonify, request

from ..errors import SalonErpError
from ..models import Payment
from ..services import payment_service
from ..validation import KIND_BOOL, KIND_STR, PayloadPolicy, query_datetime, query_int, validate_payload
from ..decorators import require_auth, require_permission
from .common import error_response, internal_error, json_body


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

PAYMENT_CREATE_POLICY = PayloadPolicy(
    writable_fields={
        "bill_id", "amount_cents", "method", "reference_number",
        "idempotency_key", "received_by_staff_id", "paid_at", "notes",
    },
    required={"bill_id", "amount_cents", "method"},
    extra_fields={"verify": KIND_BOOL},
)

FAIL_POLICY = PayloadPolicy(writable_fields={"failure_reason"}, extra_fields={"reason": KIND_STR})


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("")
@require_auth
@require_permission("RECORD_PAYMENT")
def record_payment_route():
    """
    Record a payment against a bill.

    Request body:
    {
        "bill_id": 123,
        "amount_cents": 150000,
        "method": "upi",
        "reference_number": "UPI-8842",   (optional)
        "idempotency_key": "uuid",        (optional; or Idempotency-Key header)
        "verify": true                    (optional, default true)
    }

    Returns:
        201: Payment recorded, with the bill's payment summary
        400: Invalid input, void bill, or (strict mode) overpayment
        404: Bill not found
    """
    try:
        data = validate_payload(model=Payment, payload=json_body(), policy=PAYMENT_CREATE_POLICY)
        idempotency_key = data.get("idempotency_key") or request.headers.get("Idempotency-Key")
        verify = data.get("verify")

        payment = payment_service.record_payment(
            g.salon_context,
            bill_id=data["bill_id"],
            amount_cents=data["amount_cents"],
            method=data["method"],
            received_by=data.get("received_by_staff_id"),
            idempotency_key=idempotency_key,
            reference_number=data.get("reference_number"),
            verify=True if verify is None else verify,
            notes=data.get("notes"),
            paid_at=data.get("paid_at"),
        )
        summary = payment_service.get_payment_summary(g.salon_context, payment.bill_id)

        return jsonify({"payment": payment.to_dict(), "summary": summary}), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to record payment")


@payments_bp.post("/<int:payment_id>/verify")
@require_auth
@require_permission("VERIFY_PAYMENT")
def verify_payment_route(payment_id: int):
    try:
        payment = payment_service.verify_payment(g.salon_context, payment_id=payment_id)
        summary = payment_service.get_payment_summary(g.salon_context, payment.bill_id)
        return jsonify({"payment": payment.to_dict(), "summary": summary}), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to verify payment")


@payments_bp.post("/<int:payment_id>/fail")
@require_auth
@require_permission("VERIFY_PAYMENT")
def fail_payment_route(payment_id: int):
    try:
        data = validate_payload(model=Payment, payload=json_body(), policy=FAIL_POLICY)
        reason = data.get("reason") or data.get("failure_reason")
        payment = payment_service.fail_payment(g.salon_context, payment_id=payment_id, reason=reason)
        return jsonify({"payment": payment.to_dict()}), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to mark payment as failed")


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("")
@require_auth
@require_permission("VIEW_BILLS")
def list_payments_route():
    try:
        result = payment_service.list_payments(
            g.salon_context,
            bill_id=query_int(request.args, "bill_id"),
            method=request.args.get("method") or None,
            status=request.args.get("status") or None,
            start=query_datetime(request.args, "start"),
            end=query_datetime(request.args, "end"),
            page=query_int(request.args, "page", 1),
            per_page=query_int(request.args, "per_page", 50),
        )
        return jsonify(result), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list payments")


@payments_bp.get("/bills/<int:bill_id>/summary")
@require_auth
@require_permission("VIEW_BILLS")
def payment_summary_route(bill_id: int):
    try:
        return jsonify(payment_service.get_payment_summary(g.salon_context, bill_id)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to load payment summary")
