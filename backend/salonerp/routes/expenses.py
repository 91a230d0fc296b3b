# backend/salonerp/routes/expenses.py
"""Expense routes. All require MANAGE_EXPENSES."""

from flask import Blueprint, current_app, g, jsonify, request

from ..errors import SalonErpError
from ..models import Expense
from ..services import expense_service
from ..validation import KIND_STR, PayloadPolicy, query_datetime, query_int, validate_payload
from ..decorators import require_auth, require_permission
from .common import error_response, internal_error, json_body


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")

EXPENSE_CREATE_POLICY = PayloadPolicy(
    writable_fields={"title", "category", "amount_cents", "payment_method", "expense_date", "status", "notes"},
    required={"title", "category", "amount_cents", "payment_method"},
)

CANCEL_POLICY = PayloadPolicy(writable_fields={"cancel_reason"}, extra_fields={"reason": KIND_STR})


@expenses_bp.post("")
@require_auth
@require_permission("MANAGE_EXPENSES")
def create_expense_route():
    try:
        data = validate_payload(model=Expense, payload=json_body(), policy=EXPENSE_CREATE_POLICY)
        data = {k: v for k, v in data.items() if v is not None}
        expense = expense_service.create_expense(g.salon_context, **data)
        return jsonify(expense.to_dict()), 201
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create expense")


@expenses_bp.get("")
@require_auth
@require_permission("MANAGE_EXPENSES")
def list_expenses_route():
    try:
        result = expense_service.list_expenses(
            g.salon_context,
            category=request.args.get("category") or None,
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
        return internal_error("Failed to list expenses")


@expenses_bp.post("/<int:expense_id>/cancel")
@require_auth
@require_permission("MANAGE_EXPENSES")
def cancel_expense_route(expense_id: int):
    try:
        data = validate_payload(model=Expense, payload=json_body(), policy=CANCEL_POLICY)
        expense = expense_service.cancel_expense(
            g.salon_context,
            expense_id=expense_id,
            reason=data.get("reason") or data.get("cancel_reason"),
        )
        current_app.logger.info("Expense %s cancelled by staff %s", expense_id, g.salon_context.staff_id)
        return jsonify(expense.to_dict()), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to cancel expense")
