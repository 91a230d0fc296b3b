# backend/salonerp/routes/financial.py
"""
Financial rollup routes (VIEW_FINANCIALS).

?period= one of daily, weekly, monthly (default), yearly. Periods follow the
salon's timezone.
"""
from flask import Blueprint, g, jsonify, request

from ..errors import SalonErpError
from ..services import rollup_service
from ..decorators import require_auth, require_permission
from .common import error_response, internal_error

financial_bp = Blueprint("financial", __name__, url_prefix="/api/financial")


@financial_bp.get("/dashboard")
@require_auth
@require_permission("VIEW_FINANCIALS")
def dashboard_route():
    try:
        period = request.args.get("period") or rollup_service.PERIOD_MONTHLY
        return jsonify(rollup_service.dashboard(g.salon_context, period=period)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to build financial dashboard")


@financial_bp.get("/expenses/stats")
@require_auth
@require_permission("VIEW_FINANCIALS")
def expense_stats_route():
    try:
        period = request.args.get("period") or rollup_service.PERIOD_MONTHLY
        return jsonify(rollup_service.expense_stats(g.salon_context, period=period)), 200
    except SalonErpError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to build expense stats")
