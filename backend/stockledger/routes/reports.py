from flask import Blueprint, jsonify, request

from ..decorators import handles_ledger_errors
from ..services import reporting_service
from ..validation import parse_optional_datetime


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/<kind>")
@handles_ledger_errors("run report")
def run_report_route(kind):
    """
    GET /api/reports/<kind>?start=YYYY-MM-DD&end=YYYY-MM-DD

    kind: pnl, cashflow, ar, layaway, sales-by-product, sales-by-person,
    processed-orders, to-order, batches, dashboard.
    Bare dates cover whole days (inclusive on both ends).
    """
    start = parse_optional_datetime(request.args.get("start"), "start")
    end = parse_optional_datetime(request.args.get("end"), "end")

    result = reporting_service.run_report(kind, start, end)
    report = reporting_service.report_to_dict(result)
    report["kind"] = kind
    return jsonify(report), 200
