# Overview: Flask API routes for the scan -> verify -> sync workflow.

# backend/pharmapos/routes/scanner.py
"""
Scanner routes.

Each operator (X-Operator-Name header) gets one scan session per branch
(?branch_id=). The session holds the single active draft plus the capped
scan history and sync logs; see services/scanner_service.py.
"""
from flask import Blueprint, request, current_app, g

from ..services import scanner_service
from ..services.scanner_service import ScanRecord, ScanStateError
from ..validation import ValidationError

scanner_bp = Blueprint("scanner", __name__, url_prefix="/api/scanner")


def _current_session():
    branch_id = request.args.get("branch_id", type=int)
    registry = current_app.extensions["scan_sessions"]
    return registry.get(branch_id, g.operator_name)


@scanner_bp.get("/session")
def get_session_route():
    return _current_session().to_dict()


@scanner_bp.post("/scan")
def start_scan_route():
    """
    Open a verification draft for a decoded scan.

    Body: gtin, batch_number, expiry_date, serial_number, raw_data, type.
    """
    payload = request.get_json(silent=True) or {}
    session = _current_session()

    try:
        record = ScanRecord.from_payload(payload)
        draft = scanner_service.start_scan(session, record, scanned_by=g.operator_name)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ScanStateError as e:
        return {"error": str(e)}, 409

    if not draft.product_name:
        current_app.logger.warning("Scanned code gtin=%s raw=%s has no matching product", draft.gtin, draft.raw_data)

    return {"draft": draft.to_dict(), "state": session.state}, 201


@scanner_bp.post("/confirm")
def confirm_route():
    """
    Confirm the active draft with the operator's edits and sync stock.

    Body: id (active draft id) plus any of quantity, unit, batch_number,
    expiry_date, serial_number, location, cost_price_cents.
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400
    session = _current_session()

    if session.active_draft is None:
        return {"error": "no active scan to confirm"}, 409
    if payload.get("id") not in (None, session.active_draft.id):
        return {"error": "draft does not match the active scan"}, 409

    try:
        draft = scanner_service.apply_draft_edits(session.active_draft, payload)
        synced = scanner_service.confirm_and_sync(session, draft)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ScanStateError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to sync scan %s", session.active_draft.id)
        return {"error": "Internal server error"}, 500

    item = session.history[0]
    if not synced:
        current_app.logger.warning("Scan %s could not be resolved to a product", item.id)
        return {"synced": False, "error": item.sync_message, "item": item.to_dict()}, 404

    current_app.logger.info("Scan %s synced by %s", item.id, item.scanned_by)
    return {"synced": True, "item": item.to_dict(), "log": session.logs[0].to_dict()}


@scanner_bp.delete("/draft")
def clear_draft_route():
    session = _current_session()
    try:
        scanner_service.clear_active_draft(session)
    except ScanStateError as e:
        return {"error": str(e)}, 409
    return {"state": session.state}


@scanner_bp.delete("/history")
def clear_history_route():
    session = _current_session()
    scanner_service.clear_history(session)
    return {"history": [], "sync_logs": []}


@scanner_bp.post("/history/<scan_id>/retry")
def retry_sync_route(scan_id: str):
    session = _current_session()
    try:
        scanner_service.retry_sync(session, scan_id)
    except NotImplementedError as e:
        return {"error": str(e)}, 501
    return {"state": session.state}
