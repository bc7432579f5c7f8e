# Overview: Service-layer operations for barcode scan verification and stock sync.

"""
Scanner Service - scan -> verify -> sync

WHY: A scanned barcode must never move stock on its own. The scan becomes a
draft (quantity 0, unverified) that the operator completes and confirms;
only the confirmation calls the stock adjuster.

STATE MACHINE (one ScanSession per operator at a branch):
    IDLE --start_scan--> DRAFTING --confirm_and_sync--> SYNCING --> IDLE
    DRAFTING --clear_active_draft--> IDLE
At most one draft is active; a new scan replaces an unconfirmed one.

The session is a plain value passed into every function. Callers own it
(see ScanSessionRegistry for the HTTP layer).

PRODUCT RESOLUTION (confirm):
1. Exact GTIN match.
2. Only when the draft has no GTIN: raw scanned payload == SKU or product id.
3. Otherwise the draft goes to history as ERROR; stock is untouched.

HISTORY: newest first, bounded deques (500 scans, 200 sync logs), oldest
evicted on overflow.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Callable, Iterable

from ..models import ProductBatch
from ..validation import ValidationError, coerce_field
from pharmapos.time_utils import utcnow, parse_iso_date, to_utc_z, to_iso_date
from .inventory_service import ProductNotFoundError, adjust_stock
from .products_service import list_products


STATE_IDLE = "IDLE"
STATE_DRAFTING = "DRAFTING"
STATE_SYNCING = "SYNCING"

SYNC_PENDING = "PENDING"
SYNC_SYNCED = "SYNCED"
SYNC_ERROR = "ERROR"

DEFAULT_UNIT = "STRIP"
DEFAULT_HISTORY_LIMIT = 500
DEFAULT_LOG_LIMIT = 200

SYNCED_MESSAGE = "Verified & Added"
NOT_FOUND_MESSAGE = "Product not found. Please add to master list first."

EDITABLE_DRAFT_FIELDS = {
    "quantity",
    "unit",
    "batch_number",
    "expiry_date",
    "serial_number",
    "location",
    "cost_price_cents",
}


class ScanStateError(ValueError):
    """Transition not allowed from the session's current state."""


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class ScanRecord:
    """A decoded barcode (GS1 element strings already split by the reader)."""
    gtin: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    serial_number: str | None = None
    raw_data: str | None = None
    scan_type: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "ScanRecord":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        def _text(key: str) -> str | None:
            value = payload.get(key)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        try:
            expiry = parse_iso_date(payload.get("expiry_date"))
        except ValueError:
            raise ValidationError("expiry_date must be an ISO-8601 date")

        record = cls(
            gtin=_text("gtin"),
            batch_number=_text("batch_number"),
            expiry_date=expiry,
            serial_number=_text("serial_number"),
            raw_data=_text("raw_data"),
            scan_type=_text("type"),
        )
        if record.gtin is None and record.raw_data is None:
            raise ValidationError("gtin or raw_data is required")
        return record


@dataclass
class ScannedItem:
    id: str
    gtin: str | None
    product_name: str = ""
    product_id: int | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    serial_number: str | None = None
    quantity: int = 0
    unit: str = DEFAULT_UNIT
    location: str | None = None
    cost_price_cents: int | None = None
    raw_data: str | None = None
    scan_type: str | None = None
    sync_status: str = SYNC_PENDING
    sync_message: str | None = None
    verified: bool = False
    scanned_by: str = "Unknown"
    scanned_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gtin": self.gtin,
            "product_name": self.product_name,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "expiry_date": to_iso_date(self.expiry_date),
            "serial_number": self.serial_number,
            "quantity": self.quantity,
            "unit": self.unit,
            "location": self.location,
            "cost_price_cents": self.cost_price_cents,
            "raw_data": self.raw_data,
            "type": self.scan_type,
            "sync_status": self.sync_status,
            "sync_message": self.sync_message,
            "verified": self.verified,
            "scanned_by": self.scanned_by,
            "scanned_at": to_utc_z(self.scanned_at),
        }


@dataclass(frozen=True)
class SyncLog:
    id: str
    scan_id: str
    product_name: str
    old_quantity: int
    new_quantity: int
    action: str = "UPDATE"
    status: str = "SUCCESS"
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "scan_id": self.scan_id,
            "action": self.action,
            "product_name": self.product_name,
            "old_quantity": self.old_quantity,
            "new_quantity": self.new_quantity,
            "timestamp": to_utc_z(self.timestamp),
            "status": self.status,
        }


@dataclass
class ScanSession:
    branch_id: int | None = None
    default_unit: str = DEFAULT_UNIT
    history_limit: int = DEFAULT_HISTORY_LIMIT
    log_limit: int = DEFAULT_LOG_LIMIT
    state: str = STATE_IDLE
    active_draft: ScannedItem | None = None
    history: deque = field(init=False)
    logs: deque = field(init=False)
    # Guards the state check and transition into SYNCING
    lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.history = deque(maxlen=self.history_limit)
        self.logs = deque(maxlen=self.log_limit)

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "state": self.state,
            "active_draft": self.active_draft.to_dict() if self.active_draft else None,
            "history": [item.to_dict() for item in self.history],
            "sync_logs": [log.to_dict() for log in self.logs],
        }


def find_by_gtin(gtin: str | None, products: Iterable):
    if not gtin:
        return None
    for p in products:
        if p.gtin == gtin:
            return p
    return None


def resolve_product(draft: ScannedItem, products: Iterable):
    """GTIN first; the raw-payload fallback applies only to drafts with no GTIN."""
    products = list(products)
    if draft.gtin:
        return find_by_gtin(draft.gtin, products)

    raw = draft.raw_data
    if not raw:
        return None
    for p in products:
        if p.sku == raw or str(p.id) == raw:
            return p
    return None


def start_scan(
    session: ScanSession,
    record: ScanRecord,
    *,
    products: Iterable | None = None,
    scanned_by: str | None = None,
) -> ScannedItem:
    """
    Open a verification draft for a scanned code.

    The draft starts at quantity 0; a GTIN match only pre-fills the product
    name and unit. Any earlier unconfirmed draft is replaced.
    """
    if session.state == STATE_SYNCING:
        raise ScanStateError("a scan is being synced")

    draft = ScannedItem(
        id=_new_id(),
        gtin=record.gtin,
        batch_number=record.batch_number,
        expiry_date=record.expiry_date,
        serial_number=record.serial_number,
        raw_data=record.raw_data,
        scan_type=record.scan_type,
        unit=session.default_unit,
        scanned_by=scanned_by or "Unknown",
    )

    catalog = products if products is not None else list_products(session.branch_id)
    match = find_by_gtin(draft.gtin, catalog)
    if match is not None:
        draft.product_name = match.name_en
        draft.product_id = match.id
        draft.unit = match.unit

    session.active_draft = draft
    session.state = STATE_DRAFTING
    return draft


def apply_draft_edits(draft: ScannedItem, payload: dict) -> ScannedItem:
    """
    Return a copy of `draft` with the operator's edits applied.

    Only quantity/unit/batch/expiry/serial/location/cost can be edited.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    changes = {}
    for key, value in payload.items():
        if key == "id":
            continue
        if key not in EDITABLE_DRAFT_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

        if key in ("quantity", "cost_price_cents"):
            value = coerce_field(ProductBatch, key, value)
            if value is None:
                if key == "quantity":
                    raise ValidationError("quantity cannot be null")
                changes[key] = None
                continue
            if key == "cost_price_cents" and value < 0:
                raise ValidationError("cost_price_cents must be >= 0")
            changes[key] = value
        elif key == "expiry_date":
            try:
                changes[key] = parse_iso_date(value)
            except ValueError:
                raise ValidationError("expiry_date must be an ISO-8601 date")
        elif key == "unit":
            unit = str(value or "").strip()
            if not unit:
                raise ValidationError("unit cannot be blank")
            changes[key] = unit
        else:
            changes[key] = (str(value).strip() or None) if value is not None else None

    return replace(draft, **changes)


def _push_history(session: ScanSession, item: ScannedItem) -> None:
    session.history.appendleft(item)


def _record_not_found(session: ScanSession, draft: ScannedItem) -> bool:
    error_item = replace(
        draft,
        sync_status=SYNC_ERROR,
        sync_message=NOT_FOUND_MESSAGE,
        verified=True,
    )
    _push_history(session, error_item)
    session.active_draft = None
    session.state = STATE_IDLE
    return False


def confirm_and_sync(
    session: ScanSession,
    draft: ScannedItem,
    *,
    products: Iterable | None = None,
    adjust: Callable = adjust_stock,
) -> bool:
    """
    Resolve the confirmed draft to a product and push its quantity to stock.

    Returns True when stock was adjusted, False when the product could not
    be found (the draft is kept in history as ERROR). Storage failures
    propagate and leave the draft active so the operator can confirm again.
    """
    with session.lock:
        if session.state != STATE_DRAFTING or session.active_draft is None:
            raise ScanStateError("no active scan to confirm")
        if draft.id != session.active_draft.id:
            raise ScanStateError("draft does not match the active scan")
        session.state = STATE_SYNCING

    try:
        catalog = products if products is not None else list_products(session.branch_id)
        product = resolve_product(draft, catalog)
        if product is None:
            return _record_not_found(session, draft)

        # Snapshot before the adjuster commits and the row is reloaded
        product_id = product.id
        product_name = product.name_en
        old_quantity = product.stock_level

        try:
            adjust(
                product_id,
                draft.quantity,
                batch_number=draft.batch_number,
                unit=draft.unit,
                location=draft.location,
                expiry_date=draft.expiry_date,
                cost_price_cents=draft.cost_price_cents,
            )
        except ProductNotFoundError:
            return _record_not_found(session, draft)
    except Exception:
        session.state = STATE_DRAFTING
        raise

    final_item = replace(
        draft,
        product_id=product_id,
        product_name=product_name,
        sync_status=SYNC_SYNCED,
        sync_message=SYNCED_MESSAGE,
        verified=True,
    )
    _push_history(session, final_item)
    session.logs.appendleft(
        SyncLog(
            id=f"log-{_new_id()}",
            scan_id=final_item.id,
            product_name=product_name,
            old_quantity=old_quantity,
            new_quantity=old_quantity + final_item.quantity,
        )
    )
    session.active_draft = None
    session.state = STATE_IDLE
    return True


def clear_active_draft(session: ScanSession) -> None:
    """Discard the unconfirmed draft; nothing is written to history or logs."""
    if session.state == STATE_SYNCING:
        raise ScanStateError("a scan is being synced")
    session.active_draft = None
    session.state = STATE_IDLE


def clear_history(session: ScanSession) -> None:
    session.history.clear()
    session.logs.clear()


def retry_sync(session: ScanSession, scan_id: str) -> None:
    # Retry semantics for failed syncs are not defined yet.
    raise NotImplementedError("retrying a failed sync is not supported")


class ScanSessionRegistry:
    """In-process ScanSession store, one per (branch_id, operator)."""

    def __init__(
        self,
        *,
        default_unit: str = DEFAULT_UNIT,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        log_limit: int = DEFAULT_LOG_LIMIT,
    ):
        self.default_unit = default_unit
        self.history_limit = history_limit
        self.log_limit = log_limit
        self._sessions: dict[tuple, ScanSession] = {}
        self._lock = threading.Lock()

    def get(self, branch_id: int | None, operator: str) -> ScanSession:
        key = (branch_id, operator)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = ScanSession(
                    branch_id=branch_id,
                    default_unit=self.default_unit,
                    history_limit=self.history_limit,
                    log_limit=self.log_limit,
                )
                self._sessions[key] = session
            return session

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()
