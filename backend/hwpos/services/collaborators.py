# Overview: External collaborator interfaces (catalog, inventory) and the inventory retry queue.

"""
Collaborators

WHY: Product pricing and stock keeping live outside the settlement core.
The core talks to them through two small interfaces; an app installs real
implementations via create_app(catalog=..., inventory=...).

INVENTORY IS EVENTUALLY CONSISTENT:
Stock moves are requested only after the sale has committed. A failed call
never touches the financial records; the request is parked in
pending_inventory_requests and retried later (CLI: inventory retry-pending).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from flask import current_app

from ..errors import CollaboratorError, ValidationError
from ..extensions import COLLABORATORS_KEY, db
from ..models import PendingInventoryRequest
from hwpos.time_utils import utcnow


OP_DECREMENT = "DECREMENT"
OP_RESTOCK = "RESTOCK"

REQUEST_PENDING = "PENDING"
REQUEST_DONE = "DONE"


# =============================================================================
# INTERFACES
# =============================================================================

class ProductCatalog(ABC):
    """Read-only product lookup used to price cart lines."""

    @abstractmethod
    def get_by_id(self, product_id: int) -> dict | None:
        """Return {"unit_price_cents", "sku", "name", ...} or None."""
        ...


class InventoryService(ABC):
    """Stock keeping. Calls may fail; callers treat failure as non-fatal."""

    @abstractmethod
    def decrement(self, product_id: int, quantity: int, reason_tag: str) -> None:
        ...

    @abstractmethod
    def restock(self, product_id: int, quantity: int, reason_tag: str) -> None:
        ...


# =============================================================================
# DEFAULT IMPLEMENTATIONS
# =============================================================================

class InMemoryProductCatalog(ProductCatalog):
    def __init__(self, products: dict[int, dict] | None = None):
        self._products = dict(products or {})

    def add_product(self, product_id: int, *, unit_price_cents: int, sku: str | None = None, name: str | None = None) -> None:
        self._products[product_id] = {
            "id": product_id,
            "unit_price_cents": unit_price_cents,
            "sku": sku,
            "name": name,
        }

    def get_by_id(self, product_id: int) -> dict | None:
        return self._products.get(product_id)


class LoggingInventoryService(InventoryService):
    """
    Records stock moves in memory and the app log.

    Stand-in until a real stock service is wired; the recorded moves also
    make settlement behavior observable in tests.
    """

    def __init__(self):
        self.moves: list[tuple[str, int, int, str]] = []

    def decrement(self, product_id: int, quantity: int, reason_tag: str) -> None:
        self.moves.append((OP_DECREMENT, product_id, quantity, reason_tag))
        current_app.logger.info("Inventory decrement product=%s qty=%s (%s)", product_id, quantity, reason_tag)

    def restock(self, product_id: int, quantity: int, reason_tag: str) -> None:
        self.moves.append((OP_RESTOCK, product_id, quantity, reason_tag))
        current_app.logger.info("Inventory restock product=%s qty=%s (%s)", product_id, quantity, reason_tag)


# =============================================================================
# APP WIRING
# =============================================================================

def install_collaborators(app, *, catalog: ProductCatalog | None = None, inventory: InventoryService | None = None) -> None:
    app.extensions[COLLABORATORS_KEY] = {
        "catalog": catalog or InMemoryProductCatalog(),
        "inventory": inventory or LoggingInventoryService(),
    }


def get_catalog() -> ProductCatalog:
    return current_app.extensions[COLLABORATORS_KEY]["catalog"]


def get_inventory() -> InventoryService:
    return current_app.extensions[COLLABORATORS_KEY]["inventory"]


def lookup_unit_price(product_id: int) -> int:
    """
    Price a cart line that arrived without one.

    Raises:
        ValidationError: Product unknown to the catalog
        CollaboratorError: Catalog call failed
    """
    try:
        product = get_catalog().get_by_id(product_id)
    except Exception as exc:
        current_app.logger.warning("Catalog lookup failed for product %s: %s", product_id, exc)
        raise CollaboratorError(f"Catalog lookup failed for product {product_id}") from exc
    if not product:
        raise ValidationError(f"Unknown product: {product_id}")
    price = product.get("unit_price_cents")
    if isinstance(price, bool) or not isinstance(price, int) or price < 0:
        raise CollaboratorError(f"Catalog returned an invalid price for product {product_id}")
    return price


# =============================================================================
# INVENTORY REQUESTS AND RETRY QUEUE
# =============================================================================

def _call_inventory(operation: str, product_id: int, quantity: int, reason_tag: str) -> None:
    inventory = get_inventory()
    if operation == OP_DECREMENT:
        inventory.decrement(product_id, quantity, reason_tag)
    elif operation == OP_RESTOCK:
        inventory.restock(product_id, quantity, reason_tag)
    else:
        raise ValueError(f"Unknown inventory operation: {operation}")


def request_inventory(
    operation: str,
    product_id: int,
    quantity: int,
    reason_tag: str,
    *,
    sale_id: int | None = None,
) -> bool:
    """
    Ask the inventory service to move stock; queue the request on failure.

    Call only after the financial transaction has committed. Returns True
    when the call succeeded, False when it was queued.
    """
    try:
        _call_inventory(operation, product_id, quantity, reason_tag)
        return True
    except Exception as exc:
        current_app.logger.warning(
            "Inventory %s failed for product %s (%s); queued for retry: %s",
            operation, product_id, reason_tag, exc,
        )
        db.session.add(PendingInventoryRequest(
            operation=operation,
            product_id=product_id,
            quantity=quantity,
            reason_tag=reason_tag,
            sale_id=sale_id,
            status=REQUEST_PENDING,
            attempts=1,
            last_error=str(exc)[:255],
        ))
        db.session.commit()
        return False


def list_pending_requests(limit: int = 100) -> list[PendingInventoryRequest]:
    return (
        db.session.query(PendingInventoryRequest)
        .filter_by(status=REQUEST_PENDING)
        .order_by(PendingInventoryRequest.id)
        .limit(limit)
        .all()
    )


def retry_pending_requests(limit: int = 100) -> dict:
    """Retry queued inventory requests oldest first."""
    attempted = succeeded = 0
    for req in list_pending_requests(limit):
        attempted += 1
        try:
            _call_inventory(req.operation, req.product_id, req.quantity, req.reason_tag)
        except Exception as exc:
            req.attempts += 1
            req.last_error = str(exc)[:255]
            current_app.logger.warning("Inventory retry %s failed (attempt %s): %s", req.id, req.attempts, exc)
        else:
            req.status = REQUEST_DONE
            req.completed_at = utcnow()
            succeeded += 1
        db.session.commit()
    return {"attempted": attempted, "succeeded": succeeded, "failed": attempted - succeeded}
