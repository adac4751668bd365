# Overview: Service-layer operations for document numbering; allocates sale numbers.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_TYPE_SALE = "SALE"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(store_code: str, document_type: str) -> int:
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_code=store_code, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    store_code: str,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a store/type.

    The increment is a single UPDATE, so concurrent allocators serialize on
    the counter row. Runs inside the caller's transaction: a rolled-back
    settlement gives its number back.
    """
    if not store_code:
        raise DocumentSequenceError("store_code is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_code == store_code,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        next_num = _current_number(store_code, document_type)
    else:
        # First number for this store/type. If another writer creates the
        # counter first the flush raises IntegrityError and the caller's
        # retry allocates again through the UPDATE path.
        seq = DocumentSequence(store_code=store_code, document_type=document_type, next_number=2)
        db.session.add(seq)
        db.session.flush()
        next_num = 1

    return f"{prefix}-{store_code}-{next_num:0{pad}d}"


def next_sale_number() -> str:
    """Next sale number for the configured store, e.g. S-MAIN-000123."""
    return next_document_number(
        store_code=current_app.config["STORE_CODE"],
        document_type=DOCUMENT_TYPE_SALE,
        prefix=current_app.config["SALE_NUMBER_PREFIX"],
    )
