# Overview: Receipt number allocation from atomic document sequences.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


RECEIPT_DOCUMENT_TYPE = "receipt"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for a document type inside the caller's transaction.

    Uses an UPDATE ... SET next_number = next_number + 1 so concurrent writers
    never read the same value. Does not commit: a rolled back sale gives its
    number back. The first allocation creates the sequence row, so callers
    must hold the write lock (begin_write) for that insert to be unique.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_receipt_number() -> str:
    return next_document_number(
        document_type=RECEIPT_DOCUMENT_TYPE,
        prefix=current_app.config.get("RECEIPT_PREFIX", "RCP"),
    )
