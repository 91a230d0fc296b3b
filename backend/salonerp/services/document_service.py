# Overview: Race-free per-salon document numbering for bills, payments and expenses.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

DOC_BILL = "BILL"
DOC_PAYMENT = "PAY"
DOC_EXPENSE = "EXP"


def next_document_number(*, salon_id: int, document_type: str, pad: int = 6) -> str:
    """
    Allocate the next document number for a salon/type inside the caller's
    transaction.

    The increment is a single conditional UPDATE, so concurrent callers get
    distinct numbers. The first number for a salon/type inserts the sequence
    row; losing that insert race falls back to the UPDATE path.

    Does not commit: the number is only consumed if the caller's transaction
    commits.
    """
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.salon_id == salon_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(salon_id, document_type) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(salon_id=salon_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(salon_id, document_type) - 1

    return f"{document_type}-{salon_id:03d}-{next_num:0{pad}d}"


def _current_number(salon_id: int, document_type: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(salon_id=salon_id, document_type=document_type)
        .scalar()
    )
