"""
Daily document numbering: ``<PREFIX>-YYYYMMDD-NNNN`` per tenant.

The sequence restarts every day and continues from the highest number
already issued that day, so deleting a PENDING document can never lead to
a duplicate number.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import InstrumentedAttribute, Session

DISPOSAL_PREFIX = "DIS"
RETURN_PREFIX = "RT"
MATERIAL_REQUEST_PREFIX = "MR"
HANDOVER_PREFIX = "HO"


def next_document_no(
    session: Session,
    number_column: InstrumentedAttribute,
    tenant_column: InstrumentedAttribute,
    tenant_id: str,
    prefix: str,
    day: date,
) -> str:
    """Next free number for ``prefix`` on ``day`` within the tenant."""
    stem = f"{prefix}-{day:%Y%m%d}-"
    issued = session.scalars(
        select(number_column).where(
            tenant_column == tenant_id,
            number_column.like(f"{stem}%"),
        )
    )
    highest = 0
    for number in issued:
        suffix = number[len(stem):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{stem}{highest + 1:04d}"
