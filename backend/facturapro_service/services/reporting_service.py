# Overview: Service-layer aggregation for the dashboard landing page.

from __future__ import annotations

from datetime import date, datetime, time

from sqlalchemy import func

from ..extensions import db
from ..models import Client, Invoice
from facturapro_service.time_utils import month_bounds, to_iso_date


def monthly_stats(tenant_id: int, *, day: date) -> dict:
    """
    Figures for the calendar month containing `day`.

    - revenue_cents: sum of totals of non-void invoices issued in the month
    - invoices_issued: every invoice issued in the month, void included
    - new_clients: clients created in the month
    - paid_rate: paid / non-void invoices of the month, as a percentage
      rounded to one decimal (0.0 when there are none)
    """
    start, end = month_bounds(day)

    rows = db.session.query(
        Invoice.status,
        func.count(Invoice.id).label("count"),
        func.coalesce(func.sum(Invoice.total_cents), 0).label("total_cents"),
    ).filter(
        Invoice.tenant_id == tenant_id,
        Invoice.issue_date >= start,
        Invoice.issue_date < end,
    ).group_by(Invoice.status).all()

    by_status = {row.status: (int(row.count or 0), int(row.total_cents or 0)) for row in rows}
    issued = sum(count for count, _ in by_status.values())
    non_void = sum(count for status, (count, _) in by_status.items() if status != "void")
    revenue = sum(total for status, (_, total) in by_status.items() if status != "void")
    paid = by_status.get("paid", (0, 0))[0]

    new_clients = db.session.query(func.count(Client.id)).filter(
        Client.tenant_id == tenant_id,
        Client.created_at >= datetime.combine(start, time.min),
        Client.created_at < datetime.combine(end, time.min),
    ).scalar()

    return {
        "month_start": to_iso_date(start),
        "month_end": to_iso_date(end),
        "revenue_cents": revenue,
        "invoices_issued": issued,
        "new_clients": int(new_clients or 0),
        "paid_rate": round(paid * 100.0 / non_void, 1) if non_void else 0.0,
    }
