from __future__ import annotations

from datetime import date
from typing import Any, Sequence

from sqlalchemy import asc, delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.domain.models import ReportRecipient, ReportSection, ReportSource, StrategicReport, utcnow
from execintel.persistence.guards import owned_by, tenant_predicate


_SORTABLE = {
    "created_at": StrategicReport.created_at,
    "updated_at": StrategicReport.updated_at,
    "title": StrategicReport.title,
    "period_start": StrategicReport.period_start,
    "overall_strategic_score": StrategicReport.overall_strategic_score,
}


async def get_report(session: AsyncSession, *, tenant_id: str, report_id: str) -> StrategicReport | None:
    result = await session.execute(select(StrategicReport).where(owned_by(StrategicReport, tenant_id, report_id)))
    return result.scalar_one_or_none()


async def list_reports(
    session: AsyncSession,
    *,
    tenant_id: str,
    statuses: Sequence[str] | None = None,
    format: str | None = None,
    audience: str | None = None,
    fiscal_quarter: str | None = None,
    fiscal_year: int | None = None,
    period_from: date | None = None,
    period_to: date | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[tuple[StrategicReport, int]], int]:
    # Scope every filter under the tenant predicate before counting or paging.
    filters: list[Any] = [tenant_predicate(StrategicReport, tenant_id)]
    if statuses:
        filters.append(StrategicReport.status.in_(list(statuses)))
    if format:
        filters.append(StrategicReport.format == format)
    if audience:
        filters.append(StrategicReport.audience == audience)
    if fiscal_quarter:
        filters.append(StrategicReport.fiscal_quarter == fiscal_quarter)
    if fiscal_year is not None:
        filters.append(StrategicReport.fiscal_year == fiscal_year)
    if period_from is not None:
        filters.append(StrategicReport.period_start >= period_from)
    if period_to is not None:
        filters.append(StrategicReport.period_end <= period_to)
    if search:
        pattern = f"%{search.strip().lower()}%"
        filters.append(
            or_(
                func.lower(StrategicReport.title).like(pattern),
                func.lower(func.coalesce(StrategicReport.description, "")).like(pattern),
            )
        )

    total = await session.scalar(select(func.count()).select_from(StrategicReport).where(*filters))

    section_counts = (
        select(ReportSection.report_id, func.count(ReportSection.id).label("section_count"))
        .group_by(ReportSection.report_id)
        .subquery()
    )
    column = _SORTABLE.get(sort_by, StrategicReport.created_at)
    ordering = asc(column) if sort_order == "asc" else desc(column)
    stmt = (
        select(StrategicReport, func.coalesce(section_counts.c.section_count, 0))
        .outerjoin(section_counts, section_counts.c.report_id == StrategicReport.id)
        .where(*filters)
        # Tie-break on id so paging is stable when sort keys collide.
        .order_by(ordering, StrategicReport.id)
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    rows = [(report, int(count)) for report, count in result.all()]
    return rows, int(total or 0)


async def guarded_update(
    session: AsyncSession,
    *,
    tenant_id: str,
    report_id: str,
    expected_version: int,
    values: dict[str, Any],
) -> bool:
    """Apply ``values`` only if the row still carries ``expected_version``.

    Returns False when another writer bumped the version first.
    """
    stmt = (
        update(StrategicReport)
        .where(
            owned_by(StrategicReport, tenant_id, report_id),
            StrategicReport.version == expected_version,
        )
        .values(**values, version=expected_version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def find_previous_period(
    session: AsyncSession,
    *,
    tenant_id: str,
    report: StrategicReport,
) -> StrategicReport | None:
    # Latest same-format report that closed before this one opened.
    result = await session.execute(
        select(StrategicReport)
        .where(
            tenant_predicate(StrategicReport, tenant_id),
            StrategicReport.id != report.id,
            StrategicReport.format == report.format,
            StrategicReport.status != "archived",
            StrategicReport.period_end < report.period_start,
        )
        .order_by(StrategicReport.period_end.desc(), StrategicReport.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def hard_delete(session: AsyncSession, *, tenant_id: str, report_id: str) -> None:
    # Remove children explicitly so sqlite without FK enforcement matches Postgres cascades.
    await session.execute(
        delete(ReportSection).where(
            tenant_predicate(ReportSection, tenant_id), ReportSection.report_id == report_id
        )
    )
    await session.execute(
        delete(ReportSource).where(
            tenant_predicate(ReportSource, tenant_id), ReportSource.report_id == report_id
        )
    )
    await session.execute(
        delete(ReportRecipient).where(
            tenant_predicate(ReportRecipient, tenant_id), ReportRecipient.report_id == report_id
        )
    )
    await session.execute(delete(StrategicReport).where(owned_by(StrategicReport, tenant_id, report_id)))


async def count_by(session: AsyncSession, *, tenant_id: str, column) -> dict[str, int]:
    result = await session.execute(
        select(column, func.count(StrategicReport.id))
        .where(tenant_predicate(StrategicReport, tenant_id))
        .group_by(column)
    )
    return {str(key): int(count) for key, count in result.all()}


async def average_scores(session: AsyncSession, *, tenant_id: str) -> dict[str, float | None]:
    result = await session.execute(
        select(
            func.avg(StrategicReport.overall_strategic_score),
            func.avg(StrategicReport.risk_posture_score),
            func.avg(StrategicReport.opportunity_score),
        ).where(tenant_predicate(StrategicReport, tenant_id))
    )
    overall, risk, opportunity = result.one()

    def _round(value: Any) -> float | None:
        return round(float(value), 1) if value is not None else None

    return {"overall": _round(overall), "risk": _round(risk), "opportunity": _round(opportunity)}


async def recent_reports(session: AsyncSession, *, tenant_id: str, limit: int = 5) -> list[StrategicReport]:
    result = await session.execute(
        select(StrategicReport)
        .where(tenant_predicate(StrategicReport, tenant_id))
        .order_by(StrategicReport.created_at.desc(), StrategicReport.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def child_totals(session: AsyncSession, *, tenant_id: str) -> tuple[int, int]:
    sections = await session.scalar(
        select(func.count(ReportSection.id)).where(tenant_predicate(ReportSection, tenant_id))
    )
    sources = await session.scalar(
        select(func.count(ReportSource.id)).where(tenant_predicate(ReportSource, tenant_id))
    )
    return int(sections or 0), int(sources or 0)
