from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Protocol, Sequence

from execintel.core.config import get_settings
from execintel.domain.models import ReportSection, StrategicReport


logger = logging.getLogger(__name__)


class ExportRenderer(Protocol):
    async def render(
        self, report: StrategicReport, sections: Sequence[ReportSection], export_format: str
    ) -> str:
        """Render the report and return its storage path."""
        ...


class StoragePathRenderer:
    """Record where a rendered artifact lives without producing bytes.

    Rendering itself belongs to an external document service; this default
    keeps storage paths deterministic so publish and export stay testable.
    """

    async def render(
        self, report: StrategicReport, sections: Sequence[ReportSection], export_format: str
    ) -> str:
        path = storage_path_for(report.id, export_format)
        logger.info(
            "report_render_requested report_id=%s format=%s sections=%s",
            report.id,
            export_format,
            len(sections),
        )
        return path


@dataclass(frozen=True)
class ExportLink:
    url: str
    format: str
    expires_at: datetime


def storage_path_for(report_id: str, export_format: str) -> str:
    return f"reports/{report_id}/report.{export_format}"


def build_export_link(report_id: str, export_format: str, *, now: datetime | None = None) -> ExportLink:
    settings = get_settings()
    issued = now or datetime.now(timezone.utc)
    base = settings.api_base_url.rstrip("/")
    return ExportLink(
        url=f"{base}/exports/{report_id}/report.{export_format}",
        format=export_format,
        expires_at=issued + timedelta(hours=settings.export_url_ttl_hours),
    )
