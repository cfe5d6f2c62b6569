from __future__ import annotations

from datetime import date

import pytest

from execintel.core.errors import ConflictError, InvalidTransitionError, UpstreamFailure, ValidationError
from execintel.persistence.db import SessionLocal
from execintel.providers.insights.registry import default_providers
from execintel.providers.llm.base import LLMCompletion
from execintel.providers.llm.fake import FakeLLMProvider
from execintel.services import report_audit
from execintel.services import reports as report_service
from execintel.services import section_generator
from execintel.services.report_audit import Actor
from execintel.tests.utils.fixtures import seed_upstream


_EDITOR = Actor(actor_type="user", actor_id="editor-1", email="editor@example.com")


class _SelectiveFailureLLM:
    """Fails every prompt for the named section titles and answers the rest."""

    def __init__(self, failing_titles: set[str]) -> None:
        self._failing = failing_titles
        self._fake = FakeLLMProvider()

    async def generate(self, *, system_prompt, user_prompt, max_tokens, temperature) -> LLMCompletion:
        if any(f"Section: {title}" in user_prompt for title in self._failing):
            raise RuntimeError("provider rejected the prompt")
        return await self._fake.generate(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            max_tokens=max_tokens,
            temperature=temperature,
        )


class _UnavailableCrisisEngine:
    source_system = "crisis_engine"
    block_key = "crisis_status"

    async def fetch(self, session, *, tenant_id, period_start, period_end):
        raise ConnectionError("crisis engine unavailable")


def _providers_with_crisis_outage():
    return [
        _UnavailableCrisisEngine() if provider.source_system == "crisis_engine" else provider
        for provider in default_providers()
    ]


async def _create(session, tenant_id: str = "t1", **data):
    return await report_service.create_report(
        session,
        tenant_id=tenant_id,
        actor=_EDITOR,
        data={"title": "Q3 Strategic Review", **data},
    )


async def _event_types(session, tenant_id: str, report_id: str) -> list[str]:
    page = await report_audit.list_entries(session, tenant_id=tenant_id, report_id=report_id, limit=200)
    return [item["event_type"] for item in page["items"]]


@pytest.mark.asyncio
async def test_create_applies_defaults_and_logs_creation() -> None:
    async with SessionLocal() as session:
        report = await _create(session, title="  Q3 Strategic Review  ")
        assert report.title == "Q3 Strategic Review"
        assert report.status == "draft"
        assert report.format == "quarterly_strategic_review"
        assert report.audience == "c_suite"
        assert (report.period_end - report.period_start).days == 90
        assert len(report.section_types) == 5
        assert await _event_types(session, "t1", report.id) == ["created"]


@pytest.mark.asyncio
async def test_create_rejects_blank_title_and_inverted_period() -> None:
    async with SessionLocal() as session:
        with pytest.raises(ValidationError) as excinfo:
            await _create(session, title="   ")
        assert excinfo.value.field == "title"
        with pytest.raises(ValidationError) as excinfo:
            await _create(session, period_start=date(2026, 9, 30), period_end=date(2026, 7, 1))
        assert excinfo.value.field == "period_end"


@pytest.mark.asyncio
async def test_generation_keeps_good_sections_when_one_fails() -> None:
    await seed_upstream("t1", "media_performance", {"overall_score": 70, "sentiment": 66})
    async with SessionLocal() as session:
        report = await _create(session)
        result = await report_service.generate_report(
            session,
            tenant_id="t1",
            report_id=report.id,
            actor=_EDITOR,
            llm=_SelectiveFailureLLM({"Strategic Outlook"}),
        )
        assert result.report.status == "review"
        assert [item["section_type"] for item in result.failed_sections] == ["strategic_outlook"]
        statuses = {section.section_type: section.status for section in result.sections}
        assert statuses["strategic_outlook"] == "pending"
        assert sum(1 for status in statuses.values() if status == "generated") == 4
        assert result.tokens_used > 0
        assert result.report.total_tokens_used == result.tokens_used
        assert result.report.overall_strategic_score == 70
        assert result.report.kpis_snapshot["media_score"] == 70
        assert await _event_types(session, "t1", report.id) == ["created", "generated"]


@pytest.mark.asyncio
async def test_generation_that_fails_everywhere_returns_to_draft() -> None:
    async with SessionLocal() as session:
        report = await _create(session, section_types=["executive_summary"])
        with pytest.raises(UpstreamFailure):
            await report_service.generate_report(
                session,
                tenant_id="t1",
                report_id=report.id,
                actor=_EDITOR,
                llm=_SelectiveFailureLLM({"Executive Summary"}),
            )
    async with SessionLocal() as session:
        reloaded = await report_service.get_report(session, tenant_id="t1", report_id=report.id)
        assert reloaded.status == "draft"
        assert reloaded.last_error
        assert await _event_types(session, "t1", report.id) == ["created", "generation_failed"]
        page = await report_audit.list_entries(session, tenant_id="t1", report_id=report.id, limit=10)
        failure = page["items"][-1]
        assert (failure["previous_status"], failure["new_status"]) == ("generating", "draft")


@pytest.mark.asyncio
async def test_full_lifecycle_and_repeat_archive() -> None:
    async with SessionLocal() as session:
        report = await _create(session, section_types=["executive_summary", "strategic_outlook"])
        await report_service.generate_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR, llm=FakeLLMProvider()
        )
        approved = await report_service.approve_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR
        )
        assert approved.status == "approved"
        published = await report_service.publish_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR, generate_pdf=True
        )
        assert published.report.status == "published"
        assert published.report.published_at is not None
        assert published.report.pdf_storage_path.endswith(".pdf")
        archived = await report_service.archive_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR
        )
        version = archived.version
        again = await report_service.archive_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR
        )
        assert again.status == "archived"
        assert again.version == version
        assert await _event_types(session, "t1", report.id) == [
            "created",
            "generated",
            "approved",
            "published",
            "archived",
        ]


@pytest.mark.asyncio
async def test_approve_from_draft_is_rejected() -> None:
    async with SessionLocal() as session:
        report = await _create(session)
        with pytest.raises(InvalidTransitionError) as excinfo:
            await report_service.approve_report(session, tenant_id="t1", report_id=report.id, actor=_EDITOR)
        assert (excinfo.value.current, excinfo.value.target) == ("draft", "approved")
        assert await _event_types(session, "t1", report.id) == ["created"]


@pytest.mark.asyncio
async def test_stale_version_is_a_conflict() -> None:
    async with SessionLocal() as session:
        report = await _create(session)
        await report_service.update_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR, patch={"tone": "formal"}
        )
        with pytest.raises(ConflictError):
            await report_service.update_report(
                session,
                tenant_id="t1",
                report_id=report.id,
                actor=_EDITOR,
                patch={"tone": "strategic"},
                expected_version=1,
            )


@pytest.mark.asyncio
async def test_hard_delete_keeps_the_audit_trail() -> None:
    async with SessionLocal() as session:
        report = await _create(session)
        assert await report_service.delete_report(
            session, tenant_id="t1", report_id=report.id, actor=_EDITOR, hard=True
        )
    async with SessionLocal() as session:
        assert await report_service.get_report(session, tenant_id="t1", report_id=report.id) is None
        assert await _event_types(session, "t1", report.id) == ["created", "deleted"]


@pytest.mark.asyncio
async def test_reports_are_invisible_across_tenants() -> None:
    async with SessionLocal() as session:
        report = await _create(session, tenant_id="t1")
        assert await report_service.get_report(session, tenant_id="t2", report_id=report.id) is None
        assert await report_service.approve_report(
            session, tenant_id="t2", report_id=report.id, actor=_EDITOR
        ) is None
        page = await report_service.list_reports(session, tenant_id="t2")
        assert page["total"] == 0


@pytest.mark.asyncio
async def test_generation_and_regeneration_survive_an_upstream_outage() -> None:
    await seed_upstream("t1", "media_performance", {"overall_score": 70, "sentiment": 66})
    async with SessionLocal() as session:
        report = await _create(session, section_types=["executive_summary", "risk_opportunity_matrix"])
        result = await report_service.generate_report(
            session,
            tenant_id="t1",
            report_id=report.id,
            actor=_EDITOR,
            llm=FakeLLMProvider(),
            providers=_providers_with_crisis_outage(),
        )
        assert result.report.status == "review"
        assert result.failed_sections == []
        assert result.insight_errors == {"crisis_engine": "crisis engine unavailable"}
        assert all(section.status == "generated" and section.content_md for section in result.sections)

        target = result.sections[1]
        regenerated = await section_generator.regenerate_section(
            session,
            tenant_id="t1",
            report_id=report.id,
            section_id=target.id,
            llm=FakeLLMProvider(),
            actor=_EDITOR,
            providers=_providers_with_crisis_outage(),
        )
        assert regenerated.content_md
        assert regenerated.regeneration_count == 1
        assert await _event_types(session, "t1", report.id) == ["created", "generated", "regenerated"]
