"""Tests for CaptureOrchestrator with in-process fakes for every engine."""

import asyncio
from pathlib import Path
from unittest.mock import patch

import pytest

from docinsight.analysis.base import BaseAnalysisBackend
from docinsight.analysis.models import AnalysisResult
from docinsight.capture.models import DocumentType
from docinsight.config.settings import Settings
from docinsight.offline.memory_store import InMemoryJobStore
from docinsight.offline.models import JobStatus, OfflineJob, StageKind
from docinsight.offline.offline_queue import OfflineQueue
from docinsight.orchestrator.audit import AuditEntry, AuditSink
from docinsight.orchestrator.models import PipelineState, Stage, StageStatus
from docinsight.orchestrator.orchestrator import CaptureOrchestrator, build_orchestrator
from docinsight.recognition.base import BaseOnDeviceRecognizer, BaseRemoteRecognizer
from docinsight.recognition.exceptions import LocalEngineFailure
from docinsight.recognition.image_loader import ImageLoader
from docinsight.recognition.models import Region, RecognitionResult, SourceEngine, TextBlock
from docinsight.redaction.engine import RedactionEngine
from docinsight.remote.exceptions import (
    RemoteConnectivityLost,
    RemoteTerminalFailure,
    RemoteTransientFailure,
)
from docinsight.templates.engine import TemplateEngine
from docinsight.templates.models import TemplateKind

CLEAN_TEXT = "Glucose 95 mg/dL"
EMAIL = "john@example.com"
PHI_TEXT = f"Glucose 95 mg/dL\nContact {EMAIL}"


def _blocks(text: str, with_regions: bool = True) -> list[TextBlock]:
    blocks = []
    offset = 0
    for i, line in enumerate(text.split("\n")):
        region = Region(x=5, y=5 + 20 * i, width=150, height=15) if with_regions else None
        blocks.append(TextBlock(text=line, confidence=0.8, region=region, offset=offset))
        offset += len(line) + 1
    return blocks


class FakeOnDevice(BaseOnDeviceRecognizer):
    def __init__(
        self, text: str = CLEAN_TEXT, fail: bool = False, with_regions: bool = True
    ) -> None:
        self.text = text
        self.fail = fail
        self.with_regions = with_regions

    async def recognize(self, image_bytes: bytes) -> RecognitionResult:
        if self.fail:
            raise LocalEngineFailure("engine crashed")
        return RecognitionResult(
            source_engine=SourceEngine.LOCAL,
            raw_text=self.text,
            structured_blocks=_blocks(self.text, self.with_regions),
            confidence=0.7,
        )


class FakeRemote(BaseRemoteRecognizer):
    def __init__(self, text: str = CLEAN_TEXT) -> None:
        self.text = text
        self.errors: list[Exception] = []
        self.images: list[bytes] = []

    async def recognize(
        self, image_bytes: bytes, language_hints: list[str], document_type: DocumentType
    ) -> RecognitionResult:
        self.images.append(image_bytes)
        if self.errors:
            raise self.errors.pop(0)
        return RecognitionResult(
            source_engine=SourceEngine.REMOTE,
            raw_text=self.text,
            structured_blocks=_blocks(self.text),
            document_type_guess=DocumentType.LAB_REPORT,
            confidence=0.9,
        )


class FakeBackend(BaseAnalysisBackend):
    def __init__(self, backend_id: str, delay: float = 0.0) -> None:
        self.backend_id = backend_id
        self.delay = delay
        self.errors: list[Exception] = []
        self.texts: list[str] = []

    async def analyze(
        self,
        image_bytes: bytes | None,
        text: str,
        language_hints: list[str],
        document_type: DocumentType,
    ) -> AnalysisResult:
        self.texts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return AnalysisResult(
            source_backend_id=self.backend_id, summary="ok", confidence=0.8
        )


class RecordingAuditSink(AuditSink):
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def outcomes(self, document_id: str) -> list[tuple[str, str]]:
        return [(e.stage, e.outcome) for e in self.entries if e.document_id == document_id]


class Harness:
    def __init__(
        self,
        images_root: Path,
        *,
        online: bool = True,
        on_device: FakeOnDevice | None = None,
        backend_ids: tuple[str, ...] = ("semantic", "compliance"),
        capacity: int = 50,
        analysis_ceiling_seconds: float | None = None,
    ) -> None:
        self.on_device = on_device or FakeOnDevice()
        self.remote = FakeRemote()
        self.backends = [FakeBackend(backend_id) for backend_id in backend_ids]
        self.audit = RecordingAuditSink()
        self.queue = OfflineQueue(
            InMemoryJobStore(),
            capacity=capacity,
            max_attempts=3,
            backoff_base_seconds=0.0,
            backoff_max_seconds=0.0,
        )
        self.orchestrator = CaptureOrchestrator(
            image_loader=ImageLoader(images_root),
            on_device=self.on_device,
            remote=self.remote,
            backends=list(self.backends),
            redactor=RedactionEngine(),
            template_engine=TemplateEngine(),
            queue=self.queue,
            audit_sink=self.audit,
            is_online=online,
            language_hints=["en"],
            analysis_ceiling_seconds=analysis_ceiling_seconds,
        )

    async def capture(self, image_ref: str = "page.png", consent: bool = False) -> str:
        document_id = await self.orchestrator.submit_capture(image_ref, consent_for_phi=consent)
        await self.orchestrator.wait_for(document_id)
        return document_id


class TestOnlinePipeline:
    async def test_happy_path_aggregates_every_stage(self, images_root: Path) -> None:
        harness = Harness(images_root)

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.state is PipelineState.AGGREGATED
        assert all(s is StageStatus.SUCCEEDED for s in insight.stage_status.values())
        assert insight.backend_status == {
            "semantic": StageStatus.SUCCEEDED,
            "compliance": StageStatus.SUCCEEDED,
        }
        assert insight.finalized
        assert insight.unified_text == CLEAN_TEXT
        assert insight.document_type is DocumentType.LAB_REPORT
        assert insight.template_finding is not None
        assert 0.0 < insight.overall_confidence <= 1.0
        assert await harness.orchestrator.list_deferred() == []

    async def test_backends_receive_unified_text(self, images_root: Path) -> None:
        harness = Harness(images_root)

        await harness.capture()

        assert harness.backends[0].texts == [CLEAN_TEXT]

    async def test_audit_records_stage_outcomes(self, images_root: Path) -> None:
        harness = Harness(images_root)

        document_id = await harness.capture()
        outcomes = harness.audit.outcomes(document_id)

        assert ("on_device_recognition", "succeeded") in outcomes
        assert ("remote_recognition", "succeeded") in outcomes
        assert ("analysis:semantic", "succeeded") in outcomes
        assert ("template", "succeeded") in outcomes

    async def test_insight_snapshot_is_detached(self, images_root: Path) -> None:
        harness = Harness(images_root)
        document_id = await harness.capture()

        snapshot = harness.orchestrator.get_insight(document_id)
        assert snapshot is not None
        snapshot.stage_status[Stage.TEMPLATE] = StageStatus.FAILED

        fresh = harness.orchestrator.get_insight(document_id)
        assert fresh is not None
        assert fresh.stage_status[Stage.TEMPLATE] is StageStatus.SUCCEEDED


class TestOnDeviceFailure:
    async def test_engine_failure_fails_document(self, images_root: Path) -> None:
        harness = Harness(images_root, on_device=FakeOnDevice(fail=True))

        document_id = await harness.capture()

        assert harness.orchestrator.get_insight(document_id) is None
        assert harness.orchestrator.document_state(document_id) is PipelineState.FAILED
        assert harness.remote.images == []
        assert harness.backends[0].texts == []

    async def test_missing_image_fails_document(self, images_root: Path) -> None:
        harness = Harness(images_root)

        document_id = await harness.capture("missing.png")

        assert harness.orchestrator.document_state(document_id) is PipelineState.FAILED

    async def test_documents_are_isolated(self, images_root: Path) -> None:
        harness = Harness(images_root)

        good, bad = await asyncio.gather(harness.capture(), harness.capture("missing.png"))

        assert harness.orchestrator.document_state(good) is PipelineState.AGGREGATED
        assert harness.orchestrator.document_state(bad) is PipelineState.FAILED


class TestRemoteFailures:
    async def test_transient_failure_defers_with_one_attempt(self, images_root: Path) -> None:
        harness = Harness(images_root)
        harness.remote.errors = [RemoteTransientFailure("HTTP 503")]

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.DEFERRED
        [job] = await harness.orchestrator.list_deferred()
        assert job.stage_kind is StageKind.REMOTE_RECOGNITION
        assert job.attempt_count == 1
        assert job.last_error == "HTTP 503"

    async def test_connectivity_loss_defers_without_an_attempt(self, images_root: Path) -> None:
        harness = Harness(images_root)
        harness.remote.errors = [RemoteConnectivityLost("unreachable")]

        await harness.capture()

        [job] = await harness.orchestrator.list_deferred()
        assert job.attempt_count == 0

    async def test_terminal_failure_fails_only_the_stage(self, images_root: Path) -> None:
        harness = Harness(images_root)
        harness.remote.errors = [RemoteTerminalFailure("HTTP 400")]

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.state is PipelineState.AGGREGATED
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.FAILED
        assert insight.stage_status[Stage.ANALYSIS] is StageStatus.SUCCEEDED
        assert insight.unified_text == CLEAN_TEXT
        assert await harness.orchestrator.list_deferred() == []

    async def test_unexpected_remote_error_still_finalizes(self, images_root: Path) -> None:
        harness = Harness(images_root)
        harness.remote.errors = [RuntimeError("bad payload")]

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.state is PipelineState.AGGREGATED
        assert insight.finalized
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.FAILED
        assert insight.stage_status[Stage.TEMPLATE] is StageStatus.SUCCEEDED
        assert insight.stage_status[Stage.ANALYSIS] is StageStatus.SUCCEEDED
        assert insight.template_finding is not None

    async def test_crashing_backend_fails_only_itself(self, images_root: Path) -> None:
        harness = Harness(images_root)
        harness.backends[1].errors = [RuntimeError("boom")]

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.backend_status["compliance"] is StageStatus.FAILED
        assert insight.backend_status["semantic"] is StageStatus.SUCCEEDED
        assert insight.stage_status[Stage.ANALYSIS] is StageStatus.SUCCEEDED
        assert [r.source_backend_id for r in insight.analysis_results] == ["semantic"]

    async def test_slow_backend_is_deferred_at_the_ceiling(self, images_root: Path) -> None:
        harness = Harness(images_root, backend_ids=("semantic",), analysis_ceiling_seconds=0.01)
        harness.backends[0].delay = 1.0

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.backend_status["semantic"] is StageStatus.DEFERRED
        [job] = await harness.orchestrator.list_deferred()
        assert job.backend_id == "semantic"
        assert job.attempt_count == 1


class TestOfflineCapture:
    async def test_network_stages_are_deferred(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False)

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.state is PipelineState.AGGREGATED
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.DEFERRED
        assert insight.stage_status[Stage.ANALYSIS] is StageStatus.DEFERRED
        assert insight.finalized
        assert insight.template_finding is not None
        assert harness.remote.images == []
        jobs = await harness.orchestrator.list_deferred()
        assert sorted((j.stage_kind.value, j.backend_id or "") for j in jobs) == [
            ("analysis", "compliance"),
            ("analysis", "semantic"),
            ("remote_recognition", ""),
        ]
        assert all(j.attempt_count == 0 for j in jobs)

    async def test_reconnect_drains_and_raises_confidence(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False)
        document_id = await harness.capture()
        before = harness.orchestrator.get_insight(document_id)
        assert before is not None

        completed = await harness.orchestrator.on_connectivity_change(True)
        after = harness.orchestrator.get_insight(document_id)

        assert len(completed) == 3
        assert after is not None
        assert all(s is StageStatus.SUCCEEDED for s in after.stage_status.values())
        assert after.overall_confidence > before.overall_confidence
        assert after.state is PipelineState.AGGREGATED
        assert await harness.orchestrator.list_deferred() == []

    async def test_going_offline_does_not_drain(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False)
        await harness.capture()

        assert await harness.orchestrator.on_connectivity_change(False) == []
        assert len(await harness.orchestrator.list_deferred()) == 3

    async def test_permanent_failure_during_drain(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False, backend_ids=())
        document_id = await harness.capture()
        harness.remote.errors = [RemoteTerminalFailure("HTTP 422")]

        await harness.orchestrator.on_connectivity_change(True)
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.FAILED
        [job] = await harness.orchestrator.list_deferred()
        assert job.status is JobStatus.FAILED_PERMANENT

    async def test_connectivity_flaps_never_exhaust_attempts(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False, backend_ids=())
        document_id = await harness.capture()
        harness.orchestrator.set_online(True)

        for _ in range(4):
            harness.remote.errors = [RemoteConnectivityLost("unreachable")]
            assert await harness.orchestrator.drain_offline_queue() == []

        [job] = await harness.orchestrator.list_deferred()
        assert job.status is JobStatus.PENDING
        assert job.attempt_count == 0
        insight = harness.orchestrator.get_insight(document_id)
        assert insight is not None
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.DEFERRED

        completed = await harness.orchestrator.drain_offline_queue()

        assert len(completed) == 1
        assert len(harness.remote.images) == 5

    async def test_jobs_for_untracked_documents_are_kept_as_failed(
        self, images_root: Path
    ) -> None:
        harness = Harness(images_root, online=False)
        await harness.queue.enqueue(
            OfflineJob(
                document_id="doc-from-previous-run",
                stage_kind=StageKind.REMOTE_RECOGNITION,
                payload_ref="doc-from-previous-run",
            )
        )

        completed = await harness.orchestrator.on_connectivity_change(True)

        assert completed == []
        assert harness.remote.images == []
        [job] = await harness.orchestrator.list_deferred()
        assert job.document_id == "doc-from-previous-run"
        assert job.status is JobStatus.FAILED_PERMANENT
        assert "does not track" in (job.last_error or "")

    async def test_eviction_marks_lost_analysis(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False, backend_ids=("semantic",), capacity=1)

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert insight is not None
        assert insight.deferred_analysis_lost
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.FAILED
        assert insight.backend_status["semantic"] is StageStatus.DEFERRED
        [job] = await harness.orchestrator.list_deferred()
        assert job.backend_id == "semantic"

    async def test_restart_recovers_processing_jobs(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False)
        await harness.capture()
        await harness.queue.claim_next()

        await harness.orchestrator.start()

        jobs = await harness.orchestrator.list_deferred()
        assert all(j.status is JobStatus.PENDING for j in jobs)


class TestPhiPolicy:
    async def test_text_is_redacted_without_consent(self, images_root: Path) -> None:
        harness = Harness(images_root, on_device=FakeOnDevice(text=PHI_TEXT))
        harness.remote.text = PHI_TEXT

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        [sent] = harness.backends[0].texts
        assert EMAIL not in sent
        assert sent.startswith("Glucose 95 mg/dL")
        assert insight is not None
        assert insight.phi_policy_applied

    async def test_image_is_masked_without_consent(
        self, images_root: Path, white_png_bytes: bytes
    ) -> None:
        harness = Harness(images_root, on_device=FakeOnDevice(text=PHI_TEXT))

        await harness.capture()

        [image] = harness.remote.images
        assert image != white_png_bytes

    async def test_consent_sends_raw_payloads(
        self, images_root: Path, white_png_bytes: bytes
    ) -> None:
        harness = Harness(images_root, on_device=FakeOnDevice(text=PHI_TEXT))
        harness.remote.text = PHI_TEXT

        document_id = await harness.capture(consent=True)
        insight = harness.orchestrator.get_insight(document_id)

        assert harness.remote.images == [white_png_bytes]
        assert EMAIL in harness.backends[0].texts[0]
        assert insight is not None
        assert not insight.phi_policy_applied

    async def test_consent_is_read_when_a_deferred_job_runs(self, images_root: Path) -> None:
        harness = Harness(
            images_root, online=False, on_device=FakeOnDevice(text=PHI_TEXT),
            backend_ids=("semantic",),
        )
        harness.remote.text = PHI_TEXT
        document_id = await harness.capture()

        harness.orchestrator.set_consent(document_id, True)
        await harness.orchestrator.on_connectivity_change(True)

        assert EMAIL in harness.backends[0].texts[0]

    async def test_unlocated_phi_blocks_remote_recognition(self, images_root: Path) -> None:
        harness = Harness(
            images_root, on_device=FakeOnDevice(text=PHI_TEXT, with_regions=False)
        )

        document_id = await harness.capture()
        insight = harness.orchestrator.get_insight(document_id)

        assert harness.remote.images == []
        assert insight is not None
        assert insight.stage_status[Stage.REMOTE_RECOGNITION] is StageStatus.FAILED
        assert EMAIL not in harness.backends[0].texts[0]


class TestDeleteDocument:
    async def test_removes_insight_and_jobs(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False)
        document_id = await harness.capture()

        assert await harness.orchestrator.delete_document(document_id) is True

        assert harness.orchestrator.get_insight(document_id) is None
        assert harness.orchestrator.document_state(document_id) is None
        assert await harness.orchestrator.list_deferred() == []

    async def test_unknown_document(self, images_root: Path) -> None:
        harness = Harness(images_root)

        assert await harness.orchestrator.delete_document("nope") is False

    async def test_other_documents_keep_their_jobs(self, images_root: Path) -> None:
        harness = Harness(images_root, online=False, backend_ids=())
        first = await harness.capture()
        second = await harness.capture()

        await harness.orchestrator.delete_document(first)

        [job] = await harness.orchestrator.list_deferred()
        assert job.document_id == second


@pytest.mark.parametrize("hint", ["prescription", DocumentType.PRESCRIPTION])
async def test_document_type_hint_wins(images_root: Path, hint: DocumentType | str) -> None:
    harness = Harness(images_root)

    document_id = await harness.orchestrator.submit_capture("page.png", hint)
    insight = await harness.orchestrator.wait_for(document_id)

    assert insight is not None
    assert insight.document_type is DocumentType.PRESCRIPTION


async def test_page_position_is_kept(images_root: Path) -> None:
    harness = Harness(images_root)

    document_id = await harness.orchestrator.submit_capture("page.png", page_index=2, page_count=3)
    await harness.orchestrator.wait_for(document_id)
    document = harness.orchestrator.get_document(document_id)

    assert document is not None
    assert (document.page_index, document.page_count) == (2, 3)
    assert harness.orchestrator.get_document("unknown") is None


class TestBuildOrchestrator:
    async def test_offline_lab_report_end_to_end(self, images_root: Path) -> None:
        text = "Glucose 210 mg/dL 70-100\nHemoglobin 13.5 g/dL 12.0-16.0"
        remote = FakeRemote(text=text)
        settings = Settings(
            semantic_provider="example",
            compliance_provider="example",
            start_online=False,
        )
        with patch("docinsight.orchestrator.orchestrator.RecognizerFactory") as factory:
            factory.create_on_device.return_value = FakeOnDevice(text=text)
            factory.create_remote.return_value = remote
            orchestrator = build_orchestrator(settings, images_root=images_root)

        document_id = await orchestrator.submit_capture("page.png", DocumentType.LAB_REPORT)
        offline = await orchestrator.wait_for(document_id)

        assert offline is not None
        assert offline.template_finding is not None
        assert offline.template_finding.template_kind is TemplateKind.LAB_REPORT
        assert offline.template_finding.flags
        assert offline.stage_status[Stage.ANALYSIS] is StageStatus.DEFERRED

        completed = await orchestrator.on_connectivity_change(True)
        online = orchestrator.get_insight(document_id)

        assert len(completed) == 3
        assert online is not None
        assert {r.source_backend_id for r in online.analysis_results} == {
            "semantic",
            "compliance",
        }
        assert online.overall_confidence > offline.overall_confidence
        assert len(remote.images) == 1
