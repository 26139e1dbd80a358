"""Capture orchestrator: drives one document through the pipeline.

Pipeline: load image -> on-device recognition -> scan PHI -> remote
recognition -> analysis fan-out -> template -> aggregate.

Only an on-device failure aborts a document. Every later stage records its
outcome in ``stage_status`` (analysis also per backend in ``backend_status``)
and the insight is always aggregated. Network stages that cannot run now are
deferred into the offline queue; when such a job later completes, the same
insight is updated in place.
"""

import asyncio
import dataclasses
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from docinsight.analysis.base import BaseAnalysisBackend
from docinsight.analysis.factory import AnalysisBackendFactory
from docinsight.analysis.models import AnalysisResult
from docinsight.capture.models import CapturedDocument, DocumentType, utcnow
from docinsight.config.settings import Settings
from docinsight.errors import CaptureError
from docinsight.logging.logger import Log
from docinsight.offline.exceptions import QueueOverflow, UntrackedDocument
from docinsight.offline.factory import OfflineQueueFactory
from docinsight.offline.models import JobStatus, OfflineJob, StageKind
from docinsight.offline.offline_queue import OfflineQueue
from docinsight.offline.store_base import BaseJobStore
from docinsight.orchestrator import aggregation
from docinsight.orchestrator.audit import AuditEntry, AuditSink, LogAuditSink
from docinsight.orchestrator.models import (
    CapturedInsight,
    PipelineState,
    Stage,
    StageStatus,
    derive_analysis_status,
)
from docinsight.orchestrator.state_machine import advance
from docinsight.recognition.base import BaseOnDeviceRecognizer, BaseRemoteRecognizer
from docinsight.recognition.exceptions import LocalEngineFailure
from docinsight.recognition.factory import RecognizerFactory
from docinsight.recognition.image_loader import ImageLoader
from docinsight.recognition.models import RecognitionResult, SourceEngine
from docinsight.redaction.base import BaseRedactor
from docinsight.redaction.exceptions import RedactionPolicyViolation
from docinsight.redaction.factory import RedactorFactory
from docinsight.redaction.image_masker import ImageMaskError, mask_image, regions_with_phi
from docinsight.redaction.policy import OutboundGuard
from docinsight.remote.exceptions import (
    RemoteConnectivityLost,
    RemoteTerminalFailure,
    RemoteTransientFailure,
)
from docinsight.templates.engine import TemplateEngine
from docinsight.templates.models import TemplateOptions
from docinsight.worker.job_runner import BaseJobHandler, JobRunner

T = TypeVar("T")


@dataclass
class _DocumentContext:
    document: CapturedDocument
    consent: bool
    insight: CapturedInsight
    task: "asyncio.Task[None] | None" = None
    inflight: set["asyncio.Future[object]"] = field(default_factory=set)


class CaptureOrchestrator(BaseJobHandler):
    """Entry point for the capture collaborator and handler of deferred jobs."""

    def __init__(
        self,
        *,
        image_loader: ImageLoader,
        on_device: BaseOnDeviceRecognizer,
        remote: BaseRemoteRecognizer,
        backends: list[BaseAnalysisBackend],
        redactor: BaseRedactor,
        template_engine: TemplateEngine,
        queue: OfflineQueue,
        audit_sink: AuditSink | None = None,
        is_online: bool = True,
        max_concurrent_documents: int = 4,
        language_hints: list[str] | None = None,
        analysis_ceiling_seconds: float | None = None,
    ) -> None:
        self._image_loader = image_loader
        self._on_device = on_device
        self._remote = remote
        self._backends: dict[str, BaseAnalysisBackend] = {b.backend_id: b for b in backends}
        self._redactor = redactor
        self._guard = OutboundGuard(redactor)
        self._templates = template_engine
        self._queue = queue
        self._audit = audit_sink or LogAuditSink()
        self._online = is_online
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_documents))
        self._language_hints = list(language_hints or [])
        self._analysis_ceiling_seconds = analysis_ceiling_seconds
        self._contexts: dict[str, _DocumentContext] = {}
        self._job_runner = JobRunner(self, queue)
        queue.set_eviction_callback(self._on_job_evicted)

    @property
    def is_online(self) -> bool:
        return self._online

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Recover jobs a previous process left mid-flight."""
        await self._queue.recover()

    async def submit_capture(
        self,
        image_ref: str,
        document_type_hint: DocumentType | str | None = None,
        consent_for_phi: bool = False,
        *,
        page_index: int = 0,
        page_count: int = 1,
    ) -> str:
        """Start processing a captured image and return its document id.

        Returns immediately; processing waits for a free pipeline slot.
        """
        document = CapturedDocument(
            image_ref=image_ref,
            document_type_hint=DocumentType.parse(document_type_hint),
            page_index=page_index,
            page_count=page_count,
        )
        ctx = _DocumentContext(
            document=document,
            consent=consent_for_phi,
            insight=CapturedInsight(
                document_id=document.id, document_type=document.document_type_hint
            ),
        )
        self._contexts[document.id] = ctx
        ctx.task = asyncio.create_task(self._run(ctx), name=f"capture-{document.id}")
        ctx.task.add_done_callback(self._on_task_done)
        Log.info(
            "Capture submitted",
            document_id=document.id,
            document_type=document.document_type_hint.value,
        )
        return document.id

    def set_consent(self, document_id: str, consent: bool) -> None:
        """Update PHI consent; it is read again at every dispatch."""
        ctx = self._contexts.get(document_id)
        if ctx is not None:
            ctx.consent = consent

    def get_insight(self, document_id: str) -> CapturedInsight | None:
        """Current, possibly partial, insight; None until on-device recognition succeeds."""
        ctx = self._contexts.get(document_id)
        if ctx is None or ctx.insight.state in (PipelineState.PENDING, PipelineState.FAILED):
            return None
        return ctx.insight.snapshot()

    def get_document(self, document_id: str) -> CapturedDocument | None:
        ctx = self._contexts.get(document_id)
        return ctx.document if ctx is not None else None

    def document_state(self, document_id: str) -> PipelineState | None:
        ctx = self._contexts.get(document_id)
        return ctx.insight.state if ctx is not None else None

    async def wait_for(self, document_id: str) -> CapturedInsight | None:
        """Wait until the document's pipeline task has finished."""
        ctx = self._contexts.get(document_id)
        if ctx is not None and ctx.task is not None:
            await asyncio.wait({ctx.task})
        return self.get_insight(document_id)

    async def list_deferred(self) -> list[OfflineJob]:
        return await self._queue.list_deferred()

    def set_online(self, is_online: bool) -> None:
        if is_online != self._online:
            Log.info(f"Connectivity changed: {'online' if is_online else 'offline'}")
        self._online = is_online

    async def on_connectivity_change(self, is_online: bool) -> list[OfflineJob]:
        """Record the new connectivity state and drain the queue when online."""
        self.set_online(is_online)
        if not is_online:
            return []
        return await self.drain_offline_queue()

    async def drain_offline_queue(self) -> list[OfflineJob]:
        return await self._queue.drain(lambda: self._online, self._job_runner.run)

    async def delete_document(self, document_id: str) -> bool:
        """Cancel in-flight work, remove queued jobs and drop the insight."""
        ctx = self._contexts.pop(document_id, None)
        if ctx is not None:
            for future in list(ctx.inflight):
                future.cancel()
            if ctx.task is not None and not ctx.task.done():
                ctx.task.cancel()
                await asyncio.wait({ctx.task})
        removed = await self._queue.remove_for_document(document_id)
        if ctx is None and not removed:
            return False
        Log.info("Document deleted", document_id=document_id, jobs_removed=len(removed))
        return True

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, ctx: _DocumentContext) -> None:
        async with self._semaphore:
            try:
                await self._pipeline(ctx)
            except LocalEngineFailure as exc:
                self._fail_document(ctx, exc)

    async def _pipeline(self, ctx: _DocumentContext) -> None:
        document_id = ctx.document.id
        Log.info("Processing capture", document_id=document_id)

        # Step 1: on-device recognition, the floor every document must pass
        image = await asyncio.to_thread(self._image_loader.load, ctx.document.image_ref)
        local = await self._on_device.recognize(image)
        local = dataclasses.replace(local, phi_spans=self._redactor.scan(local.raw_text))
        insight = ctx.insight
        insight.put_recognition(local)
        if insight.document_type is DocumentType.GENERIC:
            insight.document_type = local.document_type_guess
        self._set_stage(ctx, Stage.ON_DEVICE_RECOGNITION, StageStatus.SUCCEEDED)
        self._advance(ctx, PipelineState.ON_DEVICE_DONE)
        Log.info(
            "On-device recognition done",
            document_id=document_id,
            blocks=len(local.structured_blocks),
            phi_spans=len(local.phi_spans),
        )

        # Step 2: remote recognition
        remote_status = await self._remote_stage(ctx, image)
        self._advance(
            ctx,
            PipelineState.REMOTE_QUEUED
            if remote_status is StageStatus.DEFERRED
            else PipelineState.REMOTE_DONE,
        )

        # Step 3: analysis fan-out / fan-in
        analysis_status = await self._analysis_stage(ctx)
        self._advance(
            ctx,
            PipelineState.ANALYSIS_QUEUED
            if analysis_status is StageStatus.DEFERRED
            else PipelineState.ANALYSIS_DONE,
        )

        # Steps 4-5: template and aggregation, always run
        self._template_stage(ctx)
        self._advance(ctx, PipelineState.TEMPLATE_DONE)
        self._aggregate(ctx)
        self._advance(ctx, PipelineState.AGGREGATED)
        Log.info(
            "Capture aggregated",
            document_id=document_id,
            confidence=insight.overall_confidence,
            finalized=insight.finalized,
        )

    async def _remote_stage(self, ctx: _DocumentContext, image: bytes) -> StageStatus:
        if not self._online:
            return await self._defer(ctx, StageKind.REMOTE_RECOGNITION)
        try:
            result = await self._recognize_remote(ctx, image)
        except RemoteTransientFailure as exc:
            Log.warning(f"Remote recognition deferred: {exc}", document_id=ctx.document.id)
            return await self._defer(
                ctx, StageKind.REMOTE_RECOGNITION, failed_attempts=_attempts_for(exc), error=exc
            )
        except CaptureError as exc:
            Log.error(f"Remote recognition failed: {exc}", document_id=ctx.document.id)
            self._set_stage(ctx, Stage.REMOTE_RECOGNITION, StageStatus.FAILED)
            return StageStatus.FAILED
        except Exception:
            Log.exception("Remote recognition crashed", document_id=ctx.document.id)
            self._set_stage(ctx, Stage.REMOTE_RECOGNITION, StageStatus.FAILED)
            return StageStatus.FAILED
        self._accept_remote(ctx, result)
        return StageStatus.SUCCEEDED

    async def _analysis_stage(self, ctx: _DocumentContext) -> StageStatus:
        for backend_id in self._backends:
            ctx.insight.backend_status[backend_id] = StageStatus.PENDING
        if self._online:
            await asyncio.gather(
                *(self._run_backend(ctx, backend) for backend in self._backends.values())
            )
        else:
            for backend_id in self._backends:
                await self._defer(ctx, StageKind.ANALYSIS, backend_id=backend_id)
        return self._sync_analysis_status(ctx)

    async def _run_backend(self, ctx: _DocumentContext, backend: BaseAnalysisBackend) -> None:
        document_id = ctx.document.id
        try:
            result = await self._analyze(ctx, backend)
        except RemoteTransientFailure as exc:
            Log.warning(
                f"Analysis deferred: {exc}", document_id=document_id, backend=backend.backend_id
            )
            await self._defer(
                ctx,
                StageKind.ANALYSIS,
                backend_id=backend.backend_id,
                failed_attempts=_attempts_for(exc),
                error=exc,
            )
        except CaptureError as exc:
            Log.error(
                f"Analysis failed: {exc}", document_id=document_id, backend=backend.backend_id
            )
            self._set_backend(ctx, backend.backend_id, StageStatus.FAILED)
        except Exception:
            Log.exception(
                "Analysis backend crashed", document_id=document_id, backend=backend.backend_id
            )
            self._set_backend(ctx, backend.backend_id, StageStatus.FAILED)
        else:
            self._accept_analysis(ctx, result)

    def _template_stage(self, ctx: _DocumentContext) -> None:
        insight = ctx.insight
        try:
            insight.template_finding = self._templates.interpret(
                insight.document_type,
                aggregation.unified_text(insight),
                aggregation.unified_blocks(insight),
            )
        except Exception:
            Log.exception("Template interpretation failed", document_id=ctx.document.id)
            self._set_stage(ctx, Stage.TEMPLATE, StageStatus.FAILED)
            return
        self._set_stage(ctx, Stage.TEMPLATE, StageStatus.SUCCEEDED)

    def _aggregate(self, ctx: _DocumentContext) -> None:
        insight = ctx.insight
        insight.unified_text = aggregation.unified_text(insight)
        insight.overall_confidence = aggregation.overall_confidence(insight)
        insight.finalized = aggregation.is_final(insight)
        insight.updated_at = utcnow()

    def _refresh(self, ctx: _DocumentContext) -> None:
        """Re-derive template and aggregate after a deferred stage resolved.

        Before aggregation the running pipeline does this itself.
        """
        if ctx.insight.state is not PipelineState.AGGREGATED:
            return
        self._template_stage(ctx)
        self._aggregate(ctx)
        self._advance(ctx, PipelineState.AGGREGATED)

    def _fail_document(self, ctx: _DocumentContext, exc: Exception) -> None:
        Log.error(f"On-device recognition failed: {exc}", document_id=ctx.document.id)
        self._set_stage(ctx, Stage.ON_DEVICE_RECOGNITION, StageStatus.FAILED)
        self._advance(ctx, PipelineState.FAILED)

    # ------------------------------------------------------------------
    # Outbound calls
    # ------------------------------------------------------------------

    async def _recognize_remote(
        self, ctx: _DocumentContext, image: bytes | None = None
    ) -> RecognitionResult:
        if image is None:
            image = await asyncio.to_thread(self._image_loader.load, ctx.document.image_ref)
        outbound = await self._outbound_image(ctx, image)
        return await self._remote.recognize(
            outbound, self._language_hints, ctx.insight.document_type
        )

    async def _analyze(
        self, ctx: _DocumentContext, backend: BaseAnalysisBackend
    ) -> AnalysisResult:
        text = self._outbound_text(ctx)
        call = backend.analyze(None, text, self._language_hints, ctx.insight.document_type)
        if self._analysis_ceiling_seconds is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._analysis_ceiling_seconds)
        except TimeoutError as exc:
            raise RemoteTransientFailure(
                f"{backend.backend_id} exceeded {self._analysis_ceiling_seconds}s"
            ) from exc

    async def _outbound_image(self, ctx: _DocumentContext, image: bytes) -> bytes:
        """Black out every block holding PHI unless consent is recorded now."""
        local = ctx.insight.recognition(SourceEngine.LOCAL)
        if ctx.consent or local is None or not local.phi_spans:
            return image
        located = [b for b in local.structured_blocks if b.region is not None]
        for span in local.phi_spans:
            if not any(span.overlaps(b.offset, b.offset + len(b.text)) for b in located):
                raise RedactionPolicyViolation(
                    "PHI span has no image region; the image cannot be masked"
                )
        regions = regions_with_phi(located, local.phi_spans)
        try:
            masked = await asyncio.to_thread(mask_image, image, regions)
        except ImageMaskError as exc:
            raise RedactionPolicyViolation(f"Image could not be masked: {exc}") from exc
        ctx.insight.phi_policy_applied = True
        return masked

    def _outbound_text(self, ctx: _DocumentContext) -> str:
        consent = ctx.consent
        prepared = self._guard.prepare(aggregation.unified_text(ctx.insight), consent)
        self._guard.check(prepared.text, consent, document_id=ctx.document.id)
        if prepared.redacted:
            ctx.insight.phi_policy_applied = True
        return prepared.text

    def _accept_remote(self, ctx: _DocumentContext, result: RecognitionResult) -> None:
        result = dataclasses.replace(result, phi_spans=self._redactor.scan(result.raw_text))
        insight = ctx.insight
        insight.put_recognition(result)
        hint = ctx.document.document_type_hint
        if hint is DocumentType.GENERIC and result.document_type_guess is not DocumentType.GENERIC:
            insight.document_type = result.document_type_guess
        self._set_stage(ctx, Stage.REMOTE_RECOGNITION, StageStatus.SUCCEEDED)

    def _accept_analysis(self, ctx: _DocumentContext, result: AnalysisResult) -> None:
        ctx.insight.put_analysis(result)
        self._set_backend(ctx, result.source_backend_id, StageStatus.SUCCEEDED)

    async def _track(self, ctx: _DocumentContext, call: Awaitable[T]) -> T:
        """Run *call* as a task that delete_document can cancel."""
        future = asyncio.ensure_future(call)
        ctx.inflight.add(future)
        try:
            return await future
        finally:
            ctx.inflight.discard(future)

    # ------------------------------------------------------------------
    # Offline jobs
    # ------------------------------------------------------------------

    async def _defer(
        self,
        ctx: _DocumentContext,
        kind: StageKind,
        *,
        backend_id: str | None = None,
        failed_attempts: int = 0,
        error: Exception | None = None,
    ) -> StageStatus:
        job = OfflineJob(
            document_id=ctx.document.id,
            stage_kind=kind,
            payload_ref=ctx.document.image_ref,
            payload={"backend_id": backend_id} if backend_id else {},
            attempt_count=failed_attempts,
            next_eligible_at=self._queue.eligible_after(failed_attempts),
            last_error=str(error) if error is not None else None,
        )
        self._set_job_status(ctx, job, StageStatus.DEFERRED)
        # The eviction callback may fail the slot again if this job is evicted.
        await self._queue.enqueue(job)
        if kind is StageKind.REMOTE_RECOGNITION:
            return ctx.insight.stage_status[Stage.REMOTE_RECOGNITION]
        return ctx.insight.backend_status[backend_id or ""]

    async def process(self, job: OfflineJob) -> None:
        ctx = self._contexts.get(job.document_id)
        if ctx is None or ctx.insight.state in (PipelineState.PENDING, PipelineState.FAILED):
            raise UntrackedDocument(
                f"Offline job {job.id} belongs to a document this process does not track"
            )
        try:
            if job.stage_kind is StageKind.REMOTE_RECOGNITION:
                recognized = await self._track(ctx, self._recognize_remote(ctx))
                if self._contexts.get(job.document_id) is not ctx:
                    return
                self._accept_remote(ctx, recognized)
            else:
                backend = self._backends.get(job.backend_id or "")
                if backend is None:
                    raise RemoteTerminalFailure(
                        f"No analysis backend '{job.backend_id}' is configured"
                    )
                analysed = await self._track(ctx, self._analyze(ctx, backend))
                if self._contexts.get(job.document_id) is not ctx:
                    return
                self._accept_analysis(ctx, analysed)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if job.document_id in self._contexts or (current and current.cancelling()):
                raise
            Log.info(f"Offline job {job.id} cancelled with its document")
            return
        self._refresh(ctx)

    async def on_permanent_failure(self, job: OfflineJob, error: str) -> None:
        ctx = self._contexts.get(job.document_id)
        if ctx is None or ctx.insight.state in (PipelineState.PENDING, PipelineState.FAILED):
            return
        self._set_job_status(ctx, job, StageStatus.FAILED)
        self._refresh(ctx)

    async def _on_job_evicted(self, job: OfflineJob, overflow: QueueOverflow) -> None:
        ctx = self._contexts.get(job.document_id)
        if ctx is None or job.status is JobStatus.FAILED_PERMANENT:
            return
        Log.warning(f"Deferred stage lost: {overflow}", document_id=job.document_id)
        ctx.insight.deferred_analysis_lost = True
        self._set_job_status(ctx, job, StageStatus.FAILED)
        self._refresh(ctx)

    # ------------------------------------------------------------------
    # Status bookkeeping
    # ------------------------------------------------------------------

    def _set_job_status(self, ctx: _DocumentContext, job: OfflineJob, status: StageStatus) -> None:
        if job.stage_kind is StageKind.REMOTE_RECOGNITION:
            self._set_stage(ctx, Stage.REMOTE_RECOGNITION, status)
        else:
            self._set_backend(ctx, job.backend_id or "", status)

    def _set_stage(self, ctx: _DocumentContext, stage: Stage, status: StageStatus) -> None:
        insight = ctx.insight
        if insight.stage_status.get(stage) is status:
            return
        insight.stage_status[stage] = status
        insight.updated_at = utcnow()
        self._record(ctx, stage.value, status.value)

    def _set_backend(self, ctx: _DocumentContext, backend_id: str, status: StageStatus) -> None:
        insight = ctx.insight
        if insight.backend_status.get(backend_id) is not status:
            insight.backend_status[backend_id] = status
            self._record(ctx, f"{Stage.ANALYSIS.value}:{backend_id}", status.value)
        self._sync_analysis_status(ctx)

    def _sync_analysis_status(self, ctx: _DocumentContext) -> StageStatus:
        status = derive_analysis_status(ctx.insight.backend_status)
        self._set_stage(ctx, Stage.ANALYSIS, status)
        return status

    def _advance(self, ctx: _DocumentContext, target: PipelineState) -> None:
        ctx.insight.state = advance(ctx.insight.state, target)

    def _record(self, ctx: _DocumentContext, stage: str, outcome: str) -> None:
        self._audit.record(AuditEntry(document_id=ctx.document.id, stage=stage, outcome=outcome))

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            Log.error(f"Capture pipeline {task.get_name()} crashed: {exc!r}")


def _attempts_for(exc: RemoteTransientFailure) -> int:
    """Connectivity loss is not an attempt against the service; other failures are."""
    return 0 if isinstance(exc, RemoteConnectivityLost) else 1


def build_orchestrator(
    settings: Settings,
    *,
    store: BaseJobStore | None = None,
    images_root: Path | None = None,
    prompt_dir: Path | None = None,
) -> CaptureOrchestrator:
    """Build a CaptureOrchestrator with all configured adapters."""
    return CaptureOrchestrator(
        image_loader=ImageLoader(
            images_root if images_root is not None else Path(settings.images_root)
        ),
        on_device=RecognizerFactory.create_on_device(settings),
        remote=RecognizerFactory.create_remote(settings),
        backends=AnalysisBackendFactory.create_all(settings, prompt_dir),
        redactor=RedactorFactory.create(settings),
        template_engine=TemplateEngine(
            TemplateOptions(critical_multiplier=settings.lab_critical_multiplier)
        ),
        queue=OfflineQueueFactory.create(settings, store),
        audit_sink=LogAuditSink(),
        is_online=settings.start_online,
        max_concurrent_documents=settings.max_concurrent_documents,
        language_hints=settings.remote_language_hints,
        analysis_ceiling_seconds=settings.analysis_ceiling_seconds,
    )
