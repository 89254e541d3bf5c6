from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from lastschrift.models import BillingRun, BillingRunChunk, BillingRunLine

DECIDABLE_STATUSES = frozenset({BillingRun.Status.COMPLETED, BillingRun.Status.RUNNING})
ROLLBACK_BLOCKED_STATUSES = frozenset({BillingRun.Status.ROLLED_BACK, BillingRun.Status.PENDING_REPROCESS})
REPROCESSABLE_STATUSES = frozenset(
    {
        BillingRun.Status.FAILED,
        BillingRun.Status.ROLLED_BACK,
        BillingRun.Status.CANCELLED,
    }
)
OBSERVABLE_STATUSES = frozenset({BillingRun.Status.PENDING, BillingRun.Status.RUNNING})
DEFAULT_SAMPLE_LIMIT = 20


class BillingRunLifecycleError(ValidationError):
    """Aktion ist für den Run im aktuellen Status nicht zulässig."""


def can_decide(status: str) -> bool:
    return status in DECIDABLE_STATUSES


def can_rollback(status: str) -> bool:
    return status not in ROLLBACK_BLOCKED_STATUSES


def can_reprocess(status: str) -> bool:
    return status in REPROCESSABLE_STATUSES


def progress_percent(*, total_chunks: int, completed_chunks: int, failed_chunks: int) -> int:
    if total_chunks <= 0:
        return 0
    return round((completed_chunks + failed_chunks) / total_chunks * 100)


def aggregate_run_status(chunk_statuses: Iterable[str], *, total_chunks: int) -> str | None:
    """Run-Status aus den Chunk-Status; ``None`` wenn keine Chunks existieren.

    Abgeschlossen oder fehlgeschlagen ist ein Run erst, wenn alle geplanten
    Chunks vorliegen und beendet sind. Ohne geplante Anzahl bleibt er laufend.
    """
    statuses = list(chunk_statuses)
    if not statuses:
        return None
    finished = {BillingRunChunk.Status.DONE, BillingRunChunk.Status.FAILED}
    if total_chunks > 0 and len(statuses) >= total_chunks and all(status in finished for status in statuses):
        if all(status == BillingRunChunk.Status.DONE for status in statuses):
            return BillingRun.Status.COMPLETED
        return BillingRun.Status.FAILED
    if any(status != BillingRunChunk.Status.PENDING for status in statuses):
        return BillingRun.Status.RUNNING
    return BillingRun.Status.PENDING


@dataclass(frozen=True)
class BillingRunDetail:
    run: BillingRun
    chunks: list[BillingRunChunk]
    samples: list[BillingRunLine]
    total_chunks: int
    completed_chunks: int
    failed_chunks: int

    @property
    def progress_percent(self) -> int:
        return progress_percent(
            total_chunks=self.total_chunks,
            completed_chunks=self.completed_chunks,
            failed_chunks=self.failed_chunks,
        )

    @property
    def can_decide(self) -> bool:
        return can_decide(self.run.status)

    @property
    def can_rollback(self) -> bool:
        return can_rollback(self.run.status)

    @property
    def can_reprocess(self) -> bool:
        return can_reprocess(self.run.status)


class BillingRunLifecycle:
    """Operator-Aktionen und Chunk-Auswertung für einen Abrechnungs-Run.

    Die Chunks selbst werden vom externen Executor abgearbeitet; hier wird
    nur deren Stand übernommen und über Akzeptieren, Ablehnen, Rollback und
    Reprocess entschieden.
    """

    logger = logging.getLogger(__name__)

    def __init__(self, *, run: BillingRun):
        self.run = run

    @classmethod
    def for_run_id(cls, run_id: str) -> "BillingRunLifecycle":
        return cls(run=BillingRun.objects.with_detail().get(run_id=run_id))

    def detail(self, *, sample_limit: int = DEFAULT_SAMPLE_LIMIT) -> BillingRunDetail:
        chunks = list(self.run.chunks.order_by("chunk_id"))
        return BillingRunDetail(
            run=self.run,
            chunks=chunks,
            samples=BillingRunLine.objects.samples_for_run(run=self.run, limit=sample_limit),
            total_chunks=max(self.run.total_chunks, len(chunks)),
            completed_chunks=sum(1 for chunk in chunks if chunk.status == BillingRunChunk.Status.DONE),
            failed_chunks=sum(1 for chunk in chunks if chunk.status == BillingRunChunk.Status.FAILED),
        )

    def _locked_run(self) -> BillingRun:
        run = BillingRun.objects.select_for_update().get(pk=self.run.pk)
        self.run = run
        return run

    def _save(self, run: BillingRun, *, fields: list[str], change_reason: str, user=None) -> None:
        run._change_reason = change_reason[:100]
        if user is not None:
            run._history_user = user
        run.save(update_fields=[*fields, "updated_at"])

    @transaction.atomic
    def accept(self, *, comment: str = "", user=None) -> BillingRun:
        run = self._locked_run()
        if not can_decide(run.status):
            raise BillingRunLifecycleError(
                f"Run {run.run_id} kann im Status {run.get_status_display()} nicht akzeptiert werden."
            )
        run.accepted_at = timezone.now()
        run.accepted_by = user
        run.accept_comment = (comment or "").strip()
        self._save(
            run,
            fields=["accepted_at", "accepted_by", "accept_comment"],
            change_reason="Run akzeptiert",
            user=user,
        )
        self.logger.info("Run %s akzeptiert.", run.run_id)
        return run

    @transaction.atomic
    def decline(self, *, reason: str = "", user=None) -> BillingRun:
        run = self._locked_run()
        if not can_decide(run.status):
            raise BillingRunLifecycleError(
                f"Run {run.run_id} kann im Status {run.get_status_display()} nicht abgelehnt werden."
            )
        run.declined_at = timezone.now()
        run.declined_by = user
        run.decline_reason = (reason or "").strip()
        self._save(
            run,
            fields=["declined_at", "declined_by", "decline_reason"],
            change_reason=f"Run abgelehnt: {run.decline_reason}".rstrip(": "),
            user=user,
        )
        self.logger.info("Run %s abgelehnt.", run.run_id)
        return run

    @transaction.atomic
    def rollback(self, *, reason: str, user=None) -> int:
        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise BillingRunLifecycleError("Für einen Rollback ist eine Begründung erforderlich.")
        run = self._locked_run()
        if not can_rollback(run.status):
            raise BillingRunLifecycleError(
                f"Run {run.run_id} kann im Status {run.get_status_display()} nicht zurückgerollt werden."
            )
        if run.status == BillingRun.Status.RUNNING:
            self.logger.warning(
                "Run %s wird zurückgerollt, obwohl er noch läuft. Später geschriebene Zeilen bleiben aktiv.",
                run.run_id,
            )

        deleted_count = BillingRunLine.objects.soft_delete_for_run(run=run, reason=cleaned_reason)
        now = timezone.now()
        run.status = BillingRun.Status.ROLLED_BACK
        run.rolled_back_at = now
        run.rolled_back_by = user
        run.rollback_reason = cleaned_reason
        if run.finished_at is None:
            run.finished_at = now
        self._save(
            run,
            fields=["status", "rolled_back_at", "rolled_back_by", "rollback_reason", "finished_at"],
            change_reason=f"Rollback: {cleaned_reason}",
            user=user,
        )
        self.logger.info("Run %s zurückgerollt, %s Zeilen soft-gelöscht.", run.run_id, deleted_count)
        return deleted_count

    @transaction.atomic
    def reprocess(self, *, user=None) -> BillingRun:
        run = self._locked_run()
        if not can_reprocess(run.status):
            raise BillingRunLifecycleError(
                f"Run {run.run_id} kann im Status {run.get_status_display()} nicht erneut verarbeitet werden."
            )
        run.status = BillingRun.Status.PENDING_REPROCESS
        run.reprocess_requested_at = timezone.now()
        run.finished_at = None
        self._save(
            run,
            fields=["status", "reprocess_requested_at", "finished_at"],
            change_reason="Reprocess angefordert",
            user=user,
        )
        self.logger.info("Run %s zum Reprocessing markiert.", run.run_id)
        return run

    @transaction.atomic
    def observe_chunks(self) -> str:
        run = self._locked_run()
        if run.status not in OBSERVABLE_STATUSES:
            return run.status

        chunks = list(run.chunks.order_by("chunk_id"))
        new_status = aggregate_run_status(
            (chunk.status for chunk in chunks), total_chunks=run.total_chunks
        )
        if new_status is None:
            return run.status

        before = _observed_state(run)
        run.inserted = sum(chunk.inserted for chunk in chunks)
        run.updated = sum(chunk.updated for chunk in chunks)
        fields = ["inserted", "updated"]
        if new_status != BillingRun.Status.PENDING and run.started_at is None:
            started = [chunk.started_at for chunk in chunks if chunk.started_at is not None]
            run.started_at = min(started) if started else timezone.now()
            fields.append("started_at")
        if new_status in BillingRun.TERMINAL_STATUSES:
            completed = [chunk.completed_at for chunk in chunks if chunk.completed_at is not None]
            run.finished_at = max(completed) if completed else timezone.now()
            fields.append("finished_at")
            if new_status == BillingRun.Status.FAILED and not run.error_message:
                failed_messages = [
                    chunk.error_message
                    for chunk in chunks
                    if chunk.status == BillingRunChunk.Status.FAILED and chunk.error_message
                ]
                run.error_message = failed_messages[0] if failed_messages else "Mindestens ein Chunk ist fehlgeschlagen."
                fields.append("error_message")

        previous_status = run.status
        run.status = new_status
        if _observed_state(run) == before:
            return new_status
        fields.append("status")
        self._save(run, fields=fields, change_reason="Chunk-Status übernommen")
        if previous_status != new_status:
            self.logger.info("Run %s: %s -> %s.", run.run_id, previous_status, new_status)
        return new_status


def refresh_run_from_chunks(*, run_pk: int) -> str | None:
    run = BillingRun.objects.filter(pk=run_pk).first()
    if run is None:
        return None
    return BillingRunLifecycle(run=run).observe_chunks()


def _observed_state(run: BillingRun) -> tuple:
    return (run.status, run.inserted, run.updated, run.started_at, run.finished_at, run.error_message)
