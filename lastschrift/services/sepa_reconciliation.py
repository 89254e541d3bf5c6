from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import date

from django.core.exceptions import ValidationError
from django.db import transaction

from lastschrift.models import SepaCollection, SepaCollectionItem
from lastschrift.services.sepa_collection_status import derive_collection_status
from lastschrift.services.sepa_outcome import (
    RESOLVED_STATUSES,
    CreateFee,
    CreatePayment,
    SepaItemAlreadyResolved,
    SepaItemOutcomeResolver,
    normalize_return_reason,
)
from lastschrift.services.sepa_side_effects import SideEffectDispatcher


class SepaStagingError(ValidationError):
    """Änderung kann für diese Position nicht vorgemerkt werden."""


class SepaCollectionNotExported(ValidationError):
    """Einzug wurde noch nicht exportiert und kann nicht abgeglichen werden."""


class SepaCollectionConflict(ValidationError):
    """Einzug wurde zwischenzeitlich von einer anderen Sitzung verändert."""


class SepaSessionStateError(RuntimeError):
    """Aktion ist im aktuellen Sitzungszustand nicht erlaubt."""


class SessionState(enum.Enum):
    IDLE = "idle"
    EDITING = "editing"
    SAVING = "saving"
    SAVED_SUCCESS = "saved_success"
    SAVED_WITH_ERRORS = "saved_with_errors"
    CLOSED = "closed"


@dataclass(slots=True)
class StagedEdit:
    item_id: int
    status: str
    return_reason: str = ""
    notes: str = ""


@dataclass
class ReconciliationSummary:
    collection_id: int
    collection_status: str = ""
    succeeded_item_ids: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped_item_ids: list[int] = field(default_factory=list)
    payment_ids: list[int] = field(default_factory=list)
    fee_ids: list[int] = field(default_factory=list)

    @property
    def failed_item_ids(self) -> list[int]:
        return list(self.failed.keys())

    @property
    def has_errors(self) -> bool:
        return bool(self.failed)


class _ItemCommitFailed(Exception):
    pass


class SepaReconciliationSession:
    """Merkt Statusänderungen für die Positionen eines Einzugs vor und speichert sie.

    Gespeichert wird Position für Position in der Reihenfolge des Vormerkens.
    Schlägt eine Position fehl (bereits abgeschlossen, Zahlung oder Gebühr
    nicht angelegt), bleibt sie ausstehend und die übrigen Positionen werden
    trotzdem verarbeitet. Der Einzugsstatus wird danach immer aus allen
    gespeicherten Positionen neu berechnet.
    """

    logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        collection: SepaCollection,
        resolver: SepaItemOutcomeResolver | None = None,
        dispatcher: SideEffectDispatcher | None = None,
        user=None,
        today: date | None = None,
    ):
        if collection.status == SepaCollection.Status.PENDING:
            raise SepaCollectionNotExported(
                "Der Einzug wurde noch nicht exportiert und kann nicht abgeglichen werden."
            )
        self.collection = collection
        self.resolver = resolver or SepaItemOutcomeResolver()
        self.dispatcher = dispatcher or SideEffectDispatcher()
        self.user = user
        self.today = today
        self.state = SessionState.IDLE
        self.last_summary: ReconciliationSummary | None = None
        self._staged: dict[int, StagedEdit] = {}
        self._items: dict[int, SepaCollectionItem] = {}
        self._version = collection.version
        self._load_items()

    def _load_items(self) -> None:
        items = (
            SepaCollectionItem.objects.filter(collection=self.collection)
            .select_related("tenant")
            .order_by("id")
        )
        self._items = {item.pk: item for item in items}

    @property
    def items(self) -> list[SepaCollectionItem]:
        return list(self._items.values())

    @property
    def staged_edits(self) -> list[StagedEdit]:
        return list(self._staged.values())

    @property
    def has_changes(self) -> bool:
        return bool(self._staged)

    def effective_status(self, item_id: int) -> str:
        staged = self._staged.get(item_id)
        if staged is not None:
            return staged.status
        return self._items[item_id].status

    def summary(self) -> dict[str, int]:
        counts = {status: 0 for status in SepaCollectionItem.Status.values}
        for item_id in self._items:
            counts[self.effective_status(item_id)] += 1
        return counts

    def _ensure_editable(self) -> None:
        if self.state == SessionState.CLOSED:
            raise SepaSessionStateError("Die Sitzung wurde bereits geschlossen.")
        if self.state not in (SessionState.IDLE, SessionState.EDITING):
            raise SepaSessionStateError(
                "Die Sitzung wurde bereits gespeichert. Bitte zuerst zurücksetzen."
            )

    def stage_edit(
        self,
        item_id: int,
        status: str,
        *,
        return_reason: str | None = None,
        notes: str = "",
    ) -> StagedEdit:
        self._ensure_editable()
        item = self._items.get(int(item_id))
        if item is None:
            raise SepaStagingError(f"Position {item_id} gehört nicht zu diesem Einzug.")
        if not item.is_pending:
            raise SepaItemAlreadyResolved(item.pk, item.status)
        if status not in RESOLVED_STATUSES:
            raise SepaStagingError(f"Ungültiger Status für Position {item.pk}: {status}")
        if return_reason and status != SepaCollectionItem.Status.RETURNED:
            raise SepaStagingError("Ein Rückgabegrund ist nur bei Rücklastschriften zulässig.")

        edit = StagedEdit(
            item_id=item.pk,
            status=str(status),
            return_reason=normalize_return_reason(status, return_reason),
            notes=(notes or "").strip(),
        )
        self._staged[item.pk] = edit
        self.state = SessionState.EDITING
        return edit

    def stage_mark_all_pending_successful(self) -> int:
        self._ensure_editable()
        staged_count = 0
        for item in self.items:
            if item.is_pending and item.pk not in self._staged:
                self.stage_edit(item.pk, SepaCollectionItem.Status.SUCCESSFUL)
                staged_count += 1
        return staged_count

    def reset(self) -> None:
        if self.state == SessionState.CLOSED:
            raise SepaSessionStateError("Die Sitzung wurde bereits geschlossen.")
        if self.state == SessionState.SAVING:
            raise SepaSessionStateError("Während des Speicherns kann nicht zurückgesetzt werden.")
        self._staged.clear()
        self.collection.refresh_from_db()
        self._version = self.collection.version
        self._load_items()
        self.state = SessionState.IDLE

    def close(self) -> None:
        discarded = len(self._staged)
        self._staged.clear()
        self.state = SessionState.CLOSED
        if discarded:
            self.logger.info(
                "SEPA-Einzug %s: %s vorgemerkte Änderung(en) verworfen.",
                self.collection.pk,
                discarded,
            )

    def _check_version(self) -> None:
        current_version = (
            SepaCollection.objects.filter(pk=self.collection.pk)
            .values_list("version", flat=True)
            .first()
        )
        if current_version is None:
            raise SepaCollectionConflict("Der Einzug wurde zwischenzeitlich gelöscht.")
        if current_version != self._version:
            raise SepaCollectionConflict(
                "Der Einzug wurde zwischenzeitlich geändert. Bitte neu laden und erneut erfassen."
            )

    def commit(self) -> ReconciliationSummary:
        if self.state == SessionState.CLOSED:
            raise SepaSessionStateError("Die Sitzung wurde bereits geschlossen.")
        if self.state != SessionState.EDITING:
            raise SepaSessionStateError("Es sind keine Änderungen vorgemerkt.")
        self._check_version()

        self.state = SessionState.SAVING
        summary = ReconciliationSummary(collection_id=self.collection.pk)
        try:
            for edit in list(self._staged.values()):
                self._commit_edit(edit=edit, summary=summary)
            summary.collection_status = self._persist_collection_status()
        except Exception:
            self.last_summary = summary
            self.state = SessionState.SAVED_WITH_ERRORS
            self.logger.exception("Speichern von SEPA-Einzug %s abgebrochen.", self.collection.pk)
            raise
        self._staged.clear()
        self._load_items()
        self.last_summary = summary
        self.state = SessionState.SAVED_WITH_ERRORS if summary.has_errors else SessionState.SAVED_SUCCESS
        self.logger.info(
            "SEPA-Einzug %s gespeichert: %s erfolgreich, %s fehlgeschlagen, %s unverändert, Status %s.",
            self.collection.pk,
            len(summary.succeeded_item_ids),
            len(summary.failed),
            len(summary.skipped_item_ids),
            summary.collection_status,
        )
        return summary

    def _commit_edit(self, *, edit: StagedEdit, summary: ReconciliationSummary) -> None:
        payment_ids: list[int] = []
        fee_ids: list[int] = []
        try:
            with transaction.atomic():
                item = (
                    SepaCollectionItem.objects.select_for_update()
                    .filter(pk=edit.item_id, collection_id=self.collection.pk)
                    .first()
                )
                if item is None:
                    raise _ItemCommitFailed("Position ist nicht mehr vorhanden.")
                if item.status == edit.status:
                    summary.skipped_item_ids.append(item.pk)
                    return

                try:
                    outcome = self.resolver.resolve(
                        item,
                        edit.status,
                        collection_date=self.collection.collection_date,
                        return_reason=edit.return_reason or None,
                        today=self.today,
                    )
                except ValidationError as exc:
                    raise _ItemCommitFailed(" ".join(exc.messages)) from exc

                for request in outcome.side_effects:
                    result = self.dispatcher.dispatch(request)
                    if not result.ok:
                        raise _ItemCommitFailed(result.error)
                    if isinstance(request, CreatePayment):
                        payment_ids.append(result.reference_id)
                    elif isinstance(request, CreateFee):
                        fee_ids.append(result.reference_id)

                item.status = outcome.status
                item.return_reason = outcome.return_reason
                item.return_date = outcome.return_date
                if payment_ids:
                    item.payment_id = payment_ids[0]
                if edit.notes:
                    item.notes = edit.notes
                item._change_reason = f"SEPA-Abgleich: {item.get_status_display()}"
                if self.user is not None:
                    item._history_user = self.user
                item.save(
                    update_fields=[
                        "status",
                        "return_reason",
                        "return_date",
                        "payment",
                        "notes",
                        "updated_at",
                    ]
                )
        except _ItemCommitFailed as exc:
            self.logger.warning(
                "SEPA-Position %s konnte nicht gespeichert werden: %s",
                edit.item_id,
                exc,
            )
            summary.failed[edit.item_id] = str(exc)
            return

        summary.succeeded_item_ids.append(edit.item_id)
        summary.payment_ids.extend(payment_ids)
        summary.fee_ids.extend(fee_ids)

    @transaction.atomic
    def _persist_collection_status(self) -> str:
        collection = SepaCollection.objects.select_for_update().get(pk=self.collection.pk)
        collection.status = derive_collection_status(collection)
        collection.version += 1
        collection.save(update_fields=["status", "version", "updated_at"])
        self.collection = collection
        self._version = collection.version
        return collection.status
