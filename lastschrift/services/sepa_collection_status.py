from __future__ import annotations

from collections.abc import Iterable

from lastschrift.models import SepaCollection, SepaCollectionItem

FAILED_ITEM_STATUSES = frozenset(
    {
        SepaCollectionItem.Status.RETURNED,
        SepaCollectionItem.Status.REJECTED,
    }
)


class SepaAggregationError(RuntimeError):
    """Unbekannter Positionsstatus beim Zusammenfassen eines Einzugs."""


def aggregate_collection_status(item_statuses: Iterable[str]) -> str:
    """Gesamtstatus eines exportierten Einzugs aus den Positionsstatus.

    Ein leerer Einzug gilt als abgeschlossen.
    """
    has_pending = False
    has_failed = False
    for status in item_statuses:
        if status not in SepaCollectionItem.Status.values:
            raise SepaAggregationError(f"Unbekannter Positionsstatus: {status!r}")
        if status == SepaCollectionItem.Status.PENDING:
            has_pending = True
        elif status in FAILED_ITEM_STATUSES:
            has_failed = True

    if has_pending:
        return SepaCollection.Status.EXPORTED
    if has_failed:
        return SepaCollection.Status.PARTIALLY_COMPLETED
    return SepaCollection.Status.COMPLETED


def derive_collection_status(collection: SepaCollection) -> str:
    statuses = SepaCollectionItem.objects.filter(collection=collection).values_list("status", flat=True)
    return aggregate_collection_status(statuses)
