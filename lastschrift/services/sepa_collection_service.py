from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from lastschrift.models import SepaCollection, SepaCollectionItem, Tenant
from lastschrift.services.sepa_collection_status import derive_collection_status
from lastschrift.services.sepa_outcome import to_money

logger = logging.getLogger(__name__)


class SepaCollectionService:
    @staticmethod
    def _item_from_row(*, collection: SepaCollection, row: Mapping[str, object]) -> SepaCollectionItem:
        tenant = row.get("tenant")
        if tenant is not None and not isinstance(tenant, Tenant):
            tenant = Tenant.objects.get(pk=tenant)
        debtor_name = str(row.get("debtor_name") or "").strip()
        if not debtor_name and tenant is not None:
            debtor_name = tenant.display_name
        item = SepaCollectionItem(
            collection=collection,
            tenant=tenant,
            debtor_name=debtor_name,
            iban=str(row.get("iban") or (tenant.iban if tenant else "") or "").replace(" ", "").upper(),
            mandate_reference=str(
                row.get("mandate_reference") or (tenant.sepa_mandate_reference if tenant else "") or ""
            ).strip(),
            amount=to_money(row.get("amount")),
        )
        item.full_clean(exclude=["collection"])
        return item

    @classmethod
    @transaction.atomic
    def create_collection(
        cls,
        *,
        collection_date: date,
        rows: Iterable[Mapping[str, object]],
        description: str = "",
        file_name: str = "",
        user=None,
    ) -> SepaCollection:
        collection = SepaCollection.objects.create(
            collection_date=collection_date,
            description=description.strip(),
            file_name=file_name.strip(),
            created_by=user,
        )
        items: list[SepaCollectionItem] = []
        for row in rows:
            item = cls._item_from_row(collection=collection, row=row)
            item.save()
            items.append(item)

        collection.item_count = len(items)
        collection.total_amount = to_money(sum((item.amount for item in items), start=to_money(0)))
        collection.save(update_fields=["item_count", "total_amount", "updated_at"])
        logger.info(
            "SEPA-Einzug %s angelegt: %s Positionen, %s EUR.",
            collection.pk,
            collection.item_count,
            collection.total_amount,
        )
        return collection

    @staticmethod
    @transaction.atomic
    def mark_exported(*, collection: SepaCollection, file_name: str = "") -> SepaCollection:
        collection = SepaCollection.objects.select_for_update().get(pk=collection.pk)
        if collection.status != SepaCollection.Status.PENDING:
            raise ValidationError("Der Einzug wurde bereits exportiert.")
        collection.status = derive_collection_status(collection)
        collection.exported_at = timezone.now()
        if file_name:
            collection.file_name = file_name.strip()
        collection.version += 1
        collection.save(update_fields=["status", "exported_at", "file_name", "version", "updated_at"])
        return collection

    @staticmethod
    def delete_collection(*, collection: SepaCollection) -> int:
        item_count = collection.items.count()
        label = str(collection)
        collection.delete()
        logger.info("%s gelöscht (%s Positionen).", label, item_count)
        return item_count

    @staticmethod
    @transaction.atomic
    def recompute_status(*, collection: SepaCollection, apply: bool = True) -> tuple[str, str]:
        collection = SepaCollection.objects.select_for_update().get(pk=collection.pk)
        old_status = collection.status
        if old_status == SepaCollection.Status.PENDING:
            return old_status, old_status
        new_status = derive_collection_status(collection)
        if apply and new_status != old_status:
            collection.status = new_status
            collection.version += 1
            collection.save(update_fields=["status", "version", "updated_at"])
        return old_status, new_status
