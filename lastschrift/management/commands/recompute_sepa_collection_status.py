from __future__ import annotations

from django.core.management.base import BaseCommand

from lastschrift.models import SepaCollection
from lastschrift.services.sepa_collection_service import SepaCollectionService


class Command(BaseCommand):
    help = (
        "Berechnet den Status von SEPA-Einzügen aus den Positionen neu "
        "und meldet Abweichungen."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Schreibt abweichende Status in die Datenbank. Ohne --apply nur Vorschau.",
        )
        parser.add_argument(
            "--collection",
            type=int,
            help="Optionale ID eines einzelnen Einzugs.",
        )

    def handle(self, *args, **options):
        apply_changes = bool(options.get("apply"))
        collection_id = options.get("collection")

        queryset = SepaCollection.objects.exclude(status=SepaCollection.Status.PENDING)
        if collection_id:
            queryset = queryset.filter(pk=collection_id)

        mismatches = 0
        checked = 0
        for collection in queryset.order_by("collection_date", "id"):
            checked += 1
            old_status, new_status = SepaCollectionService.recompute_status(
                collection=collection,
                apply=apply_changes,
            )
            if old_status == new_status:
                continue
            mismatches += 1
            self.stdout.write(
                f"- #{collection.pk} {collection.collection_date:%d.%m.%Y}: {old_status} -> {new_status}"
            )

        self.stdout.write(f"Gepruefte Einzuege: {checked}")
        if not mismatches:
            self.stdout.write(self.style.SUCCESS("Alle Status sind konsistent."))
            return
        if not apply_changes:
            self.stdout.write(
                self.style.WARNING(
                    f"Dry-Run: {mismatches} Abweichungen gefunden. Mit --apply werden sie korrigiert."
                )
            )
            return
        self.stdout.write(self.style.SUCCESS(f"{mismatches} Einzuege korrigiert."))
