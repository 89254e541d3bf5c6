from django.core.management.base import BaseCommand, CommandError

from lastschrift.models import BillingRun
from lastschrift.services.billing_run_lifecycle import OBSERVABLE_STATUSES, BillingRunLifecycle


class Command(BaseCommand):
    help = "Übernimmt den Chunk-Stand laufender Abrechnungs-Runs in den Run-Status."

    def add_arguments(self, parser):
        parser.add_argument(
            "--run-id",
            type=str,
            help="Optional nur diesen Run aktualisieren.",
        )

    def handle(self, *args, **options):
        run_id = (options.get("run_id") or "").strip()
        queryset = BillingRun.objects.filter(status__in=OBSERVABLE_STATUSES)
        if run_id:
            queryset = BillingRun.objects.filter(run_id=run_id)
            if not queryset.exists():
                raise CommandError(f"Run {run_id} wurde nicht gefunden.")

        changed = 0
        for run in queryset.order_by("created_at", "id"):
            previous_status = run.status
            new_status = BillingRunLifecycle(run=run).observe_chunks()
            if new_status != previous_status:
                changed += 1
                self.stdout.write(f"- {run.run_id}: {previous_status} -> {new_status}")

        self.stdout.write(self.style.SUCCESS(f"{changed} Runs aktualisiert."))
