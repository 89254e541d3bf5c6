from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from lastschrift.models import BillingRunChunk
from lastschrift.services.billing_run_lifecycle import refresh_run_from_chunks


def _schedule_run_refresh(*, run_pk) -> None:
    if run_pk is None:
        return
    transaction.on_commit(lambda: refresh_run_from_chunks(run_pk=int(run_pk)))


@receiver(post_save, sender=BillingRunChunk)
def chunk_post_save_refresh_run(sender, instance, **kwargs):
    _schedule_run_refresh(run_pk=instance.run_id)
