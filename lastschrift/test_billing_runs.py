from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from .models import BillingRun, BillingRunChunk, BillingRunLine
from .services.billing_run_lifecycle import (
    BillingRunLifecycle,
    BillingRunLifecycleError,
    aggregate_run_status,
    can_decide,
    can_reprocess,
    can_rollback,
    progress_percent,
)

Status = BillingRun.Status
ChunkStatus = BillingRunChunk.Status


class BillingRunTestMixin:
    def create_run(self, *, run_id="2026-10-miete", status=Status.COMPLETED, lines=3):
        run = BillingRun.objects.create(
            run_id=run_id,
            status=status,
            expected_lines=lines,
            inserted=lines,
            started_at=timezone.now() - timedelta(minutes=5),
            finished_at=timezone.now() if status == Status.COMPLETED else None,
        )
        for index in range(lines):
            BillingRunLine.objects.create(
                run=run,
                chunk_id=index // 2 + 1,
                line_type="miete",
                description=f"Miete Top {index + 1}",
                amount=Decimal("500.00") + index,
                operation=BillingRunLine.Operation.INSERT,
            )
        return run


class BillingRunStatusRulesTests(TestCase):
    def test_decision_rules(self):
        for status in Status.values:
            with self.subTest(status=status):
                self.assertEqual(can_decide(status), status in {Status.COMPLETED, Status.RUNNING})
                self.assertEqual(
                    can_rollback(status),
                    status not in {Status.ROLLED_BACK, Status.PENDING_REPROCESS},
                )
                self.assertEqual(
                    can_reprocess(status),
                    status in {Status.FAILED, Status.ROLLED_BACK, Status.CANCELLED},
                )

    def test_progress_percent(self):
        self.assertEqual(progress_percent(total_chunks=0, completed_chunks=0, failed_chunks=0), 0)
        self.assertEqual(progress_percent(total_chunks=4, completed_chunks=1, failed_chunks=0), 25)
        self.assertEqual(progress_percent(total_chunks=3, completed_chunks=1, failed_chunks=1), 67)
        self.assertEqual(progress_percent(total_chunks=2, completed_chunks=2, failed_chunks=0), 100)

    def test_aggregate_run_status(self):
        cases = [
            ([], 2, None),
            ([ChunkStatus.PENDING, ChunkStatus.PENDING], 2, Status.PENDING),
            ([ChunkStatus.PENDING, ChunkStatus.DONE], 2, Status.RUNNING),
            ([ChunkStatus.PROCESSING], 1, Status.RUNNING),
            ([ChunkStatus.DONE, ChunkStatus.DONE], 2, Status.COMPLETED),
            ([ChunkStatus.DONE, ChunkStatus.FAILED], 2, Status.FAILED),
            ([ChunkStatus.DONE], 3, Status.RUNNING),
            ([ChunkStatus.DONE, ChunkStatus.FAILED], 3, Status.RUNNING),
            ([ChunkStatus.DONE, ChunkStatus.DONE], 0, Status.RUNNING),
        ]
        for statuses, total, expected in cases:
            with self.subTest(statuses=statuses, total_chunks=total):
                self.assertEqual(aggregate_run_status(statuses, total_chunks=total), expected)


class BillingRunLifecycleTests(BillingRunTestMixin, TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="buchhaltung", password="geheim123")

    def test_rollback_then_reprocess(self):
        run = self.create_run()
        lifecycle = BillingRunLifecycle(run=run)

        deleted = lifecycle.rollback(reason="Falsche Indexwerte", user=self.user)

        run.refresh_from_db()
        self.assertEqual(deleted, run.inserted + run.updated)
        self.assertEqual(run.status, Status.ROLLED_BACK)
        self.assertEqual(run.rollback_reason, "Falsche Indexwerte")
        self.assertEqual(run.rolled_back_by, self.user)
        self.assertIsNotNone(run.rolled_back_at)
        self.assertFalse(BillingRunLine.objects.active().filter(run=run).exists())
        self.assertEqual(
            set(BillingRunLine.objects.filter(run=run).values_list("deleted_reason", flat=True)),
            {"Falsche Indexwerte"},
        )
        self.assertEqual(run.history.first().history_change_reason, "Rollback: Falsche Indexwerte")

        with self.assertRaises(BillingRunLifecycleError):
            lifecycle.rollback(reason="nochmal")

        lifecycle.reprocess(user=self.user)
        run.refresh_from_db()
        self.assertEqual(run.status, Status.PENDING_REPROCESS)
        self.assertIsNone(run.finished_at)
        self.assertIsNotNone(run.reprocess_requested_at)

        with self.assertRaises(BillingRunLifecycleError):
            lifecycle.reprocess()
        with self.assertRaises(BillingRunLifecycleError):
            lifecycle.rollback(reason="zu spät")

    def test_rollback_requires_reason(self):
        run = self.create_run()
        with self.assertRaises(BillingRunLifecycleError):
            BillingRunLifecycle(run=run).rollback(reason="   ")
        run.refresh_from_db()
        self.assertEqual(run.status, Status.COMPLETED)
        self.assertEqual(BillingRunLine.objects.active().filter(run=run).count(), 3)

    def test_rollback_of_running_run_warns(self):
        run = self.create_run(status=Status.RUNNING)
        with self.assertLogs("lastschrift.services.billing_run_lifecycle", level="WARNING"):
            BillingRunLifecycle(run=run).rollback(reason="Abbruch durch Betreiber")
        run.refresh_from_db()
        self.assertEqual(run.status, Status.ROLLED_BACK)
        self.assertIsNotNone(run.finished_at)

    def test_accept_and_decline_only_record_decision(self):
        run = self.create_run()
        lifecycle = BillingRunLifecycle(run=run)

        lifecycle.accept(comment="  passt ", user=self.user)
        run.refresh_from_db()
        self.assertEqual(run.status, Status.COMPLETED)
        self.assertEqual(run.accept_comment, "passt")
        self.assertEqual(run.accepted_by, self.user)
        self.assertIsNotNone(run.accepted_at)

        lifecycle.decline(reason="Summen prüfen", user=self.user)
        run.refresh_from_db()
        self.assertEqual(run.status, Status.COMPLETED)
        self.assertEqual(run.decline_reason, "Summen prüfen")
        self.assertEqual(BillingRunLine.objects.active().filter(run=run).count(), 3)

    def test_decision_refused_outside_completed_or_running(self):
        run = self.create_run(status=Status.FAILED)
        lifecycle = BillingRunLifecycle(run=run)
        with self.assertRaises(BillingRunLifecycleError):
            lifecycle.accept()
        with self.assertRaises(BillingRunLifecycleError):
            lifecycle.decline(reason="nein")
        run.refresh_from_db()
        self.assertIsNone(run.accepted_at)
        self.assertIsNone(run.declined_at)

    def test_detail_excludes_deleted_lines(self):
        run = self.create_run(lines=5)
        BillingRunLine.objects.filter(run=run, chunk_id=1).update(deleted_at=timezone.now())
        BillingRunChunk.objects.create(run=run, chunk_id=1, status=ChunkStatus.DONE)
        BillingRunChunk.objects.create(run=run, chunk_id=2, status=ChunkStatus.FAILED)
        BillingRunChunk.objects.create(run=run, chunk_id=3, status=ChunkStatus.DONE)

        detail = BillingRunLifecycle.for_run_id(run.run_id).detail(sample_limit=2)

        self.assertEqual(detail.total_chunks, 3)
        self.assertEqual(detail.completed_chunks, 2)
        self.assertEqual(detail.failed_chunks, 1)
        self.assertEqual(detail.progress_percent, 100)
        self.assertEqual(len(detail.samples), 2)
        self.assertTrue(all(line.chunk_id != 1 for line in detail.samples))
        self.assertTrue(detail.can_decide)
        self.assertFalse(detail.can_reprocess)


class BillingRunChunkObservationTests(BillingRunTestMixin, TestCase):
    def setUp(self):
        self.run = BillingRun.objects.create(run_id="2026-11-miete", status=Status.PENDING, total_chunks=2)

    def _chunk(self, chunk_id, status, **kwargs):
        return BillingRunChunk.objects.create(run=self.run, chunk_id=chunk_id, status=status, **kwargs)

    def test_running_then_completed(self):
        self._chunk(1, ChunkStatus.DONE, inserted=5, updated=1)
        chunk = self._chunk(2, ChunkStatus.PROCESSING, inserted=2)
        lifecycle = BillingRunLifecycle(run=self.run)

        self.assertEqual(lifecycle.observe_chunks(), Status.RUNNING)
        self.run.refresh_from_db()
        self.assertEqual(self.run.inserted, 7)
        self.assertEqual(self.run.updated, 1)
        self.assertIsNotNone(self.run.started_at)
        self.assertIsNone(self.run.finished_at)

        chunk.status = ChunkStatus.DONE
        chunk.completed_at = timezone.now()
        chunk.save()

        self.assertEqual(lifecycle.observe_chunks(), Status.COMPLETED)
        self.run.refresh_from_db()
        self.assertEqual(self.run.finished_at, chunk.completed_at)

    def test_failed_chunk_sets_error_message(self):
        self._chunk(1, ChunkStatus.DONE)
        self._chunk(2, ChunkStatus.FAILED, error_message="Mietvertrag 17 ohne Einheit")

        self.assertEqual(BillingRunLifecycle(run=self.run).observe_chunks(), Status.FAILED)
        self.run.refresh_from_db()
        self.assertEqual(self.run.error_message, "Mietvertrag 17 ohne Einheit")

    def test_terminal_run_is_left_alone(self):
        self.run.status = Status.ROLLED_BACK
        self.run.save()
        self._chunk(1, ChunkStatus.DONE)

        self.assertEqual(BillingRunLifecycle(run=self.run).observe_chunks(), Status.ROLLED_BACK)

    def test_chunk_save_refreshes_run_after_commit(self):
        self.run.total_chunks = 1
        self.run.save()
        with self.captureOnCommitCallbacks(execute=True):
            self._chunk(1, ChunkStatus.DONE, inserted=3)

        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.COMPLETED)
        self.assertEqual(self.run.inserted, 3)

    def test_run_stays_running_until_all_planned_chunks_are_done(self):
        self.run.total_chunks = 3
        self.run.save()

        with self.captureOnCommitCallbacks(execute=True):
            self._chunk(1, ChunkStatus.DONE, inserted=4, completed_at=timezone.now())
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.RUNNING)
        self.assertIsNone(self.run.finished_at)
        self.assertEqual(BillingRunLifecycle(run=self.run).detail().total_chunks, 3)
        self.assertEqual(BillingRunLifecycle(run=self.run).detail().progress_percent, 33)

        with self.captureOnCommitCallbacks(execute=True):
            second = self._chunk(2, ChunkStatus.PROCESSING, inserted=2)
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.RUNNING)
        self.assertIsNone(self.run.finished_at)

        with self.captureOnCommitCallbacks(execute=True):
            second.status = ChunkStatus.DONE
            second.completed_at = timezone.now()
            second.save()
            self._chunk(3, ChunkStatus.DONE, inserted=1, completed_at=timezone.now())
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.COMPLETED)
        self.assertEqual(self.run.inserted, 7)
        self.assertIsNotNone(self.run.finished_at)

    def test_unchanged_chunks_do_not_write_history(self):
        self._chunk(1, ChunkStatus.PROCESSING, inserted=2)
        lifecycle = BillingRunLifecycle(run=self.run)

        self.assertEqual(lifecycle.observe_chunks(), Status.RUNNING)
        history_count = self.run.history.count()
        self.assertEqual(lifecycle.observe_chunks(), Status.RUNNING)

        self.assertEqual(self.run.history.count(), history_count)

    def test_refresh_command(self):
        self._chunk(1, ChunkStatus.PROCESSING)
        out = StringIO()
        call_command("refresh_billing_runs", stdout=out)

        self.assertIn("2026-11-miete: pending -> running", out.getvalue())
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.RUNNING)


class BillingRunViewTests(BillingRunTestMixin, TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="buchhaltung", password="geheim123")
        self.client.force_login(self.user)
        self.run = self.create_run()

    def test_list_and_detail_render(self):
        response = self.client.get(reverse("billing_run_list"))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "2026-10-miete")

        response = self.client.get(reverse("billing_run_detail", args=[self.run.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Miete Top 1")
        self.assertContains(response, reverse("billing_run_rollback", args=[self.run.pk]))

    def test_accept(self):
        response = self.client.post(
            reverse("billing_run_accept", args=[self.run.pk]),
            {"comment": "Freigegeben"},
        )
        self.assertRedirects(response, reverse("billing_run_detail", args=[self.run.pk]))
        self.run.refresh_from_db()
        self.assertEqual(self.run.accepted_by, self.user)
        self.assertEqual(self.run.accept_comment, "Freigegeben")

    def test_rollback_without_reason_is_refused(self):
        response = self.client.post(reverse("billing_run_rollback", args=[self.run.pk]), {"reason": ""}, follow=True)

        self.assertContains(response, "Bitte eine Begründung für den Rollback angeben.")
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.COMPLETED)

    def test_rollback_and_reprocess(self):
        response = self.client.post(
            reverse("billing_run_rollback", args=[self.run.pk]),
            {"reason": "Doppelt gebucht"},
            follow=True,
        )
        self.assertContains(response, "3 Zeilen entfernt")

        self.client.post(reverse("billing_run_reprocess", args=[self.run.pk]))
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.PENDING_REPROCESS)
        self.assertEqual(self.run.rolled_back_by, self.user)

    def test_reprocess_refused_for_completed_run(self):
        response = self.client.post(reverse("billing_run_reprocess", args=[self.run.pk]), follow=True)

        self.assertContains(response, "nicht erneut verarbeitet werden")
        self.run.refresh_from_db()
        self.assertEqual(self.run.status, Status.COMPLETED)


class BillingRunAdminTests(BillingRunTestMixin, TestCase):
    def setUp(self):
        self.admin_user = get_user_model().objects.create_superuser(
            username="admin", email="admin@example.com", password="geheim123"
        )
        self.client.force_login(self.admin_user)
        self.run = self.create_run()

    def test_lifecycle_fields_are_read_only(self):
        run_admin = admin.site._registry[BillingRun]
        readonly = run_admin.get_readonly_fields(None, self.run)
        for field_name in ("status", "total_chunks", "inserted", "updated", "started_at", "finished_at"):
            with self.subTest(field=field_name):
                self.assertIn(field_name, readonly)

        response = self.client.get(reverse("admin:lastschrift_billingrun_change", args=[self.run.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertNotContains(response, 'name="status"')
