from datetime import date
from decimal import Decimal
from io import StringIO

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import RequestFactory, TestCase, override_settings
from django.urls import reverse

from .admin import SepaCollectionItemInline
from .models import Buchung, SepaCollection, SepaCollectionItem, Tenant, TenantFee
from .services.sepa_collection_service import SepaCollectionService
from .services.sepa_collection_status import (
    SepaAggregationError,
    aggregate_collection_status,
    derive_collection_status,
)
from .services.sepa_outcome import (
    CreateFee,
    CreatePayment,
    SepaItemAlreadyResolved,
    SepaItemOutcomeResolver,
    SepaReconciliationConfig,
    normalize_return_reason,
    return_reason_label,
)
from .services.sepa_reconciliation import (
    SepaCollectionConflict,
    SepaCollectionNotExported,
    SepaReconciliationSession,
    SepaSessionStateError,
    SepaStagingError,
    SessionState,
)
from .services.sepa_side_effects import (
    BuchungPaymentService,
    SideEffectDispatcher,
    SideEffectError,
    TenantFeeService,
)

PENDING = SepaCollectionItem.Status.PENDING
SUCCESSFUL = SepaCollectionItem.Status.SUCCESSFUL
RETURNED = SepaCollectionItem.Status.RETURNED
REJECTED = SepaCollectionItem.Status.REJECTED


class FailingForTenantPaymentService(BuchungPaymentService):
    def __init__(self, failing_tenant_ids):
        self.failing_tenant_ids = set(failing_tenant_ids)

    def create(self, *, tenant_id, **kwargs):
        if tenant_id in self.failing_tenant_ids:
            raise SideEffectError("Buchhaltung nicht erreichbar.")
        return super().create(tenant_id=tenant_id, **kwargs)


class FailingAfterWritePaymentService(BuchungPaymentService):
    def create(self, **kwargs):
        super().create(**kwargs)
        raise RuntimeError("Verbindung abgebrochen")


class BrokenFeeService(TenantFeeService):
    def create(self, **kwargs):
        raise SideEffectError("Gebührenkonto gesperrt.")


class SepaTestDataMixin:
    collection_date = date(2026, 10, 5)
    today = date(2026, 10, 19)

    def create_tenants(self):
        self.tenant_a = Tenant.objects.create(
            first_name="Anna",
            last_name="Berger",
            iban="AT61 1904 3002 3457 3201",
            sepa_mandate_reference="MANDAT-001",
        )
        self.tenant_b = Tenant.objects.create(
            first_name="Bernd",
            last_name="Huber",
            iban="AT48 3200 0000 1234 5864",
            sepa_mandate_reference="MANDAT-002",
        )
        self.tenant_c = Tenant.objects.create(
            first_name="Clara",
            last_name="Wagner",
            iban="AT02 2011 1000 0000 1234",
            sepa_mandate_reference="MANDAT-003",
        )

    def create_exported_collection(self, rows=None):
        if rows is None:
            rows = [
                {"tenant": self.tenant_a, "amount": "450.00"},
                {"tenant": self.tenant_b, "amount": "520.50"},
                {"tenant": self.tenant_c, "amount": "380.00"},
            ]
        collection = SepaCollectionService.create_collection(
            collection_date=self.collection_date,
            rows=rows,
            description="Miete Oktober 2026",
        )
        return SepaCollectionService.mark_exported(collection=collection, file_name="sepa-2026-10.xml")

    def item_for(self, collection, tenant):
        return collection.items.get(tenant=tenant)

    def open_session(self, collection, **kwargs):
        kwargs.setdefault("today", self.today)
        return SepaReconciliationSession(collection=collection, **kwargs)


class CollectionStatusAggregationTests(TestCase):
    def test_status_table(self):
        cases = [
            ([], SepaCollection.Status.COMPLETED),
            ([SUCCESSFUL, SUCCESSFUL], SepaCollection.Status.COMPLETED),
            ([SUCCESSFUL, PENDING], SepaCollection.Status.EXPORTED),
            ([PENDING, RETURNED], SepaCollection.Status.EXPORTED),
            ([SUCCESSFUL, RETURNED], SepaCollection.Status.PARTIALLY_COMPLETED),
            ([REJECTED], SepaCollection.Status.PARTIALLY_COMPLETED),
            ([RETURNED, REJECTED], SepaCollection.Status.PARTIALLY_COMPLETED),
        ]
        for statuses, expected in cases:
            with self.subTest(statuses=statuses):
                self.assertEqual(aggregate_collection_status(statuses), expected)

    def test_order_does_not_matter(self):
        statuses = [SUCCESSFUL, RETURNED, PENDING, REJECTED]
        self.assertEqual(
            aggregate_collection_status(statuses),
            aggregate_collection_status(list(reversed(statuses))),
        )

    def test_unknown_status_raises(self):
        with self.assertRaises(SepaAggregationError):
            aggregate_collection_status([SUCCESSFUL, "storniert"])


class ItemOutcomeResolverTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()
        self.collection = self.create_exported_collection()
        self.item = self.item_for(self.collection, self.tenant_a)
        self.resolver = SepaItemOutcomeResolver(config=SepaReconciliationConfig())

    def test_successful_requests_payment(self):
        outcome = self.resolver.resolve(self.item, SUCCESSFUL, collection_date=self.collection_date)

        self.assertEqual(outcome.status, SUCCESSFUL)
        self.assertEqual(outcome.return_reason, "")
        self.assertIsNone(outcome.return_date)
        self.assertEqual(
            outcome.side_effects,
            (
                CreatePayment(
                    tenant_id=self.tenant_a.pk,
                    amount=Decimal("450.00"),
                    booking_date=self.collection_date,
                    payment_method="sepa",
                    reference="SEPA-Lastschrift 10/2026",
                ),
            ),
        )

    def test_returned_requests_fee_with_reason(self):
        outcome = self.resolver.resolve(
            self.item,
            RETURNED,
            collection_date=self.collection_date,
            return_reason=SepaCollectionItem.ReturnReason.INSUFFICIENT_FUNDS,
            today=self.today,
        )

        self.assertEqual(outcome.return_reason, SepaCollectionItem.ReturnReason.INSUFFICIENT_FUNDS)
        self.assertEqual(outcome.return_date, self.today)
        self.assertIsNone(outcome.payment_request)
        fee = outcome.fee_requests[0]
        self.assertIsInstance(fee, CreateFee)
        self.assertEqual(fee.amount, Decimal("7.50"))
        self.assertEqual(fee.fee_type, TenantFee.FeeType.RUECKLASTSCHRIFT)
        self.assertEqual(fee.sepa_item_id, self.item.pk)
        self.assertEqual(
            fee.description,
            "Rücklastschrift-Gebühr vom 05.10.2026 - Konto nicht gedeckt (AM04)",
        )

    def test_rejected_has_no_reason_but_fee(self):
        outcome = self.resolver.resolve(
            self.item,
            REJECTED,
            collection_date=self.collection_date,
            today=self.today,
        )
        self.assertEqual(outcome.return_reason, "")
        self.assertEqual(outcome.return_date, self.today)
        self.assertEqual(len(outcome.fee_requests), 1)
        self.assertIn("Rücklastschrift", outcome.fee_requests[0].description)

    def test_no_fee_without_tenant(self):
        self.item.tenant = None
        outcome = self.resolver.resolve(
            self.item,
            RETURNED,
            collection_date=self.collection_date,
            today=self.today,
        )
        self.assertEqual(outcome.side_effects, ())
        self.assertEqual(outcome.return_reason, SepaCollectionItem.ReturnReason.OTHER)

    def test_resolved_item_is_rejected(self):
        self.item.status = SUCCESSFUL
        with self.assertRaises(SepaItemAlreadyResolved) as ctx:
            self.resolver.resolve(self.item, RETURNED, collection_date=self.collection_date)
        self.assertEqual(ctx.exception.item_id, self.item.pk)
        self.assertEqual(ctx.exception.current_status, SUCCESSFUL)

    def test_pending_is_not_a_target_status(self):
        with self.assertRaises(ValidationError):
            self.resolver.resolve(self.item, PENDING, collection_date=self.collection_date)

    def test_resolve_does_not_write(self):
        self.resolver.resolve(self.item, SUCCESSFUL, collection_date=self.collection_date)
        self.item.refresh_from_db()
        self.assertEqual(self.item.status, PENDING)
        self.assertEqual(Buchung.objects.count(), 0)

    @override_settings(SEPA_RETURN_FEE=Decimal("9.90"), SEPA_PAYMENT_REFERENCE_PREFIX="Lastschrift")
    def test_config_from_settings(self):
        resolver = SepaItemOutcomeResolver()
        self.assertEqual(resolver.config.return_fee, Decimal("9.90"))
        self.assertEqual(resolver.payment_reference(self.collection_date), "Lastschrift 10/2026")

    def test_return_reason_helpers(self):
        self.assertEqual(normalize_return_reason(REJECTED, "no_mandate"), "")
        self.assertEqual(normalize_return_reason(RETURNED, "  "), SepaCollectionItem.ReturnReason.OTHER)
        self.assertEqual(return_reason_label(""), "Rücklastschrift")
        self.assertEqual(return_reason_label("closed_account"), "Konto geschlossen (AC04)")
        with self.assertRaises(ValidationError):
            normalize_return_reason(RETURNED, "unbekannt")


class SideEffectDispatcherTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()

    def _payment(self, tenant_id):
        return CreatePayment(
            tenant_id=tenant_id,
            amount=Decimal("100.00"),
            booking_date=self.collection_date,
            payment_method="sepa",
            reference="SEPA-Lastschrift 10/2026",
        )

    def test_payment_creates_ist_buchung(self):
        result = SideEffectDispatcher().dispatch(self._payment(self.tenant_a.pk))

        self.assertTrue(result.ok)
        buchung = Buchung.objects.get(pk=result.reference_id)
        self.assertEqual(buchung.typ, Buchung.Typ.IST)
        self.assertEqual(buchung.zahlungsart, Buchung.Zahlungsart.SEPA)
        self.assertEqual(buchung.betrag, Decimal("100.00"))
        self.assertEqual(buchung.eingangsdatum, self.collection_date)

    def test_missing_tenant_is_reported(self):
        result = SideEffectDispatcher().dispatch(self._payment(None))
        self.assertFalse(result.ok)
        self.assertIn("ohne Mieter", result.error)

    def test_unexpected_error_is_reported_and_rolled_back(self):
        dispatcher = SideEffectDispatcher(payment_service=FailingAfterWritePaymentService())
        with self.assertLogs("lastschrift.services.sepa_side_effects", level="ERROR"):
            result = dispatcher.dispatch(self._payment(self.tenant_a.pk))

        self.assertFalse(result.ok)
        self.assertIn("Verbindung abgebrochen", result.error)
        self.assertEqual(Buchung.objects.count(), 0)

    def test_unknown_request_type(self):
        with self.assertRaises(TypeError):
            SideEffectDispatcher().dispatch(object())


class ReconciliationSessionTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()
        self.collection = self.create_exported_collection()
        self.item_a = self.item_for(self.collection, self.tenant_a)
        self.item_b = self.item_for(self.collection, self.tenant_b)
        self.item_c = self.item_for(self.collection, self.tenant_c)

    def test_all_successful_completes_collection(self):
        session = self.open_session(self.collection)
        self.assertEqual(session.stage_mark_all_pending_successful(), 3)

        summary = session.commit()

        self.assertEqual(session.state, SessionState.SAVED_SUCCESS)
        self.assertCountEqual(summary.succeeded_item_ids, [self.item_a.pk, self.item_b.pk, self.item_c.pk])
        self.assertEqual(summary.collection_status, SepaCollection.Status.COMPLETED)
        self.assertEqual(len(summary.payment_ids), 3)
        self.assertEqual(Buchung.objects.filter(typ=Buchung.Typ.IST).count(), 3)
        self.assertEqual(TenantFee.objects.count(), 0)

        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, SUCCESSFUL)
        self.assertEqual(self.item_a.payment.buchungstext, "SEPA-Lastschrift 10/2026")
        self.assertEqual(self.item_a.payment.betrag, Decimal("450.00"))

        self.collection.refresh_from_db()
        self.assertEqual(self.collection.status, SepaCollection.Status.COMPLETED)
        self.assertEqual(self.collection.version, 2)

    def test_mixed_outcomes(self):
        session = self.open_session(self.collection)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.stage_edit(
            self.item_b.pk,
            RETURNED,
            return_reason=SepaCollectionItem.ReturnReason.INSUFFICIENT_FUNDS,
            notes="Mieter informiert",
        )
        summary = session.commit()

        self.assertEqual(summary.collection_status, SepaCollection.Status.EXPORTED)
        self.item_b.refresh_from_db()
        self.assertEqual(self.item_b.status, RETURNED)
        self.assertEqual(self.item_b.return_reason, SepaCollectionItem.ReturnReason.INSUFFICIENT_FUNDS)
        self.assertEqual(self.item_b.return_date, self.today)
        self.assertEqual(self.item_b.notes, "Mieter informiert")
        self.assertIsNone(self.item_b.payment_id)

        fee = TenantFee.objects.get(tenant=self.tenant_b)
        self.assertEqual(fee.amount, Decimal("7.50"))
        self.assertEqual(fee.sepa_item, self.item_b)
        self.assertEqual(fee.description, "Rücklastschrift-Gebühr vom 05.10.2026 - Konto nicht gedeckt (AM04)")

        session.reset()
        session.stage_edit(self.item_c.pk, REJECTED)
        summary = session.commit()

        self.assertEqual(summary.collection_status, SepaCollection.Status.PARTIALLY_COMPLETED)
        self.item_c.refresh_from_db()
        self.assertEqual(self.item_c.status, REJECTED)
        self.assertEqual(self.item_c.return_reason, "")
        self.assertEqual(TenantFee.objects.count(), 2)
        self.assertEqual(Buchung.objects.count(), 1)

    def test_two_item_mixed_scenario(self):
        collection = self.create_exported_collection(
            rows=[
                {"tenant": self.tenant_a, "amount": "100.00"},
                {"tenant": self.tenant_b, "amount": "100.00"},
            ]
        )
        session = self.open_session(collection)
        session.stage_edit(self.item_for(collection, self.tenant_a).pk, SUCCESSFUL)
        session.stage_edit(
            self.item_for(collection, self.tenant_b).pk,
            RETURNED,
            return_reason=SepaCollectionItem.ReturnReason.INSUFFICIENT_FUNDS,
        )

        summary = session.commit()

        self.assertEqual(summary.collection_status, SepaCollection.Status.PARTIALLY_COMPLETED)
        self.assertEqual(len(summary.payment_ids), 1)
        self.assertEqual(len(summary.fee_ids), 1)
        self.assertEqual(TenantFee.objects.get(pk=summary.fee_ids[0]).amount, Decimal("7.50"))

    def test_failed_payment_keeps_item_pending(self):
        dispatcher = SideEffectDispatcher(
            payment_service=FailingForTenantPaymentService([self.tenant_b.pk]),
        )
        session = self.open_session(self.collection, dispatcher=dispatcher)
        session.stage_mark_all_pending_successful()

        with self.assertLogs("lastschrift.services.sepa_reconciliation", level="WARNING"):
            summary = session.commit()

        self.assertEqual(session.state, SessionState.SAVED_WITH_ERRORS)
        self.assertEqual(summary.failed_item_ids, [self.item_b.pk])
        self.assertIn("Buchhaltung nicht erreichbar", summary.failed[self.item_b.pk])
        self.assertCountEqual(summary.succeeded_item_ids, [self.item_a.pk, self.item_c.pk])
        self.assertEqual(summary.collection_status, SepaCollection.Status.EXPORTED)

        self.item_b.refresh_from_db()
        self.assertEqual(self.item_b.status, PENDING)
        self.assertFalse(Buchung.objects.filter(mieter=self.tenant_b).exists())
        self.assertEqual(Buchung.objects.count(), 2)

    def test_failed_fee_keeps_item_pending(self):
        dispatcher = SideEffectDispatcher(fee_service=BrokenFeeService())
        session = self.open_session(self.collection, dispatcher=dispatcher)
        session.stage_edit(self.item_a.pk, RETURNED, return_reason="closed_account")
        session.stage_edit(self.item_b.pk, SUCCESSFUL)

        summary = session.commit()

        self.assertEqual(summary.failed_item_ids, [self.item_a.pk])
        self.assertEqual(summary.succeeded_item_ids, [self.item_b.pk])
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, PENDING)
        self.assertEqual(self.item_a.return_reason, "")

    def test_payment_written_before_failure_is_rolled_back(self):
        dispatcher = SideEffectDispatcher(payment_service=FailingAfterWritePaymentService())
        session = self.open_session(self.collection, dispatcher=dispatcher)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)

        with self.assertLogs("lastschrift.services.sepa_side_effects", level="ERROR"):
            summary = session.commit()

        self.assertTrue(summary.has_errors)
        self.assertEqual(Buchung.objects.count(), 0)
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, PENDING)
        self.assertIsNone(self.item_a.payment_id)

    def test_item_without_tenant(self):
        collection = self.create_exported_collection(
            rows=[
                {"debtor_name": "Fremdzahler GmbH", "iban": "AT611904300234573201", "amount": "12.00"},
                {"debtor_name": "Fremdzahler GmbH", "iban": "AT611904300234573201", "amount": "15.00"},
            ]
        )
        returned_item, successful_item = list(collection.items.order_by("id"))
        session = self.open_session(collection)
        session.stage_edit(returned_item.pk, RETURNED)
        session.stage_edit(successful_item.pk, SUCCESSFUL)

        summary = session.commit()

        self.assertEqual(summary.succeeded_item_ids, [returned_item.pk])
        self.assertIn("ohne Mieter", summary.failed[successful_item.pk])
        returned_item.refresh_from_db()
        self.assertEqual(returned_item.return_reason, SepaCollectionItem.ReturnReason.OTHER)
        self.assertEqual(TenantFee.objects.count(), 0)

    def test_staging_rules(self):
        session = self.open_session(self.collection)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.stage_edit(self.item_b.pk, REJECTED)
        session.stage_edit(self.item_a.pk, RETURNED, return_reason="refund_request")

        edits = session.staged_edits
        self.assertEqual([edit.item_id for edit in edits], [self.item_a.pk, self.item_b.pk])
        self.assertEqual(edits[0].status, RETURNED)
        self.assertEqual(session.effective_status(self.item_a.pk), RETURNED)
        self.assertEqual(session.summary()[PENDING], 1)
        self.assertEqual(session.summary()[RETURNED], 1)

        with self.assertRaises(SepaStagingError):
            session.stage_edit(self.item_c.pk, REJECTED, return_reason="no_mandate")
        with self.assertRaises(SepaStagingError):
            session.stage_edit(self.item_c.pk, PENDING)
        with self.assertRaises(SepaStagingError):
            session.stage_edit(999999, SUCCESSFUL)
        with self.assertRaises(ValidationError):
            session.stage_edit(self.item_c.pk, RETURNED, return_reason="unbekannt")

        session.reset()
        self.assertFalse(session.has_changes)
        self.assertEqual(session.state, SessionState.IDLE)

    def test_resolved_item_cannot_be_staged(self):
        session = self.open_session(self.collection)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.commit()
        session.reset()

        with self.assertRaises(SepaItemAlreadyResolved):
            session.stage_edit(self.item_a.pk, RETURNED)

    def test_session_state_guards(self):
        session = self.open_session(self.collection)
        with self.assertRaises(SepaSessionStateError):
            session.commit()

        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.commit()
        with self.assertRaises(SepaSessionStateError):
            session.stage_edit(self.item_b.pk, SUCCESSFUL)

        session.close()
        with self.assertRaises(SepaSessionStateError):
            session.stage_edit(self.item_b.pk, SUCCESSFUL)
        with self.assertRaises(SepaSessionStateError):
            session.commit()

    def test_concurrent_commit_is_refused(self):
        first = self.open_session(self.collection)
        second = self.open_session(self.collection)
        first.stage_edit(self.item_a.pk, SUCCESSFUL)
        second.stage_edit(self.item_a.pk, RETURNED)
        first.commit()

        with self.assertRaises(SepaCollectionConflict):
            second.commit()
        self.assertEqual(second.state, SessionState.EDITING)
        self.assertEqual(TenantFee.objects.count(), 0)

        second.reset()
        second.stage_edit(self.item_b.pk, SUCCESSFUL)
        summary = second.commit()
        self.assertEqual(summary.succeeded_item_ids, [self.item_b.pk])

    def test_items_changed_outside_session_are_skipped_or_refused(self):
        session = self.open_session(self.collection)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.stage_edit(self.item_b.pk, SUCCESSFUL)
        session.stage_edit(self.item_c.pk, REJECTED)
        SepaCollectionItem.objects.filter(pk=self.item_a.pk).update(status=REJECTED)
        SepaCollectionItem.objects.filter(pk=self.item_b.pk).update(status=SUCCESSFUL)

        summary = session.commit()

        self.assertEqual(summary.failed_item_ids, [self.item_a.pk])
        self.assertIn("bereits abgeschlossen", summary.failed[self.item_a.pk])
        self.assertEqual(summary.skipped_item_ids, [self.item_b.pk])
        self.assertEqual(summary.succeeded_item_ids, [self.item_c.pk])
        self.assertEqual(summary.payment_ids, [])
        self.assertEqual(len(summary.fee_ids), 1)
        self.assertEqual(summary.collection_status, SepaCollection.Status.PARTIALLY_COMPLETED)
        self.assertEqual(session.state, SessionState.SAVED_WITH_ERRORS)
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, REJECTED)
        self.assertFalse(TenantFee.objects.filter(sepa_item=self.item_a).exists())

    def test_unexpected_error_leaves_session_resettable(self):
        class ExplodingResolver(SepaItemOutcomeResolver):
            def resolve(self, item, proposed_status, **kwargs):
                raise RuntimeError("Datenbankverbindung verloren")

        session = self.open_session(self.collection, resolver=ExplodingResolver())
        session.stage_edit(self.item_a.pk, SUCCESSFUL)

        with self.assertLogs("lastschrift.services.sepa_reconciliation", level="ERROR"):
            with self.assertRaises(RuntimeError):
                session.commit()

        self.assertEqual(session.state, SessionState.SAVED_WITH_ERRORS)
        session.reset()
        self.assertEqual(session.state, SessionState.IDLE)
        self.assertFalse(session.has_changes)
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, PENDING)

    def test_pending_collection_cannot_be_reconciled(self):
        collection = SepaCollectionService.create_collection(
            collection_date=self.collection_date,
            rows=[{"tenant": self.tenant_a, "amount": "10.00"}],
        )
        with self.assertRaises(SepaCollectionNotExported):
            SepaReconciliationSession(collection=collection)

    def test_history_records_change_reason_and_user(self):
        user = get_user_model().objects.create_user(username="kassa", password="geheim123")
        session = self.open_session(self.collection, user=user)
        session.stage_edit(self.item_a.pk, SUCCESSFUL)
        session.commit()

        latest = self.item_a.history.first()
        self.assertEqual(latest.status, SUCCESSFUL)
        self.assertEqual(latest.history_change_reason, "SEPA-Abgleich: Erfolgreich")
        self.assertEqual(latest.history_user, user)


class SepaCollectionServiceTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()

    def test_create_collection_snapshots_totals_and_tenant_data(self):
        collection = SepaCollectionService.create_collection(
            collection_date=self.collection_date,
            rows=[
                {"tenant": self.tenant_a.pk, "amount": "450.00"},
                {"tenant": self.tenant_b, "amount": Decimal("520.50"), "debtor_name": "Huber KG"},
            ],
        )

        self.assertEqual(collection.status, SepaCollection.Status.PENDING)
        self.assertEqual(collection.item_count, 2)
        self.assertEqual(collection.total_amount, Decimal("970.50"))
        item_a = collection.items.get(tenant=self.tenant_a)
        self.assertEqual(item_a.debtor_name, "Anna Berger")
        self.assertEqual(item_a.iban, "AT611904300234573201")
        self.assertEqual(item_a.mandate_reference, "MANDAT-001")
        self.assertEqual(collection.items.get(tenant=self.tenant_b).debtor_name, "Huber KG")

    def test_invalid_row_creates_nothing(self):
        with self.assertRaises(ValidationError):
            SepaCollectionService.create_collection(
                collection_date=self.collection_date,
                rows=[
                    {"tenant": self.tenant_a, "amount": "10.00"},
                    {"tenant": self.tenant_b, "amount": "0.00"},
                ],
            )
        self.assertEqual(SepaCollection.objects.count(), 0)
        self.assertEqual(SepaCollectionItem.objects.count(), 0)

    def test_mark_exported_only_once(self):
        collection = self.create_exported_collection()
        self.assertEqual(collection.status, SepaCollection.Status.EXPORTED)
        self.assertEqual(collection.file_name, "sepa-2026-10.xml")
        self.assertIsNotNone(collection.exported_at)
        with self.assertRaises(ValidationError):
            SepaCollectionService.mark_exported(collection=collection)

    def test_empty_collection_is_completed_on_export(self):
        collection = SepaCollectionService.create_collection(collection_date=self.collection_date, rows=[])
        collection = SepaCollectionService.mark_exported(collection=collection)
        self.assertEqual(collection.status, SepaCollection.Status.COMPLETED)

    def test_delete_collection_cascades_items_and_keeps_fees(self):
        collection = self.create_exported_collection()
        session = self.open_session(collection)
        session.stage_edit(self.item_for(collection, self.tenant_a).pk, REJECTED)
        session.commit()

        self.assertEqual(SepaCollectionService.delete_collection(collection=collection), 3)
        self.assertEqual(SepaCollectionItem.objects.count(), 0)
        fee = TenantFee.objects.get()
        self.assertIsNone(fee.sepa_item_id)

    def test_recompute_status(self):
        collection = self.create_exported_collection()
        SepaCollectionItem.objects.filter(collection=collection).update(status=SUCCESSFUL)

        self.assertEqual(
            SepaCollectionService.recompute_status(collection=collection, apply=False),
            (SepaCollection.Status.EXPORTED, SepaCollection.Status.COMPLETED),
        )
        collection.refresh_from_db()
        self.assertEqual(collection.status, SepaCollection.Status.EXPORTED)

        SepaCollectionService.recompute_status(collection=collection)
        collection.refresh_from_db()
        self.assertEqual(collection.status, SepaCollection.Status.COMPLETED)
        self.assertEqual(derive_collection_status(collection), collection.status)


class RecomputeSepaCollectionStatusCommandTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()
        self.collection = self.create_exported_collection()
        SepaCollectionItem.objects.filter(collection=self.collection).update(status=SUCCESSFUL)

    def test_dry_run_reports_only(self):
        out = StringIO()
        call_command("recompute_sepa_collection_status", stdout=out)

        self.assertIn("exported -> completed", out.getvalue())
        self.assertIn("Dry-Run", out.getvalue())
        self.collection.refresh_from_db()
        self.assertEqual(self.collection.status, SepaCollection.Status.EXPORTED)

    def test_apply_fixes_status(self):
        out = StringIO()
        call_command("recompute_sepa_collection_status", "--apply", stdout=out)

        self.assertIn("1 Einzuege korrigiert.", out.getvalue())
        self.collection.refresh_from_db()
        self.assertEqual(self.collection.status, SepaCollection.Status.COMPLETED)


class SepaCollectionViewTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()
        self.collection = self.create_exported_collection()
        self.item_a = self.item_for(self.collection, self.tenant_a)
        self.item_b = self.item_for(self.collection, self.tenant_b)
        self.user = get_user_model().objects.create_user(username="verwaltung", password="geheim123")
        self.client.force_login(self.user)

    def test_list_and_detail_render(self):
        response = self.client.get(reverse("sepa_collection_list"))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Miete Oktober 2026")

        response = self.client.get(reverse("sepa_collection_detail", args=[self.collection.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Anna Berger")
        self.assertContains(response, f'name="item-{self.item_a.pk}-status"')

    def test_status_save(self):
        response = self.client.post(
            reverse("sepa_collection_detail", args=[self.collection.pk]),
            {
                f"item-{self.item_a.pk}-status": SUCCESSFUL,
                f"item-{self.item_b.pk}-status": RETURNED,
                f"item-{self.item_b.pk}-return_reason": "mandate_cancelled",
                "action": "save",
            },
        )

        self.assertRedirects(response, reverse("sepa_collection_detail", args=[self.collection.pk]))
        self.item_a.refresh_from_db()
        self.item_b.refresh_from_db()
        self.assertEqual(self.item_a.status, SUCCESSFUL)
        self.assertEqual(self.item_b.return_reason, "mandate_cancelled")
        self.assertEqual(self.item_b.history.first().history_user, self.user)

    def test_reason_on_rejected_is_refused(self):
        response = self.client.post(
            reverse("sepa_collection_detail", args=[self.collection.pk]),
            {
                f"item-{self.item_a.pk}-status": REJECTED,
                f"item-{self.item_a.pk}-return_reason": "no_mandate",
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Bitte prüfen Sie die Eingaben bei den Positionen.")
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, PENDING)

    def test_mark_all_successful(self):
        response = self.client.post(
            reverse("sepa_collection_detail", args=[self.collection.pk]),
            {"action": "mark_all_successful"},
            follow=True,
        )

        self.assertContains(response, "3 Positionen gespeichert.")
        self.collection.refresh_from_db()
        self.assertEqual(self.collection.status, SepaCollection.Status.COMPLETED)

    def test_no_changes(self):
        response = self.client.post(
            reverse("sepa_collection_detail", args=[self.collection.pk]),
            {"action": "save"},
            follow=True,
        )
        self.assertContains(response, "Keine Änderungen vorgemerkt.")

    def test_export_and_delete(self):
        pending = SepaCollectionService.create_collection(
            collection_date=self.collection_date,
            rows=[{"tenant": self.tenant_c, "amount": "380.00"}],
        )
        response = self.client.post(
            reverse("sepa_collection_detail", args=[pending.pk]),
            {"action": "mark_all_successful"},
            follow=True,
        )
        self.assertContains(response, "noch nicht exportiert")

        self.client.post(reverse("sepa_collection_export", args=[pending.pk]), {"file_name": "nachtrag.xml"})
        pending.refresh_from_db()
        self.assertEqual(pending.status, SepaCollection.Status.EXPORTED)
        self.assertEqual(pending.file_name, "nachtrag.xml")

        response = self.client.post(reverse("sepa_collection_delete", args=[pending.pk]))
        self.assertRedirects(response, reverse("sepa_collection_list"))
        self.assertFalse(SepaCollection.objects.filter(pk=pending.pk).exists())


class SepaAdminTests(SepaTestDataMixin, TestCase):
    def setUp(self):
        self.create_tenants()
        self.collection = self.create_exported_collection()
        self.item_a = self.item_for(self.collection, self.tenant_a)
        self.admin_user = get_user_model().objects.create_superuser(
            username="admin", email="admin@example.com", password="geheim123"
        )
        self.client.force_login(self.admin_user)

    def test_item_status_is_not_editable(self):
        response = self.client.post(
            reverse("admin:lastschrift_sepacollectionitem_change", args=[self.item_a.pk]),
            {
                "tenant": self.tenant_a.pk,
                "debtor_name": self.item_a.debtor_name,
                "iban": self.item_a.iban,
                "mandate_reference": self.item_a.mandate_reference,
                "amount": "450.00",
                "notes": "",
                "status": SUCCESSFUL,
                "return_reason": "insufficient_funds",
                "_save": "Sichern",
            },
        )

        self.assertRedirects(response, reverse("admin:lastschrift_sepacollectionitem_changelist"))
        self.item_a.refresh_from_db()
        self.assertEqual(self.item_a.status, PENDING)
        self.assertEqual(self.item_a.return_reason, "")
        self.assertIsNone(self.item_a.payment_id)

    def test_items_of_exported_collection_are_locked(self):
        inline = SepaCollectionItemInline(SepaCollection, admin.site)
        request = RequestFactory().get("/")
        request.user = self.admin_user

        self.assertFalse(inline.has_add_permission(request, self.collection))
        self.assertFalse(inline.has_delete_permission(request, self.collection))
        self.assertEqual(tuple(inline.get_readonly_fields(request, self.collection)), inline.fields)

        pending = SepaCollectionService.create_collection(
            collection_date=self.collection_date,
            rows=[{"tenant": self.tenant_c, "amount": "10.00"}],
        )
        self.assertTrue(inline.has_add_permission(request, pending))
        self.assertTrue(inline.has_delete_permission(request, pending))

        response = self.client.get(reverse("admin:lastschrift_sepacollection_change", args=[self.collection.pk]))
        self.assertEqual(response.status_code, 200)

    def test_items_cannot_be_added_directly(self):
        response = self.client.get(reverse("admin:lastschrift_sepacollectionitem_add"))
        self.assertEqual(response.status_code, 403)
