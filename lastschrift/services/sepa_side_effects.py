from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction

from lastschrift.models import Buchung, SepaCollectionItem, Tenant, TenantFee
from lastschrift.services.sepa_outcome import CreateFee, CreatePayment


class SideEffectError(RuntimeError):
    """Zahlung oder Gebühr konnte nicht angelegt werden."""


class PaymentService(ABC):
    @abstractmethod
    def create(
        self,
        *,
        tenant_id: int | None,
        amount: Decimal,
        booking_date: date,
        payment_method: str,
        reference: str,
    ) -> int:
        raise NotImplementedError


class FeeService(ABC):
    @abstractmethod
    def create(
        self,
        *,
        tenant_id: int,
        fee_type: str,
        amount: Decimal,
        description: str,
        sepa_item_id: int | None,
    ) -> int:
        raise NotImplementedError


def _require_tenant(tenant_id: int | None, *, action: str) -> Tenant:
    if tenant_id is None:
        raise SideEffectError(f"{action} ohne Mieter ist nicht möglich.")
    tenant = Tenant.objects.filter(pk=tenant_id).first()
    if tenant is None:
        raise SideEffectError(f"{action}: Mieter {tenant_id} wurde nicht gefunden.")
    return tenant


class BuchungPaymentService(PaymentService):
    """Bucht erfolgreiche Lastschriften als Zahlungseingang (IST-Buchung)."""

    def create(self, *, tenant_id, amount, booking_date, payment_method, reference) -> int:
        tenant = _require_tenant(tenant_id, action="Zahlung")
        buchung = Buchung(
            mieter=tenant,
            typ=Buchung.Typ.IST,
            zahlungsart=payment_method,
            buchungstext=reference,
            datum=booking_date,
            eingangsdatum=booking_date,
            betrag=amount,
        )
        buchung.full_clean()
        buchung.save()
        return buchung.pk


class TenantFeeService(FeeService):
    def create(self, *, tenant_id, fee_type, amount, description, sepa_item_id) -> int:
        tenant = _require_tenant(tenant_id, action="Gebühr")
        fee = TenantFee(
            tenant=tenant,
            fee_type=fee_type,
            amount=amount,
            description=description[:255],
            sepa_item=SepaCollectionItem.objects.filter(pk=sepa_item_id).first() if sepa_item_id else None,
        )
        fee.full_clean()
        fee.save()
        return fee.pk


@dataclass(frozen=True)
class DispatchResult:
    request: CreatePayment | CreateFee
    reference_id: int | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and self.reference_id is not None


class SideEffectDispatcher:
    """Führt Zahlungs- und Gebührenanforderungen über die Fachdienste aus.

    Fehler eines Dienstes werden als ``DispatchResult`` gemeldet, damit ein
    Fehler bei einem Mieter die übrigen Positionen nicht blockiert.
    """

    logger = logging.getLogger(__name__)

    def __init__(
        self,
        *,
        payment_service: PaymentService | None = None,
        fee_service: FeeService | None = None,
    ):
        self.payment_service = payment_service or BuchungPaymentService()
        self.fee_service = fee_service or TenantFeeService()

    def _call(self, request: CreatePayment | CreateFee) -> int:
        if isinstance(request, CreatePayment):
            return self.payment_service.create(
                tenant_id=request.tenant_id,
                amount=request.amount,
                booking_date=request.booking_date,
                payment_method=request.payment_method,
                reference=request.reference,
            )
        return self.fee_service.create(
            tenant_id=request.tenant_id,
            fee_type=request.fee_type,
            amount=request.amount,
            description=request.description,
            sepa_item_id=request.sepa_item_id,
        )

    def dispatch(self, request: CreatePayment | CreateFee) -> DispatchResult:
        if not isinstance(request, (CreatePayment, CreateFee)):
            raise TypeError(f"Unbekannte Folgeaktion: {type(request).__name__}")

        label = "Zahlung" if isinstance(request, CreatePayment) else "Gebühr"
        try:
            with transaction.atomic():
                reference_id = self._call(request)
        except ValidationError as exc:
            message = "; ".join(exc.messages)
            self.logger.warning("%s für Mieter %s abgelehnt: %s", label, request.tenant_id, message)
            return DispatchResult(request=request, error=f"{label} fehlgeschlagen: {message}")
        except SideEffectError as exc:
            self.logger.warning("%s für Mieter %s fehlgeschlagen: %s", label, request.tenant_id, exc)
            return DispatchResult(request=request, error=f"{label} fehlgeschlagen: {exc}")
        except Exception as exc:
            self.logger.exception("%s für Mieter %s konnte nicht angelegt werden.", label, request.tenant_id)
            return DispatchResult(
                request=request,
                error=f"{label} fehlgeschlagen: {str(exc) or exc.__class__.__name__}",
            )

        if reference_id is None:
            return DispatchResult(request=request, error=f"{label} fehlgeschlagen: keine Referenz erhalten.")
        return DispatchResult(request=request, reference_id=reference_id)
