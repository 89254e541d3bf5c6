from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from lastschrift.models import SepaCollectionItem, TenantFee

CENT = Decimal("0.01")
DEFAULT_RETURN_FEE = Decimal("7.50")
DEFAULT_PAYMENT_REFERENCE_PREFIX = "SEPA-Lastschrift"
FALLBACK_RETURN_LABEL = "Rücklastschrift"

RESOLVED_STATUSES = (
    SepaCollectionItem.Status.SUCCESSFUL,
    SepaCollectionItem.Status.RETURNED,
    SepaCollectionItem.Status.REJECTED,
)


def to_money(value: object) -> Decimal:
    return Decimal(str(value or "0.00")).quantize(CENT, rounding=ROUND_HALF_UP)


class SepaItemAlreadyResolved(ValidationError):
    """Position ist nicht mehr ausstehend und darf nicht erneut gesetzt werden."""

    def __init__(self, item_id: int, current_status: str):
        self.item_id = item_id
        self.current_status = current_status
        super().__init__(
            f"Position {item_id} ist bereits abgeschlossen (Status: {current_status}).",
            code="already_resolved",
        )


@dataclass(frozen=True)
class SepaReconciliationConfig:
    return_fee: Decimal = DEFAULT_RETURN_FEE
    payment_reference_prefix: str = DEFAULT_PAYMENT_REFERENCE_PREFIX

    @classmethod
    def from_settings(cls) -> "SepaReconciliationConfig":
        return cls(
            return_fee=to_money(getattr(settings, "SEPA_RETURN_FEE", DEFAULT_RETURN_FEE)),
            payment_reference_prefix=str(
                getattr(settings, "SEPA_PAYMENT_REFERENCE_PREFIX", DEFAULT_PAYMENT_REFERENCE_PREFIX)
                or DEFAULT_PAYMENT_REFERENCE_PREFIX
            ).strip(),
        )


@dataclass(frozen=True)
class CreatePayment:
    tenant_id: int | None
    amount: Decimal
    booking_date: date
    payment_method: str
    reference: str


@dataclass(frozen=True)
class CreateFee:
    tenant_id: int
    fee_type: str
    amount: Decimal
    description: str
    sepa_item_id: int


@dataclass(frozen=True)
class ItemOutcome:
    item_id: int
    status: str
    return_reason: str = ""
    return_date: date | None = None
    side_effects: tuple[CreatePayment | CreateFee, ...] = field(default_factory=tuple)

    @property
    def payment_request(self) -> CreatePayment | None:
        for request in self.side_effects:
            if isinstance(request, CreatePayment):
                return request
        return None

    @property
    def fee_requests(self) -> list[CreateFee]:
        return [request for request in self.side_effects if isinstance(request, CreateFee)]


def return_reason_label(reason: str | None) -> str:
    if not reason:
        return FALLBACK_RETURN_LABEL
    try:
        return str(SepaCollectionItem.ReturnReason(reason).label)
    except ValueError:
        return FALLBACK_RETURN_LABEL


def normalize_return_reason(status: str, reason: str | None) -> str:
    """Rückgabegrund gibt es nur bei Rücklastschriften; fehlt er, gilt "other"."""
    if status != SepaCollectionItem.Status.RETURNED:
        return ""
    cleaned = (reason or "").strip()
    if not cleaned:
        return SepaCollectionItem.ReturnReason.OTHER
    if cleaned not in SepaCollectionItem.ReturnReason.values:
        raise ValidationError(f"Unbekannter Rückgabegrund: {cleaned}", code="invalid_return_reason")
    return cleaned


class SepaItemOutcomeResolver:
    """Leitet aus einer Statusänderung das Ergebnis samt Folgeaktionen ab.

    Der Resolver liest die Position nur; Zahlungen und Gebühren werden als
    Anforderungen beschrieben und vom Aufrufer ausgeführt.
    """

    def __init__(self, *, config: SepaReconciliationConfig | None = None):
        self.config = config or SepaReconciliationConfig.from_settings()

    def payment_reference(self, collection_date: date) -> str:
        return f"{self.config.payment_reference_prefix} {collection_date:%m/%Y}"

    def fee_description(self, *, collection_date: date, return_reason: str) -> str:
        return (
            f"Rücklastschrift-Gebühr vom {collection_date:%d.%m.%Y} - "
            f"{return_reason_label(return_reason)}"
        )

    def resolve(
        self,
        item: SepaCollectionItem,
        proposed_status: str,
        *,
        collection_date: date,
        return_reason: str | None = None,
        today: date | None = None,
    ) -> ItemOutcome:
        if item.status != SepaCollectionItem.Status.PENDING:
            raise SepaItemAlreadyResolved(item.pk, item.status)
        if proposed_status not in RESOLVED_STATUSES:
            raise ValidationError(
                f"Ungültiger Zielstatus für Position {item.pk}: {proposed_status}",
                code="invalid_status",
            )

        if proposed_status == SepaCollectionItem.Status.SUCCESSFUL:
            payment = CreatePayment(
                tenant_id=item.tenant_id,
                amount=to_money(item.amount),
                booking_date=collection_date,
                payment_method="sepa",
                reference=self.payment_reference(collection_date),
            )
            return ItemOutcome(
                item_id=item.pk,
                status=proposed_status,
                side_effects=(payment,),
            )

        reason = normalize_return_reason(proposed_status, return_reason)
        side_effects: tuple[CreatePayment | CreateFee, ...] = ()
        if item.tenant_id is not None:
            side_effects = (
                CreateFee(
                    tenant_id=item.tenant_id,
                    fee_type=TenantFee.FeeType.RUECKLASTSCHRIFT,
                    amount=self.config.return_fee,
                    description=self.fee_description(
                        collection_date=collection_date,
                        return_reason=reason,
                    ),
                    sepa_item_id=item.pk,
                ),
            )
        return ItemOutcome(
            item_id=item.pk,
            status=proposed_status,
            return_reason=reason,
            return_date=today or timezone.localdate(),
            side_effects=side_effects,
        )
