from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, RegexValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _
from simple_history.models import HistoricalRecords


class Tenant(models.Model):
    class Salutation(models.TextChoices):
        HERR = "herr", _("Herr")
        FRAU = "frau", _("Frau")
        DIVERS = "divers", _("Divers")
        FIRMA = "firma", _("Firma")

    salutation = models.CharField(
        max_length=20,
        choices=Salutation.choices,
        default=Salutation.HERR,
        verbose_name=_("Anrede"),
    )
    first_name = models.CharField(max_length=100, verbose_name=_("Vorname"))
    last_name = models.CharField(max_length=100, verbose_name=_("Nachname"))
    email = models.EmailField(blank=True, verbose_name=_("E-Mail"))
    phone = models.CharField(
        max_length=50,
        blank=True,
        validators=[
            RegexValidator(
                regex=r'^\+?\d+$',
                message=_("Telefon darf nur Ziffern enthalten, optional mit führendem +."),
            )
        ],
        verbose_name=_("Telefon"),
    )
    iban = models.CharField(max_length=34, blank=True, verbose_name=_("IBAN / Bankkonto-ID"))
    sepa_mandate_reference = models.CharField(
        max_length=35,
        blank=True,
        verbose_name=_("Mandatsreferenz"),
    )
    notes = models.TextField(blank=True, verbose_name=_("Notizen"))

    class Meta:
        verbose_name = _("Mieter")
        verbose_name_plural = _("Mieter")
        ordering = ["last_name", "first_name"]

    def __str__(self) -> str:
        return f"{self.get_salutation_display()} {self.first_name} {self.last_name}"

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Buchung(models.Model):
    class Typ(models.TextChoices):
        SOLL = "soll", _("Forderung an Mieter")
        IST = "ist", _("Zahlungseingang vom Mieter")

    class Zahlungsart(models.TextChoices):
        SEPA = "sepa", _("SEPA-Lastschrift")
        UEBERWEISUNG = "ueberweisung", _("Überweisung")
        BAR = "bar", _("Barzahlung")

    mieter = models.ForeignKey(
        "Tenant",
        on_delete=models.PROTECT,
        related_name="buchungen",
        verbose_name=_("Mieter"),
    )
    typ = models.CharField(
        max_length=20,
        choices=Typ.choices,
        verbose_name=_("Typ"),
    )
    zahlungsart = models.CharField(
        max_length=20,
        choices=Zahlungsart.choices,
        blank=True,
        verbose_name=_("Zahlungsart"),
    )
    buchungstext = models.CharField(max_length=255, verbose_name=_("Buchungstext"))
    datum = models.DateField(verbose_name=_("Buchungsdatum"))
    eingangsdatum = models.DateField(null=True, blank=True, verbose_name=_("Eingangsdatum"))
    betrag = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        verbose_name=_("Betrag"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))
    history = HistoricalRecords()

    class Meta:
        verbose_name = _("Buchung")
        verbose_name_plural = _("Buchungen")
        ordering = ["-datum", "-id"]

    def __str__(self) -> str:
        return f"{self.datum} · {self.mieter} · {self.betrag}"

    def clean(self):
        super().clean()
        if self.betrag is None:
            return
        if self.typ == self.Typ.IST and Decimal(self.betrag) <= Decimal("0.00"):
            raise ValidationError({"betrag": _("Ein Zahlungseingang muss größer als 0,00 sein.")})
        if self.zahlungsart and self.typ != self.Typ.IST:
            raise ValidationError({"zahlungsart": _("Eine Zahlungsart ist nur bei Zahlungseingängen zulässig.")})


class TenantFee(models.Model):
    class FeeType(models.TextChoices):
        RUECKLASTSCHRIFT = "ruecklastschrift", _("Rücklastschrift-Gebühr")
        MAHNGEBUEHR = "mahngebuehr", _("Mahngebühr")
        SONSTIGE = "sonstige", _("Sonstige Gebühr")

    tenant = models.ForeignKey(
        "Tenant",
        on_delete=models.PROTECT,
        related_name="fees",
        verbose_name=_("Mieter"),
    )
    fee_type = models.CharField(
        max_length=20,
        choices=FeeType.choices,
        verbose_name=_("Gebührenart"),
    )
    amount = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        verbose_name=_("Betrag"),
    )
    description = models.CharField(max_length=255, verbose_name=_("Beschreibung"))
    sepa_item = models.ForeignKey(
        "SepaCollectionItem",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="fees",
        verbose_name=_("Lastschriftposition"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))

    class Meta:
        verbose_name = _("Mietergebühr")
        verbose_name_plural = _("Mietergebühren")
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.get_fee_type_display()} · {self.tenant} · {self.amount}"


class SepaCollection(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Erstellt")
        EXPORTED = "exported", _("Exportiert")
        PARTIALLY_COMPLETED = "partially_completed", _("Teilweise abgeschlossen")
        COMPLETED = "completed", _("Abgeschlossen")

    collection_date = models.DateField(verbose_name=_("Einzugsdatum"))
    description = models.CharField(max_length=255, blank=True, verbose_name=_("Bezeichnung"))
    file_name = models.CharField(max_length=255, blank=True, verbose_name=_("Dateiname"))
    item_count = models.PositiveIntegerField(default=0, verbose_name=_("Anzahl Positionen"))
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        verbose_name=_("Gesamtbetrag"),
    )
    status = models.CharField(
        max_length=30,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )
    version = models.PositiveIntegerField(default=0, verbose_name=_("Version"))
    exported_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Exportiert am"))
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Erstellt von"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("Aktualisiert am"))

    class Meta:
        verbose_name = _("SEPA-Einzug")
        verbose_name_plural = _("SEPA-Einzüge")
        ordering = ["-collection_date", "-id"]

    def __str__(self) -> str:
        return f"SEPA-Einzug vom {self.collection_date:%d.%m.%Y}"

    @property
    def is_reconcilable(self) -> bool:
        return self.status != self.Status.PENDING


class SepaCollectionItem(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Ausstehend")
        SUCCESSFUL = "successful", _("Erfolgreich")
        RETURNED = "returned", _("Rücklastschrift")
        REJECTED = "rejected", _("Abgelehnt")

    class ReturnReason(models.TextChoices):
        INSUFFICIENT_FUNDS = "insufficient_funds", _("Konto nicht gedeckt (AM04)")
        CLOSED_ACCOUNT = "closed_account", _("Konto geschlossen (AC04)")
        NO_MANDATE = "no_mandate", _("Kein gültiges Mandat (MD01)")
        MANDATE_CANCELLED = "mandate_cancelled", _("Mandat widerrufen (MD06)")
        REFUND_REQUEST = "refund_request", _("Widerspruch des Kontoinhabers (MS02)")
        TECHNICAL_ERROR = "technical_error", _("Technischer Fehler (AM05)")
        OTHER = "other", _("Sonstiger Grund")

    collection = models.ForeignKey(
        "SepaCollection",
        on_delete=models.CASCADE,
        related_name="items",
        verbose_name=_("SEPA-Einzug"),
    )
    tenant = models.ForeignKey(
        "Tenant",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sepa_items",
        verbose_name=_("Mieter"),
    )
    debtor_name = models.CharField(max_length=255, blank=True, verbose_name=_("Zahlungspflichtiger"))
    iban = models.CharField(max_length=34, blank=True, verbose_name=_("IBAN"))
    mandate_reference = models.CharField(max_length=35, blank=True, verbose_name=_("Mandatsreferenz"))
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
        verbose_name=_("Betrag"),
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )
    return_reason = models.CharField(
        max_length=30,
        choices=ReturnReason.choices,
        blank=True,
        verbose_name=_("Rückgabegrund"),
    )
    return_date = models.DateField(null=True, blank=True, verbose_name=_("Rückgabedatum"))
    payment = models.ForeignKey(
        "Buchung",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sepa_items",
        verbose_name=_("Zahlung"),
    )
    notes = models.TextField(blank=True, verbose_name=_("Notizen"))
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("Aktualisiert am"))
    history = HistoricalRecords()

    class Meta:
        verbose_name = _("SEPA-Lastschriftposition")
        verbose_name_plural = _("SEPA-Lastschriftpositionen")
        ordering = ["collection_id", "id"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    (models.Q(status="returned") & ~models.Q(return_reason=""))
                    | (~models.Q(status="returned") & models.Q(return_reason=""))
                ),
                name="sepa_item_return_reason_only_when_returned",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.debtor_name or self.tenant or '—'} · {self.amount} · {self.get_status_display()}"

    @property
    def is_pending(self) -> bool:
        return self.status == self.Status.PENDING


class BillingRunQuerySet(models.QuerySet):
    def with_detail(self):
        return self.select_related("triggered_by").prefetch_related("chunks")


class BillingRun(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Wartend")
        RUNNING = "running", _("Läuft")
        COMPLETED = "completed", _("Abgeschlossen")
        FAILED = "failed", _("Fehlgeschlagen")
        CANCELLED = "cancelled", _("Abgebrochen")
        ROLLED_BACK = "rolled_back", _("Zurückgerollt")
        PENDING_REPROCESS = "pending_reprocess", _("Wartet auf Reprocess")

    TERMINAL_STATUSES = frozenset(
        {
            Status.COMPLETED,
            Status.FAILED,
            Status.CANCELLED,
            Status.ROLLED_BACK,
        }
    )

    run_id = models.CharField(max_length=100, unique=True, verbose_name=_("Run-ID"))
    description = models.TextField(blank=True, verbose_name=_("Beschreibung"))
    status = models.CharField(
        max_length=30,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
        verbose_name=_("Status"),
    )
    triggered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Gestartet von"),
    )
    expected_lines = models.PositiveIntegerField(default=0, verbose_name=_("Erwartete Zeilen"))
    total_chunks = models.PositiveIntegerField(default=0, verbose_name=_("Geplante Chunks"))
    inserted = models.PositiveIntegerField(default=0, verbose_name=_("Eingefügt"))
    updated = models.PositiveIntegerField(default=0, verbose_name=_("Aktualisiert"))
    skipped = models.PositiveIntegerField(default=0, verbose_name=_("Übersprungen"))
    artifacts = models.JSONField(default=list, blank=True, verbose_name=_("Artefakte"))
    error_message = models.TextField(blank=True, verbose_name=_("Fehlermeldung"))
    started_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Gestartet am"))
    finished_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Beendet am"))

    accepted_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Akzeptiert am"))
    accepted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Akzeptiert von"),
    )
    accept_comment = models.TextField(blank=True, verbose_name=_("Kommentar Akzeptanz"))
    declined_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Abgelehnt am"))
    declined_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Abgelehnt von"),
    )
    decline_reason = models.TextField(blank=True, verbose_name=_("Begründung Ablehnung"))
    rolled_back_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Zurückgerollt am"))
    rolled_back_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("Zurückgerollt von"),
    )
    rollback_reason = models.TextField(blank=True, verbose_name=_("Begründung Rollback"))
    reprocess_requested_at = models.DateTimeField(
        null=True,
        blank=True,
        verbose_name=_("Reprocess angefordert am"),
    )
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))
    updated_at = models.DateTimeField(auto_now=True, verbose_name=_("Aktualisiert am"))
    history = HistoricalRecords()

    objects = BillingRunQuerySet.as_manager()

    class Meta:
        verbose_name = _("Abrechnungs-Run")
        verbose_name_plural = _("Abrechnungs-Runs")
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.run_id} · {self.get_status_display()}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def completed_chunks(self) -> int:
        return sum(1 for chunk in self.chunks.all() if chunk.status == BillingRunChunk.Status.DONE)

    @property
    def failed_chunks(self) -> int:
        return sum(1 for chunk in self.chunks.all() if chunk.status == BillingRunChunk.Status.FAILED)

    @property
    def duration(self):
        if self.started_at is None:
            return None
        end = self.finished_at or timezone.now()
        return end - self.started_at


class BillingRunChunk(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", _("Wartend")
        PROCESSING = "processing", _("In Arbeit")
        DONE = "done", _("Fertig")
        FAILED = "failed", _("Fehlgeschlagen")

    run = models.ForeignKey(
        "BillingRun",
        on_delete=models.CASCADE,
        related_name="chunks",
        verbose_name=_("Abrechnungs-Run"),
    )
    chunk_id = models.PositiveIntegerField(verbose_name=_("Chunk"))
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        verbose_name=_("Status"),
    )
    rows_in_chunk = models.PositiveIntegerField(default=0, verbose_name=_("Zeilen im Chunk"))
    inserted = models.PositiveIntegerField(default=0, verbose_name=_("Eingefügt"))
    updated = models.PositiveIntegerField(default=0, verbose_name=_("Aktualisiert"))
    error_message = models.TextField(blank=True, verbose_name=_("Fehlermeldung"))
    started_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Gestartet am"))
    completed_at = models.DateTimeField(null=True, blank=True, verbose_name=_("Beendet am"))

    class Meta:
        verbose_name = _("Run-Chunk")
        verbose_name_plural = _("Run-Chunks")
        ordering = ["run_id", "chunk_id"]
        constraints = [
            models.UniqueConstraint(
                fields=["run", "chunk_id"],
                name="uniq_billing_run_chunk",
            )
        ]

    def __str__(self) -> str:
        return f"{self.run.run_id} · Chunk {self.chunk_id}"


class BillingRunLineQuerySet(models.QuerySet):
    def active(self):
        return self.filter(deleted_at__isnull=True)

    def soft_deleted(self):
        return self.filter(deleted_at__isnull=False)

    def soft_delete_for_run(self, *, run: "BillingRun", reason: str = "") -> int:
        return (
            self.filter(run=run, deleted_at__isnull=True)
            .update(deleted_at=timezone.now(), deleted_reason=reason[:255])
        )

    def samples_for_run(self, *, run: "BillingRun", limit: int = 20):
        return list(self.active().filter(run=run).order_by("chunk_id", "id")[:limit])


class BillingRunLine(models.Model):
    class Operation(models.TextChoices):
        INSERT = "insert", _("Eingefügt")
        UPDATE = "update", _("Aktualisiert")

    run = models.ForeignKey(
        "BillingRun",
        on_delete=models.CASCADE,
        related_name="lines",
        verbose_name=_("Abrechnungs-Run"),
    )
    chunk_id = models.PositiveIntegerField(null=True, blank=True, verbose_name=_("Chunk"))
    line_type = models.CharField(max_length=50, verbose_name=_("Typ"))
    description = models.CharField(max_length=255, blank=True, verbose_name=_("Beschreibung"))
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        verbose_name=_("Betrag"),
    )
    operation = models.CharField(
        max_length=10,
        choices=Operation.choices,
        verbose_name=_("Operation"),
    )
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True, verbose_name=_("Gelöscht am"))
    deleted_reason = models.CharField(max_length=255, blank=True, verbose_name=_("Löschgrund"))
    created_at = models.DateTimeField(auto_now_add=True, verbose_name=_("Erstellt am"))

    objects = BillingRunLineQuerySet.as_manager()

    class Meta:
        verbose_name = _("Run-Zeile")
        verbose_name_plural = _("Run-Zeilen")
        ordering = ["run_id", "chunk_id", "id"]

    def __str__(self) -> str:
        return f"{self.run.run_id} · {self.line_type} · {self.amount}"

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
