from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import simple_history.models
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Tenant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "salutation",
                    models.CharField(
                        choices=[("herr", "Herr"), ("frau", "Frau"), ("divers", "Divers"), ("firma", "Firma")],
                        default="herr",
                        max_length=20,
                        verbose_name="Anrede",
                    ),
                ),
                ("first_name", models.CharField(max_length=100, verbose_name="Vorname")),
                ("last_name", models.CharField(max_length=100, verbose_name="Nachname")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="E-Mail")),
                (
                    "phone",
                    models.CharField(
                        blank=True,
                        max_length=50,
                        validators=[
                            django.core.validators.RegexValidator(
                                message="Telefon darf nur Ziffern enthalten, optional mit führendem +.",
                                regex="^\\+?\\d+$",
                            )
                        ],
                        verbose_name="Telefon",
                    ),
                ),
                ("iban", models.CharField(blank=True, max_length=34, verbose_name="IBAN / Bankkonto-ID")),
                ("sepa_mandate_reference", models.CharField(blank=True, max_length=35, verbose_name="Mandatsreferenz")),
                ("notes", models.TextField(blank=True, verbose_name="Notizen")),
            ],
            options={
                "verbose_name": "Mieter",
                "verbose_name_plural": "Mieter",
                "ordering": ["last_name", "first_name"],
            },
        ),
        migrations.CreateModel(
            name="SepaCollection",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("collection_date", models.DateField(verbose_name="Einzugsdatum")),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="Bezeichnung")),
                ("file_name", models.CharField(blank=True, max_length=255, verbose_name="Dateiname")),
                ("item_count", models.PositiveIntegerField(default=0, verbose_name="Anzahl Positionen")),
                (
                    "total_amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12, verbose_name="Gesamtbetrag"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Erstellt"),
                            ("exported", "Exportiert"),
                            ("partially_completed", "Teilweise abgeschlossen"),
                            ("completed", "Abgeschlossen"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=30,
                        verbose_name="Status",
                    ),
                ),
                ("version", models.PositiveIntegerField(default=0, verbose_name="Version")),
                ("exported_at", models.DateTimeField(blank=True, null=True, verbose_name="Exportiert am")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="Aktualisiert am")),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Erstellt von",
                    ),
                ),
            ],
            options={
                "verbose_name": "SEPA-Einzug",
                "verbose_name_plural": "SEPA-Einzüge",
                "ordering": ["-collection_date", "-id"],
            },
        ),
        migrations.CreateModel(
            name="BillingRun",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("run_id", models.CharField(max_length=100, unique=True, verbose_name="Run-ID")),
                ("description", models.TextField(blank=True, verbose_name="Beschreibung")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Wartend"),
                            ("running", "Läuft"),
                            ("completed", "Abgeschlossen"),
                            ("failed", "Fehlgeschlagen"),
                            ("cancelled", "Abgebrochen"),
                            ("rolled_back", "Zurückgerollt"),
                            ("pending_reprocess", "Wartet auf Reprocess"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=30,
                        verbose_name="Status",
                    ),
                ),
                ("expected_lines", models.PositiveIntegerField(default=0, verbose_name="Erwartete Zeilen")),
                ("inserted", models.PositiveIntegerField(default=0, verbose_name="Eingefügt")),
                ("updated", models.PositiveIntegerField(default=0, verbose_name="Aktualisiert")),
                ("skipped", models.PositiveIntegerField(default=0, verbose_name="Übersprungen")),
                ("artifacts", models.JSONField(blank=True, default=list, verbose_name="Artefakte")),
                ("error_message", models.TextField(blank=True, verbose_name="Fehlermeldung")),
                ("started_at", models.DateTimeField(blank=True, null=True, verbose_name="Gestartet am")),
                ("finished_at", models.DateTimeField(blank=True, null=True, verbose_name="Beendet am")),
                ("accepted_at", models.DateTimeField(blank=True, null=True, verbose_name="Akzeptiert am")),
                ("accept_comment", models.TextField(blank=True, verbose_name="Kommentar Akzeptanz")),
                ("declined_at", models.DateTimeField(blank=True, null=True, verbose_name="Abgelehnt am")),
                ("decline_reason", models.TextField(blank=True, verbose_name="Begründung Ablehnung")),
                ("rolled_back_at", models.DateTimeField(blank=True, null=True, verbose_name="Zurückgerollt am")),
                ("rollback_reason", models.TextField(blank=True, verbose_name="Begründung Rollback")),
                (
                    "reprocess_requested_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="Reprocess angefordert am"),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="Aktualisiert am")),
                (
                    "accepted_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Akzeptiert von",
                    ),
                ),
                (
                    "declined_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Abgelehnt von",
                    ),
                ),
                (
                    "rolled_back_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Zurückgerollt von",
                    ),
                ),
                (
                    "triggered_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Gestartet von",
                    ),
                ),
            ],
            options={
                "verbose_name": "Abrechnungs-Run",
                "verbose_name_plural": "Abrechnungs-Runs",
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="Buchung",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "typ",
                    models.CharField(
                        choices=[("soll", "Forderung an Mieter"), ("ist", "Zahlungseingang vom Mieter")],
                        max_length=20,
                        verbose_name="Typ",
                    ),
                ),
                (
                    "zahlungsart",
                    models.CharField(
                        blank=True,
                        choices=[("sepa", "SEPA-Lastschrift"), ("ueberweisung", "Überweisung"), ("bar", "Barzahlung")],
                        max_length=20,
                        verbose_name="Zahlungsart",
                    ),
                ),
                ("buchungstext", models.CharField(max_length=255, verbose_name="Buchungstext")),
                ("datum", models.DateField(verbose_name="Buchungsdatum")),
                ("eingangsdatum", models.DateField(blank=True, null=True, verbose_name="Eingangsdatum")),
                ("betrag", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Betrag")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                (
                    "mieter",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="buchungen",
                        to="lastschrift.tenant",
                        verbose_name="Mieter",
                    ),
                ),
            ],
            options={
                "verbose_name": "Buchung",
                "verbose_name_plural": "Buchungen",
                "ordering": ["-datum", "-id"],
            },
        ),
        migrations.CreateModel(
            name="SepaCollectionItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("debtor_name", models.CharField(blank=True, max_length=255, verbose_name="Zahlungspflichtiger")),
                ("iban", models.CharField(blank=True, max_length=34, verbose_name="IBAN")),
                ("mandate_reference", models.CharField(blank=True, max_length=35, verbose_name="Mandatsreferenz")),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                        verbose_name="Betrag",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Ausstehend"),
                            ("successful", "Erfolgreich"),
                            ("returned", "Rücklastschrift"),
                            ("rejected", "Abgelehnt"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                        verbose_name="Status",
                    ),
                ),
                (
                    "return_reason",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("insufficient_funds", "Konto nicht gedeckt (AM04)"),
                            ("closed_account", "Konto geschlossen (AC04)"),
                            ("no_mandate", "Kein gültiges Mandat (MD01)"),
                            ("mandate_cancelled", "Mandat widerrufen (MD06)"),
                            ("refund_request", "Widerspruch des Kontoinhabers (MS02)"),
                            ("technical_error", "Technischer Fehler (AM05)"),
                            ("other", "Sonstiger Grund"),
                        ],
                        max_length=30,
                        verbose_name="Rückgabegrund",
                    ),
                ),
                ("return_date", models.DateField(blank=True, null=True, verbose_name="Rückgabedatum")),
                ("notes", models.TextField(blank=True, verbose_name="Notizen")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="Aktualisiert am")),
                (
                    "collection",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="lastschrift.sepacollection",
                        verbose_name="SEPA-Einzug",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sepa_items",
                        to="lastschrift.buchung",
                        verbose_name="Zahlung",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="sepa_items",
                        to="lastschrift.tenant",
                        verbose_name="Mieter",
                    ),
                ),
            ],
            options={
                "verbose_name": "SEPA-Lastschriftposition",
                "verbose_name_plural": "SEPA-Lastschriftpositionen",
                "ordering": ["collection_id", "id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=(
                            (models.Q(status="returned") & ~models.Q(return_reason=""))
                            | (~models.Q(status="returned") & models.Q(return_reason=""))
                        ),
                        name="sepa_item_return_reason_only_when_returned",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="TenantFee",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "fee_type",
                    models.CharField(
                        choices=[
                            ("ruecklastschrift", "Rücklastschrift-Gebühr"),
                            ("mahngebuehr", "Mahngebühr"),
                            ("sonstige", "Sonstige Gebühr"),
                        ],
                        max_length=20,
                        verbose_name="Gebührenart",
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=10,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.00"))],
                        verbose_name="Betrag",
                    ),
                ),
                ("description", models.CharField(max_length=255, verbose_name="Beschreibung")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                (
                    "sepa_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="fees",
                        to="lastschrift.sepacollectionitem",
                        verbose_name="Lastschriftposition",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="fees",
                        to="lastschrift.tenant",
                        verbose_name="Mieter",
                    ),
                ),
            ],
            options={
                "verbose_name": "Mietergebühr",
                "verbose_name_plural": "Mietergebühren",
                "ordering": ["-created_at", "-id"],
            },
        ),
        migrations.CreateModel(
            name="BillingRunChunk",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("chunk_id", models.PositiveIntegerField(verbose_name="Chunk")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Wartend"),
                            ("processing", "In Arbeit"),
                            ("done", "Fertig"),
                            ("failed", "Fehlgeschlagen"),
                        ],
                        default="pending",
                        max_length=20,
                        verbose_name="Status",
                    ),
                ),
                ("rows_in_chunk", models.PositiveIntegerField(default=0, verbose_name="Zeilen im Chunk")),
                ("inserted", models.PositiveIntegerField(default=0, verbose_name="Eingefügt")),
                ("updated", models.PositiveIntegerField(default=0, verbose_name="Aktualisiert")),
                ("error_message", models.TextField(blank=True, verbose_name="Fehlermeldung")),
                ("started_at", models.DateTimeField(blank=True, null=True, verbose_name="Gestartet am")),
                ("completed_at", models.DateTimeField(blank=True, null=True, verbose_name="Beendet am")),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="chunks",
                        to="lastschrift.billingrun",
                        verbose_name="Abrechnungs-Run",
                    ),
                ),
            ],
            options={
                "verbose_name": "Run-Chunk",
                "verbose_name_plural": "Run-Chunks",
                "ordering": ["run_id", "chunk_id"],
                "constraints": [
                    models.UniqueConstraint(fields=("run", "chunk_id"), name="uniq_billing_run_chunk"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingRunLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("chunk_id", models.PositiveIntegerField(blank=True, null=True, verbose_name="Chunk")),
                ("line_type", models.CharField(max_length=50, verbose_name="Typ")),
                ("description", models.CharField(blank=True, max_length=255, verbose_name="Beschreibung")),
                (
                    "amount",
                    models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12, verbose_name="Betrag"),
                ),
                (
                    "operation",
                    models.CharField(
                        choices=[("insert", "Eingefügt"), ("update", "Aktualisiert")],
                        max_length=10,
                        verbose_name="Operation",
                    ),
                ),
                ("deleted_at", models.DateTimeField(blank=True, db_index=True, null=True, verbose_name="Gelöscht am")),
                ("deleted_reason", models.CharField(blank=True, max_length=255, verbose_name="Löschgrund")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="Erstellt am")),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="lastschrift.billingrun",
                        verbose_name="Abrechnungs-Run",
                    ),
                ),
            ],
            options={
                "verbose_name": "Run-Zeile",
                "verbose_name_plural": "Run-Zeilen",
                "ordering": ["run_id", "chunk_id", "id"],
            },
        ),
        migrations.CreateModel(
            name="HistoricalBuchung",
            fields=[
                ("id", models.BigIntegerField(auto_created=True, blank=True, db_index=True, verbose_name="ID")),
                (
                    "typ",
                    models.CharField(
                        choices=[("soll", "Forderung an Mieter"), ("ist", "Zahlungseingang vom Mieter")],
                        max_length=20,
                        verbose_name="Typ",
                    ),
                ),
                (
                    "zahlungsart",
                    models.CharField(
                        blank=True,
                        choices=[("sepa", "SEPA-Lastschrift"), ("ueberweisung", "Überweisung"), ("bar", "Barzahlung")],
                        max_length=20,
                        verbose_name="Zahlungsart",
                    ),
                ),
                ("buchungstext", models.CharField(max_length=255, verbose_name="Buchungstext")),
                ("datum", models.DateField(verbose_name="Buchungsdatum")),
                ("eingangsdatum", models.DateField(blank=True, null=True, verbose_name="Eingangsdatum")),
                ("betrag", models.DecimalField(decimal_places=2, max_digits=12, verbose_name="Betrag")),
                ("created_at", models.DateTimeField(blank=True, editable=False, verbose_name="Erstellt am")),
                ("history_id", models.AutoField(primary_key=True, serialize=False)),
                ("history_date", models.DateTimeField(db_index=True)),
                ("history_change_reason", models.CharField(max_length=100, null=True)),
                (
                    "history_type",
                    models.CharField(
                        choices=[("+", "Created"), ("~", "Changed"), ("-", "Deleted")],
                        max_length=1,
                    ),
                ),
                (
                    "history_user",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "mieter",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="lastschrift.tenant",
                        verbose_name="Mieter",
                    ),
                ),
            ],
            options={
                "verbose_name": "historical Buchung",
                "verbose_name_plural": "historical Buchungen",
                "ordering": ("-history_date", "-history_id"),
                "get_latest_by": ("history_date", "history_id"),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
        migrations.CreateModel(
            name="HistoricalSepaCollectionItem",
            fields=[
                ("id", models.BigIntegerField(auto_created=True, blank=True, db_index=True, verbose_name="ID")),
                ("debtor_name", models.CharField(blank=True, max_length=255, verbose_name="Zahlungspflichtiger")),
                ("iban", models.CharField(blank=True, max_length=34, verbose_name="IBAN")),
                ("mandate_reference", models.CharField(blank=True, max_length=35, verbose_name="Mandatsreferenz")),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        max_digits=12,
                        validators=[django.core.validators.MinValueValidator(Decimal("0.01"))],
                        verbose_name="Betrag",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Ausstehend"),
                            ("successful", "Erfolgreich"),
                            ("returned", "Rücklastschrift"),
                            ("rejected", "Abgelehnt"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                        verbose_name="Status",
                    ),
                ),
                (
                    "return_reason",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("insufficient_funds", "Konto nicht gedeckt (AM04)"),
                            ("closed_account", "Konto geschlossen (AC04)"),
                            ("no_mandate", "Kein gültiges Mandat (MD01)"),
                            ("mandate_cancelled", "Mandat widerrufen (MD06)"),
                            ("refund_request", "Widerspruch des Kontoinhabers (MS02)"),
                            ("technical_error", "Technischer Fehler (AM05)"),
                            ("other", "Sonstiger Grund"),
                        ],
                        max_length=30,
                        verbose_name="Rückgabegrund",
                    ),
                ),
                ("return_date", models.DateField(blank=True, null=True, verbose_name="Rückgabedatum")),
                ("notes", models.TextField(blank=True, verbose_name="Notizen")),
                ("created_at", models.DateTimeField(blank=True, editable=False, verbose_name="Erstellt am")),
                ("updated_at", models.DateTimeField(blank=True, editable=False, verbose_name="Aktualisiert am")),
                ("history_id", models.AutoField(primary_key=True, serialize=False)),
                ("history_date", models.DateTimeField(db_index=True)),
                ("history_change_reason", models.CharField(max_length=100, null=True)),
                (
                    "history_type",
                    models.CharField(
                        choices=[("+", "Created"), ("~", "Changed"), ("-", "Deleted")],
                        max_length=1,
                    ),
                ),
                (
                    "collection",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="lastschrift.sepacollection",
                        verbose_name="SEPA-Einzug",
                    ),
                ),
                (
                    "history_user",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="lastschrift.buchung",
                        verbose_name="Zahlung",
                    ),
                ),
                (
                    "tenant",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to="lastschrift.tenant",
                        verbose_name="Mieter",
                    ),
                ),
            ],
            options={
                "verbose_name": "historical SEPA-Lastschriftposition",
                "verbose_name_plural": "historical SEPA-Lastschriftpositionen",
                "ordering": ("-history_date", "-history_id"),
                "get_latest_by": ("history_date", "history_id"),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
        migrations.CreateModel(
            name="HistoricalBillingRun",
            fields=[
                ("id", models.BigIntegerField(auto_created=True, blank=True, db_index=True, verbose_name="ID")),
                ("run_id", models.CharField(db_index=True, max_length=100, verbose_name="Run-ID")),
                ("description", models.TextField(blank=True, verbose_name="Beschreibung")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Wartend"),
                            ("running", "Läuft"),
                            ("completed", "Abgeschlossen"),
                            ("failed", "Fehlgeschlagen"),
                            ("cancelled", "Abgebrochen"),
                            ("rolled_back", "Zurückgerollt"),
                            ("pending_reprocess", "Wartet auf Reprocess"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=30,
                        verbose_name="Status",
                    ),
                ),
                ("expected_lines", models.PositiveIntegerField(default=0, verbose_name="Erwartete Zeilen")),
                ("inserted", models.PositiveIntegerField(default=0, verbose_name="Eingefügt")),
                ("updated", models.PositiveIntegerField(default=0, verbose_name="Aktualisiert")),
                ("skipped", models.PositiveIntegerField(default=0, verbose_name="Übersprungen")),
                ("artifacts", models.JSONField(blank=True, default=list, verbose_name="Artefakte")),
                ("error_message", models.TextField(blank=True, verbose_name="Fehlermeldung")),
                ("started_at", models.DateTimeField(blank=True, null=True, verbose_name="Gestartet am")),
                ("finished_at", models.DateTimeField(blank=True, null=True, verbose_name="Beendet am")),
                ("accepted_at", models.DateTimeField(blank=True, null=True, verbose_name="Akzeptiert am")),
                ("accept_comment", models.TextField(blank=True, verbose_name="Kommentar Akzeptanz")),
                ("declined_at", models.DateTimeField(blank=True, null=True, verbose_name="Abgelehnt am")),
                ("decline_reason", models.TextField(blank=True, verbose_name="Begründung Ablehnung")),
                ("rolled_back_at", models.DateTimeField(blank=True, null=True, verbose_name="Zurückgerollt am")),
                ("rollback_reason", models.TextField(blank=True, verbose_name="Begründung Rollback")),
                (
                    "reprocess_requested_at",
                    models.DateTimeField(blank=True, null=True, verbose_name="Reprocess angefordert am"),
                ),
                ("created_at", models.DateTimeField(blank=True, editable=False, verbose_name="Erstellt am")),
                ("updated_at", models.DateTimeField(blank=True, editable=False, verbose_name="Aktualisiert am")),
                ("history_id", models.AutoField(primary_key=True, serialize=False)),
                ("history_date", models.DateTimeField(db_index=True)),
                ("history_change_reason", models.CharField(max_length=100, null=True)),
                (
                    "history_type",
                    models.CharField(
                        choices=[("+", "Created"), ("~", "Changed"), ("-", "Deleted")],
                        max_length=1,
                    ),
                ),
                (
                    "accepted_by",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Akzeptiert von",
                    ),
                ),
                (
                    "declined_by",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Abgelehnt von",
                    ),
                ),
                (
                    "history_user",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "rolled_back_by",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Zurückgerollt von",
                    ),
                ),
                (
                    "triggered_by",
                    models.ForeignKey(
                        blank=True,
                        db_constraint=False,
                        null=True,
                        on_delete=django.db.models.deletion.DO_NOTHING,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                        verbose_name="Gestartet von",
                    ),
                ),
            ],
            options={
                "verbose_name": "historical Abrechnungs-Run",
                "verbose_name_plural": "historical Abrechnungs-Runs",
                "ordering": ("-history_date", "-history_id"),
                "get_latest_by": ("history_date", "history_id"),
            },
            bases=(simple_history.models.HistoricalChanges, models.Model),
        ),
    ]
