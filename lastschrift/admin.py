from django.contrib import admin
from simple_history.admin import SimpleHistoryAdmin

from .models import (
    BillingRun,
    BillingRunChunk,
    BillingRunLine,
    Buchung,
    SepaCollection,
    SepaCollectionItem,
    Tenant,
    TenantFee,
)


@admin.register(Tenant)
class TenantAdmin(admin.ModelAdmin):
    list_display = ("last_name", "first_name", "email", "iban", "sepa_mandate_reference")
    search_fields = ("first_name", "last_name", "email", "iban", "sepa_mandate_reference")


@admin.register(Buchung)
class BuchungAdmin(SimpleHistoryAdmin):
    list_display = ("datum", "mieter", "typ", "zahlungsart", "betrag", "buchungstext")
    list_filter = ("typ", "zahlungsart")
    search_fields = ("buchungstext", "mieter__last_name", "mieter__first_name")
    date_hierarchy = "datum"


@admin.register(TenantFee)
class TenantFeeAdmin(admin.ModelAdmin):
    list_display = ("created_at", "tenant", "fee_type", "amount", "description")
    list_filter = ("fee_type",)
    search_fields = ("description", "tenant__last_name")
    raw_id_fields = ("sepa_item",)


class SepaCollectionItemInline(admin.TabularInline):
    model = SepaCollectionItem
    extra = 0
    fields = ("tenant", "debtor_name", "iban", "amount", "status", "return_reason", "return_date", "payment")
    readonly_fields = ("status", "return_reason", "return_date", "payment")
    raw_id_fields = ("tenant",)

    # Nach dem Export sind Positionen nur noch über den Abgleich änderbar.
    def get_readonly_fields(self, request, obj=None):
        if obj is not None and obj.is_reconcilable:
            return self.fields
        return super().get_readonly_fields(request, obj)

    def has_add_permission(self, request, obj=None):
        if obj is not None and obj.is_reconcilable:
            return False
        return super().has_add_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_reconcilable:
            return False
        return super().has_delete_permission(request, obj)


@admin.register(SepaCollection)
class SepaCollectionAdmin(admin.ModelAdmin):
    list_display = ("collection_date", "description", "status", "item_count", "total_amount", "exported_at")
    list_filter = ("status",)
    search_fields = ("description", "file_name")
    readonly_fields = ("status", "version", "item_count", "total_amount", "exported_at", "created_by")
    inlines = (SepaCollectionItemInline,)


@admin.register(SepaCollectionItem)
class SepaCollectionItemAdmin(SimpleHistoryAdmin):
    list_display = ("collection", "debtor_name", "amount", "status", "return_reason", "return_date")
    list_filter = ("status", "return_reason")
    search_fields = ("debtor_name", "iban", "mandate_reference", "tenant__last_name")
    readonly_fields = ("collection", "status", "return_reason", "return_date", "payment")
    raw_id_fields = ("tenant",)

    def has_add_permission(self, request):
        return False


class BillingRunChunkInline(admin.TabularInline):
    model = BillingRunChunk
    extra = 0
    fields = ("chunk_id", "status", "rows_in_chunk", "inserted", "updated", "error_message")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(BillingRun)
class BillingRunAdmin(SimpleHistoryAdmin):
    list_display = ("run_id", "status", "inserted", "updated", "started_at", "finished_at")
    list_filter = ("status",)
    search_fields = ("run_id", "description")
    readonly_fields = (
        "status",
        "total_chunks",
        "inserted",
        "updated",
        "error_message",
        "started_at",
        "finished_at",
        "accepted_at",
        "accepted_by",
        "accept_comment",
        "declined_at",
        "declined_by",
        "decline_reason",
        "rolled_back_at",
        "rolled_back_by",
        "rollback_reason",
        "reprocess_requested_at",
    )
    inlines = (BillingRunChunkInline,)


@admin.register(BillingRunLine)
class BillingRunLineAdmin(admin.ModelAdmin):
    list_display = ("run", "chunk_id", "line_type", "operation", "amount", "deleted_at")
    list_filter = ("operation", "line_type")
    search_fields = ("run__run_id", "description")
