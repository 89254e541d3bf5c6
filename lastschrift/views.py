from django.contrib import messages
from django.core.exceptions import ValidationError
from django.db.models import Count, Q
from django.shortcuts import get_object_or_404, redirect
from django.urls import reverse, reverse_lazy
from django.views.generic import ListView, TemplateView, View

from .forms import BillingRunDecisionForm, BillingRunRollbackForm, SepaItemStatusForm
from .models import BillingRun, SepaCollection, SepaCollectionItem
from .services.billing_run_lifecycle import BillingRunLifecycle, BillingRunLifecycleError
from .services.sepa_collection_service import SepaCollectionService
from .services.sepa_reconciliation import (
    SepaCollectionConflict,
    SepaCollectionNotExported,
    SepaReconciliationSession,
)


def acting_user(request):
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user
    return None


class SepaCollectionListView(ListView):
    model = SepaCollection
    template_name = "lastschrift/sepa_collection_list.html"
    context_object_name = "collections"

    def get_queryset(self):
        queryset = SepaCollection.objects.annotate(
            pending_count=Count("items", filter=Q(items__status=SepaCollectionItem.Status.PENDING)),
            failed_count=Count(
                "items",
                filter=Q(
                    items__status__in=[
                        SepaCollectionItem.Status.RETURNED,
                        SepaCollectionItem.Status.REJECTED,
                    ]
                ),
            ),
        ).order_by("-collection_date", "-id")
        status = (self.request.GET.get("status") or "").strip()
        if status in SepaCollection.Status.values:
            queryset = queryset.filter(status=status)
        return queryset

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        context["status_choices"] = SepaCollection.Status.choices
        context["selected_status"] = (self.request.GET.get("status") or "").strip()
        return context


class SepaCollectionDetailView(TemplateView):
    template_name = "lastschrift/sepa_collection_detail.html"

    def _collection(self):
        return get_object_or_404(SepaCollection, pk=self.kwargs["pk"])

    @staticmethod
    def _build_rows(items, *, data=None):
        rows = []
        for item in items:
            form = None
            if item.is_pending:
                form = SepaItemStatusForm(data=data, prefix=f"item-{item.pk}")
            rows.append({"item": item, "form": form})
        return rows

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        collection = kwargs.get("collection") or self._collection()
        items = list(
            collection.items.select_related("tenant", "payment").order_by("id")
        )
        context["collection"] = collection
        context["rows"] = kwargs.get("rows") or self._build_rows(items)
        context["status_counts"] = {
            status: sum(1 for item in items if item.status == status)
            for status in SepaCollectionItem.Status.values
        }
        context["can_reconcile"] = collection.is_reconcilable
        context["export_url"] = reverse("sepa_collection_export", kwargs={"pk": collection.pk})
        context["delete_url"] = reverse("sepa_collection_delete", kwargs={"pk": collection.pk})
        return context

    def post(self, request, *args, **kwargs):
        collection = self._collection()
        try:
            session = SepaReconciliationSession(collection=collection, user=acting_user(request))
        except SepaCollectionNotExported as exc:
            messages.error(request, " ".join(exc.messages))
            return redirect("sepa_collection_detail", pk=collection.pk)

        if request.POST.get("action") == "mark_all_successful":
            session.stage_mark_all_pending_successful()
        else:
            rows = self._build_rows(session.items, data=request.POST)
            if not all(row["form"].is_valid() for row in rows if row["form"] is not None):
                messages.error(request, "Bitte prüfen Sie die Eingaben bei den Positionen.")
                return self.render_to_response(
                    self.get_context_data(collection=collection, rows=rows)
                )
            for row in rows:
                form = row["form"]
                if form is None or not form.cleaned_data.get("status"):
                    continue
                try:
                    session.stage_edit(
                        row["item"].pk,
                        form.cleaned_data["status"],
                        return_reason=form.cleaned_data.get("return_reason") or None,
                        notes=form.cleaned_data.get("notes") or "",
                    )
                except ValidationError as exc:
                    form.add_error(None, exc)
            if any(row["form"].errors for row in rows if row["form"] is not None):
                messages.error(request, "Einige Änderungen konnten nicht vorgemerkt werden.")
                return self.render_to_response(
                    self.get_context_data(collection=collection, rows=rows)
                )

        if not session.has_changes:
            session.close()
            messages.info(request, "Keine Änderungen vorgemerkt.")
            return redirect("sepa_collection_detail", pk=collection.pk)

        try:
            summary = session.commit()
        except SepaCollectionConflict as exc:
            session.close()
            messages.error(request, " ".join(exc.messages))
            return redirect("sepa_collection_detail", pk=collection.pk)
        session.close()

        if summary.succeeded_item_ids:
            messages.success(
                request,
                (
                    f"{len(summary.succeeded_item_ids)} Positionen gespeichert. "
                    f"Zahlungen: {len(summary.payment_ids)}, Gebühren: {len(summary.fee_ids)}."
                ),
            )
        if summary.has_errors:
            details = "; ".join(f"#{item_id}: {error}" for item_id, error in summary.failed.items())
            messages.warning(
                request,
                f"{len(summary.failed)} Positionen konnten nicht gespeichert werden: {details}",
            )
        return redirect("sepa_collection_detail", pk=collection.pk)


class SepaCollectionExportView(View):
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):
        collection = get_object_or_404(SepaCollection, pk=kwargs["pk"])
        try:
            collection = SepaCollectionService.mark_exported(
                collection=collection,
                file_name=(request.POST.get("file_name") or "").strip(),
            )
        except ValidationError as exc:
            messages.error(request, " ".join(exc.messages))
            return redirect("sepa_collection_detail", pk=collection.pk)
        messages.success(request, f"{collection} wurde als exportiert markiert.")
        return redirect("sepa_collection_detail", pk=collection.pk)


class SepaCollectionDeleteView(View):
    http_method_names = ["post"]
    success_url = reverse_lazy("sepa_collection_list")

    def post(self, request, *args, **kwargs):
        collection = get_object_or_404(SepaCollection, pk=kwargs["pk"])
        label = str(collection)
        item_count = SepaCollectionService.delete_collection(collection=collection)
        messages.success(request, f"{label} mit {item_count} Positionen wurde gelöscht.")
        return redirect(self.success_url)


class BillingRunListView(ListView):
    model = BillingRun
    template_name = "lastschrift/billing_run_list.html"
    context_object_name = "runs"
    paginate_by = 50

    def get_queryset(self):
        queryset = BillingRun.objects.select_related("triggered_by").annotate(
            chunk_count=Count("chunks", distinct=True),
        ).order_by("-created_at", "-id")
        status = (self.request.GET.get("status") or "").strip()
        if status in BillingRun.Status.values:
            queryset = queryset.filter(status=status)
        return queryset

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        context["status_choices"] = BillingRun.Status.choices
        context["selected_status"] = (self.request.GET.get("status") or "").strip()
        return context


class BillingRunDetailView(TemplateView):
    template_name = "lastschrift/billing_run_detail.html"

    def get_context_data(self, **kwargs):
        context = super().get_context_data(**kwargs)
        run = get_object_or_404(BillingRun.objects.with_detail(), pk=self.kwargs["pk"])
        detail = BillingRunLifecycle(run=run).detail()
        context["run"] = run
        context["detail"] = detail
        context["decision_form"] = BillingRunDecisionForm()
        context["rollback_form"] = BillingRunRollbackForm()
        return context


class BillingRunActionView(View):
    http_method_names = ["post"]
    success_message = ""

    def perform(self, lifecycle, request):
        raise NotImplementedError

    def post(self, request, *args, **kwargs):
        run = get_object_or_404(BillingRun, pk=kwargs["pk"])
        lifecycle = BillingRunLifecycle(run=run)
        try:
            message = self.perform(lifecycle, request)
        except BillingRunLifecycleError as exc:
            messages.error(request, " ".join(exc.messages))
            return redirect("billing_run_detail", pk=run.pk)
        messages.success(request, message)
        return redirect("billing_run_detail", pk=run.pk)


class BillingRunAcceptView(BillingRunActionView):
    def perform(self, lifecycle, request):
        form = BillingRunDecisionForm(request.POST)
        form.is_valid()
        run = lifecycle.accept(comment=form.cleaned_data.get("comment", ""), user=acting_user(request))
        return f"Run {run.run_id} wurde akzeptiert."


class BillingRunDeclineView(BillingRunActionView):
    def perform(self, lifecycle, request):
        form = BillingRunDecisionForm(request.POST)
        form.is_valid()
        run = lifecycle.decline(reason=form.cleaned_data.get("comment", ""), user=acting_user(request))
        return f"Run {run.run_id} wurde abgelehnt."


class BillingRunRollbackView(BillingRunActionView):
    def perform(self, lifecycle, request):
        form = BillingRunRollbackForm(request.POST)
        if not form.is_valid():
            raise BillingRunLifecycleError(form.errors["reason"][0])
        deleted_count = lifecycle.rollback(reason=form.cleaned_data["reason"], user=acting_user(request))
        return f"Run {lifecycle.run.run_id} wurde zurückgerollt, {deleted_count} Zeilen entfernt."


class BillingRunReprocessView(BillingRunActionView):
    def perform(self, lifecycle, request):
        run = lifecycle.reprocess(user=acting_user(request))
        return f"Run {run.run_id} wurde zur erneuten Verarbeitung vorgemerkt."
