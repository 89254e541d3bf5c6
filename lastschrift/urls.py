from django.urls import path

from .views import (
    BillingRunAcceptView,
    BillingRunDeclineView,
    BillingRunDetailView,
    BillingRunListView,
    BillingRunReprocessView,
    BillingRunRollbackView,
    SepaCollectionDeleteView,
    SepaCollectionDetailView,
    SepaCollectionExportView,
    SepaCollectionListView,
)

urlpatterns = [
    path("sepa/", SepaCollectionListView.as_view(), name="sepa_collection_list"),
    path("sepa/<int:pk>/", SepaCollectionDetailView.as_view(), name="sepa_collection_detail"),
    path("sepa/<int:pk>/export/", SepaCollectionExportView.as_view(), name="sepa_collection_export"),
    path("sepa/<int:pk>/delete/", SepaCollectionDeleteView.as_view(), name="sepa_collection_delete"),
    path("runs/", BillingRunListView.as_view(), name="billing_run_list"),
    path("runs/<int:pk>/", BillingRunDetailView.as_view(), name="billing_run_detail"),
    path("runs/<int:pk>/accept/", BillingRunAcceptView.as_view(), name="billing_run_accept"),
    path("runs/<int:pk>/decline/", BillingRunDeclineView.as_view(), name="billing_run_decline"),
    path("runs/<int:pk>/rollback/", BillingRunRollbackView.as_view(), name="billing_run_rollback"),
    path("runs/<int:pk>/reprocess/", BillingRunReprocessView.as_view(), name="billing_run_reprocess"),
]
