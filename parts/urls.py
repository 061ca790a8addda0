from django.urls import path
from . import views

app_name = "parts"

urlpatterns = [
    path("settings/", views.PartsSettingsView.as_view(), name="settings"),

    path("parts/", views.PartListView.as_view(), name="part-list"),
    path("parts/search/", views.PartSearchView.as_view(), name="part-search"),
    path("parts/low-stock/", views.LowStockView.as_view(), name="low-stock"),
    path("parts/<str:code>/", views.PartDetailView.as_view(), name="part-detail"),
    path("parts/<str:code>/archive/", views.PartArchiveView.as_view(), name="part-archive"),
    path("parts/<str:code>/min-stock-override/", views.MinStockOverrideView.as_view(), name="part-min-stock-override"),
    path("parts/<str:code>/projection/", views.ProjectionView.as_view(), name="part-projection"),
    path("parts/<str:code>/transactions/", views.PartTransactionsView.as_view(), name="part-transactions"),
    path("parts/<str:code>/fifo-preview/", views.FifoPreviewView.as_view(), name="part-fifo-preview"),
    path("parts/<str:code>/stocking-score/", views.StockingScoreView.as_view(), name="part-stocking-score"),
    path("parts/<str:code>/min-stock/", views.MinStockView.as_view(), name="part-min-stock"),

    path("transactions/", views.TransactionCreateView.as_view(), name="transaction-create"),
    path("transactions/<int:transaction_id>/reverse/", views.TransactionReverseView.as_view(), name="transaction-reverse"),
    path("transfers/", views.TransferView.as_view(), name="transfer"),

    path("locations/", views.LocationListView.as_view(), name="location-list"),
    path("locations/<int:location_id>/", views.LocationDetailView.as_view(), name="location-detail"),
    path("locations/<int:location_id>/movements/", views.LocationMovementsView.as_view(), name="location-movements"),

    path("jobs/<int:job_id>/parts/", views.JobPartListView.as_view(), name="job-parts"),
    path("job-parts/integrity/", views.JobPartIntegrityView.as_view(), name="job-part-integrity"),
    path("job-parts/<int:allocation_id>/", views.JobPartDetailView.as_view(), name="job-part-detail"),

    path("maintenance/rebuild-caches/", views.rebuild_caches, name="rebuild-caches"),
    path("maintenance/refresh-scores/", views.refresh_scores, name="refresh-scores"),
    path("maintenance/apply-min-stock/", views.apply_min_stock, name="apply-min-stock"),
]
