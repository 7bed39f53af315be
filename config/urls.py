from django.urls import include, path

from apps.core.views import health

urlpatterns = [
    path("api/health/", health, name="health"),
    path("api/", include("apps.shop.urls")),
    path("api/checkout/", include("apps.payments.urls")),
    path("api/import/", include("apps.imports.urls")),
]
