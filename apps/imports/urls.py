from django.urls import path

from . import views

urlpatterns = [
    path("products/upload", views.upload_products_view, name="import-products-upload"),
    path("products/analyze", views.analyze_csv_view, name="import-products-analyze"),
]
