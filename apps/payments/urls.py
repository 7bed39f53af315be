from django.urls import path

from . import views

urlpatterns = [
    path("<uuid:order_id>/payment/initialize", views.initialize_payment_view, name="payment-initialize"),
    path("<uuid:order_id>/payment/verify", views.verify_payment_view, name="payment-verify"),
]
