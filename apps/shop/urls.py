from django.urls import path

from . import views

urlpatterns = [
    path("checkout/", views.order_list_view, name="order-list"),
    path("checkout/create", views.create_order_view, name="order-create"),
    path("checkout/<uuid:order_id>", views.order_detail_view, name="order-detail"),
    path("checkout/<uuid:order_id>/status", views.order_status_view, name="order-status"),
    path("checkout/<uuid:order_id>/cancel", views.cancel_order_view, name="order-cancel"),
    path("cart/", views.cart_view, name="cart"),
    path("cart/items", views.cart_add_view, name="cart-add"),
    path("cart/items/<int:item_id>", views.cart_remove_view, name="cart-remove"),
]
