from django.urls import path
from .views import (
    ApplyCouponView,
    OrderDetailView,
    OrdersCollectionView,
    OrdersPingView,
    OrderStatusView,
    UserOrdersView,
    admin_events_view,
)
app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),  # GET / DELETE
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("user/<str:user_id>/", UserOrdersView.as_view(), name="orders-user"),
    path("coupons/apply/", ApplyCouponView.as_view(), name="coupons-apply"),
    path("events/", admin_events_view, name="admin-events"),
]
