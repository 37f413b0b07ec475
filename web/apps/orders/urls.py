from django.urls import path

from .views import (
    OrdersCollectionView,
    OrdersPingView,
    ProductDetailView,
    ProductsCollectionView,
    RetrieveOrderView,
)

app_name = "orders"

urlpatterns = [
    path("orders/ping/", OrdersPingView.as_view(), name="ping"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),  # GET / PUT / DELETE
    path("products/", ProductsCollectionView.as_view(), name="products-collection"),
    path("products/<int:pk>/", ProductDetailView.as_view(), name="products-detail"),
]
