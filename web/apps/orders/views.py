"""HTTP views for the orders app.

This module contains DRF API views. Views are kept intentionally small:
they validate requests (via Pydantic), map to domain objects, delegate to
the domain service, and map the typed placement outcome to an HTTP
response.

The views obtain a configured ``OrderService`` from ``get_order_service()``
whose payments port is either the HTTP client or the in-process stub
depending on runtime settings. This allows tests and local development to
swap implementations without changing view logic.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint processes the request once and stores the response. Retries with
the same payload replay it (``Idempotent-Replay: true``); the same key with
a different payload returns HTTP 409.
"""
from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import Committed, Declined, DraftOrder, Failed, InsufficientStock, LineItem, StockViolation
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent
from .models import BranchModel, OrderModel, ProductModel
from .repository import OrderRepository, ProductRepository
from .schemas import (
    CreateOrderDTO,
    OrderItemReadDTO,
    OrderReadDTO,
    ProductIn,
    ProductReadDTO,
    UpdateOrderDTO,
)


def _validation_error(e: ValidationError) -> Response:
    errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
    return Response({"detail": "VALIDATION_ERROR", "errors": errors}, status=status.HTTP_400_BAD_REQUEST)


def _page_params(request) -> tuple[int, int]:
    try:
        page = max(1, int(request.GET.get("page", 1)))
        page_size = min(100, max(1, int(request.GET.get("page_size", 20))))
    except ValueError:
        page, page_size = 1, 20
    return page, page_size


def _price_items(items) -> tuple[list[LineItem], list[StockViolation]]:
    """Snapshot catalog prices onto requested items.

    Returns the priced line items and a ``not_found`` violation for every
    product id missing from the catalog.
    """
    prices = ProductRepository().prices(i.product_id for i in items)
    priced, missing = [], []
    for i in items:
        if i.product_id not in prices:
            missing.append(StockViolation(product_id=i.product_id, reason="not_found", requested=i.quantity))
            continue
        priced.append(LineItem(product_id=i.product_id, quantity=i.quantity, unit_price=prices[i.product_id]))
    return priced, missing


def _stock_body(violations) -> dict:
    return {"detail": "INSUFFICIENT_STOCK", "violations": [v.as_dict() for v in violations]}


def _order_body(order: DraftOrder) -> dict:
    return {
        "id": str(order.id),
        "total_amount": str(order.total),
        "currency": order.currency,
        "transaction_id": order.transaction_id,
    }


def outcome_response(outcome) -> tuple[int, dict]:
    """Map a placement outcome to ``(status_code, body)``."""
    if isinstance(outcome, Committed):
        return status.HTTP_201_CREATED, _order_body(outcome.order)
    if isinstance(outcome, Declined):
        return status.HTTP_402_PAYMENT_REQUIRED, {"detail": "PAYMENT_DECLINED", "message": outcome.reason}
    if isinstance(outcome, InsufficientStock):
        body = _stock_body(outcome.violations)
        body["payment_reversed"] = outcome.payment_reversed
        return status.HTTP_422_UNPROCESSABLE_ENTITY, body
    if isinstance(outcome, Failed):
        return status.HTTP_503_SERVICE_UNAVAILABLE, {"detail": "UPSTREAM_UNAVAILABLE"}
    raise TypeError(f"unknown placement outcome: {outcome!r}")


class OrdersPingView(APIView):
    """Simple liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List orders, or create one by orchestrating payment and stock.

    Create validates the payload using a Pydantic DTO, prices the items
    from the catalog, and hands the draft to the domain service which
    charges, decrements stock and persists atomically.
    """
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        qs = OrderModel.objects.order_by("-created_at")
        page, page_size = _page_params(request)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        results = []
        for o in page_obj.object_list:
            dto = OrderReadDTO(
                id=o.id,
                branch_id=o.branch_id,
                name=o.name,
                total_amount=o.total_amount,
                currency=o.currency,
                transaction_id=o.transaction_id,
            )
            results.append(dto.model_dump(mode="json", exclude_none=True))

        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=200,
        )

    def post(self, request):
        """Create a new order.

        Returns:
            Response: One of the following responses.
            - 201 with {id, total_amount, currency, transaction_id}.
            - 400 for DTO validation errors or an unknown branch.
            - 402 with {detail: "PAYMENT_DECLINED"} when payment is declined.
            - 409 with {detail: "IDEMPOTENCY_CONFLICT"} when the same key is
              reused with a different payload, or {detail: "IN_PROGRESS"}
              while the first request with the key is still running.
            - 422 with {detail: "INSUFFICIENT_STOCK", violations: [...]}.
            - 503 with {detail: "UPSTREAM_UNAVAILABLE"} on infrastructure
              failures (everything rolled back).
        """
        idem_key = request.headers.get("Idempotency-Key")

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        # 2) Idempotency get-or-create
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except IdempotencyConflict:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if rec.response_status == 0:
                    # first request with this key has not stored its response yet
                    return Response({"detail": "IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        status_code, body, order_id = self._place(dto, idem_key)

        if rec:
            finalize(rec, status_code, body, order_id=order_id)
        return Response(body, status=status_code)

    def _place(self, dto: CreateOrderDTO, idem_key):
        if not BranchModel.objects.filter(pk=dto.branch_id).exists():
            return status.HTTP_400_BAD_REQUEST, {"detail": "BRANCH_NOT_FOUND"}, None

        items, missing = _price_items(dto.items)
        if missing:
            return status.HTTP_422_UNPROCESSABLE_ENTITY, _stock_body(missing), None

        order = DraftOrder(id=None, branch_id=dto.branch_id, name=dto.name, items=items, currency=dto.currency)
        outcome = providers.get_order_service(idempotency_key=idem_key).place_order(order)
        status_code, body = outcome_response(outcome)
        order_id = outcome.order.id if isinstance(outcome, Committed) else None
        return status_code, body, order_id


class RetrieveOrderView(APIView):
    """Show, update (through the order service) or delete one order."""
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = OrderRepository().get(oid)
        if order is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)

        dto = OrderReadDTO(
            id=order.id,
            branch_id=order.branch_id,
            name=order.name,
            total_amount=order.total,
            currency=order.currency,
            transaction_id=order.transaction_id,
            items=[
                OrderItemReadDTO(product_id=it.product_id, quantity=it.quantity, price=it.unit_price)
                for it in order.items
            ],
        )
        return Response(dto.model_dump(mode="json", exclude_none=True), status=200)

    def put(self, request, oid):
        try:
            dto = UpdateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        current = OrderRepository().get(oid)
        if current is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)

        items_changed = None
        if dto.items is None:
            items, items_changed = current.items, False
        else:
            items, missing = _price_items(dto.items)
            if missing:
                return Response(_stock_body(missing), status=status.HTTP_422_UNPROCESSABLE_ENTITY)

        order = DraftOrder(
            id=current.id,
            branch_id=current.branch_id,
            name=dto.name,
            items=list(items),
            currency=current.currency,
        )
        outcome = providers.get_order_service().place_order(order, is_update=True, items_changed=items_changed)
        status_code, body = outcome_response(outcome)
        if status_code == status.HTTP_201_CREATED:
            status_code = status.HTTP_200_OK
        return Response(body, status=status_code)

    def delete(self, request, oid):
        if not OrderRepository().delete(oid):
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProductsCollectionView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request):
        page, page_size = _page_params(request)
        p = Paginator(ProductModel.objects.order_by("-id"), page_size)
        page_obj = p.get_page(page)
        results = [
            ProductReadDTO(id=o.id, name=o.name, price=o.price, available=o.available).model_dump(mode="json")
            for o in page_obj.object_list
        ]
        return Response({"count": p.count, "page": page_obj.number, "page_size": page_size, "results": results})

    def post(self, request):
        try:
            dto = ProductIn.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)
        o = ProductModel.objects.create(name=dto.name, price=dto.price, available=dto.available)
        body = ProductReadDTO(id=o.id, name=o.name, price=o.price, available=o.available).model_dump(mode="json")
        return Response(body, status=status.HTTP_201_CREATED)


class ProductDetailView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "products"

    def get(self, request, pk: int):
        o = ProductModel.objects.filter(pk=pk).first()
        if o is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        body = ProductReadDTO(id=o.id, name=o.name, price=o.price, available=o.available).model_dump(mode="json")
        return Response(body, status=200)
