"""
Order API endpoints for the storefront.

Customers place orders and read their own; administrators list every order,
move orders through their lifecycle and correct fulfillment details and
discounts. Domain errors from the order service are translated to HTTP
responses here.
"""

from typing import NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from storefront.api.deps import CurrentAdmin, CurrentUser, OrderServiceDep
from storefront.core.logging import get_logger
from storefront.schemas.orders import (
    DiscountUpdate,
    FulfillmentUpdate,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    StatusOption,
)
from storefront.services.orders.enums import status_catalogue
from storefront.services.orders.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    OrderAccessDeniedError,
    OrderError,
    OrderNotFoundError,
    OrderValidationError,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def raise_http_error(error: OrderError, operation: str) -> NoReturn:
    """
    Translate an order service error into an HTTP error response.

    Raises:
        HTTPException: 422 for validation errors, 409 for rejected
            transitions and concurrent updates, 404 for unknown or foreign
            orders, 500 otherwise
    """
    if isinstance(error, OrderValidationError):
        logger.warning(f"{operation} rejected", error=str(error), context=error.context)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.message, "errors": error.errors},
        ) from error

    if isinstance(error, InvalidTransitionError):
        logger.warning(f"{operation} rejected", error=str(error), context=error.context)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": error.message,
                "current_status": error.current_status,
                "target_status": error.target_status,
            },
        ) from error

    if isinstance(error, ConcurrencyConflictError):
        logger.warning(f"{operation} conflicted", error=str(error), context=error.context)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Order was modified concurrently, reload and retry",
        ) from error

    if isinstance(error, (OrderNotFoundError, OrderAccessDeniedError)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        ) from error

    logger.error(f"{operation} failed", error=str(error), context=error.context)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to process order",
    ) from error


@router.post(
    "/",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Place an order for the authenticated customer.

    Prices are validated against the catalog and totals are recomputed on
    the server; the response carries the assigned order number.
    """
    try:
        order = await service.create_order(current_user.id, request.to_draft())
    except OrderError as e:
        raise_http_error(e, "Order creation")
    return OrderResponse.from_order(order)


@router.get(
    "/my-orders",
    response_model=OrderListResponse,
    summary="List my orders",
)
async def list_my_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
) -> OrderListResponse:
    """Orders placed by the authenticated customer, newest first."""
    try:
        orders, total, total_pages = await service.list_customer_orders(
            current_user.id, page=page, limit=limit
        )
    except OrderError as e:
        raise_http_error(e, "Order listing")
    return OrderListResponse(
        orders=[OrderResponse.from_order(order) for order in orders],
        total=total,
        page=page,
        total_pages=total_pages,
    )


@router.get(
    "/statuses",
    response_model=list[StatusOption],
    summary="Order status catalogue",
)
async def list_statuses() -> list[StatusOption]:
    """Every order status with its label and customer-facing description."""
    return [StatusOption(**entry) for entry in status_catalogue()]


@router.get(
    "/",
    response_model=OrderListResponse,
    summary="List all orders",
)
async def list_orders(
    admin: CurrentAdmin,
    service: OrderServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
) -> OrderListResponse:
    """Administrative order listing with status filter and search."""
    try:
        orders, total, total_pages = await service.list_orders(
            page=page, limit=limit, status=status_filter, search=search
        )
    except OrderError as e:
        raise_http_error(e, "Order listing")
    return OrderListResponse(
        orders=[OrderResponse.from_order(order) for order in orders],
        total=total,
        page=page,
        total_pages=total_pages,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Get one order.

    Customers only see their own orders; any other order reads as missing.
    """
    try:
        order = await service.get_order(
            order_id, requester_id=current_user.id, is_admin=current_user.is_admin
        )
    except OrderError as e:
        raise_http_error(e, "Order retrieval")
    return OrderResponse.from_order(order)


@router.get(
    "/{order_id}/transitions",
    response_model=list[StatusOption],
    summary="Allowed next statuses",
)
async def get_allowed_transitions(
    order_id: UUID,
    admin: CurrentAdmin,
    service: OrderServiceDep,
) -> list[StatusOption]:
    try:
        allowed = await service.get_allowed_transitions(order_id)
    except OrderError as e:
        raise_http_error(e, "Transition lookup")
    values = {order_status.value for order_status in allowed}
    return [StatusOption(**entry) for entry in status_catalogue() if entry["value"] in values]


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: UUID,
    update: OrderStatusUpdate,
    admin: CurrentAdmin,
    service: OrderServiceDep,
) -> OrderResponse:
    """
    Move an order to a new status and record it in the status history.

    Returns 409 when the transition is not allowed or the order changed
    since it was read.
    """
    try:
        order = await service.update_order_status(
            order_id,
            update.status,
            actor_id=admin.id,
            note=update.note,
            tracking_number=update.tracking_number,
            estimated_delivery=update.estimated_delivery,
        )
    except OrderError as e:
        raise_http_error(e, "Status update")
    return OrderResponse.from_order(order)


@router.patch(
    "/{order_id}/fulfillment",
    response_model=OrderResponse,
    summary="Correct fulfillment details",
)
async def update_fulfillment(
    order_id: UUID,
    update: FulfillmentUpdate,
    admin: CurrentAdmin,
    service: OrderServiceDep,
) -> OrderResponse:
    try:
        order = await service.update_fulfillment_details(
            order_id,
            actor_id=admin.id,
            tracking_number=update.tracking_number,
            estimated_delivery=update.estimated_delivery,
            shipping_address=(
                update.shipping_address.model_dump()
                if update.shipping_address
                else None
            ),
        )
    except OrderError as e:
        raise_http_error(e, "Fulfillment update")
    return OrderResponse.from_order(order)


@router.patch(
    "/{order_id}/discount",
    response_model=OrderResponse,
    summary="Apply a discount",
)
async def apply_discount(
    order_id: UUID,
    update: DiscountUpdate,
    admin: CurrentAdmin,
    service: OrderServiceDep,
) -> OrderResponse:
    try:
        order = await service.apply_discount(order_id, update.discount, actor_id=admin.id)
    except OrderError as e:
        raise_http_error(e, "Discount update")
    return OrderResponse.from_order(order)
