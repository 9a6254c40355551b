"""Order endpoints."""
from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import PermissionChecker, check_permission, get_current_user
from ..database import get_db
from ..domain_errors import NotFoundError
from ..models import Order, User
from ..schemas import (
    DeleteResponse,
    OrderCommentCreate,
    OrderCommentResponse,
    OrderCreate,
    OrderResponse,
    OrderUpdate,
)
from ..services.order_response_builder import order_detail_to_response, orders_to_response
from ..use_cases.order_comments import add_order_comment_use_case
from ..use_cases.order_lifecycle import (
    apply_order_update_use_case,
    create_order_use_case,
    delete_order_use_case,
    get_order_use_case,
    list_orders_use_case,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _ensure_order_access(db: Session, current_user: User, order_ref: str, order: Optional[Order] = None) -> None:
    """Callers without ``canViewAllOrders`` only reach orders they created."""
    if check_permission(current_user, "canViewAllOrders"):
        return
    if order is None:
        order = get_order_use_case(db=db, order_ref=order_ref)
    if order.created_by != str(current_user.id):
        raise NotFoundError(code="ORDER_NOT_FOUND", message="Order not found", details={"orderId": order_ref})


@router.get("", response_model=Union[OrderResponse, list[OrderResponse]])
def get_orders(
    id: Optional[str] = Query(None, description="Numeric id or legacy external id"),
    user_id: Optional[str] = Query(None, alias="userId"),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """One order with its thread when ``id`` is given, otherwise the active list."""
    if id:
        order = get_order_use_case(db=db, order_ref=id)
        _ensure_order_access(db, current_user, id, order=order)
        return order_detail_to_response(db, order)

    if not check_permission(current_user, "canViewAllOrders"):
        user_id = str(current_user.id)
    orders = list_orders_use_case(db=db, user_id=user_id)
    return orders_to_response(db, orders)


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(
    data: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create order; the server assigns ``orderNumber``."""
    order = create_order_use_case(db=db, data=data, current_user=current_user)
    return order_detail_to_response(db, order)


@router.patch("", response_model=OrderResponse)
def update_order(
    data: OrderUpdate,
    id: str = Query(..., description="Numeric id or legacy external id"),
    current_user: User = Depends(PermissionChecker("canEditOrders")),
    db: Session = Depends(get_db),
):
    """Partial update. Send ``version`` to reject the change if someone else saved first."""
    _ensure_order_access(db, current_user, id)
    order = apply_order_update_use_case(
        db=db,
        order_ref=id,
        patch=data,
        current_user=current_user,
    )
    return order_detail_to_response(db, order)


@router.delete("", response_model=DeleteResponse)
def delete_order(
    id: str = Query(...),
    current_user: User = Depends(PermissionChecker("canDeleteOrders")),
    db: Session = Depends(get_db),
):
    """Soft delete."""
    order = delete_order_use_case(db=db, order_ref=id)
    return DeleteResponse(success=True, id=order.id)


@router.post(
    "/{order_id}/comments",
    response_model=OrderCommentResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_comment(
    order_id: str,
    data: OrderCommentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ensure_order_access(db, current_user, order_id)
    comment = add_order_comment_use_case(
        db=db,
        order_ref=order_id,
        data=data,
        current_user=current_user,
    )
    return OrderCommentResponse.model_validate(comment)
