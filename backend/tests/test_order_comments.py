from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import SQLAlchemyError

from labflow.domain_errors import DomainError
from labflow.models import NotificationOutbox, Order, OrderComment, User
from labflow.schemas import OrderCommentCreate
from labflow.use_cases import order_comments
from labflow.use_cases.order_comments import add_order_comment_use_case

NOW = datetime(2026, 10, 14, 15, 0, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, *, first_result=None, rows=None):
        self._first_result = first_result
        self._rows = rows or []

    def filter(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._first_result

    def all(self):
        return list(self._rows)


class _SessionStub:
    def __init__(self, *, order, team=None, commit_error=None):
        self._order = order
        self._team = team or []
        self._commit_error = commit_error
        self.added = []
        self.commit_calls = 0
        self.rollback_calls = 0
        self.user_queries = 0

    def query(self, model):
        if model is Order:
            return _QueryStub(first_result=self._order)
        if model is User:
            self.user_queries += 1
            return _QueryStub(rows=self._team)
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def flush(self):
        for obj in self.added:
            if isinstance(obj, OrderComment) and obj.id is None:
                obj.id = 501

    def commit(self):
        if self._commit_error is not None:
            raise self._commit_error
        self.commit_calls += 1

    def rollback(self):
        self.rollback_calls += 1


@pytest.fixture(autouse=True)
def outbox_kicks(monkeypatch):
    calls = []
    monkeypatch.setattr(order_comments, "kick_notification_outbox", lambda: calls.append(True))
    return calls


def _order() -> SimpleNamespace:
    return SimpleNamespace(
        id=3,
        external_id=None,
        order_number="ACR-PT002",
        created_by="15",
        assigned_to="42",
        is_active=True,
        updated_at=None,
    )


def _outbox(db) -> list[NotificationOutbox]:
    return [obj for obj in db.added if isinstance(obj, NotificationOutbox)]


def test_client_comment_notifies_team_and_touches_order(outbox_kicks) -> None:
    order = _order()
    db = _SessionStub(order=order, team=[SimpleNamespace(id=1), SimpleNamespace(id=42)])
    author = SimpleNamespace(id=15, role="User", full_name="Dra. Paula")

    comment = add_order_comment_use_case(
        db=db,
        order_ref=3,
        data=OrderCommentCreate(message="  Pode adiantar?  "),
        current_user=author,
        clock=lambda: NOW,
    )

    assert comment.message == "Pode adiantar?"
    assert comment.user_role == "user"
    assert comment.user_name == "Dra. Paula"
    assert order.updated_at == NOW
    assert db.commit_calls == 1
    assert outbox_kicks == [True]

    rows = _outbox(db)
    assert [row.recipient_user_id for row in rows] == ["1", "42"]
    assert rows[0].title == "Novo comentário no pedido ACR-PT002"
    assert rows[0].message == "Dra. Paula: Pode adiantar?"
    assert rows[0].idempotency_key == "comment_added:3:c501:1"


def test_team_comment_by_assignee_notifies_only_creator_without_team_lookup() -> None:
    db = _SessionStub(order=_order())
    author = SimpleNamespace(id=42, role="tecnico", full_name="Carlos")

    add_order_comment_use_case(
        db=db,
        order_ref="3",
        data=OrderCommentCreate.model_validate({"message": "Modelo pronto", "isInternal": True}),
        current_user=author,
    )

    assert db.user_queries == 0
    assert [row.recipient_user_id for row in _outbox(db)] == ["15"]


def test_comment_on_missing_order_is_not_found() -> None:
    db = _SessionStub(order=None)

    with pytest.raises(DomainError) as exc:
        add_order_comment_use_case(
            db=db,
            order_ref=404,
            data=OrderCommentCreate(message="oi"),
            current_user=SimpleNamespace(id=1, role="admin", full_name="Admin"),
        )

    assert exc.value.code == "ORDER_NOT_FOUND"
    assert db.added == []


def test_comment_failure_rolls_back_and_skips_kick(outbox_kicks) -> None:
    db = _SessionStub(order=_order(), commit_error=SQLAlchemyError("disk full"))

    with pytest.raises(DomainError) as exc:
        add_order_comment_use_case(
            db=db,
            order_ref=3,
            data=OrderCommentCreate(message="oi"),
            current_user=SimpleNamespace(id=1, role="admin", full_name="Admin"),
        )

    assert exc.value.http_status == 500
    assert exc.value.code == "ORDER_COMMENT_FAILED"
    assert db.rollback_calls == 1
    assert outbox_kicks == []
