"""Who gets notified about an order event."""

from __future__ import annotations

from typing import Iterable


def unique_recipients(user_ids: Iterable[object]) -> list[str]:
    """Stringify, drop blanks, dedupe while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in user_ids:
        if value is None:
            continue
        key = str(value).strip()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(key)
    return result


def status_change_recipients(*, created_by: object, team_user_ids: Iterable[object]) -> list[str]:
    """Creator plus every active team member. Nobody is excluded by role."""
    return unique_recipients([created_by, *team_user_ids])


def assignment_recipients(*, new_assignee: object, created_by: object, actor_id: object) -> list[str]:
    """New assignee and creator, minus whoever made the change."""
    actor = str(actor_id) if actor_id is not None else None
    return [uid for uid in unique_recipients([new_assignee, created_by]) if uid != actor]


def order_created_recipients(*, created_by: object, team_user_ids: Iterable[object]) -> list[str]:
    return unique_recipients([*team_user_ids, created_by])


def comment_recipients(
    *,
    author_role: str | None,
    team_roles: Iterable[str],
    created_by: object,
    assigned_to: object,
    team_user_ids: Iterable[object],
    author_id: object = None,
) -> list[str]:
    """Team comments go to the client side of the order; client comments go to the team.

    The author is never notified of their own comment.
    """
    if (author_role or "").lower() in {role.lower() for role in team_roles}:
        recipients = unique_recipients([created_by, assigned_to])
    else:
        recipients = unique_recipients(team_user_ids)
    author = str(author_id) if author_id is not None else None
    return [uid for uid in recipients if uid != author]


def status_change_message(
    *,
    old_status: str | None,
    new_status: str | None,
    old_name: str | None,
    new_name: str | None,
) -> str:
    display_old = old_name or old_status or "—"
    display_new = new_name or new_status or "—"
    return f"{display_old} → {display_new}"
