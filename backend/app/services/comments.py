"""Append-only comment thread with role-based visibility."""

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from app.core.errors import ValidationError
from app.models.enums import STAFF_ROLES, UserRole
from app.schemas.maintenance import CommentAuthor, CommentResponse

logger = logging.getLogger(__name__)


def can_see_internal(role: Any) -> bool:
    """Admin, staff and maintenance see internal comments; everyone else doesn't."""
    try:
        return UserRole(getattr(role, "value", role)) in STAFF_ROLES
    except ValueError:
        return False


def clean_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Comment cannot be empty", field="content")
    return text


class CommentLog:
    """Comments of one request, oldest first.

    Visibility is decided when reading, so a change of role changes what a
    user sees without rewriting stored comments.
    """

    def __init__(self, comments: Iterable[CommentResponse] = ()):
        self._comments: list[CommentResponse] = list(comments)

    def __iter__(self) -> Iterator[CommentResponse]:
        return iter(self._comments)

    def __len__(self) -> int:
        return len(self._comments)

    def append(
        self,
        content: Optional[str],
        author: CommentAuthor,
        is_internal: bool = False,
        now: Optional[datetime] = None,
    ) -> CommentResponse:
        comment = CommentResponse(
            content=clean_content(content),
            created_by=author,
            created_at=now or datetime.utcnow(),
            is_internal=is_internal,
        )
        self._comments.append(comment)
        return comment

    def visible_to(self, role: Any) -> list[CommentResponse]:
        if can_see_internal(role):
            return list(self._comments)
        return [c for c in self._comments if not c.is_internal]


def comment_from_row(row: Any) -> CommentResponse:
    return CommentResponse(
        id=row.id,
        content=row.content,
        created_by=CommentAuthor(name=row.author_name, role=getattr(row.author_role, "value", row.author_role)),
        created_at=row.created_at,
        is_internal=row.is_internal,
    )


def parse_legacy_thread(notes: Optional[str]) -> Optional[list[CommentResponse]]:
    """Materialize a comment thread that was serialized into ``notes``.

    Older clients stored comments as a JSON array in the notes column.
    Returns None when ``notes`` is not such a thread, i.e. it is a plain
    completion narrative.
    """
    if not notes or not notes.lstrip().startswith("["):
        return None
    try:
        entries = json.loads(notes)
    except ValueError:
        return None
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        return None

    thread = []
    for entry in entries:
        created_by = entry.get("createdBy") or {}
        if isinstance(created_by, str):
            created_by = {"name": created_by}
        created_at = entry.get("createdAt") or entry.get("createdat")
        try:
            created_at = datetime.fromisoformat(str(created_at).replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            created_at = datetime.min
        content = str(entry.get("content") or "").strip()
        if not content:
            continue
        thread.append(
            CommentResponse(
                content=content,
                created_by=CommentAuthor(
                    name=created_by.get("name") or "Unknown",
                    role=created_by.get("role") or entry.get("role") or "unknown",
                ),
                created_at=created_at,
                is_internal=bool(entry.get("isInternal", False)),
                legacy=True,
            )
        )
    logger.debug(f"[MAINTENANCE] Materialized {len(thread)} legacy comments from notes")
    return thread
