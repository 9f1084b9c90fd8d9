"""Read side of the issue store used by the delivery worker."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from newsletter.core.errors import IssueNotFoundError, StoreError
from newsletter.db.repositories import NewsletterIssueRepository
from newsletter.domain.issue import IssueContent


class IssueStore:
    """Resolve issue content by id on a short-lived session of its own."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, issue_id: UUID) -> IssueContent:
        try:
            with self._session_factory() as db:
                issue = NewsletterIssueRepository(db).get(issue_id)
                if issue is None:
                    raise IssueNotFoundError(f"Newsletter issue {issue_id} not found")
                content = IssueContent(
                    title=issue.title,
                    html_content=issue.html_content,
                    text_content=issue.text_content,
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load newsletter issue {issue_id}") from exc
        return content
