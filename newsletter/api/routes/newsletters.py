"""POST /admin/newsletters: publish an issue to confirmed subscribers."""
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Form, HTTPException
from fastapi.responses import Response

from newsletter.api.auth import get_current_user_id
from newsletter.api.deps import get_publish_service
from newsletter.core.errors import InvalidIdempotencyKeyError, PublishValidationError, StoreError
from newsletter.domain.issue import IssueContent
from newsletter.idempotency.key import IdempotencyKey
from newsletter.publishing.service import PublishService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/newsletters", tags=["newsletters"])


@router.post("", summary="Publish a newsletter issue")
def publish_newsletter(
    title: str | None = Form(default=None),
    html_content: str | None = Form(default=None),
    text_content: str | None = Form(default=None),
    idempotency_key: str | None = Form(default=None),
    user_id: UUID = Depends(get_current_user_id),
    service: PublishService = Depends(get_publish_service),
) -> Response:
    try:
        content = IssueContent.parse(title, html_content, text_content)
        key = IdempotencyKey.parse(idempotency_key)
    except (PublishValidationError, InvalidIdempotencyKeyError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        saved = service.publish(content, key, user_id)
    except StoreError:
        logger.exception("Publishing failed for user %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to publish the newsletter issue")

    return saved.to_response()
