"""
Super Actions routes.

Endpoints:
- GET /super-actions/status - Gate and training mode state, recent jobs
- POST /super-actions/preview - Affected count and confirmation requirements
- POST /super-actions - Run a Super Action
- POST /super-actions/{job_id}/undo - Restore a job's messages

Errors, including malformed request bodies (400), are returned as
{"success": false, "error": "..."} by the exception handlers in sweeper.main.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from sweeper.models.user import User
from sweeper.modules.actions.bulk import BulkActionExecutor
from sweeper.modules.actions.schemas import (
    SuperActionRequest,
    SuperActionResponse,
    PreviewResponse,
    SuperActionStatus,
    JobSummary,
)
from sweeper.modules.auth.dependencies import get_current_user, get_bulk_executor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/super-actions", tags=["super-actions"])


@router.get("/status", response_model=SuperActionStatus)
async def super_actions_status(
    executor: BulkActionExecutor = Depends(get_bulk_executor),
):
    status = await executor.get_status()
    jobs = await executor.recorder.list_jobs(limit=10)
    return SuperActionStatus(
        **status,
        recent_jobs=[JobSummary.model_validate(job) for job in jobs],
    )


@router.post("/preview", response_model=PreviewResponse, response_model_by_alias=True)
async def preview_super_action(
    body: SuperActionRequest,
    executor: BulkActionExecutor = Depends(get_bulk_executor),
):
    preview = await executor.preview(
        body.action, body.selected_email_ids, body.all_emails, days=body.days
    )
    return PreviewResponse(
        estimated_affected=preview.estimated_affected,
        senders=preview.senders,
        requires_typed_confirmation=preview.requires_typed_confirmation,
        confirm_word=preview.confirm_word,
        warning_level=preview.warning_level,
    )


@router.post(
    "",
    response_model=SuperActionResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def run_super_action(
    body: SuperActionRequest,
    user: User = Depends(get_current_user),
    executor: BulkActionExecutor = Depends(get_bulk_executor),
):
    logger.info(
        f"Super Action {body.action} requested by user {user.id}",
        extra={
            "user_id": str(user.id),
            "super_action": body.action,
            "selected_count": len(body.selected_email_ids),
            "known_count": len(body.all_emails),
        }
    )

    result = await executor.execute(
        body.action, body.selected_email_ids, body.all_emails, days=body.days
    )

    return SuperActionResponse(
        success=True,
        processed_count=result.processed_count,
        failed_count=result.failed_count,
        message=result.message,
        job_id=result.job_id,
    )


@router.post(
    "/{job_id}/undo",
    response_model=SuperActionResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def undo_super_action(
    job_id: UUID,
    executor: BulkActionExecutor = Depends(get_bulk_executor),
):
    result = await executor.undo(job_id)
    return SuperActionResponse(
        success=result.failed_count == 0,
        processed_count=result.processed_count,
        failed_count=result.failed_count,
        message=result.message,
        job_id=result.job_id,
    )
