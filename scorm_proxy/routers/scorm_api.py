"""SCORM runtime API used by the player: resume data, commit and finish."""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.config import RuntimeSettings, get_settings
from scorm_proxy.db.config import get_session
from scorm_proxy.models.schemas import CommitResponse
from scorm_proxy.repositories.attempt_repo import (
    AttemptNotFoundError,
    AttemptRepository,
)
from scorm_proxy.repositories.course_repo import (
    CourseNotFoundError,
    CourseRepository,
)
from scorm_proxy.services.scorm_runtime import (
    commit_attempt,
    deliver_notifications,
    finish_attempt,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scorm", tags=["SCORM Runtime"])


@router.get("/attempt/{attempt_id}")
async def get_attempt(attempt_id: str, session: AsyncSession = Depends(get_session)):
    try:
        attempt = await AttemptRepository(session).get(attempt_id)
    except AttemptNotFoundError:
        raise HTTPException(status_code=404, detail="Attempt not found")
    return {
        "id": attempt.id,
        "cmiData": attempt.cmi_data or {},
        "completionStatus": attempt.completion_status,
        "score": attempt.score,
    }


@router.get("/course/{course_id}")
async def get_course(course_id: str, session: AsyncSession = Depends(get_session)):
    try:
        course = await CourseRepository(session).get_active(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="Course not found")
    data = course.to_dict()
    data["contentUrl"] = f"/content/{Path(course.content_path).name}/{course.launch_path}"
    return data


@router.post("/attempt/{attempt_id}/commit", response_model=CommitResponse)
async def commit(
    attempt_id: str,
    background_tasks: BackgroundTasks,
    cmi: Dict[str, Any] = Body(..., description="CMI key/value map"),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    """Persist CMI data; grade passback and xAPI run after the response."""
    try:
        result = await commit_attempt(session, attempt_id, cmi, settings)
    except AttemptNotFoundError:
        raise HTTPException(status_code=404, detail="Attempt not found")

    if result.passback is not None or result.statement is not None:
        background_tasks.add_task(
            deliver_notifications,
            settings.outbound_timeout,
            passback=result.passback,
            statement=result.statement,
        )

    return CommitResponse(
        score=result.summary.score,
        completionStatus=result.summary.completion_status,
        successStatus=result.summary.success_status,
    )


@router.post("/attempt/{attempt_id}/finish")
async def finish(attempt_id: str, session: AsyncSession = Depends(get_session)):
    try:
        attempt = await finish_attempt(session, attempt_id)
    except AttemptNotFoundError:
        raise HTTPException(status_code=404, detail="Attempt not found")
    return {"success": True, "finishedAt": attempt.finished_at.isoformat()}
