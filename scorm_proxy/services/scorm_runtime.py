"""
SCORM runtime commit/finish.

``commit_attempt`` reconciles the CMI map posted by the player into the
attempt's normalized score and statuses, persists it, and returns the
notifications to deliver afterwards. Delivery happens in
``deliver_notifications``; neither notification can fail the commit.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import RuntimeSettings
from ..models.records import AttemptRecord
from ..repositories.attempt_repo import AttemptRepository
from .outcomes import GradePassbackError, GradePassbackJob, send_grade
from .xapi import (
    XapiDeliveryError,
    XapiJob,
    build_statement,
    cmi_timespan_to_iso8601,
    send_statement,
    resolve_lrs_config,
)

logger = logging.getLogger(__name__)

DEFAULT_SCORE_MAX = "100"


@dataclass(frozen=True)
class ScoreSummary:
    normalized: Optional[float]
    completion_status: str
    success_status: Optional[str]
    total_time: Optional[str]

    @property
    def score(self) -> Optional[float]:
        """Score on the 0-100 scale persisted on the attempt."""
        if self.normalized is None:
            return None
        return self.normalized * 100


@dataclass
class CommitResult:
    attempt_id: str
    summary: ScoreSummary
    passback: Optional[GradePassbackJob] = None
    statement: Optional[XapiJob] = None


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _first_present(cmi: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = cmi.get(key)
        if value not in (None, ""):
            return value
    return None


def summarize_cmi(cmi: Mapping[str, Any]) -> ScoreSummary:
    """Derive normalized score and statuses from SCORM 1.2 (or 2004) keys."""
    raw = _number(_first_present(cmi, "cmi.core.score.raw", "cmi.score.raw"))
    score_max = _number(
        _first_present(cmi, "cmi.core.score.max", "cmi.score.max")
        or DEFAULT_SCORE_MAX
    )

    normalized = None
    if raw is not None and score_max:
        normalized = raw / score_max
    elif raw is None:
        normalized = _number(cmi.get("cmi.score.scaled"))

    lesson_status = cmi.get("cmi.core.lesson_status")
    if lesson_status is not None:
        completion = "completed" if lesson_status in ("completed", "passed") else "incomplete"
        success = lesson_status if lesson_status in ("passed", "failed") else None
    else:
        completion_2004 = cmi.get("cmi.completion_status")
        success_2004 = cmi.get("cmi.success_status")
        completion = "completed" if completion_2004 == "completed" else "incomplete"
        success = success_2004 if success_2004 in ("passed", "failed") else None

    total_time = _first_present(cmi, "cmi.core.total_time", "cmi.total_time")
    return ScoreSummary(
        normalized=normalized,
        completion_status=completion,
        success_status=success,
        total_time=str(total_time) if total_time is not None else None,
    )


async def commit_attempt(
    session: AsyncSession,
    attempt_id: str,
    cmi: Mapping[str, Any],
    settings: RuntimeSettings,
) -> CommitResult:
    """Persist a commit and work out which notifications it triggers.

    Raises:
        AttemptNotFoundError: unknown attempt id
    """
    repo = AttemptRepository(session)
    attempt = await repo.get_with_context(attempt_id)
    launch = attempt.launch
    consumer = launch.consumer
    course = launch.course

    summary = summarize_cmi(cmi)
    await repo.save_runtime(
        attempt,
        cmi_data=cmi,
        score=summary.score,
        completion_status=summary.completion_status,
        success_status=summary.success_status,
        total_time=summary.total_time,
    )
    result = CommitResult(attempt_id=attempt.id, summary=summary)

    if (
        launch.has_outcome_service
        and summary.normalized is not None
        and consumer is not None
    ):
        result.passback = GradePassbackJob(
            consumer_key=consumer.lti_consumer_key,
            consumer_secret=consumer.lti_consumer_secret,
            service_url=launch.lis_outcome_service_url,
            sourced_id=launch.lis_result_sourcedid,
            score=summary.normalized,
        )

    if launch.is_dispatch:
        lrs = resolve_lrs_config(consumer, settings)
        if lrs is not None:
            verb = "completed" if summary.completion_status == "completed" else "progressed"
            success = None
            if summary.success_status is not None:
                success = summary.success_status == "passed"
            result.statement = XapiJob(
                lrs=lrs,
                statement=build_statement(
                    settings.base_url,
                    launch.user_id,
                    course.id,
                    course.title,
                    verb,
                    score=summary.normalized,
                    success=success,
                    duration=cmi_timespan_to_iso8601(summary.total_time),
                ),
            )

    logger.info(
        f"Attempt {attempt_id} committed: {summary.completion_status}, "
        f"score={summary.score}"
    )
    return result


async def finish_attempt(session: AsyncSession, attempt_id: str) -> AttemptRecord:
    attempt = await AttemptRepository(session).finish(attempt_id)
    logger.info(f"Attempt {attempt_id} finished")
    return attempt


async def _passback_best_effort(
    client: httpx.AsyncClient, job: GradePassbackJob
) -> None:
    try:
        await send_grade(client, job)
    except GradePassbackError as e:
        logger.error(f"Grade passback error: {e}")
    except Exception as e:
        logger.error(f"Unexpected grade passback error: {e}", exc_info=True)


async def _statement_best_effort(client: httpx.AsyncClient, job: XapiJob) -> None:
    try:
        await send_statement(client, job)
    except XapiDeliveryError as e:
        logger.error(f"xAPI statement error: {e}")
    except Exception as e:
        logger.error(f"Unexpected xAPI statement error: {e}", exc_info=True)


async def deliver_notifications(
    timeout: float,
    passback: Optional[GradePassbackJob] = None,
    statement: Optional[XapiJob] = None,
) -> None:
    """Send the grade and the statement concurrently; failures are logged."""
    if passback is None and statement is None:
        return
    async with httpx.AsyncClient(timeout=timeout) as client:
        tasks = []
        if passback is not None:
            tasks.append(_passback_best_effort(client, passback))
        if statement is not None:
            tasks.append(_statement_best_effort(client, statement))
        await asyncio.gather(*tasks, return_exceptions=True)
