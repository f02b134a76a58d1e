"""
LTI 1.1 and dispatch launch handling.

An LTI launch moves through the stages of :class:`LaunchStage`; the first
stage that cannot be satisfied raises :class:`LaunchError` carrying the HTTP
status and the stage reached. Both handlers return the player URL the
learner is redirected to.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import RuntimeSettings
from ..models.records import CourseRecord, LaunchRecord
from ..repositories.attempt_repo import AttemptRepository, open_attempt_key
from ..repositories.consumer_repo import ConsumerNotFoundError, ConsumerRepository
from ..repositories.course_repo import CourseNotFoundError, CourseRepository
from ..repositories.dispatch_repo import DispatchTokenRepository
from . import oauth
from .xapi import XapiJob, build_statement, resolve_lrs_config

logger = logging.getLogger(__name__)

ANONYMOUS_LEARNER = "anonymous"


class LaunchStage(str, Enum):
    RECEIVED = "received"
    CONSUMER_RESOLVED = "consumer-resolved"
    SIGNATURE_VERIFIED = "signature-verified"
    COURSE_RESOLVED = "course-resolved"
    ATTEMPT_ESTABLISHED = "attempt-established"
    REDIRECTED = "redirected"


class LaunchError(Exception):
    """A launch stopped at ``stage``; ``status_code`` is the HTTP answer."""

    def __init__(self, status_code: int, message: str, stage: LaunchStage):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.stage = stage


@dataclass
class LaunchOutcome:
    attempt_id: str
    course_id: str
    learner_id: str
    redirect_url: str
    resumed: bool = False
    statement: Optional[XapiJob] = None


def player_url(
    base_url: str, attempt_id: str, course_id: str, dispatch: bool = False
) -> str:
    query = {"attemptId": attempt_id, "courseId": course_id}
    if dispatch:
        query["mode"] = "dispatch"
    return f"{base_url}/static/player.html?{urlencode(query)}"


def resolve_learner_id(params: Mapping[str, str]) -> str:
    return params.get("user_id") or params.get("lis_person_sourcedid") or ANONYMOUS_LEARNER


def _first_values(pairs: List[Tuple[str, str]]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for key, value in pairs:
        values.setdefault(key, value)
    return values


async def _resolve_course(
    courses: CourseRepository, course_id: Optional[str]
) -> CourseRecord:
    if course_id:
        try:
            return await courses.get_active(course_id)
        except CourseNotFoundError:
            raise LaunchError(404, "Course not found", LaunchStage.COURSE_RESOLVED)

    course = await courses.first_active()
    if course is None:
        raise LaunchError(404, "Course not found", LaunchStage.COURSE_RESOLVED)
    logger.warning(f"Launch without custom_course_id; defaulting to course {course.id}")
    return course


async def handle_lti_launch(
    session: AsyncSession,
    params: Iterable[Tuple[str, str]],
    settings: RuntimeSettings,
) -> LaunchOutcome:
    """
    Verify a signed LTI launch and establish (or resume) the learner's attempt.

    Args:
        session: database session for this request
        params: every form and query parameter of the launch, as pairs
        settings: configuration snapshot; ``settings.launch_url`` is the URL
            the consumer signed

    Raises:
        LaunchError: at the first stage that fails
    """
    pairs = list(params)
    values = _first_values(pairs)

    consumer_key = values.get("oauth_consumer_key")
    if not consumer_key:
        raise LaunchError(400, "Missing oauth_consumer_key", LaunchStage.RECEIVED)

    consumer = await ConsumerRepository(session).get_active_by_key(consumer_key)
    if consumer is None:
        raise LaunchError(401, "Unknown consumer", LaunchStage.CONSUMER_RESOLVED)

    if not oauth.verify(pairs, consumer.lti_consumer_secret, settings.launch_url):
        raise LaunchError(
            401, "Invalid OAuth signature", LaunchStage.SIGNATURE_VERIFIED
        )

    course = await _resolve_course(
        CourseRepository(session), values.get("custom_course_id")
    )

    # plain values; a conflicting insert rolls back and expires loaded rows
    course_id = course.id
    consumer_name = consumer.name
    learner_id = resolve_learner_id(values)
    attempts = AttemptRepository(session)
    attempt = await attempts.find_open_attempt(learner_id, course_id)
    resumed = attempt is not None
    if attempt is None:
        launch = LaunchRecord(
            consumer_id=consumer.id,
            course_id=course_id,
            user_id=learner_id,
            context_id=values.get("context_id"),
            resource_link_id=values.get("resource_link_id"),
            lis_outcome_service_url=values.get("lis_outcome_service_url"),
            lis_result_sourcedid=values.get("lis_result_sourcedid"),
            launch_data=values,
        )
        attempt, created = await attempts.establish_open_attempt(
            launch, open_attempt_key(course_id, learner_id)
        )
        resumed = not created

    logger.info(
        f"LTI launch: consumer={consumer_name} course={course_id} "
        f"learner={learner_id} attempt={attempt.id} resumed={resumed}"
    )
    return LaunchOutcome(
        attempt_id=attempt.id,
        course_id=course_id,
        learner_id=learner_id,
        redirect_url=player_url(settings.base_url, attempt.id, course_id),
        resumed=resumed,
    )


async def handle_dispatch_launch(
    session: AsyncSession,
    token: str,
    query: Mapping[str, Any],
    settings: RuntimeSettings,
) -> LaunchOutcome:
    """Start a fresh attempt for a dispatch token; never resumes."""
    dispatch = await DispatchTokenRepository(session).get_active(token)
    if dispatch is None:
        raise LaunchError(404, "Invalid dispatch token", LaunchStage.RECEIVED)

    try:
        course = await CourseRepository(session).get_active(dispatch.course_id)
    except CourseNotFoundError:
        raise LaunchError(404, "Course not found", LaunchStage.COURSE_RESOLVED)

    try:
        consumer = await ConsumerRepository(session).get(dispatch.consumer_id)
    except ConsumerNotFoundError:
        consumer = None

    query = dict(query)
    learner_id = (
        query.get("user_id")
        or query.get("session_id")
        or f"dispatch_{uuid.uuid4()}"
    )
    launch = LaunchRecord(
        consumer_id=dispatch.consumer_id,
        course_id=course.id,
        user_id=learner_id,
        launch_data={"type": "dispatch", "token": token, "query": query},
    )
    attempt = await AttemptRepository(session).create_launch_with_attempt(launch)

    statement = None
    lrs = resolve_lrs_config(consumer, settings)
    if lrs is not None:
        statement = XapiJob(
            lrs=lrs,
            statement=build_statement(
                settings.base_url, learner_id, course.id, course.title, "launched"
            ),
        )

    logger.info(
        f"Dispatch launch: course={course.id} learner={learner_id} attempt={attempt.id}"
    )
    return LaunchOutcome(
        attempt_id=attempt.id,
        course_id=course.id,
        learner_id=learner_id,
        redirect_url=player_url(
            settings.base_url, attempt.id, course.id, dispatch=True
        ),
        statement=statement,
    )
