"""
Experience API (xAPI) reporting for dispatch launches.

Statements go to the consumer's own LRS when it has one configured, otherwise
to the process-wide LRS from the settings snapshot. With no LRS at all
reporting is skipped silently.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..config import RuntimeSettings
from ..models.records import ConsumerRecord

logger = logging.getLogger(__name__)

XAPI_VERSION = "1.0.3"
COURSE_ACTIVITY_TYPE = "http://adlnet.gov/expapi/activities/course"

# ADL verb vocabulary
VERBS: Dict[str, str] = {
    "launched": "http://adlnet.gov/expapi/verbs/launched",
    "completed": "http://adlnet.gov/expapi/verbs/completed",
    "progressed": "http://adlnet.gov/expapi/verbs/progressed",
    "passed": "http://adlnet.gov/expapi/verbs/passed",
    "failed": "http://adlnet.gov/expapi/verbs/failed",
    "scored": "http://adlnet.gov/expapi/verbs/scored",
}

_CMI_TIMESPAN = re.compile(r"^(\d{2,4}):(\d{2}):(\d{2})(\.\d{1,2})?$")


class XapiDeliveryError(Exception):
    """Raised when the LRS refuses or cannot be reached."""


@dataclass(frozen=True)
class LrsConfig:
    endpoint: str
    key: str
    secret: str

    @property
    def statements_url(self) -> str:
        return f"{self.endpoint.rstrip('/')}/statements"


@dataclass(frozen=True)
class XapiJob:
    lrs: LrsConfig
    statement: Dict[str, Any]


def resolve_lrs_config(
    consumer: Optional[ConsumerRecord], settings: RuntimeSettings
) -> Optional[LrsConfig]:
    """Consumer-specific LRS if its endpoint is set, else the default one."""
    if consumer is not None and consumer.xapi_lrs_endpoint:
        return LrsConfig(
            endpoint=consumer.xapi_lrs_endpoint,
            key=consumer.xapi_lrs_key or "",
            secret=consumer.xapi_lrs_secret or "",
        )
    if settings.xapi_endpoint:
        return LrsConfig(
            endpoint=settings.xapi_endpoint,
            key=settings.xapi_key,
            secret=settings.xapi_secret,
        )
    return None


def activity_id(base_url: str, course_id: str) -> str:
    return f"{base_url}/course/{course_id}"


def cmi_timespan_to_iso8601(value: Optional[str]) -> Optional[str]:
    """SCORM 1.2 ``HHHH:MM:SS.SS`` to an ISO 8601 duration.

    Values that already look like ISO durations (SCORM 2004) pass through;
    anything else yields ``None``.
    """
    if not value:
        return None
    value = value.strip()
    if value.startswith("P"):
        return value
    match = _CMI_TIMESPAN.match(value)
    if not match:
        return None
    hours, minutes, seconds, fraction = match.groups()
    secs = f"{int(seconds)}{fraction or ''}"
    return f"PT{int(hours)}H{int(minutes)}M{secs}S"


def build_statement(
    base_url: str,
    learner_id: str,
    course_id: str,
    course_title: str,
    verb: str,
    score: Optional[float] = None,
    success: Optional[bool] = None,
    duration: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Dict[str, Any]:
    if verb not in VERBS:
        raise ValueError(f"Unknown xAPI verb: {verb}")

    statement: Dict[str, Any] = {
        "actor": {
            "objectType": "Agent",
            "account": {"homePage": base_url, "name": learner_id},
        },
        "verb": {"id": VERBS[verb], "display": {"en-US": verb}},
        "object": {
            "objectType": "Activity",
            "id": activity_id(base_url, course_id),
            "definition": {
                "type": COURSE_ACTIVITY_TYPE,
                "name": {"en-US": course_title},
            },
        },
        "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
    }

    result: Dict[str, Any] = {}
    if score is not None:
        result["score"] = {
            "scaled": score,
            "raw": round(score * 100),
            "min": 0,
            "max": 100,
        }
    if success is not None:
        result["success"] = success
    if verb == "completed":
        result["completion"] = True
    if duration:
        result["duration"] = duration
    if result:
        statement["result"] = result

    return statement


def _headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "X-Experience-API-Version": XAPI_VERSION,
    }


async def send_statement(client: httpx.AsyncClient, job: XapiJob) -> None:
    """POST one statement to ``{endpoint}/statements``."""
    try:
        response = await client.post(
            job.lrs.statements_url,
            content=json.dumps(job.statement).encode("utf-8"),
            headers=_headers(),
            auth=(job.lrs.key, job.lrs.secret),
        )
    except httpx.HTTPError as e:
        raise XapiDeliveryError(f"xAPI statement failed: {e}") from e

    if not response.is_success:
        raise XapiDeliveryError(
            f"xAPI statement failed: {response.status_code} - {response.text}"
        )

    verb = job.statement["verb"]["display"]["en-US"]
    learner = job.statement["actor"]["account"]["name"]
    logger.info(f"xAPI statement sent: {verb} for user {learner}")


async def fetch_statements(
    client: httpx.AsyncClient,
    lrs: Optional[LrsConfig],
    base_url: str,
    learner_id: str,
    course_id: str,
) -> List[Dict[str, Any]]:
    """Statements the LRS holds about one learner in one course."""
    if lrs is None:
        return []

    agent = json.dumps({"account": {"homePage": base_url, "name": learner_id}})
    try:
        response = await client.get(
            lrs.statements_url,
            params={"activity": activity_id(base_url, course_id), "agent": agent},
            headers={"X-Experience-API-Version": XAPI_VERSION},
            auth=(lrs.key, lrs.secret),
        )
    except httpx.HTTPError as e:
        raise XapiDeliveryError(f"xAPI query failed: {e}") from e

    if not response.is_success:
        raise XapiDeliveryError(f"xAPI query failed: {response.status_code}")
    try:
        payload = response.json()
    except ValueError as e:
        raise XapiDeliveryError(f"xAPI query failed: invalid JSON response ({e})") from e
    if not isinstance(payload, dict):
        raise XapiDeliveryError("xAPI query failed: unexpected response shape")
    return payload.get("statements") or []
