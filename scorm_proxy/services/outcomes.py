"""
LTI 1.1 Basic Outcomes grade passback.

Sends a ``replaceResultRequest`` POX envelope to the LMS outcome service,
signed with OAuth 1.0a including ``oauth_body_hash``. Callers treat a
:class:`GradePassbackError` as best-effort: it is logged, never shown to the
learner.
"""

import logging
import time
import urllib.parse
import uuid
from dataclasses import dataclass
from xml.sax.saxutils import escape

import httpx

from . import oauth

logger = logging.getLogger(__name__)

SUCCESS_MARKER = "<imsx_codeMajor>success</imsx_codeMajor>"
_XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

REPLACE_RESULT_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<imsx_POXEnvelopeRequest xmlns="http://www.imsglobal.org/services/ltiv1p1/xsd/imsoms_v1p0">
  <imsx_POXHeader>
    <imsx_POXRequestHeaderInfo>
      <imsx_version>V1.0</imsx_version>
      <imsx_messageIdentifier>{message_id}</imsx_messageIdentifier>
    </imsx_POXRequestHeaderInfo>
  </imsx_POXHeader>
  <imsx_POXBody>
    <replaceResultRequest>
      <resultRecord>
        <sourcedGUID>
          <sourcedId>{sourced_id}</sourcedId>
        </sourcedGUID>
        <result>
          <resultScore>
            <language>en</language>
            <textString>{score}</textString>
          </resultScore>
        </result>
      </resultRecord>
    </replaceResultRequest>
  </imsx_POXBody>
</imsx_POXEnvelopeRequest>"""


class GradePassbackError(Exception):
    """Raised when the outcome service fails or rejects a grade."""


@dataclass(frozen=True)
class GradePassbackJob:
    """Everything needed to deliver one grade without touching the database."""
    consumer_key: str
    consumer_secret: str
    service_url: str
    sourced_id: str
    score: float


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def build_replace_result_xml(sourced_id: str, score: float, message_id: str) -> str:
    clamped = max(0.0, min(1.0, score))
    return REPLACE_RESULT_TEMPLATE.format(
        message_id=escape(message_id, _XML_ENTITIES),
        sourced_id=escape(sourced_id, _XML_ENTITIES),
        score=f"{clamped:.2f}",
    )


def build_signed_headers(job: GradePassbackJob, body: str) -> dict:
    """Content-Type and OAuth ``Authorization`` headers for the POX body."""
    params = oauth.generate_oauth_params(job.consumer_key)
    params["oauth_body_hash"] = oauth.body_hash(body)

    # Query parameters of the service URL are signed but not sent in the header
    query_pairs = urllib.parse.parse_qsl(
        urllib.parse.urlsplit(job.service_url).query, keep_blank_values=True
    )
    params["oauth_signature"] = oauth.sign_request(
        "POST",
        job.service_url,
        list(params.items()) + query_pairs,
        job.consumer_secret,
    )
    return {
        "Content-Type": "application/xml",
        "Authorization": oauth.authorization_header(params),
    }


async def send_grade(client: httpx.AsyncClient, job: GradePassbackJob) -> None:
    """POST the grade to the outcome service.

    Raises:
        GradePassbackError: the outcome URL cannot be signed, the request
            fails, or the service does not answer with the success code
    """
    body = build_replace_result_xml(job.sourced_id, job.score, new_message_id())
    try:
        headers = build_signed_headers(job, body)
    except ValueError as e:
        raise GradePassbackError(f"Grade passback failed: {e}") from e

    try:
        response = await client.post(
            job.service_url, content=body.encode("utf-8"), headers=headers
        )
    except httpx.HTTPError as e:
        raise GradePassbackError(f"Grade passback failed: {e}") from e

    if not response.is_success:
        raise GradePassbackError(
            f"Grade passback failed: {response.status_code} - {response.text}"
        )
    if SUCCESS_MARKER not in response.text:
        raise GradePassbackError(f"Grade passback rejected: {response.text}")

    logger.info(f"Grade {job.score:.2f} sent for sourcedid {job.sourced_id}")
