"""
Administration API: consumers, course packages, dispatch packages, reporting
and live settings.

Every route requires the HTTP Basic credentials configured through
``ADMIN_USERNAME`` / ``ADMIN_PASSWORD``.
"""

import asyncio
import logging
import secrets
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
import httpx
from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    UploadFile,
    status,
)
from fastapi.responses import Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.config import RuntimeSettings, get_settings, settings_store
from scorm_proxy.db.config import get_session
from scorm_proxy.models.records import ConsumerRecord, CourseRecord
from scorm_proxy.models.schemas import ConsumerCreate, SettingsUpdate
from scorm_proxy.repositories.attempt_repo import AttemptRepository
from scorm_proxy.repositories.consumer_repo import (
    ConsumerNotFoundError,
    ConsumerRepository,
)
from scorm_proxy.repositories.course_repo import (
    CourseNotFoundError,
    CourseRepository,
)
from scorm_proxy.repositories.dispatch_repo import DispatchTokenRepository
from scorm_proxy.repositories.settings_repo import SettingsRepository
from scorm_proxy.services.dispatch_package import dispatch_filename, dispatch_service
from scorm_proxy.services.manifest import (
    DEFAULT_TITLE,
    InvalidPackageError,
    content_dir_for,
    ingest_package,
    remove_content_dir,
)
from scorm_proxy.services.xapi import (
    XapiDeliveryError,
    fetch_statements,
    resolve_lrs_config,
)

logger = logging.getLogger(__name__)

security = HTTPBasic()

CHUNK_SIZE = 1024 * 1024


def require_admin(
    credentials: HTTPBasicCredentials = Depends(security),
    settings: RuntimeSettings = Depends(get_settings),
) -> str:
    valid_user = secrets.compare_digest(
        credentials.username.encode("utf-8"), settings.admin_username.encode("utf-8")
    )
    valid_password = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.admin_password.encode("utf-8")
    )
    if not (valid_user and valid_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


router = APIRouter(
    prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)]
)


# Helpers ------------------------------------------------------------------


def _dispatch_launch_url(settings: RuntimeSettings, token: str) -> str:
    return f"{settings.base_url}/dispatch/launch/{token}"


async def _save_upload(upload: UploadFile, settings: RuntimeSettings) -> Path:
    """Stream the upload to the upload directory, enforcing the size limit."""
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    upload_path = upload_dir / f"{uuid.uuid4()}.zip"

    written = 0
    try:
        async with aiofiles.open(upload_path, "wb") as f:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > settings.upload_max_bytes:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=(
                            "Package exceeds maximum allowed size "
                            f"({settings.upload_max_bytes} bytes)"
                        ),
                    )
                await f.write(chunk)
    except HTTPException:
        await _discard_upload(upload_path)
        raise

    logger.info(f"Saved upload {upload.filename} ({written} bytes) to {upload_path}")
    return upload_path


async def _discard_upload(upload_path: Path) -> None:
    try:
        await aiofiles.os.remove(upload_path)
    except FileNotFoundError:
        pass


async def _ingest_upload(upload: UploadFile, target_dir: Path, settings: RuntimeSettings):
    upload_path = await _save_upload(upload, settings)
    try:
        return await asyncio.to_thread(ingest_package, upload_path, target_dir)
    except InvalidPackageError as e:
        logger.warning(f"Rejected package {upload.filename}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        await _discard_upload(upload_path)


async def _get_consumer(session: AsyncSession, consumer_id: str) -> ConsumerRecord:
    try:
        return await ConsumerRepository(session).get(consumer_id)
    except ConsumerNotFoundError:
        raise HTTPException(status_code=404, detail="Consumer not found")


async def _get_active_consumer(session: AsyncSession, consumer_id: str) -> ConsumerRecord:
    try:
        return await ConsumerRepository(session).get_active(consumer_id)
    except ConsumerNotFoundError:
        raise HTTPException(status_code=404, detail="Consumer not found")


async def _get_active_course(session: AsyncSession, course_id: str) -> CourseRecord:
    try:
        return await CourseRepository(session).get_active(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="Course not found")


# Consumers ----------------------------------------------------------------


@router.get("/consumers")
async def list_consumers(session: AsyncSession = Depends(get_session)):
    consumers = await ConsumerRepository(session).list()
    return [c.to_dict() for c in consumers]


@router.post("/consumers", status_code=status.HTTP_201_CREATED)
async def create_consumer(
    payload: ConsumerCreate,
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    consumer = await ConsumerRepository(session).create(
        name=payload.name,
        xapi_lrs_endpoint=payload.xapiLrsEndpoint,
        xapi_lrs_key=payload.xapiLrsKey,
        xapi_lrs_secret=payload.xapiLrsSecret,
    )
    logger.info(f"Created consumer {consumer.name} ({consumer.lti_consumer_key})")
    data = consumer.to_dict(include_secret=True)
    data["ltiLaunchUrl"] = settings.launch_url
    return data


@router.get("/consumers/{consumer_id}")
async def get_consumer(
    consumer_id: str,
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    consumer = await _get_consumer(session, consumer_id)
    data = consumer.to_dict(include_secret=True)
    data["ltiLaunchUrl"] = settings.launch_url
    return data


@router.delete("/consumers/{consumer_id}")
async def deactivate_consumer(
    consumer_id: str, session: AsyncSession = Depends(get_session)
):
    try:
        await ConsumerRepository(session).deactivate(consumer_id)
    except ConsumerNotFoundError:
        raise HTTPException(status_code=404, detail="Consumer not found")
    return {"success": True}


# Courses ------------------------------------------------------------------


@router.get("/courses")
async def list_courses(session: AsyncSession = Depends(get_session)):
    courses = await CourseRepository(session).list()
    return [c.to_dict() for c in courses]


@router.post("/courses", status_code=status.HTTP_201_CREATED)
async def upload_course(
    package: UploadFile = File(..., description="SCORM zip package"),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    """Upload, extract and register a SCORM package."""
    course_id = str(uuid.uuid4())
    content_path = content_dir_for(settings.content_dir, course_id)
    manifest = await _ingest_upload(package, content_path, settings)

    try:
        course = await CourseRepository(session).create(
            course_id=course_id,
            title=title or manifest.title or DEFAULT_TITLE,
            manifest=manifest,
            content_path=str(content_path),
            description=description,
        )
    except Exception:
        await asyncio.to_thread(remove_content_dir, content_path)
        raise
    logger.info(f"Registered course {course.id} '{course.title}'")
    return course.to_dict()


@router.get("/courses/{course_id}")
async def get_course(course_id: str, session: AsyncSession = Depends(get_session)):
    try:
        course = await CourseRepository(session).get(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="Course not found")
    return course.to_dict(include_manifest=True)


@router.put("/courses/{course_id}/package")
async def replace_course_package(
    course_id: str,
    package: UploadFile = File(..., description="SCORM zip package"),
    title: Optional[str] = Form(None),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    """Swap a course's content for a new package, keeping its id."""
    repo = CourseRepository(session)
    try:
        course = await repo.get(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="Course not found")
    old_content_path = course.content_path

    content_path = content_dir_for(
        settings.content_dir, f"{course_id}-{uuid.uuid4().hex[:8]}"
    )
    manifest = await _ingest_upload(package, content_path, settings)

    course = await repo.replace_content(
        course_id, manifest, str(content_path), title=title
    )
    await asyncio.to_thread(remove_content_dir, old_content_path)
    logger.info(f"Replaced package of course {course_id}")
    return course.to_dict()


@router.delete("/courses/{course_id}")
async def delete_course(course_id: str, session: AsyncSession = Depends(get_session)):
    try:
        await CourseRepository(session).deactivate(course_id)
    except CourseNotFoundError:
        raise HTTPException(status_code=404, detail="Course not found")
    return {"success": True}


# Dispatch -----------------------------------------------------------------


@router.get("/dispatch/{course_id}")
async def dispatch_info(
    course_id: str,
    consumerId: str = Query(..., description="Consumer the package is issued to"),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    course = await _get_active_course(session, course_id)
    consumer = await _get_active_consumer(session, consumerId)
    token = await DispatchTokenRepository(session).get_or_create(consumer.id, course.id)
    return {
        "courseId": course.id,
        "courseTitle": course.title,
        "dispatchToken": token.token,
        "launchUrl": _dispatch_launch_url(settings, token.token),
        "downloadUrl": (
            f"{settings.base_url}/api/v1/admin/dispatch/{course.id}/download"
            f"?consumerId={consumer.id}"
        ),
    }


@router.get("/dispatch/{course_id}/download")
async def download_dispatch_package(
    course_id: str,
    consumerId: str = Query(..., description="Consumer the package is issued to"),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    course = await _get_active_course(session, course_id)
    consumer = await _get_active_consumer(session, consumerId)

    token = await DispatchTokenRepository(session).get_or_create(consumer.id, course.id)
    package = dispatch_service.generate(
        course.title, _dispatch_launch_url(settings, token.token)
    )
    filename = dispatch_filename(course.title)
    return Response(
        content=package,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# Reporting ----------------------------------------------------------------


@router.get("/stats")
async def stats(session: AsyncSession = Depends(get_session)):
    return await AttemptRepository(session).stats()


@router.get("/launches")
async def recent_launches(
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> List[Dict[str, Any]]:
    return await AttemptRepository(session).list_recent_launches(limit)


@router.get("/xapi/statements")
async def xapi_statements(
    userId: str = Query(...),
    courseId: str = Query(...),
    consumerId: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    settings: RuntimeSettings = Depends(get_settings),
):
    consumer = await _get_consumer(session, consumerId) if consumerId else None
    lrs = resolve_lrs_config(consumer, settings)
    try:
        async with httpx.AsyncClient(timeout=settings.outbound_timeout) as client:
            statements = await fetch_statements(
                client, lrs, settings.base_url, userId, courseId
            )
    except XapiDeliveryError as e:
        logger.error(f"xAPI query error: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"statements": statements}


# Settings -----------------------------------------------------------------


def _settings_payload(settings: RuntimeSettings) -> Dict[str, str]:
    return {
        "baseUrl": settings.base_url,
        "launchUrl": settings.launch_url,
        "xapiEndpoint": settings.xapi_endpoint,
        "xapiKey": settings.xapi_key,
        "xapiSecret": settings.xapi_secret,
    }


@router.get("/settings")
async def get_live_settings(settings: RuntimeSettings = Depends(get_settings)):
    return _settings_payload(settings)


@router.put("/settings")
async def update_live_settings(
    payload: SettingsUpdate, session: AsyncSession = Depends(get_session)
):
    changes = {
        "base_url": payload.baseUrl.rstrip("/") if payload.baseUrl else None,
        "xapi_endpoint": payload.xapiEndpoint,
        "xapi_key": payload.xapiKey,
        "xapi_secret": payload.xapiSecret,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    await SettingsRepository(session).save(changes)
    snapshot = settings_store.update(changes)
    logger.info(f"Live settings updated: {', '.join(sorted(changes)) or 'none'}")
    return _settings_payload(snapshot)
