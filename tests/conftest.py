"""
Pytest configuration and fixtures for the proxy tests
"""

import io
import os
import tempfile
import zipfile
from typing import Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Set test environment before the app module is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["CONTENT_DIR"] = tempfile.mkdtemp(prefix="scorm-content-")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_proxy.db"

from scorm_proxy.config import RuntimeSettings, get_settings, settings_store
from scorm_proxy.db.config import get_session
from scorm_proxy.main import app
from scorm_proxy.models.records import Base, ConsumerRecord, CourseRecord
from scorm_proxy.services import oauth

BASE_URL = "https://host"
LAUNCH_URL = f"{BASE_URL}/lti/launch"
CONSUMER_KEY = "key_abc"
CONSUMER_SECRET = "s3cr3t"
ADMIN_AUTH = ("admin", "test-password")

MANIFEST_12 = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="com.example.intro" version="1.0"
    xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2"
    xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_rootv1p2">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>1.2</schemaversion>
  </metadata>
  <organizations default="org1">
    <organization identifier="org1">
      <title>Intro to Safety</title>
      <item identifier="item1" identifierref="res1">
        <title>Lesson 1</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="res1" type="webcontent" adlcp:scormtype="sco" href="lesson1/index.html">
      <file href="lesson1/index.html"/>
    </resource>
  </resources>
</manifest>
"""


@pytest.fixture
def settings(tmp_path):
    """Swap a test snapshot into the settings store for one test"""
    snapshot = RuntimeSettings(
        base_url=BASE_URL,
        content_dir=str(tmp_path / "content"),
        upload_dir=str(tmp_path / "uploads"),
        upload_max_bytes=5 * 1024 * 1024,
        outbound_timeout=2.0,
        admin_username=ADMIN_AUTH[0],
        admin_password=ADMIN_AUTH[1],
        environment="test",
    )
    previous = settings_store.swap(snapshot)
    yield snapshot
    settings_store.swap(previous)


@pytest.fixture
async def session_factory(tmp_path):
    """Fresh SQLite file per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def test_app(session_factory, settings):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_settings] = lambda: settings_store.current

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def consumer(session) -> ConsumerRecord:
    return await create_consumer(session)


@pytest.fixture
async def course(session, tmp_path) -> CourseRecord:
    return await create_course(session, content_path=str(tmp_path / "content" / "c1"))


# Helper functions for tests
async def create_consumer(
    session: AsyncSession,
    key: str = CONSUMER_KEY,
    secret: str = CONSUMER_SECRET,
    name: str = "Test LMS",
    **fields,
) -> ConsumerRecord:
    record = ConsumerRecord(
        name=name, lti_consumer_key=key, lti_consumer_secret=secret, **fields
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


async def create_course(
    session: AsyncSession,
    title: str = "Intro to Safety",
    content_path: str = "content/c1",
    active: bool = True,
) -> CourseRecord:
    record = CourseRecord(
        title=title,
        scorm_version="1.2",
        launch_path="lesson1/index.html",
        manifest_data={"title": title},
        content_path=content_path,
        active=active,
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record


def sign_launch(
    params: Dict[str, str],
    key: str = CONSUMER_KEY,
    secret: str = CONSUMER_SECRET,
    url: str = LAUNCH_URL,
) -> Dict[str, str]:
    """Add oauth_* parameters and a valid HMAC-SHA1 signature"""
    signed = dict(params)
    signed.update(oauth.generate_oauth_params(key))
    signed["oauth_signature"] = oauth.sign_request("POST", url, signed, secret)
    return signed


def build_zip(files: Dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def build_scorm_zip(manifest: Optional[str] = MANIFEST_12) -> bytes:
    files = {"lesson1/index.html": "<html><body>Lesson</body></html>"}
    if manifest is not None:
        files["imsmanifest.xml"] = manifest
    return build_zip(files)


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
