"""SCORM runtime API tests: resume data, commit normalization, finish"""

import pytest

from scorm_proxy.models.records import LaunchRecord
from scorm_proxy.repositories.attempt_repo import AttemptRepository
from scorm_proxy.services import scorm_runtime
from scorm_proxy.services.outcomes import GradePassbackError, GradePassbackJob
from scorm_proxy.services.scorm_runtime import summarize_cmi
from scorm_proxy.services.xapi import LrsConfig, XapiDeliveryError, XapiJob, build_statement

from conftest import create_consumer


@pytest.fixture
def deliveries(monkeypatch):
    """Record grade passback and xAPI calls instead of sending them"""
    calls = {"grades": [], "statements": []}

    async def fake_grade(client, job):
        calls["grades"].append(job)

    async def fake_statement(client, job):
        calls["statements"].append(job)

    monkeypatch.setattr(scorm_runtime, "send_grade", fake_grade)
    monkeypatch.setattr(scorm_runtime, "send_statement", fake_statement)
    return calls


async def _attempt(session, consumer, course, **launch_fields) -> str:
    launch = LaunchRecord(
        consumer_id=consumer.id,
        course_id=course.id,
        user_id=launch_fields.pop("user_id", "learner-1"),
        **launch_fields,
    )
    attempt = await AttemptRepository(session).create_launch_with_attempt(launch)
    return attempt.id


class TestSummarizeCmi:
    def test_passed_with_score(self):
        summary = summarize_cmi({
            "cmi.core.score.raw": "80",
            "cmi.core.score.max": "100",
            "cmi.core.lesson_status": "passed",
        })
        assert summary.normalized == pytest.approx(0.8)
        assert summary.score == pytest.approx(80)
        assert summary.completion_status == "completed"
        assert summary.success_status == "passed"

    def test_max_defaults_to_100(self):
        summary = summarize_cmi({"cmi.core.score.raw": "45"})
        assert summary.normalized == pytest.approx(0.45)

    def test_custom_max(self):
        summary = summarize_cmi({"cmi.core.score.raw": "15", "cmi.core.score.max": "20"})
        assert summary.score == pytest.approx(75)

    @pytest.mark.parametrize("raw, score_max", [("abc", "100"), ("10", "0"), ("nan", "100")])
    def test_unusable_score_is_null(self, raw, score_max):
        summary = summarize_cmi({"cmi.core.score.raw": raw, "cmi.core.score.max": score_max})
        assert summary.normalized is None
        assert summary.score is None

    @pytest.mark.parametrize("status, completion, success", [
        ("completed", "completed", None),
        ("passed", "completed", "passed"),
        ("failed", "incomplete", "failed"),
        ("incomplete", "incomplete", None),
        ("browsed", "incomplete", None),
    ])
    def test_lesson_status_mapping(self, status, completion, success):
        summary = summarize_cmi({"cmi.core.lesson_status": status})
        assert summary.completion_status == completion
        assert summary.success_status == success

    def test_scorm_2004_keys(self):
        summary = summarize_cmi({
            "cmi.score.raw": "9",
            "cmi.score.max": "10",
            "cmi.completion_status": "completed",
            "cmi.success_status": "failed",
            "cmi.total_time": "PT1M",
        })
        assert summary.normalized == pytest.approx(0.9)
        assert summary.completion_status == "completed"
        assert summary.success_status == "failed"
        assert summary.total_time == "PT1M"

    def test_scorm_2004_scaled_score(self):
        assert summarize_cmi({"cmi.score.scaled": "0.5"}).normalized == pytest.approx(0.5)


class TestCommitEndpoint:
    async def test_commit_persists_normalized_score(self, client, session, consumer, course, deliveries):
        attempt_id = await _attempt(session, consumer, course)
        r = await client.post(f"/api/scorm/attempt/{attempt_id}/commit", json={
            "cmi.core.score.raw": "80",
            "cmi.core.score.max": "100",
            "cmi.core.lesson_status": "passed",
            "cmi.suspend_data": "page=3",
        })
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["success"] is True
        assert body["score"] == pytest.approx(80)
        assert body["completionStatus"] == "completed"
        assert body["successStatus"] == "passed"

        r = await client.get(f"/api/scorm/attempt/{attempt_id}")
        data = r.json()
        assert data["score"] == pytest.approx(80)
        assert data["completionStatus"] == "completed"
        assert data["cmiData"]["cmi.suspend_data"] == "page=3"

    async def test_incomplete_without_score_sends_nothing(
        self, client, session, consumer, course, deliveries
    ):
        attempt_id = await _attempt(
            session, consumer, course,
            lis_outcome_service_url="https://lms/outcomes",
            lis_result_sourcedid="src-1",
        )
        r = await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.lesson_status": "incomplete"},
        )
        assert r.status_code == 200
        assert r.json()["score"] is None
        assert r.json()["completionStatus"] == "incomplete"
        assert deliveries == {"grades": [], "statements": []}

    async def test_grade_passback_with_outcome_service(
        self, client, session, consumer, course, deliveries
    ):
        attempt_id = await _attempt(
            session, consumer, course,
            lis_outcome_service_url="https://lms/outcomes",
            lis_result_sourcedid="src-1",
        )
        await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.score.raw": "7", "cmi.core.score.max": "10"},
        )
        assert len(deliveries["grades"]) == 1
        job = deliveries["grades"][0]
        assert job.score == pytest.approx(0.7)
        assert job.sourced_id == "src-1"
        assert job.consumer_key == consumer.lti_consumer_key
        assert deliveries["statements"] == []

    async def test_no_passback_without_sourcedid(self, client, session, consumer, course, deliveries):
        attempt_id = await _attempt(
            session, consumer, course, lis_outcome_service_url="https://lms/outcomes"
        )
        await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit", json={"cmi.core.score.raw": "7"}
        )
        assert deliveries["grades"] == []

    async def test_dispatch_commit_reports_xapi(self, client, session, course, deliveries):
        consumer = await create_consumer(
            session, key="key_lrs", xapi_lrs_endpoint="https://lrs.example/xapi",
            xapi_lrs_key="k", xapi_lrs_secret="s",
        )
        attempt_id = await _attempt(
            session, consumer, course, user_id="u1",
            launch_data={"type": "dispatch", "token": "t", "query": {}},
        )
        await client.post(f"/api/scorm/attempt/{attempt_id}/commit", json={
            "cmi.core.lesson_status": "passed",
            "cmi.core.score.raw": "90",
            "cmi.core.total_time": "0001:02:03.5",
        })
        assert deliveries["grades"] == []
        statement = deliveries["statements"][0].statement
        assert statement["verb"]["display"]["en-US"] == "completed"
        assert statement["actor"]["account"] == {"homePage": "https://host", "name": "u1"}
        assert statement["object"]["id"] == f"https://host/course/{course.id}"
        assert statement["result"]["score"]["scaled"] == pytest.approx(0.9)
        assert statement["result"]["success"] is True
        assert statement["result"]["completion"] is True
        assert statement["result"]["duration"] == "PT1H2M3.5S"

    async def test_dispatch_progress_uses_progressed_verb(self, client, session, course, deliveries):
        consumer = await create_consumer(
            session, key="key_lrs", xapi_lrs_endpoint="https://lrs.example/xapi"
        )
        attempt_id = await _attempt(
            session, consumer, course, launch_data={"type": "dispatch"}
        )
        await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.lesson_status": "incomplete"},
        )
        statement = deliveries["statements"][0].statement
        assert statement["verb"]["display"]["en-US"] == "progressed"
        assert "completion" not in statement.get("result", {})

    async def test_downstream_failures_do_not_fail_commit(
        self, client, session, course, monkeypatch
    ):
        async def failing_grade(client, job):
            raise GradePassbackError("Grade passback failed: 500")

        async def failing_statement(client, job):
            raise XapiDeliveryError("xAPI statement failed: 503")

        monkeypatch.setattr(scorm_runtime, "send_grade", failing_grade)
        monkeypatch.setattr(scorm_runtime, "send_statement", failing_statement)

        consumer = await create_consumer(
            session, key="key_lrs", xapi_lrs_endpoint="https://lrs.example/xapi"
        )
        attempt_id = await _attempt(
            session, consumer, course,
            lis_outcome_service_url="https://lms/outcomes",
            lis_result_sourcedid="src-1",
            launch_data={"type": "dispatch"},
        )
        r = await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.score.raw": "50", "cmi.core.lesson_status": "failed"},
        )
        assert r.status_code == 200
        assert r.json()["successStatus"] == "failed"

    async def test_unknown_attempt(self, client, deliveries):
        r = await client.post("/api/scorm/attempt/nope/commit", json={})
        assert r.status_code == 404
        assert r.json()["success"] is False
        assert r.json()["error"] == "Attempt not found"


class TestFinishAndResume:
    async def test_finish_stamps_timestamp_only(self, client, session, consumer, course, deliveries):
        attempt_id = await _attempt(session, consumer, course)
        await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.lesson_status": "incomplete"},
        )
        r = await client.post(f"/api/scorm/attempt/{attempt_id}/finish")
        assert r.status_code == 200
        assert r.json()["finishedAt"]

        r = await client.get(f"/api/scorm/attempt/{attempt_id}")
        assert r.json()["completionStatus"] == "incomplete"

    async def test_finish_unknown_attempt(self, client):
        r = await client.post("/api/scorm/attempt/nope/finish")
        assert r.status_code == 404

    async def test_get_unknown_attempt(self, client):
        r = await client.get("/api/scorm/attempt/nope")
        assert r.status_code == 404

    async def test_course_info(self, client, course):
        r = await client.get(f"/api/scorm/course/{course.id}")
        assert r.status_code == 200
        data = r.json()
        assert data["scormVersion"] == "1.2"
        assert data["launchPath"] == "lesson1/index.html"
        assert data["contentUrl"] == "/content/c1/lesson1/index.html"


class TestBestEffortDelivery:
    async def test_unsignable_outcome_url_does_not_block_statement(
        self, client, session, course, monkeypatch
    ):
        sent = []

        async def record_statement(client, job):
            sent.append(job)

        monkeypatch.setattr(scorm_runtime, "send_statement", record_statement)
        consumer = await create_consumer(
            session, key="key_lrs", xapi_lrs_endpoint="https://lrs.example/xapi"
        )
        attempt_id = await _attempt(
            session, consumer, course,
            lis_outcome_service_url="lms-outcomes-without-scheme",
            lis_result_sourcedid="src-1",
            launch_data={"type": "dispatch"},
        )
        r = await client.post(
            f"/api/scorm/attempt/{attempt_id}/commit",
            json={"cmi.core.score.raw": "50", "cmi.core.lesson_status": "passed"},
        )
        assert r.status_code == 200
        assert len(sent) == 1
        assert sent[0].statement["verb"]["display"]["en-US"] == "completed"

    async def test_unexpected_error_is_logged_not_raised(self, monkeypatch, caplog):
        sent = []

        async def broken_grade(client, job):
            raise RuntimeError("boom")

        async def record_statement(client, job):
            sent.append(job)

        monkeypatch.setattr(scorm_runtime, "send_grade", broken_grade)
        monkeypatch.setattr(scorm_runtime, "send_statement", record_statement)

        passback = GradePassbackJob("k", "s", "https://lms/outcomes", "src", 0.5)
        statement = XapiJob(
            lrs=LrsConfig("https://lrs", "k", "s"),
            statement=build_statement("https://host", "u1", "c1", "T", "progressed"),
        )
        await scorm_runtime.deliver_notifications(
            2.0, passback=passback, statement=statement
        )

        assert sent == [statement]
        assert "boom" in caplog.text
