import json
from datetime import datetime

import pytest
import pytest_asyncio
from pymongo.errors import ServerSelectionTimeoutError

from main import app
from database.models.api_usage import ApiUsage
from database.models.user import Role
from routes.recommend import get_recommendation_service
from schemas.course import CourseResponse, InstructorSummary
from services.advisor import AdvisorError
from services.usage_ledger import LedgerUnavailableError
from services.recommend import (
    GATE_LEGACY,
    LIMIT_REACHED_DETAIL,
    RecommendationService,
    build_user_prompt,
    parse_advice,
)


def advice_for(*courses, analysis="You want backend skills."):
    return json.dumps({
        "analysis": analysis,
        "recommendations": [
            {
                "courseId": str(course.id),
                "title": course.title,
                "reason": f"{course.title} fits your goal",
                "relevance": "High",
            }
            for course in courses
        ],
        "learningPath": "Python first, then APIs.",
        "additionalAdvice": "Build a project.",
    })


@pytest_asyncio.fixture
async def catalog(make_user, make_course):
    instructor, _ = await make_user(Role.INSTRUCTOR, username="ada")
    python = await make_course(instructor, "Python Foundations")
    apis = await make_course(instructor, "Building APIs with FastAPI")
    design = await make_course(instructor, "Product Design")
    return instructor, [python, apis, design]


@pytest_asyncio.fixture
async def student_headers(make_user):
    _, headers = await make_user(Role.STUDENT)
    return headers


@pytest.mark.asyncio
class TestRecommendCourses:
    async def test_enriches_advisor_answer(self, client, advisor, ledger, catalog, student_headers):
        _, (python, apis, _) = catalog
        advisor.reply = advice_for(python, apis)

        resp = await client.post(
            "/recommend/courses", headers=student_headers, json={"prompt": "  I want to build web backends  "}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["analysis"] == "You want backend skills."
        assert body["learningPath"] == "Python first, then APIs."
        assert body["additionalAdvice"] == "Build a project."
        assert body["userPrompt"] == "I want to build web backends"
        assert [rec["courseId"] for rec in body["recommendations"]] == [str(python.id), str(apis.id)]
        assert body["recommendations"][0]["course"]["instructor"]["username"] == "ada"
        assert body.get("note") is None

        usage = await ledger.get_or_create_today()
        assert usage.requests_today == 1
        assert usage.total_requests == 1

    async def test_prompt_lists_the_catalog(self, client, advisor, catalog, student_headers):
        _, courses = catalog
        advisor.reply = advice_for(courses[0])

        await client.post("/recommend/courses", headers=student_headers, json={"prompt": "data science"})

        system_prompt, user_prompt = advisor.calls[0]
        assert "educational advisor" in system_prompt
        assert 'User\'s Request: "data science"' in user_prompt
        for course in courses:
            assert str(course.id) in user_prompt
            assert course.title in user_prompt

    async def test_unknown_course_ids_are_dropped(self, client, advisor, catalog, student_headers):
        _, (python, _, _) = catalog
        advice = json.loads(advice_for(python))
        advice["recommendations"].append(
            {"courseId": "000000000000000000000000", "title": "Ghost", "reason": "-", "relevance": "Low"}
        )
        advisor.reply = json.dumps(advice)

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert [rec["title"] for rec in resp.json()["recommendations"]] == ["Python Foundations"]

    async def test_non_json_answer_falls_back_to_defaults(self, client, advisor, ledger, catalog, student_headers):
        advisor.reply = "Sure! Take Python Foundations first."

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["note"] == "The AI response was not valid JSON. Default recommendations shown."
        assert len(body["recommendations"]) == 3
        assert all(rec["relevance"] == "High" for rec in body["recommendations"])
        assert body["userPrompt"] == "python"
        # The advisor answered, so the call is still charged.
        assert (await ledger.get_or_create_today()).requests_today == 1

    @pytest.mark.parametrize("prompt", [None, "", "   "])
    async def test_blank_prompt_rejected(self, client, advisor, catalog, student_headers, prompt):
        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": prompt})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Prompt is required."
        assert advisor.calls == []

    async def test_students_only(self, client, make_user, catalog):
        _, headers = await make_user(Role.INSTRUCTOR)

        resp = await client.post("/recommend/courses", headers=headers, json={"prompt": "python"})

        assert resp.status_code == 403

    async def test_limit_reached(self, client, advisor, ledger, catalog, student_headers):
        await ledger.update_settings(max_requests=1)
        advisor.reply = advice_for(catalog[1][0])

        first = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})
        second = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.json()["detail"] == LIMIT_REACHED_DETAIL
        assert len(advisor.calls) == 1
        assert (await ledger.get_or_create_today()).requests_today == 1

    async def test_inactive_ledger_blocks(self, client, advisor, ledger, catalog, student_headers):
        await ledger.update_settings(is_active=False)

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 429
        assert advisor.calls == []

    async def test_reset_reopens_quota(self, client, advisor, ledger, catalog, student_headers):
        await ledger.update_settings(max_requests=1)
        advisor.reply = advice_for(catalog[1][0])
        await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        await ledger.reset_daily_count()
        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 200
        usage = await ledger.get_or_create_today()
        assert usage.requests_today == 1
        assert usage.total_requests == 2

    async def test_empty_catalog(self, client, advisor, ledger, student_headers):
        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 404
        assert resp.json()["detail"] == "No courses available for recommendations."
        assert advisor.calls == []
        assert (await ledger.get_or_create_today()).requests_today == 0

    async def test_advisor_failure_is_not_charged(self, client, advisor, ledger, catalog, student_headers):
        advisor.error = AdvisorError("OpenAI rate limit exceeded. Try again shortly.")

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 500
        assert resp.json()["detail"] == "OpenAI rate limit exceeded. Try again shortly."
        usage = await ledger.get_or_create_today()
        assert usage.requests_today == 0
        assert usage.total_requests == 0

    async def test_advisor_timeout(self, client, advisor, catalog, student_headers):
        advisor.error = AdvisorError("The recommendation service timed out. Try again shortly.", status_code=504)

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 504

    async def test_ledger_outage_fails_closed(self, client, advisor, catalog, student_headers, monkeypatch):
        class Unreachable:
            async def update_one(self, *args, **kwargs):
                raise ServerSelectionTimeoutError("mongo is down")

        monkeypatch.setattr(ApiUsage, "get_motor_collection", staticmethod(lambda: Unreachable()))

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 503
        assert resp.json()["detail"] == "API usage ledger is unavailable."
        assert advisor.calls == []

    async def test_failed_release_keeps_the_original_error(
        self, client, advisor, ledger, catalog, student_headers, monkeypatch
    ):
        advisor.error = AdvisorError("The recommendation service timed out. Try again shortly.", status_code=504)

        async def release_unreachable(reserved):
            raise LedgerUnavailableError("mongo is down")

        monkeypatch.setattr(ledger, "release", release_unreachable)

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 504
        assert resp.json()["detail"] == "The recommendation service timed out. Try again shortly."

    async def test_failed_release_keeps_the_empty_catalog_error(
        self, client, advisor, ledger, student_headers, monkeypatch
    ):
        async def release_unreachable(reserved):
            raise LedgerUnavailableError("mongo is down")

        monkeypatch.setattr(ledger, "release", release_unreachable)

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 404
        assert advisor.calls == []


@pytest.mark.asyncio
class TestLegacyGate:
    @pytest.fixture(autouse=True)
    def legacy_service(self, ledger, advisor):
        app.dependency_overrides[get_recommendation_service] = (
            lambda: RecommendationService(ledger, advisor, gate=GATE_LEGACY)
        )
        yield
        app.dependency_overrides.pop(get_recommendation_service, None)

    async def test_charges_after_success(self, client, advisor, ledger, catalog, student_headers):
        advisor.reply = advice_for(catalog[1][0])

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 200
        usage = await ledger.get_or_create_today()
        assert usage.requests_today == 1
        assert usage.total_requests == 1

    async def test_blocks_at_limit(self, client, advisor, ledger, catalog, student_headers):
        await ledger.update_settings(max_requests=1)
        await ledger.increment()

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 429
        assert advisor.calls == []

    async def test_failure_is_not_charged(self, client, advisor, ledger, catalog, student_headers):
        advisor.error = AdvisorError("Invalid or missing OpenAI API key. Please check configuration.")

        resp = await client.post("/recommend/courses", headers=student_headers, json={"prompt": "python"})

        assert resp.status_code == 500
        assert (await ledger.get_or_create_today()).requests_today == 0


@pytest.mark.asyncio
class TestSuggestions:
    async def test_matches_case_insensitively(self, client, catalog):
        resp = await client.get("/recommend/suggestions", params={"keyword": "FASTAPI"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["keyword"] == "FASTAPI"
        assert [s["title"] for s in body["suggestions"]] == ["Building APIs with FastAPI"]
        assert body["suggestions"][0]["instructor"] == "ada"

    async def test_matches_content(self, client, make_user, make_course):
        instructor, _ = await make_user(Role.INSTRUCTOR)
        await make_course(instructor, "Statistics", content="Covers pandas and regression")

        resp = await client.get("/recommend/suggestions", params={"keyword": "pandas"})

        assert [s["title"] for s in resp.json()["suggestions"]] == ["Statistics"]

    async def test_keyword_is_literal(self, client, catalog):
        resp = await client.get("/recommend/suggestions", params={"keyword": ".*"})

        assert resp.json()["suggestions"] == []

    async def test_keyword_required(self, client, db):
        resp = await client.get("/recommend/suggestions")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Keyword is required"

    async def test_not_charged(self, client, ledger, catalog):
        await client.get("/recommend/suggestions", params={"keyword": "python"})

        assert await ApiUsage.count() == 0


class TestPromptHelpers:
    def test_parse_advice_requires_recommendation_list(self):
        assert parse_advice("not json") is None
        assert parse_advice("[1, 2]") is None
        assert parse_advice('{"analysis": "x"}') is None
        assert parse_advice('{"recommendations": []}') == {"recommendations": []}

    def test_build_user_prompt_numbers_courses(self):
        course = CourseResponse(
            id="abc",
            title="Python",
            description="Basics",
            content="...",
            instructor=InstructorSummary(id="i1", username="ada"),
            enrolled_students=[],
            created_at=datetime(2026, 1, 1),
        )

        prompt = build_user_prompt("learn python", [course])

        assert "[1] Python" in prompt
        assert "ID: abc" in prompt
        assert "Instructor: ada" in prompt
