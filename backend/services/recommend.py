import os
import json
import logging
from typing import List, Optional

from fastapi import HTTPException, status

from database.models.api_usage import ApiUsage
from database.models.course import Course
from schemas.course import CourseResponse
from schemas.recommend import (
    CourseSuggestion,
    Recommendation,
    RecommendationResponse,
    SuggestionsResponse,
)
from services.advisor import AdvisorError, ExternalAdvisor
from services.course import COURSE_LIST_LIMIT, CourseService, UNKNOWN_INSTRUCTOR, to_course_response, usernames_by_id
from services.usage_ledger import LedgerUnavailableError, UsageLedger

logger = logging.getLogger(__name__)

GATE_ATOMIC = "atomic"
GATE_LEGACY = "legacy"
API_USAGE_GATE = os.environ.get("API_USAGE_GATE", GATE_ATOMIC).lower()

FALLBACK_COUNT = 3
LIMIT_REACHED_DETAIL = "API usage limit reached for today. Please try again tomorrow or contact admin."

SYSTEM_PROMPT = """
You are a helpful educational advisor.
Your job is to recommend relevant courses to a student based on their input and the available courses.
Only recommend courses from the given list.
Respond in strict JSON format as described.
"""

RESPONSE_FORMAT = """
Return a JSON object like this:
{
  "analysis": "Brief analysis of user's goal",
  "recommendations": [
    {
      "courseId": "exact_course_id",
      "title": "Course Title",
      "reason": "Why it's recommended",
      "relevance": "High/Medium/Low"
    }
  ],
  "learningPath": "Suggested order of courses or steps",
  "additionalAdvice": "Any additional tips or considerations"
}
"""


def build_user_prompt(prompt: str, courses: List[CourseResponse]) -> str:
    listing = "\n".join(
        f"[{index}] {course.title}\n"
        f"  ID: {course.id}\n"
        f"  Description: {course.description}\n"
        f"  Instructor: {course.instructor.username}\n"
        for index, course in enumerate(courses, start=1)
    )
    return f'User\'s Request: "{prompt}"\n\nAvailable Courses:\n{listing}\n{RESPONSE_FORMAT}'


def parse_advice(text: str) -> Optional[dict]:
    """The advisor's answer as a dict, or None when it is not the JSON shape asked for."""
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("recommendations"), list):
        return None
    return parsed


def enrich_recommendations(raw: list, courses: List[CourseResponse]) -> List[Recommendation]:
    """Attach the full course to each recommendation, dropping ids not in the catalog."""
    by_id = {course.id: course for course in courses}
    enriched = []
    for rec in raw:
        if not isinstance(rec, dict):
            continue
        course = by_id.get(str(rec.get("courseId", "")))
        if course is None:
            continue
        enriched.append(Recommendation(
            course_id=course.id,
            title=str(rec.get("title") or course.title),
            reason=str(rec.get("reason", "")),
            relevance=str(rec.get("relevance", "")),
            course=course,
        ))
    return enriched


def fallback_response(prompt: str, courses: List[CourseResponse]) -> RecommendationResponse:
    return RecommendationResponse(
        analysis="Based on your request, here are some relevant courses.",
        recommendations=[
            Recommendation(
                course_id=course.id,
                title=course.title,
                reason="This course is closely related to your learning goal.",
                relevance="High",
                course=course,
            )
            for course in courses[:FALLBACK_COUNT]
        ],
        learning_path="Start with beginner courses and gradually progress to advanced topics.",
        additional_advice="Make sure to balance theory with practice. Set learning goals.",
        user_prompt=prompt,
        note="The AI response was not valid JSON. Default recommendations shown.",
    )


class RecommendationService:
    def __init__(self, ledger: UsageLedger, advisor: ExternalAdvisor, gate: str = API_USAGE_GATE):
        self.ledger = ledger
        self.advisor = advisor
        self.gate = gate

    async def _acquire_quota(self) -> Optional[ApiUsage]:
        """
        Gate the advisor call on today's quota.

        The atomic gate returns the reserved record; the legacy gate only
        checks and returns None, leaving the charge to `_charge`.
        """
        if self.gate == GATE_LEGACY:
            allowed = await self.ledger.can_make_request()
            reserved = None
        else:
            reserved = await self.ledger.try_reserve()
            allowed = reserved is not None

        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=LIMIT_REACHED_DETAIL
            )
        return reserved

    async def _charge(self, reserved: Optional[ApiUsage]) -> None:
        if reserved is None:
            await self.ledger.increment()
        else:
            await self.ledger.commit(reserved)

    async def _load_courses(self) -> List[CourseResponse]:
        courses = await Course.find_all().limit(COURSE_LIST_LIMIT).to_list()
        if not courses:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No courses available for recommendations."
            )
        usernames = await usernames_by_id(course.instructor for course in courses)
        return [to_course_response(course, usernames) for course in courses]

    async def recommend(self, prompt: Optional[str]) -> RecommendationResponse:
        trimmed_prompt = (prompt or "").strip()
        if not trimmed_prompt:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Prompt is required."
            )

        reserved = await self._acquire_quota()
        try:
            courses = await self._load_courses()
            try:
                ai_text = await self.advisor.complete(
                    SYSTEM_PROMPT, build_user_prompt(trimmed_prompt, courses)
                )
            except AdvisorError as e:
                raise HTTPException(status_code=e.status_code, detail=e.detail)
        except Exception:
            if reserved is not None:
                try:
                    await self.ledger.release(reserved)
                except LedgerUnavailableError as release_error:
                    logger.error(f"Could not release usage slot on {reserved.date.date()}: {release_error}")
            raise

        await self._charge(reserved)

        parsed = parse_advice(ai_text)
        if parsed is None:
            logger.warning(f"Invalid JSON from advisor, serving defaults. Raw response: {ai_text!r}")
            return fallback_response(trimmed_prompt, courses)

        return RecommendationResponse(
            analysis=str(parsed.get("analysis", "")),
            recommendations=enrich_recommendations(parsed["recommendations"], courses),
            learning_path=str(parsed.get("learningPath", "")),
            additional_advice=str(parsed.get("additionalAdvice", "")),
            user_prompt=trimmed_prompt,
        )

    async def suggestions(self, keyword: Optional[str]) -> SuggestionsResponse:
        if not keyword:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Keyword is required"
            )

        courses = await CourseService().search_courses(keyword)
        usernames = await usernames_by_id(course.instructor for course in courses)
        return SuggestionsResponse(
            keyword=keyword,
            suggestions=[
                CourseSuggestion(
                    id=str(course.id),
                    title=course.title,
                    description=course.description,
                    instructor=usernames.get(course.instructor, UNKNOWN_INSTRUCTOR),
                )
                for course in courses
            ],
        )
