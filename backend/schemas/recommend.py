from typing import List, Optional

from schemas.base import ApiModel
from schemas.course import CourseResponse


class RecommendationRequest(ApiModel):
    prompt: Optional[str] = None


class Recommendation(ApiModel):
    course_id: str
    title: str
    reason: str
    relevance: str
    course: CourseResponse


class RecommendationResponse(ApiModel):
    analysis: str
    recommendations: List[Recommendation]
    learning_path: str
    additional_advice: str
    user_prompt: str
    note: Optional[str] = None


class CourseSuggestion(ApiModel):
    id: str
    title: str
    description: str
    instructor: str


class SuggestionsResponse(ApiModel):
    keyword: str
    suggestions: List[CourseSuggestion]
