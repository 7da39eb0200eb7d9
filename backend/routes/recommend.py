from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from database.models.user import Role, User
from schemas.recommend import RecommendationRequest, RecommendationResponse, SuggestionsResponse
from services.advisor import ExternalAdvisor, get_advisor
from services.recommend import RecommendationService
from services.usage_ledger import UsageLedger, get_usage_ledger
from utils.auth import require_role
from utils.rate_limiter import limiter

recommend_router = APIRouter()


def get_recommendation_service(
    ledger: UsageLedger = Depends(get_usage_ledger),
    advisor: ExternalAdvisor = Depends(get_advisor),
) -> RecommendationService:
    return RecommendationService(ledger, advisor)

# ------------------ RECOMMENDATION ROUTES ------------------ #

@recommend_router.post("/courses", response_model=RecommendationResponse, summary="AI course recommendations")
@limiter.limit("10/minute")
async def recommend_courses(
    request: Request,
    payload: RecommendationRequest,
    current_user: User = Depends(require_role(Role.STUDENT)),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    Rank the catalog against a free-text learning goal.

    Each successful call is charged to the daily AI usage quota; once the
    quota is spent the endpoint answers 429 until an admin resets it or the
    day rolls over.

    Rate limit: 10 requests per minute.
    """
    return await service.recommend(payload.prompt)


@recommend_router.get("/suggestions", response_model=SuggestionsResponse, summary="Keyword course suggestions")
@limiter.limit("30/minute")
async def get_suggestions(
    request: Request,
    keyword: Optional[str] = Query(None),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """
    Case-insensitive keyword match over course title, description and content.

    Rate limit: 30 requests per minute.
    """
    return await service.suggestions(keyword)
