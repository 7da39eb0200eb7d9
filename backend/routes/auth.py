from fastapi import APIRouter, Depends, Request, status
from database.models.user import User, UserCreateRequest, UserProfileResponse
from services.auth import AuthService
from schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshTokenRequest,
    ResetPasswordRequest,
    TokenPairResponse,
)
from utils.auth import get_current_user, get_current_user_with_token, get_device_info_from_request
from utils.rate_limiter import limiter

auth_router = APIRouter()
auth_service = AuthService()

# ------------------ AUTH ROUTES ------------------ #

# Register a new student or instructor account
@auth_router.post("/register", response_model=TokenPairResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("3/minute")
async def register_user(request: Request, create_user_request: UserCreateRequest):
    """
    Register a new user account and open a session for it.

    Only the `student` and `instructor` roles can be self-assigned.

    Rate limit: 3 requests per minute to prevent abuse.
    """
    device_info = get_device_info_from_request(request)
    return await auth_service.register(
        username=create_user_request.username,
        email=create_user_request.email,
        password=create_user_request.password,
        role=create_user_request.role,
        device=device_info["platform"],
    )


@auth_router.post("/login", response_model=TokenPairResponse)
@limiter.limit("5/minute")
async def login_user(payload: LoginRequest, request: Request):
    """
    Login a registered user and return an access/refresh token pair.

    Rate limit: 5 requests per minute.
    """
    device_info = get_device_info_from_request(request)
    return await auth_service.login(
        email=payload.email,
        password=payload.password,
        device=device_info["platform"]
    )


@auth_router.post("/refresh", response_model=TokenPairResponse)
@limiter.limit("10/minute")
async def refresh_tokens(payload: RefreshTokenRequest, request: Request):
    """
    Exchange a refresh token for a new token pair. The old session is revoked.

    Rate limit: 10 requests per minute.
    """
    device_info = get_device_info_from_request(request)
    return await auth_service.refresh(payload.refresh_token, device=device_info["platform"])


@auth_router.get("/profile", response_model=UserProfileResponse)
@limiter.limit("30/minute")
async def get_profile_route(request: Request, current_user: User = Depends(get_current_user)):
    """
    Retrieve the currently authenticated user's profile.

    Rate limit: 30 requests per minute.
    """
    return await auth_service.get_profile(current_user)


@auth_router.post("/logout", response_model=MessageResponse)
@limiter.limit("10/minute")
async def logout_user(
    request: Request,
    user_data: tuple[User, str] = Depends(get_current_user_with_token)
):
    user, token_id = user_data
    return await auth_service.logout(user, token_id)

# ------------------ PASSWORD RESET ------------------ #

@auth_router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit("3/minute")
async def forgot_password(request: Request, payload: ForgotPasswordRequest):
    """
    Email a single-use password reset link.

    Rate limit: 3 requests per minute to prevent spamming.
    """
    return await auth_service.forgot_password(payload.email)


@auth_router.post("/reset-password", response_model=MessageResponse)
@limiter.limit("5/minute")
async def reset_password(request: Request, payload: ResetPasswordRequest):
    """
    Set a new password using the token from the reset email.

    Every open session of the account is revoked.

    Rate limit: 5 requests per minute.
    """
    return await auth_service.reset_password(payload.token, payload.password)
