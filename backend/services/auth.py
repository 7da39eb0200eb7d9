from datetime import datetime, timedelta
import os
from typing import Optional
from uuid import uuid4
from fastapi import HTTPException, status
import bleach
import logging

from database.models.user import Role, User, UserProfileResponse
from schemas.auth import MessageResponse, TokenPairResponse
from utils.auth import (
    ACCESS_TOKEN_MINUTES,
    REFRESH_TOKEN_MINUTES,
    ResetPasswordContext,
    generate_access_token,
    generate_refresh_token,
    generate_reset_token,
    hash_password,
    send_password_reset_link_async,
    verify_password,
    verify_refresh_token,
    verify_reset_token,
)
from utils.dates import utc_now

logger = logging.getLogger(__name__)

SELF_SERVICE_ROLES = {Role.STUDENT.value, Role.INSTRUCTOR.value}
MIN_PASSWORD_LENGTH = 6
FORGOT_PASSWORD_MESSAGE = "If an account exists for this email, a password reset link has been sent."


def _token_claims(user: User, token_id: str) -> dict:
    return {
        "sub": str(user.id),
        "role": user.role.value,
        "username": user.username,
        "email": user.email,
        "token_id": token_id,
    }


def _prune_expired_tokens(user: User) -> None:
    now = utc_now()
    user.active_tokens = [
        t for t in user.active_tokens
        if not isinstance(t.get("expires_in"), datetime) or t["expires_in"] > now
    ]


class AuthService:

    async def issue_session(self, user: User, device: str = "desktop", replaces: Optional[str] = None) -> TokenPairResponse:
        """
        Open a new session for `user` and return its token pair.

        The session lives as long as its refresh token; `replaces` drops the
        session being rotated.
        """
        if user.active_tokens is None:
            user.active_tokens = []
        _prune_expired_tokens(user)
        if replaces:
            user.active_tokens = [
                t for t in user.active_tokens if t["active_token_id"] != replaces
            ]

        token_id = str(uuid4())
        claims = _token_claims(user, token_id)
        access_token = generate_access_token(data=claims)
        refresh_token = generate_refresh_token(data=claims)

        user.active_tokens.append({
            "active_token_id": token_id,
            "expires_in": utc_now() + timedelta(minutes=max(ACCESS_TOKEN_MINUTES, REFRESH_TOKEN_MINUTES)),
            "device": device
        })
        await user.save()

        return TokenPairResponse(token=access_token, refresh_token=refresh_token)

    async def register(self, username: str, email: str, password: str,
                       role: Optional[str] = None, device: str = "desktop") -> TokenPairResponse:
        username = bleach.clean(username).strip()
        email = bleach.clean(email).strip().lower()

        if role and role not in SELF_SERVICE_ROLES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid role"
            )

        if not username or not password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="All fields are required"
            )

        if await User.find_one(User.email == email):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already exists"
            )

        if await User.find_one(User.username == username):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username already exists"
            )

        user = User(
            username=username,
            email=email,
            password=hash_password(password),
            role=Role(role or Role.STUDENT.value),
        )
        await user.insert()
        logger.info(f"Registered {user.role.value} account {user.id}")

        return await self.issue_session(user, device=device)

    async def login(self, email: str, password: str, device: str = "desktop") -> TokenPairResponse:
        email = bleach.clean(email).strip().lower()
        user = await User.find_one(User.email == email)

        if not user or not verify_password(password, user.password):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials"
            )

        return await self.issue_session(user, device=device)

    async def refresh(self, refresh_token: str, device: str = "desktop") -> TokenPairResponse:
        if not refresh_token:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Refresh token is required"
            )

        invalid = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token"
        )
        try:
            payload = verify_refresh_token(refresh_token)
        except HTTPException:
            raise invalid

        user_id = payload.get("sub")
        token_id = payload.get("token_id")
        if not user_id or not token_id:
            raise invalid

        user = await User.get(user_id)
        if not user or not user.has_active_token(token_id):
            raise invalid

        return await self.issue_session(user, device=device, replaces=token_id)

    async def get_profile(self, user: User) -> UserProfileResponse:
        return UserProfileResponse(
            user_id=str(user.id),
            username=user.username,
            email=user.email,
            role=user.role,
            enrolled_courses=[str(course_id) for course_id in user.enrolled_courses],
            created_at=user.created_at
        )

    async def logout(self, user: User, token_id: str) -> MessageResponse:
        user.active_tokens = [
            t for t in user.active_tokens if t["active_token_id"] != token_id
        ]
        await user.save()
        return MessageResponse(message="Logout successful")

    async def forgot_password(self, email: str) -> MessageResponse:
        email = bleach.clean(email).strip().lower()
        user = await User.find_one(User.email == email)

        # Same answer either way so the endpoint does not reveal accounts.
        if not user:
            return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

        reset_id = str(uuid4())
        user.password_reset_token_id = reset_id
        await user.save()

        token = generate_reset_token(data={"sub": str(user.id), "reset_id": reset_id})
        reset_link = f"{os.environ.get('FRONTEND_URL', 'http://localhost:3000')}/reset-password?token={token}"
        context = ResetPasswordContext(
            username=user.username,
            reset_link=reset_link,
            subject="Reset your password"
        )

        try:
            await send_password_reset_link_async("Password Reset", user.email, context)
        except Exception as e:
            logger.error(f"Failed to send password reset email to {user.email}: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to send reset email."
            )

        return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)

    async def reset_password(self, token: str, password: str) -> MessageResponse:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

        invalid = HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token."
        )
        try:
            payload = verify_reset_token(token)
        except HTTPException:
            raise invalid

        user_id = payload.get("sub")
        reset_id = payload.get("reset_id")
        if not user_id or not reset_id:
            raise invalid

        user = await User.get(user_id)
        if not user or user.password_reset_token_id != reset_id:
            raise invalid

        user.password = hash_password(password)
        user.password_reset_token_id = None
        user.active_tokens = []
        await user.save()
        logger.info(f"Password reset for account {user.id}")

        return MessageResponse(message="Password reset successfully")
