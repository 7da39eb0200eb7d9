from pydantic import EmailStr

from schemas.base import ApiModel


class LoginRequest(ApiModel):
    email: EmailStr
    password: str


class TokenPairResponse(ApiModel):
    token: str
    refresh_token: str


class RefreshTokenRequest(ApiModel):
    refresh_token: str = ""


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    token: str
    password: str


class MessageResponse(ApiModel):
    message: str
