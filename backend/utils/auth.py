import os
import jwt
from pathlib import Path
from jwt.exceptions import InvalidTokenError, ExpiredSignatureError
from datetime import datetime, timezone, timedelta
from fastapi import HTTPException, status, Request
from passlib.context import CryptContext
from typing import Optional
from pydantic import BaseModel, SecretStr
from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType
from database.models.user import Role, User

# Validate and fetch environment variables
try:
    SECRET_KEY = os.environ["SECRET_KEY"]
    REFRESH_SECRET_KEY = os.environ["REFRESH_SECRET_KEY"]
    ALGORITHM = os.environ["ALGORITHM"]
    ACCESS_TOKEN_MINUTES = float(os.environ.get("ACCESS_TOKEN_MINUTES", 60))
    REFRESH_TOKEN_MINUTES = float(os.environ.get("REFRESH_TOKEN_MINUTES", 60 * 24))
    RESET_TOKEN_MINUTES = float(os.environ.get("RESET_TOKEN_MINUTES", 30))
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", 12))

    MAIL_USERNAME = os.environ["MAIL_USERNAME"]
    MAIL_PASSWORD = os.environ["MAIL_PASSWORD"]
    MAIL_FROM = os.environ["MAIL_FROM"]
    MAIL_PORT = int(os.environ["MAIL_PORT"])
    MAIL_SERVER = os.environ["MAIL_SERVER"]
    MAIL_FROM_NAME = os.environ["MAIL_FROM_NAME"]
    MAIL_SUPPRESS_SEND = bool(int(os.environ.get("MAIL_SUPPRESS_SEND", 0)))

except KeyError as e:
    raise RuntimeError(f"Missing required environment variable: {e}")
except ValueError:
    raise RuntimeError(
        "ACCESS_TOKEN_MINUTES, REFRESH_TOKEN_MINUTES, RESET_TOKEN_MINUTES, "
        "BCRYPT_ROUNDS, MAIL_PORT and MAIL_SUPPRESS_SEND must be numbers."
    )

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
RESET_TOKEN = "reset"

TEMPLATE_FOLDER = Path(__file__).resolve().parent.parent / "templates" / "reset-password"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

conf = ConnectionConfig(
    MAIL_USERNAME=MAIL_USERNAME,
    MAIL_PASSWORD=SecretStr(MAIL_PASSWORD),
    MAIL_FROM=MAIL_FROM,
    MAIL_PORT=MAIL_PORT,
    MAIL_SERVER=MAIL_SERVER,
    MAIL_FROM_NAME=MAIL_FROM_NAME,
    MAIL_STARTTLS=True,
    MAIL_SSL_TLS=False,
    USE_CREDENTIALS=True,
    SUPPRESS_SEND=MAIL_SUPPRESS_SEND,
    TEMPLATE_FOLDER=TEMPLATE_FOLDER,
)


def hash_password(password: str) -> str:
    """Hash a plaintext password."""
    return pwd_context.hash(password)


def verify_password(given_password: str, hashed_password: str) -> bool:
    """Verify a given password against its hashed version."""
    return pwd_context.verify(given_password, hashed_password)


def _encode(data: dict, secret: str, token_type: str, expires_delta: timedelta) -> str:
    payload_to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    payload_to_encode.update({"exp": expire, "typ": token_type})
    return jwt.encode(payload_to_encode, secret, algorithm=ALGORITHM)


def generate_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Generate a JWT access token with expiration.
    Adds 'exp' and 'typ' fields to the payload.
    """
    return _encode(
        data, SECRET_KEY, ACCESS_TOKEN,
        expires_delta or timedelta(minutes=ACCESS_TOKEN_MINUTES),
    )


def generate_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Refresh tokens are signed with their own key so they never pass as access tokens."""
    return _encode(
        data, REFRESH_SECRET_KEY, REFRESH_TOKEN,
        expires_delta or timedelta(minutes=REFRESH_TOKEN_MINUTES),
    )


def generate_reset_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        data, SECRET_KEY, RESET_TOKEN,
        expires_delta or timedelta(minutes=RESET_TOKEN_MINUTES),
    )


def _decode(token: str, secret: str, token_type: str) -> dict:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except (InvalidTokenError, ExpiredSignatureError):
        raise credentials_exception
    if payload.get("typ") != token_type:
        raise credentials_exception
    return payload


def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token. Raise 401 if invalid or expired.
    """
    return _decode(token, SECRET_KEY, ACCESS_TOKEN)


def verify_refresh_token(token: str) -> dict:
    return _decode(token, REFRESH_SECRET_KEY, REFRESH_TOKEN)


def verify_reset_token(token: str) -> dict:
    return _decode(token, SECRET_KEY, RESET_TOKEN)


class ResetPasswordContext(BaseModel):
    username: str
    reset_link: str
    subject: str


async def send_password_reset_link_async(subject: str, email_to: str, context: ResetPasswordContext):
    message = MessageSchema(
        subject=subject,
        recipients=[email_to],
        template_body=context.model_dump(),
        subtype=MessageType.html
    )

    fmail = FastMail(conf)
    await fmail.send_message(message, template_name="reset-password.html")


async def get_current_user_with_token(request: Request) -> tuple[User, str]:
    """Get current user and token_id - for logout endpoint"""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="No token provided.")

    token = auth_header.split(" ")[1]
    payload = verify_access_token(token)

    user_id = payload.get("sub")
    token_id = payload.get("token_id")
    if not user_id or not token_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = await User.get(user_id)
    if not user or not user.has_active_token(token_id):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return user, token_id


async def get_current_user(request: Request) -> User:
    """Get current user only - for profile endpoint"""
    user, _ = await get_current_user_with_token(request)
    return user


def require_role(*roles: Role):
    """
    Dependency factory admitting only users whose role is one of `roles`.

    Usage: `current_user: User = Depends(require_role(Role.ADMIN))`
    """
    async def dependency(request: Request) -> User:
        user = await get_current_user(request)
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied."
            )
        return user

    return dependency


def get_device_info_from_request(request: Request):
    """Extract device information from request headers in FastAPI"""
    user_agent = request.headers.get('User-Agent', '')
    ip_address = request.client.host if request.client else "unknown"

    device_info = {
        'user_agent': user_agent,
        'ip_address': ip_address,
        'platform': 'unknown'
    }

    if 'Mobile' in user_agent:
        device_info['platform'] = 'mobile'
    elif 'Tablet' in user_agent:
        device_info['platform'] = 'tablet'
    else:
        device_info['platform'] = 'desktop'

    return device_info
