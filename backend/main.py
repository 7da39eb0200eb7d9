from dotenv import load_dotenv
load_dotenv()
import os
import logging
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from typing import cast
from starlette.types import ExceptionHandler
from utils.rate_limiter import limiter
from contextlib import asynccontextmanager
from database.connection.db import init_db
from services.usage_ledger import LedgerUnavailableError
from routes.auth import auth_router
from routes.course import course_router
from routes.recommend import recommend_router
from routes.admin import admin_router
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    filename=os.environ.get("LOG_FILE") or None,
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

origins = [
    "http://localhost:3000",
    os.environ.get("FRONTEND_URL", "http://localhost:3000"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    client = await init_db()
    yield
    client.close()

# Initialize FastAPI app with lifespan
app = FastAPI(lifespan=lifespan)

# Set up rate limiting
app.state.limiter = limiter

# Add exception handler and middleware
app.add_exception_handler(
    RateLimitExceeded,
    cast(ExceptionHandler, _rate_limit_exceeded_handler)
)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(set(origins)),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerUnavailableError)
async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError):
    logger.error(f"Rejecting {request.method} {request.url.path}: usage ledger unavailable ({exc})")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "API usage ledger is unavailable."},
    )


@app.get("/")
def read_root():
    return {"message": "API is running"}

# Include your routers
app.include_router(auth_router, prefix="/auth", tags=["Users"])
app.include_router(course_router, prefix="/courses", tags=["Courses"])
app.include_router(recommend_router, prefix="/recommend", tags=["Recommendations"])
app.include_router(admin_router, prefix="/admin", tags=["Admin"])
