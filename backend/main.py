import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.exceptions import LoyaltyError, ResolutionFailed
from core.limiter import limiter
from database import connect_db, close_db

# Routers
from routers import loyalty

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    logger.info("Brewpoints API started")
    yield
    # Shutdown
    await close_db()
    logger.info("Brewpoints API stopped")


app = FastAPI(
    title="Brewpoints API",
    description="Programme de fidélité : points, paliers, QR et codes-barres au comptoir",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(LoyaltyError)
async def loyalty_error_handler(request: Request, exc: LoyaltyError):
    content = {"detail": exc.detail, "error": type(exc).__name__}
    if isinstance(exc, ResolutionFailed):
        content["attempted"] = exc.attempted
    return JSONResponse(status_code=exc.status_code, content=content)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else ["https://brewpoints.in"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers (authentifiés)
app.include_router(loyalty.router, prefix="/api/loyalty", tags=["Loyalty"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "brewpoints", "version": "1.0.0"}
