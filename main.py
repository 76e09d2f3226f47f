from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import logging
import structlog
import sys
import time
from contextlib import asynccontextmanager

from models import (
    ErrorResponse, HealthResponse, MineRequest, MineResponse, UserResponse,
    WithdrawRequest, WithdrawResponse,
)
from services import (
    LedgerService, LedgerServiceError, InvalidPayload, RateLimited, get_ledger_service,
)
from repositories import get_ledger_repository
from payments import get_transfer_client
from config import get_settings

settings = get_settings()

# Configure structured logging
logging.basicConfig(
    stream=sys.stdout,
    format="%(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO)
)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Rate limiting, keyed by client address
limiter = Limiter(key_func=get_remote_address, strategy="moving-window")

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Mine App backend", port=settings.port)
    await get_ledger_repository().load()
    yield
    # Shutdown
    logger.info("Shutting down Mine App backend")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="DavCoin balances, Naira conversion and Moniepoint withdrawals",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.state.limiter = limiter

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Security headers middleware
@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("X-DNS-Prefetch-Control", "off")
    response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")
    return response

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    # Log request
    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

    response = await call_next(request)

    # Log response
    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response

# Dependency injection
def get_service(
    ledger_repo=Depends(get_ledger_repository),
    transfer_client=Depends(get_transfer_client)
) -> LedgerService:
    return get_ledger_service(ledger_repo, transfer_client)


async def parse_payload(request: Request, model):
    """Validate a JSON body, reporting any problem as InvalidPayload."""
    try:
        body = await request.json()
        return model.model_validate(body)
    except (ValueError, ValidationError) as e:
        logger.warning("Invalid payload", path=request.url.path, error=str(e))
        raise InvalidPayload() from e

# Liveness endpoint
@app.get("/", response_class=PlainTextResponse, include_in_schema=False)
async def root():
    return "Mine App Backend is live"

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get ledger statistics"
)
async def health_check(ledger_repo=Depends(get_ledger_repository)):
    try:
        users_count = await ledger_repo.get_users_count()
        return HealthResponse(status="healthy", users_count=users_count)
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        raise HTTPException(
            status_code=500,
            detail="Health check failed"
        )

@app.get(
    "/user/{username}",
    response_model=UserResponse,
    summary="Get User",
    description="Get a user's DavCoin balance and the current exchange rates, creating the user if needed"
)
async def get_user(username: str, service: LedgerService = Depends(get_service)):
    return await service.get_user(username)

@app.post(
    "/mine",
    response_model=MineResponse,
    summary="Mine DavCoins",
    responses={400: {"model": ErrorResponse, "description": "Invalid payload"}}
)
async def mine(request: Request, service: LedgerService = Depends(get_service)):
    mine_request = await parse_payload(request, MineRequest)
    return await service.mine(mine_request)

@app.post(
    "/withdraw",
    response_model=WithdrawResponse,
    summary="Withdraw",
    description="Convert DavCoins to Naira and transfer them to a bank account",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid payload or insufficient funds"},
        404: {"model": ErrorResponse, "description": "User not found"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Provider transfer failed"}
    }
)
@limiter.limit(lambda: get_settings().withdraw_rate_limit)
async def withdraw(request: Request, service: LedgerService = Depends(get_service)):
    withdraw_request = await parse_payload(request, WithdrawRequest)
    return await service.withdraw(withdraw_request)

# Exception handlers
def error_response(status_code: int, error: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, details=details).model_dump(exclude_none=True)
    )

@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError):
    logger.warning(
        "Request failed",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.message
    )
    return error_response(exc.status_code, exc.message, exc.details)

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        "Rate limit exceeded",
        path=request.url.path,
        client_ip=get_remote_address(request),
        limit=str(exc.detail)
    )
    return error_response(RateLimited.status_code, RateLimited.message)

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(exc.status_code, str(exc.detail))

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )
    return error_response(500, "Internal server error")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
