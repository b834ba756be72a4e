"""Tutor Core API - FastAPI application."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from packages.common.config import get_settings
from packages.common.database import check_connection, close_pool
from packages.common.exceptions import (
    AccessDeniedError,
    InfrastructureError,
    NotFoundError,
    TutorCoreError,
    ValidationError,
)
from packages.common.logging import (
    bind_request,
    clear_request,
    configure_logging,
    get_logger,
)
from packages.learning.service import close_review_service, get_review_service
from packages.quota.service import close_quota_manager, get_quota_manager

logger = get_logger(module=__name__)

VERSION = "0.1.0"


class ReviewRequest(BaseModel):
    """Request body for recording a review."""

    card_id: str
    rating: int | str
    level: str | None = None


class ReviewResponse(BaseModel):
    """Result of a recorded review."""

    card_id: str
    rating: str
    level: str
    previous_state: str
    new_state: str
    next_due: datetime
    stability: float
    difficulty: float
    reps: int
    lapses: int
    interval_days: int


class DueCardItem(BaseModel):
    """A card selected for the study session."""

    id: str
    deck_id: str
    card_type: str
    content: dict[str, Any]
    position: int
    state: str
    due: datetime
    stability: float
    difficulty: float
    overdue: bool


class DueCardsResponse(BaseModel):
    """Ordered due cards of a deck."""

    deck_id: str
    cards: list[DueCardItem]


class DeckStatsResponse(BaseModel):
    """Review statistics of a deck."""

    deck_id: str
    total_cards: int
    new_cards: int
    learning_cards: int
    review_cards: int
    relearning_cards: int
    due_today: int
    overdue_cards: int
    average_difficulty: float
    average_stability: float


class PreviewItem(BaseModel):
    """Projected next review for one rating."""

    due: datetime
    interval_days: int


class QuotaResponse(BaseModel):
    """Token quota decision."""

    allowed: bool
    mode: str
    plan: str
    binding_limit: str
    window_tokens_used: int
    window_tokens_remaining: int
    window_limit: int
    window_usage_percent: int
    window_refresh_in: str
    daily_tokens_used: int
    daily_tokens_remaining: int
    daily_limit: int
    daily_usage_percent: int
    daily_resets_in: str
    throttle_delay_ms: int | None = None
    message: str | None = None
    degraded: bool = False


class UsageRequest(BaseModel):
    """Request body for recording token usage."""

    tokens_used: int = Field(ge=0)


class UsageResponse(BaseModel):
    """Counters after recording token usage."""

    success: bool
    window_tokens_used: int
    daily_tokens_used: int
    window_tokens_remaining: int
    daily_tokens_remaining: int
    mode: str
    binding_limit: str
    throttle_delay_ms: int | None = None
    message: str | None = None


class UsageStatsResponse(BaseModel):
    """Quota decision with weekly and lifetime counters."""

    quota: QuotaResponse
    weekly_tokens_used: int
    total_tokens_used: int
    total_messages_count: int


class DeckQuotaResponse(BaseModel):
    """Deck generation quota decision."""

    allowed: bool
    plan: str
    decks_remaining_today: int
    decks_remaining_this_month: int
    daily_limit: int
    monthly_limit: int
    message: str | None = None
    degraded: bool = False


class DeckUsageResponse(BaseModel):
    """Deck counters after recording a generation."""

    success: bool
    decks_generated_today: int
    decks_generated_this_month: int
    decks_remaining_today: int
    decks_remaining_this_month: int


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    settings = get_settings()
    configure_logging(debug=settings.debug, json_output=not settings.debug)
    app.state.settings = settings
    yield
    # Shutdown
    close_review_service()
    close_quota_manager()
    await close_pool()


def _error_response(status_code: int, exc: TutorCoreError) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Tutor Core",
        description="Spaced-repetition review scheduling and token quotas",
        version=VERSION,
        lifespan=lifespan,
        debug=settings.debug,
    )

    @app.middleware("http")
    async def request_context(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = bind_request(
            request.headers.get("X-Request-Id"),
            user_id=request.headers.get("X-User-Id"),
        )
        try:
            response = await call_next(request)
        finally:
            clear_request()
        response.headers["X-Request-Id"] = request_id
        return response

    # Missing and foreign entities look the same to the caller
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.debug("not_found", path=request.url.path, context=exc.context)
        return JSONResponse(status_code=404, content={"detail": "Not found"})

    @app.exception_handler(AccessDeniedError)
    async def access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
        logger.warning("access_denied", path=request.url.path, context=exc.context)
        return JSONResponse(status_code=404, content={"detail": "Not found"})

    @app.exception_handler(ValidationError)
    async def validation_handler(_: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(422, exc)

    @app.exception_handler(InfrastructureError)
    async def infrastructure_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
        logger.error(
            "infrastructure_error",
            path=request.url.path,
            error=str(exc),
            context=exc.context,
        )
        return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable"})

    @app.get("/health", response_class=JSONResponse)
    async def health() -> dict[str, Any]:
        """Health check endpoint.

        Does not check database connectivity (use /ready for that).
        """
        return {
            "status": "healthy",
            "version": VERSION,
            "services": {
                "storage": {"backend": settings.storage_backend},
            },
        }

    @app.get("/ready", response_class=JSONResponse)
    async def ready() -> dict[str, Any]:
        """Readiness check - verifies the storage backend is available."""
        if settings.storage_backend == "memory":
            postgres_ok = True
        else:
            postgres_ok = await check_connection()

        return {
            "status": "ready" if postgres_ok else "not_ready",
            "checks": {
                "postgres": "ok" if postgres_ok else "failed",
            },
        }

    @app.post("/learning/review", response_model=ReviewResponse)
    async def review_card(
        request: ReviewRequest,
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> ReviewResponse:
        """Record a rating for a card owned by the caller."""
        service = get_review_service()
        await service.verify_card_owner(request.card_id, x_user_id)
        result = await service.review_card(request.card_id, request.rating, request.level)
        return ReviewResponse(
            card_id=result.card_id,
            rating=result.rating.name.lower(),
            level=result.level,
            previous_state=result.previous_state.name.lower(),
            new_state=result.new_state.name.lower(),
            next_due=result.next_due,
            stability=result.stability,
            difficulty=result.difficulty,
            reps=result.reps,
            lapses=result.lapses,
            interval_days=result.interval_days,
        )

    @app.get("/learning/decks/{deck_id}/due", response_model=DueCardsResponse)
    async def due_cards(
        deck_id: str,
        x_user_id: str = Header(..., alias="X-User-Id"),
        limit: int | None = Query(default=None, ge=0),
        include_new: bool = Query(default=True),
        level: str | None = Query(default=None),
    ) -> DueCardsResponse:
        """Cards of a deck due now, most urgent first."""
        service = get_review_service()
        cards = await service.get_due_cards(
            deck_id,
            x_user_id,
            limit=limit,
            include_new=include_new,
            level=level,
        )
        return DueCardsResponse(
            deck_id=deck_id,
            cards=[
                DueCardItem(
                    id=c.id,
                    deck_id=c.deck_id,
                    card_type=c.card_type,
                    content=c.content,
                    position=c.position,
                    state=c.memory.state.name.lower(),
                    due=c.memory.due,
                    stability=c.memory.stability,
                    difficulty=c.memory.difficulty,
                    overdue=c.overdue,
                )
                for c in cards
            ],
        )

    @app.get("/learning/decks/{deck_id}/stats", response_model=DeckStatsResponse)
    async def deck_stats(
        deck_id: str,
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> DeckStatsResponse:
        """Review statistics of a deck."""
        stats = await get_review_service().get_deck_stats(deck_id, x_user_id)
        return DeckStatsResponse(**asdict(stats))

    @app.post("/learning/decks/{deck_id}/reset", response_class=JSONResponse)
    async def reset_deck(
        deck_id: str,
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> dict[str, Any]:
        """Forget the review history of every card in a deck."""
        count = await get_review_service().reset_deck(deck_id, x_user_id)
        return {"deck_id": deck_id, "cards_reset": count}

    @app.get("/learning/cards/{card_id}/preview", response_model=dict[str, PreviewItem])
    async def preview(
        card_id: str,
        x_user_id: str = Header(..., alias="X-User-Id"),
        level: str | None = Query(default=None),
    ) -> dict[str, PreviewItem]:
        """Next review date for each possible rating."""
        service = get_review_service()
        await service.verify_card_owner(card_id, x_user_id)
        previews = await service.preview_scheduling(card_id, level)
        return {
            rating.name.lower(): PreviewItem(due=p.due, interval_days=p.interval_days)
            for rating, p in previews.items()
        }

    @app.get("/quota", response_model=QuotaResponse)
    async def check_quota(x_user_id: str = Header(..., alias="X-User-Id")) -> QuotaResponse:
        """Whether the caller may start a tutoring request."""
        decision = await get_quota_manager().check_quota(x_user_id)
        return QuotaResponse(**asdict(decision))

    @app.post("/quota/usage", response_model=UsageResponse)
    async def record_usage(
        request: UsageRequest,
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> UsageResponse:
        """Record tokens spent on a response."""
        result = await get_quota_manager().increment_token_usage(x_user_id, request.tokens_used)
        return UsageResponse(**asdict(result))

    @app.get("/quota/stats", response_model=UsageStatsResponse)
    async def usage_stats(x_user_id: str = Header(..., alias="X-User-Id")) -> UsageStatsResponse:
        """Quota decision with weekly and lifetime counters."""
        stats = await get_quota_manager().get_usage_stats(x_user_id)
        return UsageStatsResponse(
            quota=QuotaResponse(**asdict(stats.quota)),
            weekly_tokens_used=stats.weekly_tokens_used,
            total_tokens_used=stats.total_tokens_used,
            total_messages_count=stats.total_messages_count,
        )

    @app.get("/quota/decks", response_model=DeckQuotaResponse)
    async def check_deck_quota(
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> DeckQuotaResponse:
        """Whether the caller may generate another deck."""
        decision = await get_quota_manager().check_deck_quota(x_user_id)
        return DeckQuotaResponse(**asdict(decision))

    @app.post("/quota/decks/usage", response_model=DeckUsageResponse)
    async def record_deck_usage(
        x_user_id: str = Header(..., alias="X-User-Id"),
    ) -> DeckUsageResponse:
        """Record one generated deck."""
        result = await get_quota_manager().increment_deck_usage(x_user_id)
        return DeckUsageResponse(**asdict(result))

    return app


# Application instance for uvicorn
app = create_app()
