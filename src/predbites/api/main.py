"""FastAPI backend for the prediction staking service."""

from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import Body, Depends, FastAPI, Header, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from predbites import __version__
from predbites.api.schemas import (
    AutoSettleRequest,
    CreatePredictionRequest,
    EditPredictionRequest,
    ErrorResponse,
    HealthResponse,
    LeaderboardEntry,
    LeaderboardResponse,
    OddsResponse,
    PlaceStakeRequest,
    PredictionsListResponse,
    SettleRequest,
    VoidRequest,
)
from predbites.config import configure_logging, get_settings
from predbites.errors import PredictionError, ValidationError
from predbites.models import MatchResult, SettlementResult, StakeReceipt
from predbites.serialize import PredictionView
from predbites.service import PredictionService

log = structlog.get_logger(__name__)

# Set by run_api() so the lifespan builds the service from the right profile.
_config_profile: str | None = None

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


def get_service(request: Request) -> PredictionService:
    return request.app.state.service


def caller(x_user: str | None = Header(None, alias="X-User")) -> str | None:
    """Caller identity. Session auth happens upstream; it forwards the account name."""
    return (x_user or "").strip() or None


def _require_confirm(confirm: bool, action: str) -> None:
    if not confirm:
        raise ValidationError(f"{action} is irreversible; resend with confirm=true", {"field": "confirm"})


def create_app(service: PredictionService | None = None) -> FastAPI:
    """Build the app. Without an injected service one is built from config at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if app.state.service is None:
            settings = get_settings(_config_profile)
            configure_logging(settings)
            owned = PredictionService.from_settings(settings)
            app.state.service = owned
        yield
        if owned is not None:
            owned.close()
            app.state.service = None

    app = FastAPI(title="Prediction Bites API", version=__version__, lifespan=lifespan)
    app.state.service = service
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])

    @app.exception_handler(PredictionError)
    async def prediction_error_handler(request: Request, exc: PredictionError) -> JSONResponse:
        if exc.status_code >= 500:
            log.warning("request_failed", path=request.url.path, code=exc.code, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Invalid request", {"errors": jsonable_encoder(exc.errors())})
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/predictions", response_model=PredictionsListResponse, responses=ERROR_RESPONSES)
    def predictions_list(
        status: str | None = Query(None, description="OPEN, LOCKED, SETTLING, SETTLED, VOID, REFUNDED"),
        sport: str | None = Query(None),
        creator: str | None = Query(None),
        cursor: str | None = Query(None, description="next_cursor from the previous page"),
        limit: int = Query(20, ge=1, le=50),
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> PredictionsListResponse:
        """Soonest-locking first; SETTLED listings newest first."""
        views, next_cursor = svc.list_predictions(
            status=status, sport=sport, creator=creator, cursor=cursor, limit=limit, viewer=user
        )
        return PredictionsListResponse(predictions=views, next_cursor=next_cursor)

    @app.post("/predictions", response_model=PredictionView, status_code=201, responses=ERROR_RESPONSES)
    def predictions_create(
        body: CreatePredictionRequest,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> PredictionView:
        creator_stake = None
        if body.creator_stake is not None:
            creator_stake = (body.creator_stake.outcome_index, body.creator_stake.amount)
        return svc.create_prediction(
            user,
            body.title,
            body.outcomes,
            body.locks_at,
            sport_category=body.sport_category,
            match_reference=body.match_reference,
            creator_stake=creator_stake,
        )

    # Declared before /predictions/{prediction_id} so it is not captured as an id.
    @app.get("/predictions/leaderboard", response_model=LeaderboardResponse, responses=ERROR_RESPONSES)
    def predictions_leaderboard(
        sort: str = Query("profit", description="profit, wins or staked"),
        period: str = Query("all", description="all, week or month"),
        limit: int = Query(20, ge=1, le=50),
        svc: PredictionService = Depends(get_service),
    ) -> LeaderboardResponse:
        rows = svc.leaderboard(sort=sort, period=period, limit=limit)
        return LeaderboardResponse(sort=sort, period=period, entries=[LeaderboardEntry(**r) for r in rows])

    @app.get("/predictions/{prediction_id}", response_model=PredictionView, responses=ERROR_RESPONSES)
    def predictions_detail(
        prediction_id: str,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> PredictionView:
        return svc.get_prediction(prediction_id, viewer=user)

    @app.patch("/predictions/{prediction_id}", response_model=PredictionView, responses=ERROR_RESPONSES)
    def predictions_edit(
        prediction_id: str,
        body: EditPredictionRequest,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> PredictionView:
        """Only while OPEN and before the first stake."""
        return svc.edit_prediction(prediction_id, user, **body.model_dump(exclude_unset=True))

    @app.delete("/predictions/{prediction_id}", status_code=204, responses=ERROR_RESPONSES)
    def predictions_delete(
        prediction_id: str,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> Response:
        svc.delete_prediction(prediction_id, user)
        return Response(status_code=204)

    @app.get("/predictions/{prediction_id}/odds", response_model=OddsResponse, responses=ERROR_RESPONSES)
    def predictions_odds(prediction_id: str, svc: PredictionService = Depends(get_service)) -> OddsResponse:
        return OddsResponse(prediction_id=prediction_id, outcomes=svc.get_odds(prediction_id))

    @app.post(
        "/predictions/{prediction_id}/stakes",
        response_model=StakeReceipt,
        status_code=201,
        responses={**ERROR_RESPONSES, 422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    )
    def predictions_stake(
        prediction_id: str,
        body: PlaceStakeRequest,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> StakeReceipt:
        return svc.place_stake(prediction_id, body.outcome_id, user, body.amount)

    @app.post("/predictions/{prediction_id}/lock", response_model=PredictionView, responses=ERROR_RESPONSES)
    def predictions_lock(
        prediction_id: str,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> PredictionView:
        return svc.lock_prediction(prediction_id, user)

    @app.post("/predictions/{prediction_id}/settle", response_model=SettlementResult, responses=ERROR_RESPONSES)
    def predictions_settle(
        prediction_id: str,
        body: SettleRequest,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> SettlementResult:
        _require_confirm(body.confirm, "Settlement")
        return svc.settle_prediction(prediction_id, body.winning_outcome_id, user)

    @app.post("/predictions/{prediction_id}/void", response_model=SettlementResult, responses=ERROR_RESPONSES)
    def predictions_void(
        prediction_id: str,
        body: VoidRequest,
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> SettlementResult:
        _require_confirm(body.confirm, "Voiding")
        return svc.void_prediction(prediction_id, body.reason, user)

    @app.post("/predictions/{prediction_id}/auto-settle", response_model=SettlementResult, responses=ERROR_RESPONSES)
    def predictions_auto_settle(
        prediction_id: str,
        body: AutoSettleRequest = Body(...),
        user: str | None = Depends(caller),
        svc: PredictionService = Depends(get_service),
    ) -> SettlementResult:
        match = MatchResult(**body.model_dump())
        return svc.auto_settle_prediction(prediction_id, match, user)

    return app


app = create_app()


def run_api(host: str = "127.0.0.1", port: int = 8000, profile: str | None = None) -> None:
    global _config_profile
    _config_profile = profile
    import uvicorn

    uvicorn.run("predbites.api.main:app", host=host, port=port, reload=False)
