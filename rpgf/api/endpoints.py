"""
rpgf/api/endpoints.py: FastAPI surface over the round services.

Identity is established upstream by the authentication layer and forwarded
as headers:
    X-User-Id          : authenticated user id (required for every mutation)
    X-Wallet-Address   : the user's wallet address

Endpoint summary:
    GET    /api/v1/health
    GET    /api/v1/rounds/{round_id}
    GET    /api/v1/rounds/{round_id}/voters
    PUT    /api/v1/rounds/{round_id}/voters
    GET    /api/v1/rounds/{round_id}/ballot
    PUT    /api/v1/rounds/{round_id}/ballot
    GET    /api/v1/rounds/{round_id}/ballots/stats
    GET    /api/v1/rounds/{round_id}/ballots/export
    GET    /api/v1/rounds/{round_id}/custom-datasets
    POST   /api/v1/rounds/{round_id}/custom-datasets
    PUT    /api/v1/custom-datasets/{dataset_id}/rows          (text/csv body)
    PATCH  /api/v1/custom-datasets/{dataset_id}
    GET    /api/v1/custom-datasets/{dataset_id}/download
    DELETE /api/v1/custom-datasets/{dataset_id}
    GET    /api/v1/applications/{application_id}
    GET    /api/v1/rounds/{round_id}/applications/export?format=json|csv
    POST   /api/v1/rounds/{round_id}/results/recalculate
    POST   /api/v1/rounds/{round_id}/results/import
    POST   /api/v1/rounds/{round_id}/results/publish
    GET    /api/v1/rounds/{round_id}/results
    GET    /api/v1/rounds/{round_id}/audit-logs?limit=50&next=<cursor>
    POST   /api/testing/force-round-state   (only with enable_dangerous_test_routes)
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from rpgf import __version__
from rpgf.core import RPGFServices
from rpgf.errors import AuthorizationError, RPGFError, ValidationError
from rpgf.models import RoundPhase

logger = logging.getLogger(__name__)


# ── Request models ────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    version: str


class SetVotersRequest(BaseModel):
    walletAddresses: list[str]


class BallotRequest(BaseModel):
    # Values stay untyped so that non-numeric votes reach the domain validator.
    ballot: dict[str, Any]


class CreateDatasetRequest(BaseModel):
    name: str


class DatasetVisibilityRequest(BaseModel):
    isPublic: bool


class RecalculateRequest(BaseModel):
    method: Optional[str] = None


class ImportResultsRequest(BaseModel):
    results: dict[str, Any]


class ForceRoundStateRequest(BaseModel):
    roundSlug: str
    desiredState: Optional[str] = None


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise AuthorizationError("Authentication required.")
    return user_id


def _parse_phase(value: Optional[str]) -> Optional[RoundPhase]:
    if value is None:
        return None
    try:
        return RoundPhase(value.strip().lower())
    except ValueError:
        allowed = ", ".join(p.value for p in RoundPhase)
        raise ValidationError(f"Unknown round state '{value}'. Expected one of: {allowed}.")


def _round_dict(round_, phase: RoundPhase) -> dict:
    schedule = round_.schedule
    return {
        "id": round_.id,
        "slug": round_.slug,
        "name": round_.name,
        "published": round_.published,
        "state": phase.value,
        "phaseOverride": round_.phase_override.value if round_.phase_override else None,
        "schedule": None if schedule is None else {
            "applicationPeriodStart": schedule.application_period_start.isoformat(),
            "applicationPeriodEnd": schedule.application_period_end.isoformat(),
            "votingPeriodStart": schedule.voting_period_start.isoformat(),
            "votingPeriodEnd": schedule.voting_period_end.isoformat(),
            "resultsPeriodStart": schedule.results_period_start.isoformat(),
        },
        "resultsCalculated": round_.results_calculated,
        "resultsPublished": round_.results_published,
    }


def create_app(services: RPGFServices) -> FastAPI:
    """
    Create the RPGF FastAPI application over already-wired services.

    Args:
        services: RPGFServices from rpgf.core.build_services. Its config decides
                  whether the testing-only phase override route is registered.

    Returns:
        Configured FastAPI application instance.
    """
    config = services.config
    app = FastAPI(
        title=config.api_title,
        version=__version__,
        description="Round lifecycle, voting and results for Retroactive Public Goods Funding.",
    )

    # ── Error mapping ─────────────────────────────────────────────────────────

    @app.exception_handler(RPGFError)
    async def _rpgf_error_handler(request: Request, exc: RPGFError) -> JSONResponse:
        messages = exc.messages if isinstance(exc, ValidationError) else [exc.message]
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "messages": messages},
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Invalid request.", "messages": messages})

    # ── System ────────────────────────────────────────────────────────────────

    @app.get("/api/v1/health", response_model=HealthResponse, tags=["system"])
    def health() -> dict:
        """Liveness check."""
        return {"status": "ok", "version": __version__}

    # ── Rounds ────────────────────────────────────────────────────────────────

    @app.get("/api/v1/rounds/{round_id}", tags=["rounds"])
    def get_round(round_id: str) -> dict:
        round_ = services.rounds.get_round(round_id)
        return _round_dict(round_, services.rounds.current_phase(round_id))

    # ── Voters ────────────────────────────────────────────────────────────────

    @app.get("/api/v1/rounds/{round_id}/voters", tags=["voters"])
    def get_round_voters(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        voters = services.roster.get_round_voters(round_id, _require_user(x_user_id))
        return {"voters": [v.to_dict() for v in voters]}

    @app.put("/api/v1/rounds/{round_id}/voters", tags=["voters"])
    def set_round_voters(
        round_id: str, body: SetVotersRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        voters = services.roster.set_round_voters(round_id, body.walletAddresses, _require_user(x_user_id))
        return {"voters": [v.to_dict() for v in voters]}

    # ── Ballots ───────────────────────────────────────────────────────────────

    @app.get("/api/v1/rounds/{round_id}/ballot", tags=["ballots"])
    def get_own_ballot(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        ballot = services.ballots.get_ballot(round_id, _require_user(x_user_id))
        return {"ballot": ballot.to_dict() if ballot else None}

    @app.put("/api/v1/rounds/{round_id}/ballot", tags=["ballots"])
    def cast_ballot(
        round_id: str, body: BallotRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        ballot = services.ballots.cast_ballot(round_id, _require_user(x_user_id), body.ballot)
        return {"ballot": ballot.to_dict()}

    @app.get("/api/v1/rounds/{round_id}/ballots/stats", tags=["ballots"])
    def ballot_stats(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        stats = services.ballots.ballot_stats(round_id, _require_user(x_user_id))
        return {"numberOfVoters": stats.number_of_voters, "numberOfBallots": stats.number_of_ballots}

    @app.get("/api/v1/rounds/{round_id}/ballots/export", tags=["ballots"])
    def export_ballots(round_id: str, x_user_id: Optional[str] = Header(None)) -> PlainTextResponse:
        text = services.ballots.export_ballots_csv(round_id, _require_user(x_user_id))
        return PlainTextResponse(
            text,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="ballots-{round_id}.csv"'},
        )

    # ── Custom datasets ───────────────────────────────────────────────────────

    @app.get("/api/v1/rounds/{round_id}/custom-datasets", tags=["datasets"])
    def list_datasets(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        datasets = services.datasets.list_datasets(round_id, x_user_id)
        return {"datasets": [d.to_dict() for d in datasets]}

    @app.post("/api/v1/rounds/{round_id}/custom-datasets", status_code=201, tags=["datasets"])
    def create_dataset(
        round_id: str, body: CreateDatasetRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        dataset = services.datasets.create_dataset(round_id, body.name, _require_user(x_user_id))
        return dataset.to_dict()

    @app.put("/api/v1/custom-datasets/{dataset_id}/rows", tags=["datasets"])
    async def upload_dataset_rows(
        dataset_id: str, request: Request, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        """Replace the dataset's rows with the raw CSV request body."""
        user_id = _require_user(x_user_id)
        raw = await request.body()
        try:
            csv_text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV must be UTF-8 encoded.")
        dataset = await run_in_threadpool(services.datasets.upload_rows, dataset_id, csv_text, user_id)
        return dataset.to_dict()

    @app.patch("/api/v1/custom-datasets/{dataset_id}", tags=["datasets"])
    def set_dataset_visibility(
        dataset_id: str, body: DatasetVisibilityRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        dataset = services.datasets.set_visibility(dataset_id, body.isPublic, _require_user(x_user_id))
        return dataset.to_dict()

    @app.get("/api/v1/custom-datasets/{dataset_id}/download", tags=["datasets"])
    def download_dataset(dataset_id: str, x_user_id: Optional[str] = Header(None)) -> PlainTextResponse:
        text = services.datasets.download_dataset(dataset_id, x_user_id)
        return PlainTextResponse(text, media_type="text/csv")

    @app.delete("/api/v1/custom-datasets/{dataset_id}", status_code=204, tags=["datasets"])
    def delete_dataset(dataset_id: str, x_user_id: Optional[str] = Header(None)) -> None:
        services.datasets.delete_dataset(dataset_id, _require_user(x_user_id))

    # ── Applications ──────────────────────────────────────────────────────────

    @app.get("/api/v1/applications/{application_id}", tags=["applications"])
    def get_application(application_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        return services.applications.get_application(application_id, x_user_id)

    @app.get("/api/v1/rounds/{round_id}/applications/export", tags=["applications"])
    def export_applications(
        round_id: str,
        fmt: str = Query("json", alias="format"),
        x_user_id: Optional[str] = Header(None),
    ):
        exported = services.applications.export_applications(round_id, x_user_id, fmt)
        if isinstance(exported, str):
            return PlainTextResponse(exported, media_type="text/csv")
        return {"applications": exported}

    # ── Results ───────────────────────────────────────────────────────────────

    @app.post("/api/v1/rounds/{round_id}/results/recalculate", tags=["results"])
    def recalculate_results(
        round_id: str, body: RecalculateRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        results = services.results.recalculate_results(round_id, body.method, _require_user(x_user_id))
        return {"results": [r.to_dict() for r in results]}

    @app.post("/api/v1/rounds/{round_id}/results/import", tags=["results"])
    def import_results(
        round_id: str, body: ImportResultsRequest, x_user_id: Optional[str] = Header(None)
    ) -> dict:
        results = services.results.import_results(round_id, body.results, _require_user(x_user_id))
        return {"results": [r.to_dict() for r in results]}

    @app.post("/api/v1/rounds/{round_id}/results/publish", tags=["results"])
    def publish_results(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        results = services.results.publish_results(round_id, _require_user(x_user_id))
        return {"results": [r.to_dict() for r in results]}

    @app.get("/api/v1/rounds/{round_id}/results", tags=["results"])
    def get_results(round_id: str, x_user_id: Optional[str] = Header(None)) -> dict:
        results = services.results.get_results(round_id, x_user_id)
        return {"results": [r.to_dict() for r in results]}

    # ── Audit log ─────────────────────────────────────────────────────────────

    @app.get("/api/v1/rounds/{round_id}/audit-logs", tags=["audit"])
    def list_audit_logs(
        round_id: str,
        limit: Optional[int] = Query(None),
        next_cursor: Optional[str] = Query(None, alias="next"),
        x_user_id: Optional[str] = Header(None),
    ) -> dict:
        page = services.audit.list_logs(round_id, _require_user(x_user_id), limit, next_cursor)
        return page.to_dict()

    # ── Testing-only control surface ──────────────────────────────────────────

    if config.enable_dangerous_test_routes:
        logger.warning("Dangerous test routes are ENABLED. Never run this configuration in production.")

        @app.post("/api/testing/force-round-state", tags=["testing"])
        def force_round_state(body: ForceRoundStateRequest) -> dict:
            round_ = services.rounds.force_round_phase(body.roundSlug, _parse_phase(body.desiredState))
            return _round_dict(round_, services.rounds.current_phase(round_.id))

    logger.info("RPGF FastAPI application created (%d routes).", len(app.routes))
    return app
