"""FastAPI application exposing the sync and anomaly-detection triggers."""

from __future__ import annotations

import logging
from typing import Literal

from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.engine import Engine

from adsentry.db.session import create_engine_from_env
from adsentry.jobs.anomalies import run_anomaly_detection
from adsentry.jobs.sync import UnknownProfileError, run_entity_sync

logger = logging.getLogger(__name__)

app = FastAPI(title="Adsentry API")


class SyncParams(BaseModel):
    profile_id: str
    entity: Literal["campaigns", "ad_groups", "ads", "targets", "all"] = "all"
    mode: Literal["full", "incremental"] = "incremental"


class AnomalyParams(BaseModel):
    profile_id: str | None = None
    scope: Literal["campaign", "ad_group", "account"] = "campaign"
    window: Literal["intraday", "daily"] = "intraday"


class InvalidParams(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def get_engine() -> Engine:
    return create_engine_from_env()


def sync_params(
    profile_id: str | None = Query(None, alias="profileId"),
    entity: str = Query("all"),
    mode: str = Query("incremental"),
) -> SyncParams:
    if not profile_id:
        raise InvalidParams("profileId is required")
    return _validate(SyncParams, profile_id=profile_id, entity=entity, mode=mode)


def anomaly_params(
    profile_id: str | None = Query(None, alias="profileId"),
    scope: str = Query("campaign"),
    window: str = Query("intraday"),
) -> AnomalyParams:
    return _validate(AnomalyParams, profile_id=profile_id or None, scope=scope, window=window)


def _validate(model: type[BaseModel], **values):
    try:
        return model(**values)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][-1]) for err in exc.errors())
        raise InvalidParams(f"Invalid value for {fields}") from exc


@app.exception_handler(InvalidParams)
async def invalid_params_handler(request, exc: InvalidParams) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=400)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.api_route("/sync", methods=["GET", "POST"])
async def sync(params: SyncParams = Depends(sync_params), engine: Engine = Depends(get_engine)) -> JSONResponse:
    try:
        summary = await run_entity_sync(params.profile_id, params.entity, params.mode, engine=engine)
    except UnknownProfileError as exc:
        return JSONResponse({"error": str(exc)}, status_code=404)
    except Exception as exc:
        logger.exception("Sync trigger failed for profile %s", params.profile_id)
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse(summary)


@app.api_route("/anomalies/run", methods=["GET", "POST"])
async def run_anomalies(
    params: AnomalyParams = Depends(anomaly_params), engine: Engine = Depends(get_engine)
) -> JSONResponse:
    try:
        summary = await run_anomaly_detection(params.profile_id, params.scope, params.window, engine=engine)
    except Exception as exc:
        logger.exception("Anomaly detection trigger failed")
        return JSONResponse({"error": str(exc)}, status_code=500)
    return JSONResponse(summary)
