"""REST API for the card valuation engine."""

from __future__ import annotations

import asyncio

from fastapi import FastAPI, HTTPException, Query
from pydantic import ValidationError

from cardvalue.api.schemas import (
    GridStatusResponse,
    MultiplierLookupResponse,
    RebuildRequest,
    RebuildResponse,
    ValuationRequest,
)
from cardvalue.config.positions import bracket_for, clamp_age, get_position
from cardvalue.config.settings import ValuationSettings, load_settings
from cardvalue.models import Clock, MarketValueResult, PlayerProfile, system_clock
from cardvalue.multipliers.builder import GridBuilder
from cardvalue.persistence import DEFAULT_DB_PATH, MarketStore
from cardvalue.valuation import ValuationService


def create_app(
    store: MarketStore | None = None,
    *,
    settings: ValuationSettings | None = None,
    clock: Clock = system_clock,
) -> FastAPI:
    app = FastAPI(title="cardvalue")
    settings = settings or load_settings()
    store = store or MarketStore(DEFAULT_DB_PATH, clock=clock)
    service = ValuationService(store, settings=settings, clock=clock)
    builder = GridBuilder(store, settings=settings, clock=clock, on_publish=service.grid_provider.publish)
    app.state.market_store = store
    app.state.valuation_service = service
    app.state.grid_builder = builder

    async def _resolve_profile(payload: ValuationRequest) -> PlayerProfile:
        if payload.has_profile:
            data = payload.model_dump()
        else:
            stored = await asyncio.to_thread(store.get_player, payload.player_id)
            if stored is None:
                raise HTTPException(status_code=404, detail="Player not found")
            return stored
        try:
            return PlayerProfile(**data)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/valuations", response_model=MarketValueResult)
    async def value_player(payload: ValuationRequest) -> MarketValueResult:
        profile = await _resolve_profile(payload)
        return await service.value_player(profile)

    @app.post("/multipliers/rebuild", response_model=RebuildResponse)
    async def rebuild_multipliers(payload: RebuildRequest | None = None) -> RebuildResponse:
        payload = payload or RebuildRequest()
        result = await asyncio.to_thread(
            builder.rebuild,
            payload.window_days,
            payload.min_sample_size,
            payload.force_update,
        )
        return RebuildResponse(**result.as_dict())

    @app.get("/multipliers/status", response_model=GridStatusResponse)
    async def multiplier_status(history: int = Query(default=5, ge=1, le=50)) -> GridStatusResponse:
        info = await asyncio.to_thread(builder.latest_update_info, history)
        return GridStatusResponse(**info)

    @app.get("/multipliers/lookup", response_model=MultiplierLookupResponse)
    async def lookup_multiplier(
        position: str,
        age: int = Query(..., ge=1, le=60),
        overall: int = Query(..., ge=1, le=99),
    ) -> MultiplierLookupResponse:
        try:
            code = get_position(position).code
        except KeyError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        grid = await asyncio.to_thread(service.grid_provider.current)
        entry = grid.entry_for(code, age, overall)
        return MultiplierLookupResponse(
            position=code,
            age=clamp_age(age),
            overall=overall,
            overall_bracket=bracket_for(overall).label,
            multiplier=grid.lookup(code, age, overall),
            source="grid" if entry is not None else "theoretical",
            sample_size=entry.sample_size if entry is not None else 0,
            confidence_score=entry.confidence_score if entry is not None else None,
        )

    return app
