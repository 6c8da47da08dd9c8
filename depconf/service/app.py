"""FastAPI application exposing dry-run planning as a service."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Callable, List, Optional

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import ConfigError, load_settings
from ..errors import AmbiguousScopeError, HostClientError, OverrideParseError
from ..github import GitHubClient
from ..orchestrator import Orchestrator, RepositoryOutcome, RunOptions, RunSummary
from ..reconciler import Skip
from ..rules import load_rules
from ..stores import EcosystemCache


class PlanRequest(BaseModel):
    organization: str
    repositories: List[str] = Field(default_factory=list)
    force_new: bool = False
    only_existing: bool = False


class EcosystemModel(BaseModel):
    name: str
    directory: str


class RepositoryPlan(BaseModel):
    repository: str
    action: str
    reason: Optional[str] = None
    ecosystems: List[EcosystemModel] = Field(default_factory=list)
    config: Optional[str] = None
    error: Optional[str] = None


class PlanResponse(BaseModel):
    repositories: List[RepositoryPlan]
    counts: dict[str, int]


class HealthResponse(BaseModel):
    status: str


def _default_orchestrator() -> Orchestrator:
    settings = load_settings()
    host = GitHubClient(
        token=settings.require_token(),
        api_base_url=settings.api_url,
        timeout_seconds=settings.request_timeout,
    )
    overrides = os.environ.get("DEPCONF_OVERRIDES")
    cache = os.environ.get("DEPCONF_CACHE")
    return Orchestrator(
        host,
        load_rules(Path(overrides) if overrides else None),
        cache=EcosystemCache(Path(cache) if cache else None),
        settings=settings,
    )


def create_app(
    orchestrator_factory: Callable[[], Orchestrator] = _default_orchestrator,
) -> FastAPI:
    """Create the FastAPI application exposing depconf planning."""

    app = FastAPI(title="depconf", version="1.0.0")

    async def get_orchestrator() -> Orchestrator:
        return orchestrator_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.post("/plan", response_model=PlanResponse)
    async def plan(
        payload: PlanRequest,
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> PlanResponse:
        options = RunOptions(
            force_new=payload.force_new,
            only_existing=payload.only_existing,
            repositories=tuple(payload.repositories),
        )

        def _run_plan() -> RunSummary:
            return orchestrator.run(payload.organization, options, dispatch=False)

        loop = asyncio.get_running_loop()
        summary = await loop.run_in_executor(None, _run_plan)
        plans = sorted(
            (_to_plan(outcome) for outcome in summary.outcomes),
            key=lambda item: item.repository,
        )
        return PlanResponse(repositories=plans, counts=summary.counts())

    @app.exception_handler(HostClientError)
    async def host_error_handler(_: Any, exc: HostClientError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(OverrideParseError)
    async def override_error_handler(_: Any, exc: OverrideParseError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(AmbiguousScopeError)
    async def ambiguous_error_handler(_: Any, exc: AmbiguousScopeError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    return app


def _to_plan(outcome: RepositoryOutcome) -> RepositoryPlan:
    action = outcome.action
    document = getattr(action, "document", None)
    return RepositoryPlan(
        repository=outcome.repository.full_name,
        action=outcome.kind,
        reason=action.reason if isinstance(action, Skip) else None,
        ecosystems=[
            EcosystemModel(name=ecosystem.name, directory=ecosystem.directory)
            for ecosystem in outcome.ecosystems
        ],
        config=document.text if document is not None else None,
        error=outcome.error,
    )


def run_service(host: str = "0.0.0.0", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)
