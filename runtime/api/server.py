"""
FastAPI application entry point for the RepCoach runtime.

Responsibilities:
- build the services for one application instance (session stores, workout
  log, chat backend, coach and insights workflows)
- start / stop the session sweeps with the application lifespan
- include the coach routes under /coach and the insights routes under /insights

Run with:

    uvicorn runtime.api.server:app --reload
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from configs.settings import Settings, settings
from core.api.openai_client import OpenAIChatBackend
from core.coach.generators import (
    ChatBackend,
    InsightsAnswerGenerator,
    WorkoutPlanGenerator,
)
from runtime.agents.generation_workflow import GenerationWorkflow
from runtime.store.session_store import SessionStore
from runtime.store.workout_store import WorkoutStore
from . import coach_routes, insights_routes


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    chat_backend: Optional[ChatBackend] = None,
    workout_store: Optional[WorkoutStore] = None,
) -> FastAPI:
    """Build an application with its own, isolated set of services.

    `chat_backend` and `workout_store` default to the OpenAI backend and the
    file-backed workout log configured by `app_settings`.
    """
    cfg = app_settings or settings

    if workout_store is None:
        workout_store = WorkoutStore(
            data_dir=str(cfg.data_dir),
            history_days=cfg.history_days,
        )
    if chat_backend is None:
        chat_backend = OpenAIChatBackend(
            model=cfg.openai_model,
            temperature=cfg.temperature,
        )

    coach_workflow = GenerationWorkflow(
        session_store=SessionStore(
            session_timeout=cfg.session_timeout_seconds,
            sweep_interval=cfg.sweep_interval_seconds,
        ),
        generator=WorkoutPlanGenerator(chat_backend),
        context_source=workout_store,
        committer=workout_store,
        max_regenerations=cfg.max_regenerations,
        generation_timeout=cfg.generation_timeout_seconds,
    )
    insights_workflow = GenerationWorkflow(
        session_store=SessionStore(
            session_timeout=cfg.session_timeout_seconds,
            sweep_interval=cfg.sweep_interval_seconds,
        ),
        generator=InsightsAnswerGenerator(chat_backend),
        context_source=workout_store,
        generation_timeout=cfg.generation_timeout_seconds,
    )
    workflows = (coach_workflow, insights_workflow)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        for workflow in workflows:
            workflow.session_store.start()
        try:
            yield
        finally:
            for workflow in workflows:
                await workflow.shutdown()
                await workflow.session_store.stop()

    app = FastAPI(title="RepCoach Runtime", lifespan=lifespan)

    app.state.settings = cfg
    app.state.workout_store = workout_store
    app.state.coach_workflow = coach_workflow
    app.state.insights_workflow = insights_workflow

    app.include_router(coach_routes.router, prefix="/coach")
    app.include_router(insights_routes.router, prefix="/insights")

    @app.get("/healthz")
    def health_check():
        """
        Simple health check endpoint for uptime monitoring.
        """
        return {"status": "ok"}

    return app


app = create_app()
