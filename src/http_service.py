from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from src.api_server import health_router, router
from src.config import AUTO_ASSIGN_ENABLED, CORS_ORIGINS
from src.database import SessionLocal, init_db
from src.services import DispatchServices, build_services
from src.stores import rules as rule_store
from utils.logger import get_logger

logger = get_logger("http_service")


def create_app(
    session_factory: sessionmaker = SessionLocal,
    *,
    services: Optional[DispatchServices] = None,
    start_scheduler: bool = AUTO_ASSIGN_ENABLED,
) -> FastAPI:
    services = services or build_services(session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(bind=services.session_factory.kw["bind"])
        with services.session_factory() as db:
            with db.begin():
                rule_store.ensure_default(db)
        if start_scheduler:
            services.scheduler.start()
        try:
            yield
        finally:
            services.scheduler.stop(timeout=services.scheduler.tick_timeout_sec)

    app = FastAPI(
        title="Dispatch Assignment Engine",
        description="Order → rider assignment: scoring, race-free commit, batch and auto-assign",
        lifespan=lifespan,
    )
    app.state.services = services

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        # open transactions were already rolled back by their session blocks
        logger.exception(f"❌ {request.method} {request.url.path} failed", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": {"code": "INTERNAL_ERROR", "message": f"{type(exc).__name__}: {exc}"}},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(router)
    return app


app = create_app()
