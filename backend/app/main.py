import logging
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from app.core.config import Settings, settings as default_settings
from app.core.database import Base, build_engine, build_session_factory
from app.services.broadcaster import RosterBroadcaster
from app.api.routes import auth, realtime, users

# Import models so their tables are registered on Base.metadata
from app.models import user as _user_model  # noqa: F401

logger = logging.getLogger(__name__)


def _missing_fields(exc: RequestValidationError) -> list[str]:
    fields = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "path", "query")]
        if loc:
            fields.append(".".join(loc))
    return fields


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report missing/empty fields and bad path params as 400 instead of 422"""
    fields = _missing_fields(exc)
    if fields:
        detail = f"Missing or invalid field(s): {', '.join(fields)}."
    else:
        detail = "All fields are required."
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    broadcaster: Optional[RosterBroadcaster] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    A session factory over the engine and the broadcaster are stored on
    app.state and handed to route handlers through dependencies, so tests can
    pass an in-memory engine and a fresh broadcaster.
    """
    settings = settings or default_settings
    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)
    broadcaster = broadcaster or RosterBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: create tables and check the database is reachable.
        A failed check aborts startup.
        """
        try:
            Base.metadata.create_all(bind=engine)
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database connection error")
            raise
        logger.info("Database connected")
        yield

    app = FastAPI(
        title="User Admin API",
        description="User directory administration with live roster updates",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.broadcaster = broadcaster

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # All HTTP routes are prefixed with /api
    app.include_router(auth.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(realtime.router)

    @app.get("/health")
    async def health():
        """Health check endpoint - used by monitoring/deployment tools"""
        return {"status": "healthy"}

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=default_settings.LOG_LEVEL.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=default_settings.HOST,
        port=default_settings.PORT,
    )


if __name__ == "__main__":
    run()
