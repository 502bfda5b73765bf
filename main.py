import asyncio
import contextlib

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import auth as auth_routes
from app.core.config import settings
from app.core.db import Base, engine
from app.core.logging import get_logger
from app.core.redis import RedisClient
from app.workers import otp_sweeper

logger = get_logger("app")


def create_app() -> FastAPI:
    app = FastAPI(title=settings.api_title, version=settings.api_version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(auth_routes.router)

    @app.on_event("startup")
    async def on_startup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        if settings.otp.sweep_enabled:
            app.state.sweeper = asyncio.create_task(otp_sweeper.run_forever())

    @app.on_event("shutdown")
    async def on_shutdown():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper
        await RedisClient.close()
        await engine.dispose()
        logger.info("shutdown complete")

    @app.get("/", tags=["misc"])
    async def root():
        return {"message": "CardCRM Auth API"}

    @app.get("/health", tags=["misc"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
