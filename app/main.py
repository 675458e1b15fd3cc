import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from app import settings
from app.routers import booking, cron, host

TORTOISE_MODULES = {"models": ["app.models"]}


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=settings.GENERATE_SCHEMAS,
    ):
        logger.info("Bookings service started")
        yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Homestay bookings", lifespan=lifespan)
    app.include_router(booking.router)
    app.include_router(cron.router)
    app.include_router(host.router)
    return app


app = create_app()
