import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from rosmon import __version__
from rosmon.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from rosmon.database import init_db
from rosmon.routers import devices, tenants
from rosmon.services.poller import start_pollers, stop_pollers
from rosmon.services.registry import get_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await get_registry().load()
    await start_pollers()
    logger.info(f"RouterOS monitoring {__version__} started")

    yield

    await stop_pollers()


app = FastAPI(
    title="RouterOS Monitoring API",
    version=__version__,
    lifespan=lifespan,
)

cors_origins = []
if settings.domain:
    cors_origins = [f"https://{settings.domain}"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)

app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(devices.router)
app.include_router(tenants.router)


@app.get("/health")
async def health():
    """Health check - minimal info without auth"""
    return {"status": "ok"}
