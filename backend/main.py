import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from core.logging_config import configure_logging
from db.database import async_session_maker, create_db_and_tables, engine
from routers.inventory import router as inventory_router
from routers.menu import router as menu_router
from services.registry import build_services

logger = logging.getLogger("inventory.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await create_db_and_tables()
    app.state.services = build_services(async_session_maker)
    if settings.reservation_sweep_enabled:
        app.state.services.sweeper.start()
    logger.info("Inventory service started")
    yield
    await app.state.services.sweeper.stop()
    await engine.dispose()


app = FastAPI(
    title="Cafe Inventory API",
    description="Inventory reservations for cafe orders",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}


app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(menu_router, prefix="/menu", tags=["menu"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
