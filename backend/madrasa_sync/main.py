"""
Point d'entrée de l'API locale de l'appareil (interface ↔ noyau de synchronisation).
Démarrage : uvicorn madrasa_sync.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from madrasa_sync import bootstrap
from madrasa_sync.routers import locks, sync

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application : construit, démarre et arrête le moteur de synchronisation."""
    engine = bootstrap.build_engine()
    app.state.sync_engine = engine
    engine.start()
    yield
    engine.stop()


app = FastAPI(
    title="Madrasa Sync API",
    description="API locale de synchronisation offline-first (présences, namaz, congés, remarques)",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : l'interface web tourne sur localhost pendant le développement
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)


app.include_router(sync.router)
app.include_router(locks.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour que la réponse 500
    passe par CORSMiddleware (headers CORS inclus côté navigateur).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API locale est opérationnelle."""
    return {"status": "ok", "service": "Madrasa Sync API", "version": "0.1.0"}
