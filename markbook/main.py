"""
Point d'entrée principal de l'API Markbook.
Démarrage : uvicorn markbook.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from markbook.config import settings
from markbook.database import SessionLocal, init_db
from markbook.dependencies import get_roster_index
from markbook.routers import students, uploads
from markbook.services import student_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie : crée les tables puis charge le registre de l'enseignant dans l'index."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s : %(message)s",
    )
    init_db()
    db = SessionLocal()
    try:
        student_service.load_roster(db, settings.TEACHER_ID, get_roster_index())
    finally:
        db.close()
    logger.info("API Markbook démarrée (env=%s)", settings.ENV)
    yield


app = FastAPI(
    title="Markbook API",
    description="API d'assignation des copies d'évaluation aux élèves par QR code",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : l'application tablette tourne en local pendant le développement.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)


app.include_router(students.router)
app.include_router(uploads.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte les exceptions non gérées pour que la réponse 500 passe par
    CORSMiddleware et garde ses headers CORS.
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "Markbook API", "version": "0.1.0"}
