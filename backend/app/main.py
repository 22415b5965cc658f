# /backend/app/main.py

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.config import settings
from app.database import connect_to_postgres, close_postgres_connection, get_engine
from app.routes import analyze, email, rates
from app.services.analyzer import BillAnalyzer, config_from_settings
from app.services.matcher import build_matcher
from app.services.reference_table import startup_reference_table

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)


def build_analyzer() -> BillAnalyzer:
    """Wire the configured matcher and analysis policies together"""
    engine = get_engine()
    table = None
    if settings.MATCH_STRATEGY == "keyword":
        table = startup_reference_table(settings.REFERENCE_SOURCE, engine)
    matcher = build_matcher(
        settings.MATCH_STRATEGY,
        engine=engine,
        table=table,
        threshold=settings.SIMILARITY_THRESHOLD,
    )
    return BillAnalyzer(matcher, config_from_settings(settings))

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events"""
    # Startup
    print("🚀 Starting up...")
    connect_to_postgres()
    app.state.analyzer = build_analyzer()
    print(f"✅ Application ready! (match strategy: {settings.MATCH_STRATEGY})")
    yield
    # Shutdown
    print("🛑 Shutting down...")
    close_postgres_connection()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Medical bill duplicate and overpricing analysis API",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analyze.router, prefix="/api/v1")
app.include_router(email.router, prefix="/api/v1")
app.include_router(rates.router, prefix="/api/v1")

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Welcome to Fee-ver",
        "version": settings.VERSION,
        "docs": "/docs"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "database": get_engine() is not None,
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
