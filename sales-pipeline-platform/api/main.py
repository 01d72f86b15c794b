"""
Sales Pipeline Platform API - Main Application.

FastAPI application with CORS enabled for the back-office frontend.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from api import __version__

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI application
app = FastAPI(
    title="Sales Pipeline Platform API",
    description="Sale lifecycle, operational steps, alerts and executive reporting",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# TODO: Restrict origins to the back-office domain once it is deployed
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status, version and configured store backend.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "sales-pipeline-platform-api",
        "store_backend": config.STORE_BACKEND,
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Sales Pipeline Platform API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import reports, sales

app.include_router(sales.router, prefix="/api/v1", tags=["Sales"])
app.include_router(reports.router, prefix="/api/v1", tags=["Reports"])
