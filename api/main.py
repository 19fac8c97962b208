"""
Sales Pipeline API - Main Application.

FastAPI application with CORS enabled for frontend communication.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__

# Create FastAPI application
app = FastAPI(
    title="Sales Pipeline API",
    description="Referral teams, lead pipeline and commissions for sales dashboards",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS - Allow all origins for development
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

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "sales-pipeline-api"
    }


@app.get("/", tags=["Root"])
def root():
    return {
        "message": "Sales Pipeline API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import admin, commissions, leads, team

app.include_router(team.router, prefix="/api/v1", tags=["Team"])
app.include_router(leads.router, prefix="/api/v1", tags=["Leads"])
app.include_router(commissions.router, prefix="/api/v1", tags=["Commissions"])
app.include_router(admin.router, prefix="/api/v1", tags=["Admin"])
