"""
Disruption Hub - FastAPI Application

Main entry point for the Disruption Hub backend.

Request flow:
- Bearer token -> TokenAuthority.resolve -> Identity (live account state)
- Identity -> Authorization Policy (role / premium / ownership)
- ActionItemStore / StatusLifecycleEngine / EngagementAggregator
- NotificationDispatcher for guest and team notify operations
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import CORS_ORIGINS, LOG_LEVEL
from .database import init_db
from .routers import auth_router, action_hub_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    logger.info("Disruption Hub API started")
    yield


# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Disruption Hub",
    description="""
    Disruption Hub - Action Hub API

    Track disruption alerts, collaborate on responding to them and notify
    guests and team members.

    ## Action Hub
    - Flag or follow an alert to add it to the Action Hub
    - Move items through new -> in_progress -> handled
    - Items still new after 24 hours move to in_progress automatically
    - Add notes and guests, notify guests and team members

    ## Authorization
    - Tokens are re-checked against the live account on every request
    - Collaborators act with their own role; premium comes from the account
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth_router)
app.include_router(action_hub_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Disruption Hub",
        "version": "1.0.0",
        "description": "Action Hub workflow and token authorization",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m disruption_hub.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
