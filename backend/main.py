"""
ScoreLens — Analytics & Ranking Aggregation Engine
FastAPI entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment before the route modules read their settings
load_dotenv()

from routes.analytics import router as analytics_router  # noqa: E402
from routes.leaderboard import router as leaderboard_router  # noqa: E402
from routes.reports import router as reports_router  # noqa: E402

APP_NAME = os.getenv("APP_NAME", "ScoreLens")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="ScoreLens API",
    description=(
        "Score normalization, monthly trends, leaderboard paging and "
        "academic report export."
    ),
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(analytics_router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(leaderboard_router, prefix="/api/leaderboard", tags=["Leaderboard"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "app_name": APP_NAME}


@app.get("/api/config")
async def get_config():
    """Return client-relevant configuration to the frontend."""
    return {
        "app_name": APP_NAME,
        "page_size": int(os.getenv("LEADERBOARD_PAGE_SIZE", "10")),
        "time_ranges": ["6months", "1year", "2years"],
    }
