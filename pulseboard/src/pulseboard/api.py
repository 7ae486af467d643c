"""
JSON endpoints polled by the dashboard page.

- GET /api/market              {"market": [...], "error"?: str}   always 200
- GET /api/news?category=tech  {"news": [...], "error"?: str}     400 on unknown category
- GET /api/categories          tab names and icons
- GET /health
"""
import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_cors_origins
from .dashboard import Dashboard
from .errors import ValidationError
from .models.news import CATEGORY_LABELS
from .news import parse_category
from .settings import DashboardSettings, load_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _dashboard(request: Request) -> Dashboard:
    return request.app.state.dashboard


@router.get("/market")
def get_market(request: Request):
    """Quotes for every configured instrument, fallback values included."""
    payload, cached = _dashboard(request).market()
    return JSONResponse(payload, headers={"X-Cache": "HIT" if cached else "MISS"})


@router.get("/news")
def get_news(request: Request, category: Optional[str] = Query(default="all")):
    """Newest headlines for a category."""
    try:
        parsed = parse_category(category)
    except ValidationError as e:
        logger.warning(e.message)
        return JSONResponse({"news": [], "error": e.message}, status_code=400)

    payload, cached = _dashboard(request).headlines(parsed)
    return JSONResponse(payload, headers={"X-Cache": "HIT" if cached else "MISS"})


@router.get("/categories")
def get_categories():
    return {
        "categories": [
            {"id": category.value, "name": name, "icon": icon}
            for category, (name, icon) in CATEGORY_LABELS.items()
        ]
    }


def create_app(
    settings: Optional[DashboardSettings] = None,
    dashboard: Optional[Dashboard] = None,
) -> FastAPI:
    """Build the app; pass a Dashboard to swap in fake providers."""
    if dashboard is None:
        dashboard = Dashboard(settings or load_settings())

    app = FastAPI(title="pulseboard")
    app.state.dashboard = dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_cors_origins(),
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app
