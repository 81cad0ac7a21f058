"""Browser interface for managing users through the REST API."""
from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

logger = logging.getLogger("usermanager.web")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"


def _template_environment() -> Jinja2Templates:
    return Jinja2Templates(directory=str(TEMPLATE_DIR))


def register_ui_routes(app: FastAPI, *, api_base_path: str) -> None:
    """Serve the single-page form/list UI at ``/``."""

    templates = _template_environment()

    @app.get("/", response_class=HTMLResponse, include_in_schema=False)
    async def index(request: Request):
        context = {
            "title": "User Management System",
            "api_base_path": api_base_path.rstrip("/"),
        }
        return templates.TemplateResponse(request, "index.html", context)

    logger.debug("UI routes registered against %s", api_base_path)


__all__ = ["register_ui_routes"]
