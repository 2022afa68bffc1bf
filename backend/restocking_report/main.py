import os
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.templating import Jinja2Templates

from .db import init_db
from .oauth_routes import router as oauth_router
from .presenter import table_header, table_rows
from .restocking import build_restocking_report
from .schemas import ReportRequest, RestockingReport
from .shopify_auth import authenticate_admin
from .shopify_client import AdminGraphQL

TEMPLATE_DIR = Path(__file__).parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

# ---------- FastAPI ----------
app = FastAPI(title="Restocking Report", version="1.0.0")
app.include_router(oauth_router)

# Report tables for busy stores get large
app.add_middleware(GZipMiddleware, minimum_size=500)


def _render_page(request: Request, report: Optional[RestockingReport] = None):
    context = {
        "report": report,
        "header": table_header(report) if report else [],
        "rows": table_rows(report) if report else [],
        "start_date": report.start_date if report else "",
        "end_date": report.end_date if report else "",
        "shopify_api_key": (os.environ.get("SHOPIFY_CLIENT_ID") or "").strip(),
    }
    return templates.TemplateResponse(request, "restocking_report.html", context)


# ---------- Routes ----------
@app.get("/api/health")
async def health():
    return {"ok": True}


@app.get("/")
async def report_form(request: Request):
    return _render_page(request)


@app.post("/")
async def run_report_form(
    request: Request,
    start_date: str = Form(..., alias="startDate"),
    end_date: str = Form(..., alias="endDate"),
    admin: AdminGraphQL = Depends(authenticate_admin),
):
    report = await build_restocking_report(admin, start_date, end_date)
    return _render_page(request, report)


@app.post("/api/reports/restocking", response_model=RestockingReport)
async def run_report_json(body: ReportRequest, admin: AdminGraphQL = Depends(authenticate_admin)):
    return await build_restocking_report(admin, body.start_date, body.end_date)


@app.on_event("startup")
async def _init_db_tables():
    try:
        await init_db()
    except Exception as e:
        # The report still works with custom-app credentials when the session store is down
        print(f"[DB] Failed to init tables: {e}")


@app.on_event("startup")
async def _log_routes():
    print("[ROUTES] Registered routes in order:")
    for r in app.router.routes:
        path = getattr(r, "path", "?")
        name = getattr(r, "name", "")
        print(f" - {r.__class__.__name__}: {path} ({name})")
