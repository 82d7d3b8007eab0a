from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field

from .errors import CredentialError, InvalidBackup, LinkNotFound, SyncError
from .models import Link, SiteConfig
from .settings import Settings
from .state import ALL_CATEGORIES, DEFAULT_CATEGORY, Dashboard
from .urls import icon_for

router = APIRouter()


class LinkIn(BaseModel):
    title: str
    url: str
    category: str = DEFAULT_CATEGORY
    description: Optional[str] = None
    icon: Optional[str] = None


class LinkPatch(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None


class LoginIn(BaseModel):
    password: str


class PasswordChange(BaseModel):
    current: str
    new: str


class SyncEnable(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    gist_id: Optional[str] = Field(None, alias="gistId")


class RestoreIn(BaseModel):
    confirm: bool = False


def get_dashboard(request: Request) -> Dashboard:
    return request.app.state.dashboard


def require_admin(
    dashboard: Dashboard = Depends(get_dashboard),
    x_nebula_password: str = Header(default=""),
) -> Dashboard:
    if not dashboard.gate.check(x_nebula_password):
        raise HTTPException(401, "Incorrect password")
    return dashboard


def _link_out(link: Link) -> dict:
    data = link.model_dump(mode="json", by_alias=True, exclude_none=True)
    data["iconUrl"] = icon_for(link.icon, link.url)
    return data


# browsing


@router.get("/api/links")
def list_links(
    q: str = "",
    category: str = ALL_CATEGORIES,
    dashboard: Dashboard = Depends(get_dashboard),
):
    res = dashboard.filter_links(q, category)
    return {"results": [_link_out(l) for l in res], "count": len(res)}


@router.get("/api/categories")
def list_categories(dashboard: Dashboard = Depends(get_dashboard)):
    return {"categories": dashboard.categories()}


@router.get("/api/config")
def get_config(dashboard: Dashboard = Depends(get_dashboard)):
    return dashboard.site_config.model_dump(mode="json", by_alias=True)


# credential gate


@router.get("/api/auth/status")
def auth_status(dashboard: Dashboard = Depends(get_dashboard)):
    return {"firstRun": dashboard.gate.is_first_run()}


@router.post("/api/auth/login")
def login(payload: LoginIn, dashboard: Dashboard = Depends(get_dashboard)):
    if not dashboard.gate.login(payload.password):
        raise HTTPException(401, "Incorrect password")
    return {"ok": True}


@router.post("/api/auth/password")
async def change_password(payload: PasswordChange, dashboard: Dashboard = Depends(require_admin)):
    try:
        dashboard.gate.change_password(payload.current, payload.new)
    except CredentialError as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True}


# admin CRUD


@router.post("/api/links")
async def add_link(body: LinkIn, dashboard: Dashboard = Depends(require_admin)):
    try:
        link = dashboard.add_link(**body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return _link_out(link)


@router.put("/api/links/{link_id}")
async def edit_link(link_id: str, body: LinkPatch, dashboard: Dashboard = Depends(require_admin)):
    try:
        link = dashboard.edit_link(link_id, **body.model_dump(exclude_unset=True))
    except LinkNotFound:
        raise HTTPException(404)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return _link_out(link)


@router.delete("/api/links/{link_id}")
async def delete_link(link_id: str, dashboard: Dashboard = Depends(require_admin)):
    try:
        dashboard.delete_link(link_id)
    except LinkNotFound:
        raise HTTPException(404)
    return {"ok": True}


@router.post("/api/config")
async def save_config(payload: SiteConfig, dashboard: Dashboard = Depends(require_admin)):
    config = dashboard.save_site_config(payload)
    return config.model_dump(mode="json", by_alias=True)


# file backups


@router.get("/api/export/json")
def export_json(dashboard: Dashboard = Depends(require_admin)):
    filename, content = dashboard.export_backup()
    return Response(
        content=content,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/api/import")
async def import_backup(request: Request, dashboard: Dashboard = Depends(require_admin)):
    body = await request.body()
    try:
        envelope = dashboard.import_backup(body)
    except InvalidBackup as exc:
        raise HTTPException(400, str(exc))
    return {"ok": True, "count": len(envelope.links)}


# cloud sync


@router.get("/api/sync")
def sync_status(dashboard: Dashboard = Depends(require_admin)):
    return dashboard.sync.status()


@router.post("/api/sync/enable")
async def enable_sync(payload: SyncEnable, dashboard: Dashboard = Depends(require_admin)):
    try:
        config = await dashboard.enable_sync(payload.token, payload.gist_id)
    except SyncError as exc:
        raise HTTPException(502, str(exc))
    return {"ok": True, "gistId": config.blob_id, "lastSync": config.last_sync}


@router.post("/api/sync/restore")
async def restore_sync(payload: RestoreIn, dashboard: Dashboard = Depends(require_admin)):
    if not payload.confirm:
        raise HTTPException(400, "Restore must be confirmed")
    try:
        envelope = await dashboard.restore_from_cloud(confirm=True)
    except SyncError as exc:
        raise HTTPException(502, str(exc))
    return {"ok": True, "count": len(envelope.links)}


@router.post("/api/sync/disable")
def disable_sync(dashboard: Dashboard = Depends(require_admin)):
    dashboard.disable_sync()
    return {"ok": True}


def create_app(dashboard: Optional[Dashboard] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    dashboard = dashboard or Dashboard.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # local data is already loaded; the gist pull runs in the background
        dashboard.start()
        yield
        await dashboard.sync.drain()

    app = FastAPI(title="Nebula Nav", lifespan=lifespan)
    app.state.dashboard = dashboard

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # the page markup lives outside this package; serve it when present
    frontend = settings.frontend_dir
    if frontend.is_dir():
        app.mount("/static", StaticFiles(directory=frontend), name="static")

    @app.get("/")
    def serve_index():
        index = frontend / "index.html"
        if not index.exists():
            raise HTTPException(404, "Frontend not installed")
        return FileResponse(index)

    app.include_router(router)
    return app


app = create_app()
