import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

import auth
import crud
import database
import forms
import models
import qr_utils
import resolver
import schemas
import uploads
from config import ADMIN_COOKIE, ADMIN_COOKIE_MAX_AGE, Settings, get_settings, mime_for
from errors import ClientError, EmptySubmission, InvalidLink, NotFoundError, RegistryError, ServerError
from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger("shortdrop")

# --- DB tables ---
models.Base.metadata.create_all(bind=database.engine)

MAX_LINK_LENGTH = 2048
ADMIN_ITEMS_LIMIT = 500

app = FastAPI(
    title="shortdrop",
    description="Share a link or a file behind an 8-character short code, optionally as a QR code.",
    version="1.0.0",
)

# --- CORS ---
_settings = get_settings()
origins = ["*"] if _settings.environment == "dev" else [_settings.base_url]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

templates = Jinja2Templates(directory=Path(__file__).parent / "templates")


def _timestamp(value: int) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

templates.env.filters["timestamp"] = _timestamp


# ---------- Errors ----------
@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    if isinstance(exc, ServerError):
        logger.error("Server error on %s: %s", request.url.path, exc.reason)
        message = "Server error"
    else:
        message = exc.reason
    return JSONResponse(status_code=exc.status_code, content=schemas.ErrorOut(error=message).model_dump())

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Database error on %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=schemas.ErrorOut(error="Server error").model_dump())


# ---------- Helpers ----------
def validate_link(link: str) -> str:
    link = (link or "").strip()
    if not link:
        raise EmptySubmission("No link provided")
    if not (link.startswith("http://") or link.startswith("https://")):
        raise InvalidLink("Invalid URL format. Must start with http:// or https://")
    if len(link) > MAX_LINK_LENGTH:
        raise InvalidLink(f"URL too long. Max length: {MAX_LINK_LENGTH}")
    # The link becomes a Location header verbatim.
    if any(ord(c) < 0x20 or ord(c) == 0x7F for c in link):
        raise InvalidLink("URL contains control characters")
    return link

def store_link(db: Session, link: str) -> models.Item:
    return crud.create_item(db, "url", validate_link(link))

def record_upload(db: Session, settings: Settings, name: str) -> models.Item:
    try:
        return crud.create_item(db, "file", name)
    except Exception:
        # No entry, no file.
        uploads.remove(settings.upload_dir, name)
        raise

def qr_svg_for(settings: Settings, code: str) -> str:
    target = qr_utils.absolute_url(settings.base_url, resolver.short_url(settings.base_url, code))
    return qr_utils.generate_qr_svg(target)

def permanent_redirect(url: str) -> Response:
    # RedirectResponse would re-quote the URL; the stored bytes go out as-is.
    response = Response(status_code=status.HTTP_308_PERMANENT_REDIRECT)
    response.raw_headers.append((b"location", url.encode("utf-8")))
    return response

def render_action(request: Request, action: resolver.Action) -> Response:
    if isinstance(action, resolver.RedirectPermanent):
        return permanent_redirect(action.url)
    if isinstance(action, resolver.RenderPreview):
        return templates.TemplateResponse(request, "preview.html", asdict(action))
    if isinstance(action, resolver.RenderFileInfo):
        return templates.TemplateResponse(request, "file_info.html", asdict(action))
    raise NotFoundError(action.reason)

def wants_page(request: Request) -> bool:
    return resolver.wants_html(request.headers.get("accept"))

def see_other(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


# ---------- Pages ----------
@app.get("/", include_in_schema=False)
def index(request: Request):
    return templates.TemplateResponse(request, "index.html")

@app.get("/health", include_in_schema=False)
def health(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "env": settings.environment}

@app.post("/submit", include_in_schema=False)
async def submit(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    form = await forms.read_submission(request, settings, file_field="file")
    link = form.fields.get("link", "")
    if form.stored_name:
        item = await run_in_threadpool(record_upload, db, settings, form.stored_name)
    elif link.strip():
        item = await run_in_threadpool(store_link, db, link)
    else:
        raise EmptySubmission("Provide a URL or a file")
    logger.info("Submitted %s entry %s via form", item.kind, item.code)
    return see_other(f"/r/{item.code}?qr={'1' if form.fields.get('qr') else '0'}")

@app.get("/r/{code}", include_in_schema=False)
def result_page(
    code: str,
    request: Request,
    qr: str = "0",
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    if not crud.get_item(db, code):
        raise NotFoundError("Not found")
    context = {
        "code": code,
        "short_link": resolver.short_url(settings.base_url, code),
        "qr_svg": qr_svg_for(settings, code) if qr == "1" else "",
    }
    return templates.TemplateResponse(request, "result.html", context)

@app.get("/s/{code}", include_in_schema=False)
@app.get("/resolve/{code}", include_in_schema=False)
def resolve_code(
    code: str,
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    action = resolver.resolve(db, code, request.headers.get("accept"), settings.base_url)
    return render_action(request, action)

@app.get("/files/{name}", include_in_schema=False)
def serve_file(name: str, settings: Settings = Depends(get_settings)):
    path = uploads.stored_path(settings.upload_dir, name)
    if path is None or not path.is_file():
        raise NotFoundError("File not found")
    return FileResponse(path, media_type=mime_for(name), headers={"Content-Security-Policy": "sandbox"})


# ---------- API ----------
@app.post("/api/upload", response_model=schemas.SubmitResult)
async def api_upload(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    form = await forms.read_submission(request, settings, file_field="content")
    content = form.fields.get("content", "")
    qr_required = form.fields.get("qr_required", "").strip().lower() == "true"
    if form.stored_name:
        item = await run_in_threadpool(record_upload, db, settings, form.stored_name)
    elif content.strip():
        item = await run_in_threadpool(store_link, db, content)
    else:
        raise EmptySubmission("Provide content or file")

    qr_data = qr_utils.svg_data_url(qr_svg_for(settings, item.code)) if qr_required else None
    logger.info("Submitted %s entry %s via API", item.kind, item.code)
    return schemas.SubmitResult(
        code=item.code,
        short_url=resolver.short_url(settings.base_url, item.code),
        qr_code_data=qr_data,
    )

@app.get("/qr/{code}", response_model=schemas.QrOut)
def qr_code(code: str, db: Session = Depends(database.get_db), settings: Settings = Depends(get_settings)):
    item = crud.get_item(db, code)
    if not item:
        raise NotFoundError("Not found")
    target = qr_utils.absolute_url(settings.base_url, resolver.short_url(settings.base_url, item.code))
    return {"qr_base64": qr_utils.generate_qr_base64(target), "qr_svg": qr_utils.generate_qr_svg(target)}


# ---------- Admin ----------
@app.get("/admin/login", include_in_schema=False)
def admin_login_page(request: Request):
    return templates.TemplateResponse(request, "admin_login.html")

@app.post("/admin/login", response_model=schemas.MessageOut)
def admin_login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
):
    html = wants_page(request)
    try:
        token = auth.login(db, username, password)
    except ClientError as exc:
        if not html:
            raise
        return templates.TemplateResponse(
            request, "admin_login.html", {"error": exc.reason}, status_code=exc.status_code
        )
    if not token:
        if html:
            return templates.TemplateResponse(
                request, "admin_login.html", {"error": "Invalid credentials"}, status_code=401
            )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    response = see_other("/admin") if html else JSONResponse({"ok": True, "detail": "Logged in"})
    response.set_cookie(
        key=ADMIN_COOKIE, value=token,
        httponly=True, samesite="lax", secure=settings.base_url.startswith("https://"),
        path="/", max_age=ADMIN_COOKIE_MAX_AGE,
    )
    return response

@app.post("/admin/logout", response_model=schemas.MessageOut)
def admin_logout(request: Request, db: Session = Depends(database.get_db)):
    auth.logout(db, auth.get_admin_token(request))
    if wants_page(request):
        response = see_other("/admin/login")
    else:
        response = JSONResponse({"ok": True, "detail": "Logged out"})
    response.delete_cookie(ADMIN_COOKIE, path="/")
    return response

@app.get("/admin", include_in_schema=False)
def admin_home(request: Request, admin: str | None = Depends(auth.current_admin)):
    if admin is None:
        return see_other("/admin/login")
    return templates.TemplateResponse(request, "admin_home.html")

@app.get("/admin/entries", include_in_schema=False)
def admin_entries(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    admin: str | None = Depends(auth.current_admin),
):
    if admin is None:
        return see_other("/admin/login")
    items = crud.get_items(db, limit=ADMIN_ITEMS_LIMIT)
    context = {"items": items, "base_url": settings.base_url, "limit": ADMIN_ITEMS_LIMIT}
    return templates.TemplateResponse(request, "admin_items.html", context)

@app.post("/admin/entries/{code}/delete", include_in_schema=False)
def admin_delete_entry(
    code: str,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    admin: str | None = Depends(auth.current_admin),
):
    if admin is None:
        return see_other("/admin/login")
    if crud.delete_item(db, code, settings.upload_dir) is None:
        logger.warning("Admin asked to delete unknown entry %s", code)
    return see_other("/admin/entries")

@app.get("/admin/items", response_model=schemas.PaginatedItems)
def list_items(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=ADMIN_ITEMS_LIMIT),
    db: Session = Depends(database.get_db),
    admin: str = Depends(auth.require_admin),
):
    items = crud.get_items(db, skip=skip, limit=limit)
    total = crud.count_items(db)
    return {"items": items, "total": total, "skip": skip, "limit": limit}

@app.delete("/admin/items/{code}", response_model=schemas.MessageOut)
def delete_item(
    code: str,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    admin: str = Depends(auth.require_admin),
):
    result = crud.delete_item(db, code, settings.upload_dir)
    if result is None:
        raise NotFoundError("Entry not found")
    if result.file_removed is False:
        detail = f"Entry '{code}' deleted but its file could not be removed"
    else:
        detail = f"Entry '{code}' deleted"
    return {"ok": True, "detail": detail, "file_removed": result.file_removed}
