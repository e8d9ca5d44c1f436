import logging
import os

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from rental_admin.db.deps import get_db
from rental_admin.error_handlers import register_error_handlers
from rental_admin.pages.edit_forms import (
    EDIT_FORMS,
    form_values,
    render_edit_page,
    render_error_page,
    render_landing_page,
    render_list_page,
)
from rental_admin.schemas.auth import SessionExchangeRequest
from rental_admin.services.policy_service import (
    AccessDeniedError,
    PolicyServiceError,
    check_access,
    convert_method_to_operation,
)
from rental_admin.services.record_service import (
    ENTITIES,
    EntityConfig,
    RecordNotFoundError,
    create_record,
    delete_record,
    find_record,
    list_records,
    parse_relations,
    serialize_record,
    update_record,
)
from rental_admin.services.session_service import (
    SessionRequiredError,
    get_session,
    is_expired,
    normalize_session,
    remove_session,
)

API_LOGGER = logging.getLogger("rental_admin.api")
AUTH_LOGGER = logging.getLogger("rental_admin.auth")


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        root.addHandler(handler)
    root.setLevel(getattr(logging, (level or "INFO").strip().upper(), logging.INFO))


configure_logging(os.environ.get("LOG_LEVEL"))

app = FastAPI(title="Rental Admin")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware,
    secret_key=os.environ["SESSION_SIGNING_SECRET"].strip(),
    session_cookie="rental_admin_session",
    same_site="lax",
    https_only=False,
)
register_error_handlers(app)


def _remember_session(request: Request, session: dict, token: str) -> None:
    request.session["user"] = dict(session)
    request.session["token"] = token


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    if session_token:
        # A presented header token decides alone; a stale one never falls back to the cookie.
        session_from_token = get_session(session_token)
        if session_from_token:
            _remember_session(request, session_from_token, session_token)
        return session_from_token
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict):
        session = normalize_session(session_from_cookie)
        # Re-check the token so that revocation ends cookie sessions too.
        if session and not is_expired(session) and get_session(request.session.get("token")):
            return session
        request.session.pop("user", None)
        request.session.pop("token", None)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise SessionRequiredError("Not logged in.")
    return session


def _authorize(request: Request, session: dict, config: EntityConfig, entity_id: str | None = None) -> None:
    check_access(session, config.name, convert_method_to_operation(request.method), entity_id)


def _read_record(config: EntityConfig, record_id: str, request: Request, db: Session, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    _authorize(request, session, config, record_id)
    relations = parse_relations(config, request.query_params.getlist("relations"))
    record = find_record(db, config, record_id, relations)
    return serialize_record(record, relations)


def _update_record(
    config: EntityConfig,
    record_id: str,
    payload: dict,
    request: Request,
    db: Session,
    session_token: str | None,
) -> dict:
    session = _require_session_or_401(request, session_token)
    _authorize(request, session, config, record_id)
    parsed = config.schema.model_validate(payload)
    record = update_record(db, config, record_id, parsed.model_dump(exclude_unset=True))
    API_LOGGER.info("Updated %s id=%s user=%s", config.name, record_id, session["roqUserId"])
    return serialize_record(record)


def _delete_record(config: EntityConfig, record_id: str, request: Request, db: Session, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    _authorize(request, session, config, record_id)
    deleted = delete_record(db, config, record_id)
    API_LOGGER.info("Deleted %s id=%s user=%s", config.name, record_id, session["roqUserId"])
    return deleted


def _list_records(
    config: EntityConfig,
    request: Request,
    db: Session,
    session_token: str | None,
    limit: int,
    offset: int,
) -> list[dict]:
    session = _require_session_or_401(request, session_token)
    _authorize(request, session, config)
    relations = parse_relations(config, request.query_params.getlist("relations"))
    rows = list_records(db, config, tenant_id=session["tenantId"], relations=relations, limit=limit, offset=offset)
    return [serialize_record(row, relations) for row in rows]


def _create_record(config: EntityConfig, payload: dict, request: Request, db: Session, session_token: str | None) -> dict:
    session = _require_session_or_401(request, session_token)
    _authorize(request, session, config)
    parsed = config.schema.model_validate(payload)
    extra = {"tenant_id": session["tenantId"]} if config.tenant_scope == "self" else {}
    record = create_record(db, config, parsed.model_dump(), **extra)
    API_LOGGER.info("Created %s id=%s user=%s", config.name, record.id, session["roqUserId"])
    return serialize_record(record)


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/auth/session")
def auth_session(payload: SessionExchangeRequest, request: Request):
    session = get_session(payload.sessionToken)
    if not session:
        AUTH_LOGGER.warning("Session exchange rejected reason=invalid_token")
        raise SessionRequiredError("Invalid session token.")
    _remember_session(request, session, payload.sessionToken)
    AUTH_LOGGER.info("Session established user=%s tenant=%s", session["roqUserId"], session["tenantId"])
    return {"user": session}


@app.get("/api/auth/me")
def auth_me(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    session = _require_session_or_401(request, x_session_token)
    return {"user": session}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    cookie_token = request.session.get("token")
    request.session.clear()
    remove_session(x_session_token or cookie_token)
    return {"ok": True}


# Rentals


@app.get("/api/rentals")
def get_rentals(
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _list_records(ENTITIES["rentals"], request, db, x_session_token, limit, offset)


@app.post("/api/rentals")
def create_rental(
    request: Request,
    payload: dict,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _create_record(ENTITIES["rentals"], payload, request, db, x_session_token)


@app.get("/api/rentals/{rental_id}")
def get_rental_by_id(
    rental_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _read_record(ENTITIES["rentals"], rental_id, request, db, x_session_token)


@app.put("/api/rentals/{rental_id}")
def update_rental_by_id(
    rental_id: str,
    payload: dict,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _update_record(ENTITIES["rentals"], rental_id, payload, request, db, x_session_token)


@app.delete("/api/rentals/{rental_id}")
def delete_rental_by_id(
    rental_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _delete_record(ENTITIES["rentals"], rental_id, request, db, x_session_token)


# Tools


@app.get("/api/tools")
def get_tools(
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _list_records(ENTITIES["tools"], request, db, x_session_token, limit, offset)


@app.post("/api/tools")
def create_tool(
    request: Request,
    payload: dict,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _create_record(ENTITIES["tools"], payload, request, db, x_session_token)


@app.get("/api/tools/{tool_id}")
def get_tool_by_id(
    tool_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _read_record(ENTITIES["tools"], tool_id, request, db, x_session_token)


@app.put("/api/tools/{tool_id}")
def update_tool_by_id(
    tool_id: str,
    payload: dict,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _update_record(ENTITIES["tools"], tool_id, payload, request, db, x_session_token)


@app.delete("/api/tools/{tool_id}")
def delete_tool_by_id(
    tool_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _delete_record(ENTITIES["tools"], tool_id, request, db, x_session_token)


# Users are provisioned by the identity service; there is no create endpoint.


@app.get("/api/users")
def get_users(
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _list_records(ENTITIES["users"], request, db, x_session_token, limit, offset)


@app.get("/api/users/{user_id}")
def get_user_by_id(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _read_record(ENTITIES["users"], user_id, request, db, x_session_token)


@app.put("/api/users/{user_id}")
def update_user_by_id(
    user_id: str,
    payload: dict,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _update_record(ENTITIES["users"], user_id, payload, request, db, x_session_token)


@app.delete("/api/users/{user_id}")
def delete_user_by_id(
    user_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _delete_record(ENTITIES["users"], user_id, request, db, x_session_token)


# Outlets


@app.get("/api/outlets")
def get_outlets(
    request: Request,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _list_records(ENTITIES["outlets"], request, db, x_session_token, limit, offset)


@app.post("/api/outlets")
def create_outlet(
    request: Request,
    payload: dict,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _create_record(ENTITIES["outlets"], payload, request, db, x_session_token)


@app.get("/api/outlets/{outlet_id}")
def get_outlet_by_id(
    outlet_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _read_record(ENTITIES["outlets"], outlet_id, request, db, x_session_token)


@app.put("/api/outlets/{outlet_id}")
def update_outlet_by_id(
    outlet_id: str,
    payload: dict,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _update_record(ENTITIES["outlets"], outlet_id, payload, request, db, x_session_token)


@app.delete("/api/outlets/{outlet_id}")
def delete_outlet_by_id(
    outlet_id: str,
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    return _delete_record(ENTITIES["outlets"], outlet_id, request, db, x_session_token)


# Pages


def _entity_or_404(entity: str) -> EntityConfig:
    config = ENTITIES.get(entity)
    if not config:
        raise HTTPException(status_code=404, detail="Page not found")
    return config


def _lookup_options(db: Session, session: dict, entity: str, stored: dict) -> dict[str, list[tuple[str, str]]]:
    """Select options per FK field; the stored record's current target is always offered."""
    options: dict[str, list[tuple[str, str]]] = {}
    for spec in EDIT_FORMS[entity]:
        if not spec.lookup:
            continue
        lookup = ENTITIES[spec.lookup]
        check_access(session, lookup.name, "read")
        rows = list(list_records(db, lookup, tenant_id=session["tenantId"], limit=100))
        current_id = stored.get(spec.name)
        if current_id and all(row.id != current_id for row in rows):
            current = db.get(lookup.model, current_id)
            if current is not None:
                rows.insert(0, current)
        options[spec.name] = [(row.id, str(getattr(row, lookup.option_label) or row.id)) for row in rows]
    return options


def _forbidden_page(exc: AccessDeniedError) -> HTMLResponse:
    return HTMLResponse(render_error_page("Access denied", exc), status_code=403)


def _unavailable_page(exc: PolicyServiceError) -> HTMLResponse:
    return HTMLResponse(render_error_page("Authorization unavailable", exc), status_code=503)


@app.get("/", response_class=HTMLResponse)
def landing_page(request: Request):
    return HTMLResponse(render_landing_page(_get_active_session(request, None), ENTITIES.keys()))


@app.get("/{entity}", response_class=HTMLResponse)
def list_page(entity: str, request: Request, db: Session = Depends(get_db)):
    config = _entity_or_404(entity)
    session = _get_active_session(request, None)
    if not session:
        return RedirectResponse("/", status_code=303)
    try:
        check_access(session, config.name, "read")
    except AccessDeniedError as exc:
        return _forbidden_page(exc)
    except PolicyServiceError as exc:
        return _unavailable_page(exc)
    rows = list_records(db, config, tenant_id=session["tenantId"], limit=100)
    return HTMLResponse(
        render_list_page(f"{config.label}s", entity, config.list_columns, [serialize_record(row) for row in rows])
    )


@app.get("/{entity}/edit/{record_id}", response_class=HTMLResponse)
def edit_page(entity: str, record_id: str, request: Request, db: Session = Depends(get_db)):
    config = _entity_or_404(entity)
    session = _get_active_session(request, None)
    if not session:
        return RedirectResponse("/", status_code=303)
    try:
        check_access(session, config.name, "update")
        check_access(session, config.name, "read", record_id)
        stored = serialize_record(find_record(db, config, record_id))
        options = _lookup_options(db, session, entity, stored)
    except AccessDeniedError as exc:
        return _forbidden_page(exc)
    except PolicyServiceError as exc:
        return _unavailable_page(exc)
    except RecordNotFoundError as exc:
        return HTMLResponse(render_error_page(f"Edit {config.label}", exc), status_code=404)
    return HTMLResponse(
        render_edit_page(
            f"Edit {config.label}",
            f"/{entity}/edit/{record_id}",
            EDIT_FORMS[entity],
            stored,
            options,
        )
    )


@app.post("/{entity}/edit/{record_id}", response_class=HTMLResponse)
async def submit_edit_page(entity: str, record_id: str, request: Request, db: Session = Depends(get_db)):
    config = _entity_or_404(entity)
    session = _get_active_session(request, None)
    if not session:
        return RedirectResponse("/", status_code=303)
    values = form_values(EDIT_FORMS[entity], await request.form())
    stored: dict = {}
    try:
        check_access(session, config.name, "update")
        check_access(session, config.name, "update", record_id)
        stored = serialize_record(find_record(db, config, record_id))
        parsed = config.schema.model_validate(values)
        update_record(db, config, record_id, parsed.model_dump(exclude_unset=True))
    except AccessDeniedError as exc:
        return _forbidden_page(exc)
    except PolicyServiceError as exc:
        return _unavailable_page(exc)
    except RecordNotFoundError as exc:
        return HTMLResponse(render_error_page(f"Edit {config.label}", exc), status_code=404)
    except (ValidationError, SQLAlchemyError) as exc:
        error = exc
    else:
        API_LOGGER.info("Edited %s id=%s user=%s", config.name, record_id, session["roqUserId"])
        return RedirectResponse(f"/{entity}", status_code=303)

    API_LOGGER.info("Edit of %s id=%s rejected: %s", config.name, record_id, error)
    try:
        options = _lookup_options(db, session, entity, stored)
    except AccessDeniedError as exc:
        return _forbidden_page(exc)
    except PolicyServiceError as exc:
        return _unavailable_page(exc)
    return HTMLResponse(
        render_edit_page(
            f"Edit {config.label}",
            f"/{entity}/edit/{record_id}",
            EDIT_FORMS[entity],
            values,
            options,
            error=error,
        ),
        status_code=400,
    )
