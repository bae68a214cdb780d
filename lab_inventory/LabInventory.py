import logging
import os
import threading
import time
from datetime import datetime

from dotenv import load_dotenv

load_dotenv()

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from lab_inventory.db.deps import get_db
from lab_inventory.models.enums import Role
from lab_inventory.models.inventory_models import User
from lab_inventory.schemas.auth import AuthLoginRequest
from lab_inventory.schemas.catalog import (
    CategoryUpdate,
    CategoryUpsert,
    CreateUserDto,
    DepartmentUpdate,
    DepartmentUpsert,
    InchargeAssignmentDto,
    ItemUpdate,
    ItemUpsert,
    UserRoleDto,
    UserStatusDto,
)
from lab_inventory.schemas.requests import ApproveRequestDto, CreateRequestDto, IssueRequestDto, RejectRequestDto
from lab_inventory.schemas.returns import ReturnRequestDto
from lab_inventory.schemas.settings import UpdateSettingsDto
from lab_inventory.schemas.transfers import CompleteTransferDto, CreateTransferDto, RejectTransferDto
from lab_inventory.services.access_service import require_role
from lab_inventory.services.audit_service import list_audit_entries, log_audit, serialize_audit_entry
from lab_inventory.services.catalog_service import (
    create_category,
    create_department,
    create_item,
    delete_category,
    delete_department,
    delete_item,
    list_department_items,
    list_departments,
    serialize_category,
    serialize_department,
    serialize_item,
    set_department_incharges,
    update_category,
    update_department,
    update_item,
)
from lab_inventory.services.errors import LabInventoryError
from lab_inventory.services.issue_service import issue_request, list_ready_for_issue, serialize_issue_record
from lab_inventory.services.mail_service import OutboundEmail, deliver
from lab_inventory.services.request_service import (
    approve_request,
    cancel_request,
    create_request,
    list_department_requests,
    list_user_requests,
    reject_request,
    serialize_request,
)
from lab_inventory.services.report_service import inventory_report, issues_report, overdue_report
from lab_inventory.services.return_service import list_outstanding, process_return
from lab_inventory.services.settings_service import get_all_settings, load_settings, reset_to_defaults, update_settings
from lab_inventory.services.transfer_service import (
    approve_transfer,
    cancel_transfer,
    complete_transfer,
    create_transfer,
    list_transfers,
    reject_transfer,
    serialize_transfer,
    serialize_transfer_record,
)
from lab_inventory.services.user_access_service import create_session, get_session, remove_session, session_user_id
from lab_inventory.services.user_service import (
    approve_user,
    authenticate,
    change_role,
    create_user,
    reject_user,
    revoke_ban,
    serialize_user,
    set_user_active,
)

logging.basicConfig(
    level=(os.environ.get("LAB_INVENTORY_LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("lab_inventory.api")
AUTH_LOGGER = logging.getLogger("lab_inventory.auth")

app = FastAPI(title="Lab Inventory")


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
    secret_key=(os.environ.get("SESSION_SIGNING_SECRET") or "").strip(),
    session_cookie="lab_inventory_session",
    same_site="lax",
    https_only=False,
)

AUTH_ATTEMPT_WINDOW_SECONDS = int(os.environ.get("AUTH_ATTEMPT_WINDOW_SECONDS") or "300")
AUTH_MAX_ATTEMPTS_PER_ACCOUNT = int(os.environ.get("AUTH_MAX_ATTEMPTS_PER_ACCOUNT") or "8")
AUTH_LOCKOUT_SECONDS = int(os.environ.get("AUTH_LOCKOUT_SECONDS") or "900")
_AUTH_GUARD_LOCK = threading.Lock()
_AUTH_ATTEMPTS_BY_ACCOUNT: dict[str, list[float]] = {}
_AUTH_LOCKOUT_UNTIL_BY_ACCOUNT: dict[str, float] = {}


@app.exception_handler(LabInventoryError)
def handle_domain_error(request: Request, exc: LabInventoryError):
    if exc.status_code >= 500:
        logger.error("Request failed path=%s error=%s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
    return JSONResponse(status_code=400, content={"error": f"Invalid {field}: {first.get('msg', 'invalid value')}"})


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error path=%s", request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def _prune_attempts(attempts: list[float], now_ts: float) -> list[float]:
    cutoff = now_ts - max(AUTH_ATTEMPT_WINDOW_SECONDS, 1)
    return [ts for ts in attempts if ts >= cutoff]


def _check_login_guard(account_key: str) -> int | None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        lockout_until = _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.get(account_key)
        if lockout_until and lockout_until > now_ts:
            return max(1, int(lockout_until - now_ts))
        if lockout_until and lockout_until <= now_ts:
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
    return None


def _record_login_failure(account_key: str) -> None:
    now_ts = time.time()
    with _AUTH_GUARD_LOCK:
        attempts = _prune_attempts(_AUTH_ATTEMPTS_BY_ACCOUNT.get(account_key, []), now_ts)
        attempts.append(now_ts)
        _AUTH_ATTEMPTS_BY_ACCOUNT[account_key] = attempts
        if len(attempts) >= max(AUTH_MAX_ATTEMPTS_PER_ACCOUNT, 1):
            _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT[account_key] = now_ts + max(AUTH_LOCKOUT_SECONDS, 1)


def _record_login_success(account_key: str) -> None:
    with _AUTH_GUARD_LOCK:
        _AUTH_ATTEMPTS_BY_ACCOUNT.pop(account_key, None)
        _AUTH_LOCKOUT_UNTIL_BY_ACCOUNT.pop(account_key, None)


def _get_active_session(request: Request, session_token: str | None) -> dict | None:
    session_from_cookie = request.session.get("user")
    if isinstance(session_from_cookie, dict):
        return dict(session_from_cookie)
    session_from_token = get_session(session_token)
    if session_from_token:
        request.session["user"] = dict(session_from_token)
        return dict(session_from_token)
    return None


def _require_session_or_401(request: Request, session_token: str | None) -> dict:
    session = _get_active_session(request, session_token)
    if not session:
        raise HTTPException(status_code=401, detail="Not logged in.")
    return session


def _require_actor(request: Request, session_token: str | None, db: Session) -> User:
    user_id = session_user_id(_require_session_or_401(request, session_token))
    user = db.get(User, user_id) if user_id else None
    if not user or not user.IsActive:
        request.session.clear()
        raise HTTPException(status_code=401, detail="Not logged in.")
    return user


def _require_admin(request: Request, session_token: str | None, db: Session) -> User:
    actor = _require_actor(request, session_token, db)
    require_role(actor, (Role.ADMIN,), "Admin role required.")
    return actor


def _notifier(background_tasks: BackgroundTasks):
    def _queue(message: OutboundEmail) -> None:
        background_tasks.add_task(deliver, message)

    return _queue


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


@app.post("/api/auth/login")
def auth_login(payload: dict, request: Request, db: Session = Depends(get_db)):
    try:
        parsed = AuthLoginRequest.model_validate(payload)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid login request.")

    email = str(parsed.email or "").strip().lower()
    password = str(parsed.password or "")
    if not email or not password:
        raise HTTPException(status_code=400, detail="Email and password are required.")

    account_key = f"user:{email}"
    retry_after = _check_login_guard(account_key)
    if retry_after is not None:
        AUTH_LOGGER.warning("Login throttled key=%s retry_after=%s", account_key, retry_after)
        raise HTTPException(
            status_code=429,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    user = authenticate(db, email, password)
    if not user:
        _record_login_failure(account_key)
        AUTH_LOGGER.warning("Login failed key=%s reason=invalid_credentials", account_key)
        raise HTTPException(status_code=401, detail="Invalid credentials.")
    if not user.IsActive:
        AUTH_LOGGER.warning("Login failed key=%s reason=inactive", account_key)
        raise HTTPException(status_code=403, detail="Your account is inactive.")

    session_payload = {"userID": user.UserID, "role": user.Role, "name": user.Name, "email": user.Email}
    token = create_session(session_payload)
    request.session["user"] = dict(session_payload)
    _record_login_success(account_key)
    log_audit(db, user_id=user.UserID, action="LOGIN", entity_type="User", entity_id=user.UserID)
    AUTH_LOGGER.info("Login success key=%s user_id=%s", account_key, user.UserID)
    return {"sessionToken": token, "user": serialize_user(user)}


@app.post("/api/auth/logout")
def auth_logout(request: Request, x_session_token: str | None = Header(None, alias="X-Session-Token")):
    request.session.clear()
    remove_session(x_session_token)
    return {"ok": True}


@app.get("/api/auth/me")
def auth_me(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    user = _require_actor(request, x_session_token, db)
    return {"user": serialize_user(user)}


@app.get("/api/user/requests")
def get_my_requests(
    request: Request,
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    user = _require_actor(request, x_session_token, db)
    return [serialize_request(row) for row in list_user_requests(db, user, status)]


@app.post("/api/user/requests", status_code=201)
def post_request(
    request: Request,
    payload: CreateRequestDto,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    user = _require_actor(request, x_session_token, db)
    created = create_request(
        db,
        user,
        item_id=payload.itemId,
        purpose=payload.purpose,
        requested_days=payload.requestedDays,
        settings=load_settings(db),
        notifier=_notifier(background_tasks),
    )
    return {"message": "Request submitted successfully", "request": serialize_request(created)}


@app.post("/api/user/requests/{request_id}/cancel")
def post_cancel_request(
    request: Request,
    request_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    user = _require_actor(request, x_session_token, db)
    cancelled = cancel_request(db, user, request_id)
    return {"message": "Request cancelled", "request": serialize_request(cancelled)}


@app.get("/api/incharge/requests")
def get_department_requests(
    request: Request,
    status: str | None = Query("PENDING"),
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    return [serialize_request(row) for row in list_department_requests(db, actor, status=status, search=search)]


@app.post("/api/incharge/requests/{request_id}/approve")
def post_approve_request(
    request: Request,
    request_id: int,
    payload: ApproveRequestDto,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    approved = approve_request(
        db,
        actor,
        request_id,
        collection_instructions=payload.collectionInstructions,
        settings=load_settings(db),
        notifier=_notifier(background_tasks),
    )
    return {"message": "Request approved", "request": serialize_request(approved)}


@app.post("/api/incharge/requests/{request_id}/reject")
def post_reject_request(
    request: Request,
    request_id: int,
    payload: RejectRequestDto,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    rejected = reject_request(
        db,
        actor,
        request_id,
        rejection_reason=payload.rejectionReason,
        notifier=_notifier(background_tasks),
    )
    return {"message": "Request rejected", "request": serialize_request(rejected)}


@app.get("/api/incharge/issue")
def get_ready_for_issue(
    request: Request,
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    return [serialize_request(row) for row in list_ready_for_issue(db, actor, search)]


@app.post("/api/incharge/issue", status_code=201)
def post_issue(
    request: Request,
    payload: IssueRequestDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    record = issue_request(db, actor, payload.requestId)
    return {"message": "Item issued successfully", "issueRecord": serialize_issue_record(record)}


@app.get("/api/incharge/return")
def get_outstanding(
    request: Request,
    search: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    return list_outstanding(db, actor, search=search)


@app.post("/api/incharge/return")
def post_return(
    request: Request,
    payload: ReturnRequestDto,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    outcome = process_return(
        db,
        actor,
        payload.issueRecordId,
        return_condition=payload.returnCondition,
        damage_remarks=payload.damageRemarks,
        is_pending_replacement=payload.isPendingReplacement,
        settings=load_settings(db),
        notifier=_notifier(background_tasks),
    )
    return {
        "message": "Return processed successfully",
        "issueRecord": serialize_issue_record(outcome.record),
        "warnings": outcome.warnings,
        "isLate": outcome.is_late,
        "daysLate": outcome.days_late,
    }


@app.get("/api/incharge/transfers")
def get_transfers(
    request: Request,
    direction: str | None = Query(None),
    status: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    return [serialize_transfer(row) for row in list_transfers(db, actor, direction=direction, status=status)]


@app.post("/api/incharge/transfers", status_code=201)
def post_transfer(
    request: Request,
    payload: CreateTransferDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    transfer = create_transfer(
        db,
        actor,
        item_id=payload.itemId,
        to_department_id=payload.toDepartmentId,
        purpose=payload.purpose,
        quantity=payload.quantity,
    )
    return {"message": "Transfer request created", "transfer": serialize_transfer(transfer)}


@app.post("/api/incharge/transfers/{transfer_id}/approve")
def post_approve_transfer(
    request: Request,
    transfer_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    transfer = approve_transfer(db, actor, transfer_id)
    return {"message": "Transfer approved", "transfer": serialize_transfer(transfer)}


@app.post("/api/incharge/transfers/{transfer_id}/reject")
def post_reject_transfer(
    request: Request,
    transfer_id: int,
    payload: RejectTransferDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    transfer = reject_transfer(db, actor, transfer_id, rejection_reason=payload.rejectionReason)
    return {"message": "Transfer rejected", "transfer": serialize_transfer(transfer)}


@app.post("/api/incharge/transfers/{transfer_id}/complete")
def post_complete_transfer(
    request: Request,
    transfer_id: int,
    payload: CompleteTransferDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    record = complete_transfer(db, actor, transfer_id, notes=payload.notes)
    return {"message": "Transfer completed", "transferRecord": serialize_transfer_record(record)}


@app.post("/api/incharge/transfers/{transfer_id}/cancel")
def post_cancel_transfer(
    request: Request,
    transfer_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    transfer = cancel_transfer(db, actor, transfer_id)
    return {"message": "Transfer cancelled", "transfer": serialize_transfer(transfer)}


@app.get("/api/admin/settings")
def get_settings(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin(request, x_session_token, db)
    return get_all_settings(db)


@app.put("/api/admin/settings")
def put_settings(
    request: Request,
    payload: UpdateSettingsDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    entries = [entry.model_dump() for entry in payload.settings]
    updated = update_settings(db, entries)
    log_audit(
        db,
        user_id=actor.UserID,
        action="UPDATE",
        entity_type="Settings",
        changes={entry["key"]: entry["value"] for entry in entries},
    )
    return {"message": "Settings updated successfully", "settings": updated}


@app.post("/api/admin/settings/reset")
def post_reset_settings(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    defaults = reset_to_defaults(db)
    log_audit(db, user_id=actor.UserID, action="RESET", entity_type="Settings")
    return {"message": "Settings reset to defaults", "settings": defaults}


@app.post("/api/admin/departments", status_code=201)
def post_department(
    request: Request,
    payload: DepartmentUpsert,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    department = create_department(db, code=payload.code, name=payload.name)
    log_audit(db, user_id=actor.UserID, action="CREATE", entity_type="Department", entity_id=department.DepartmentID, changes=serialize_department(department))
    return serialize_department(department)


@app.post("/api/admin/categories", status_code=201)
def post_category(
    request: Request,
    payload: CategoryUpsert,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    category = create_category(
        db,
        name=payload.name,
        description=payload.description,
        max_borrow_duration=payload.maxBorrowDuration,
    )
    log_audit(db, user_id=actor.UserID, action="CREATE", entity_type="Category", entity_id=category.CategoryID, changes=serialize_category(category))
    return serialize_category(category)


@app.post("/api/admin/items", status_code=201)
def post_item(
    request: Request,
    payload: ItemUpsert,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    item = create_item(
        db,
        name=payload.name,
        category_id=payload.categoryId,
        department_id=payload.departmentId,
        condition=payload.condition,
        is_consumable=payload.isConsumable,
        current_stock=payload.currentStock,
        min_stock_level=payload.minStockLevel,
        description=payload.description,
        location=payload.location,
        transfer_department_ids=payload.transferDepartmentIds,
    )
    log_audit(db, user_id=actor.UserID, action="CREATE", entity_type="Item", entity_id=item.ItemID, changes={"manualId": item.ManualID, "name": item.Name})
    return serialize_item(item)


@app.get("/api/departments/{department_id}/items")
def get_department_items(
    request: Request,
    department_id: int,
    include_shared: bool = Query(True, alias="includeShared"),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_actor(request, x_session_token, db)
    min_stock_alert = load_settings(db).min_stock_alert
    return [serialize_item(item, min_stock_alert) for item in list_department_items(db, department_id, include_shared=include_shared)]


@app.post("/api/admin/users", status_code=201)
def post_user(
    request: Request,
    payload: CreateUserDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user = create_user(
        db,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        password=payload.password,
        is_approved=payload.isApproved,
        department_ids=payload.departmentIds,
    )
    log_audit(db, user_id=actor.UserID, action="CREATE", entity_type="User", entity_id=user.UserID, changes={"email": user.Email, "role": user.Role})
    return serialize_user(user)


@app.post("/api/admin/users/{user_id}/approve")
def post_approve_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user = approve_user(db, user_id)
    log_audit(db, user_id=actor.UserID, action="APPROVE", entity_type="User", entity_id=user_id)
    return {"message": "User approved", "user": serialize_user(user)}


@app.post("/api/admin/users/{user_id}/status")
def post_user_status(
    request: Request,
    user_id: int,
    payload: UserStatusDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user = set_user_active(db, user_id, payload.isActive)
    log_audit(db, user_id=actor.UserID, action="UPDATE", entity_type="User", entity_id=user_id, changes={"isActive": payload.isActive})
    return {"message": "User status updated", "user": serialize_user(user)}


@app.post("/api/admin/users/{user_id}/revoke-ban")
def post_revoke_ban(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user, previous = revoke_ban(db, user_id)
    log_audit(db, user_id=actor.UserID, action="REVOKE_BAN", entity_type="User", entity_id=user_id, changes={"previousBan": type(previous).__name__})
    return {"message": "Ban revoked", "user": serialize_user(user)}


@app.post("/api/admin/users/{user_id}/reject")
def post_reject_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user = reject_user(db, user_id)
    log_audit(db, user_id=actor.UserID, action="REJECT", entity_type="User", entity_id=user_id, changes={"email": user.Email})
    return {"message": "User registration rejected"}


@app.put("/api/admin/users/{user_id}/role")
def put_user_role(
    request: Request,
    user_id: int,
    payload: UserRoleDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    user = change_role(db, actor, user_id, payload.role)
    log_audit(db, user_id=actor.UserID, action="UPDATE", entity_type="User", entity_id=user_id, changes={"role": user.Role})
    return {"message": "User role updated", "user": serialize_user(user)}


@app.get("/api/departments")
def get_departments(
    request: Request,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_actor(request, x_session_token, db)
    return [
        {
            **serialize_department(department),
            "itemCount": item_count,
            "incharges": [{"userID": user.UserID, "name": user.Name, "email": user.Email} for user in department.Incharges],
        }
        for department, item_count in list_departments(db)
    ]


@app.put("/api/admin/departments/{department_id}")
def put_department(
    request: Request,
    department_id: int,
    payload: DepartmentUpdate,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    department = update_department(db, department_id, code=payload.code, name=payload.name)
    log_audit(db, user_id=actor.UserID, action="UPDATE", entity_type="Department", entity_id=department_id, changes=serialize_department(department))
    return serialize_department(department)


@app.delete("/api/admin/departments/{department_id}")
def remove_department(
    request: Request,
    department_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    department = delete_department(db, department_id)
    log_audit(db, user_id=actor.UserID, action="DELETE", entity_type="Department", entity_id=department_id, changes={"code": department.Code})
    return {"message": "Department deleted"}


@app.put("/api/admin/departments/{department_id}/incharge")
def put_department_incharges(
    request: Request,
    department_id: int,
    payload: InchargeAssignmentDto,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    department = set_department_incharges(db, department_id, payload.inchargeIds)
    incharge_ids = [user.UserID for user in department.Incharges]
    log_audit(db, user_id=actor.UserID, action="ASSIGN_INCHARGE", entity_type="Department", entity_id=department_id, changes={"inchargeIds": incharge_ids})
    return {**serialize_department(department), "inchargeIds": incharge_ids}


@app.put("/api/admin/categories/{category_id}")
def put_category(
    request: Request,
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    category = update_category(
        db,
        category_id,
        name=payload.name,
        description=payload.description,
        max_borrow_duration=payload.maxBorrowDuration,
    )
    log_audit(db, user_id=actor.UserID, action="UPDATE", entity_type="Category", entity_id=category_id, changes=serialize_category(category))
    return serialize_category(category)


@app.delete("/api/admin/categories/{category_id}")
def remove_category(
    request: Request,
    category_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_admin(request, x_session_token, db)
    category = delete_category(db, category_id)
    log_audit(db, user_id=actor.UserID, action="DELETE", entity_type="Category", entity_id=category_id, changes={"name": category.Name})
    return {"message": "Category deleted"}


@app.put("/api/admin/items/{item_id}")
def put_item(
    request: Request,
    item_id: int,
    payload: ItemUpdate,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    changes = payload.model_dump(exclude_none=True)
    item = update_item(
        db,
        actor,
        item_id,
        name=payload.name,
        category_id=payload.categoryId,
        condition=payload.condition,
        status=payload.status,
        current_stock=payload.currentStock,
        min_stock_level=payload.minStockLevel,
        description=payload.description,
        location=payload.location,
    )
    log_audit(db, user_id=actor.UserID, action="UPDATE", entity_type="Item", entity_id=item_id, changes=changes)
    return serialize_item(item, load_settings(db).min_stock_alert)


@app.delete("/api/admin/items/{item_id}")
def remove_item(
    request: Request,
    item_id: int,
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    item = delete_item(db, actor, item_id)
    log_audit(db, user_id=actor.UserID, action="DELETE", entity_type="Item", entity_id=item_id, changes={"manualId": item.ManualID, "name": item.Name})
    return {"message": "Item deleted"}


@app.get("/api/admin/reports/overdue")
def get_overdue_report(
    request: Request,
    department_id: int | None = Query(None, alias="departmentId"),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    now = datetime.now()
    rows = overdue_report(db, actor, department_id=department_id, now=now)
    return {"generatedAt": now, "count": len(rows), "rows": rows}


@app.get("/api/admin/reports/issues")
def get_issues_report(
    request: Request,
    department_id: int | None = Query(None, alias="departmentId"),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    include_returned: bool = Query(True, alias="includeReturned"),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    rows = issues_report(
        db,
        actor,
        department_id=department_id,
        start_date=start_date,
        end_date=end_date,
        include_returned=include_returned,
    )
    return {"generatedAt": datetime.now(), "count": len(rows), "rows": rows}


@app.get("/api/admin/reports/inventory")
def get_inventory_report(
    request: Request,
    department_id: int | None = Query(None, alias="departmentId"),
    category_id: int | None = Query(None, alias="categoryId"),
    status: str | None = Query(None),
    condition: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    actor = _require_actor(request, x_session_token, db)
    rows = inventory_report(db, actor, department_id=department_id, category_id=category_id, status=status, condition=condition)
    return {"generatedAt": datetime.now(), "count": len(rows), "rows": rows}


@app.get("/api/admin/audit")
def get_audit_log(
    request: Request,
    entity_type: str | None = Query(None, alias="entityType"),
    entity_id: int | None = Query(None, alias="entityId"),
    user_id: int | None = Query(None, alias="userId"),
    action: str | None = Query(None),
    db: Session = Depends(get_db),
    x_session_token: str | None = Header(None, alias="X-Session-Token"),
):
    _require_admin(request, x_session_token, db)
    entries = list_audit_entries(db, entity_type=entity_type, entity_id=entity_id, user_id=user_id, action=action)
    return [serialize_audit_entry(entry) for entry in entries]
