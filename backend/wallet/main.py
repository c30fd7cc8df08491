import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import replace
from datetime import date, timedelta

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .auth import admin_only, any_role, entry_or_admin
from .config import DEV_JWT_SECRET, Settings, load_settings
from .errors import NotFound, StorageError, Unauthenticated, WalletError
from .forms import operation_from_form, service_from_form, transfer_from_form
from .migrations import apply_migrations, seed_defaults
from .persistence import Persistence
from .schemas import (
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    BackupRunResponse,
    HealthResponse,
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    OperationResponse,
    PlatformCreate,
    PlatformResponse,
    SettingCreate,
    SettingResponse,
    StatsResponse,
    TransferResponse,
    UserCreate,
    UserResponse,
)
from .services.attachments import UPLOADS_URL_PREFIX, save_attachment
from .services.backup import BackupService, backup_loop
from .services.stats import build_stats
from .services.subscriptions import annotate_services
from .tokens import Identity, TokenService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_persistence(request: Request) -> Persistence:
    return request.app.state.persistence


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[ApiErrorDetail] | None = None,
) -> JSONResponse:
    payload = ApiErrorResponse(error=ApiErrorPayload(code=code, message=message, details=details or []))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def wallet_error_handler(request: Request, exc: WalletError) -> JSONResponse:
    message = exc.message
    if isinstance(exc, StorageError) and get_settings(request).is_production:
        message = "internal server error"
    details = [ApiErrorDetail(**detail) for detail in exc.details]
    return build_error_response(exc.status_code, exc.code, message, details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(400, "VALIDATION_ERROR", "Invalid request payload", details)


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    if get_settings(request).is_production:
        message = "internal server error"
    else:
        message = f"{exc.__class__.__name__}: {exc}"
    return build_error_response(500, "INTERNAL_ERROR", message)


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


# auth


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    persistence: Persistence = Depends(get_persistence),
) -> AuthResponse:
    user = persistence.authenticate_user(payload.username, payload.password)
    if user is None:
        logger.info("Failed login for %s", payload.username)
        raise Unauthenticated("invalid credentials")
    settings = get_settings(request)
    tokens: TokenService = request.app.state.tokens
    token = tokens.issue(user)
    response.set_cookie(
        settings.session_cookie_name,
        token,
        httponly=True,
        samesite="strict",
        secure=settings.is_production,
        max_age=int(tokens.ttl.total_seconds()),
    )
    return AuthResponse(
        message="Logged in",
        token=token,
        user=IdentityResponse(id=user["id"], role=user["role"], name=user["name"]),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(response: Response, settings: Settings = Depends(get_settings)) -> MessageResponse:
    response.delete_cookie(settings.session_cookie_name, httponly=True, samesite="strict", secure=settings.is_production)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=IdentityResponse)
async def me(identity: Identity = Depends(any_role)) -> IdentityResponse:
    return IdentityResponse(**identity.as_dict())


@router.post("/admin/backup-now", response_model=BackupRunResponse)
async def backup_now(request: Request, identity: Identity = Depends(admin_only)) -> BackupRunResponse:
    service: BackupService = request.app.state.backup
    logger.info("Backup requested by user %s", identity.id)
    file_path = await asyncio.to_thread(service.run)
    return BackupRunResponse(
        message="Backup sent",
        file=file_path.name,
        recipient=service.settings.backup_recipient or "",
    )


# lookup entries


@router.get("/settings", response_model=list[SettingResponse])
async def list_settings(
    identity: Identity = Depends(any_role),
    persistence: Persistence = Depends(get_persistence),
) -> list[SettingResponse]:
    return [SettingResponse(**row) for row in persistence.list_settings()]


@router.post("/settings", response_model=MessageResponse, status_code=201)
async def add_setting(
    payload: SettingCreate,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    setting_id = persistence.add_setting(payload.name, payload.type)
    return MessageResponse(message="Setting added", id=setting_id)


@router.delete("/settings/{setting_id}", response_model=MessageResponse)
async def delete_setting(
    setting_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_setting(setting_id)
    return MessageResponse(message="Deleted")


# operations


@router.get("/operations", response_model=list[OperationResponse])
async def list_operations(
    q: str = Query(default=""),
    category: str | None = Query(default=None),
    property_type: str | None = Query(default=None),
    identity: Identity = Depends(any_role),
    persistence: Persistence = Depends(get_persistence),
) -> list[OperationResponse]:
    rows = persistence.list_operations(q=q, category=category, property_type=property_type)
    return [OperationResponse(**row) for row in rows]


@router.post("/operations", response_model=MessageResponse, status_code=201)
async def create_operation(
    date_value: str | None = Form(default=None, alias="date"),
    type_value: str | None = Form(default=None, alias="type"),
    amount: str | None = Form(default=None),
    property_type: str | None = Form(default=None),
    reference_number: str | None = Form(default=None),
    category: str | None = Form(default=None),
    description: str | None = Form(default=None),
    attachment: UploadFile | None = File(default=None),
    identity: Identity = Depends(entry_or_admin),
    settings: Settings = Depends(get_settings),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    payload = operation_from_form(
        date_value=date_value,
        type_value=type_value,
        amount=amount,
        property_type=property_type,
        reference_number=reference_number,
        category=category,
        description=description,
    )
    attachment_path = await save_attachment(attachment, settings.uploads_dir)
    operation_id = persistence.create_operation(replace(payload, attachment_path=attachment_path), identity.id)
    return MessageResponse(message="Operation added", id=operation_id)


@router.put("/operations/{operation_id}", response_model=MessageResponse)
async def update_operation(
    operation_id: int,
    date_value: str | None = Form(default=None, alias="date"),
    type_value: str | None = Form(default=None, alias="type"),
    amount: str | None = Form(default=None),
    property_type: str | None = Form(default=None),
    reference_number: str | None = Form(default=None),
    category: str | None = Form(default=None),
    description: str | None = Form(default=None),
    attachment: UploadFile | None = File(default=None),
    identity: Identity = Depends(admin_only),
    settings: Settings = Depends(get_settings),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    existing = persistence.get_operation(operation_id)
    if existing is None:
        raise NotFound(f"operation not found: {operation_id}")
    payload = operation_from_form(
        date_value=date_value,
        type_value=type_value,
        amount=amount,
        property_type=property_type,
        reference_number=reference_number,
        category=category,
        description=description,
        existing=existing,
    )
    attachment_path = await save_attachment(attachment, settings.uploads_dir)
    if attachment_path:
        payload = replace(payload, attachment_path=attachment_path)
    persistence.update_operation(operation_id, payload)
    return MessageResponse(message="Operation updated", id=operation_id)


@router.delete("/operations/{operation_id}", response_model=MessageResponse)
async def delete_operation(
    operation_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_operation(operation_id)
    return MessageResponse(message="Deleted")


@router.get("/stats", response_model=StatsResponse)
async def stats(
    identity: Identity = Depends(any_role),
    persistence: Persistence = Depends(get_persistence),
) -> StatsResponse:
    return StatsResponse(**build_stats(persistence))


# transfers


@router.get("/transfers", response_model=list[TransferResponse])
async def list_transfers(
    person_name: str | None = Query(default=None),
    identity: Identity = Depends(any_role),
    persistence: Persistence = Depends(get_persistence),
) -> list[TransferResponse]:
    return [TransferResponse(**row) for row in persistence.list_transfers(person_name)]


@router.post("/transfers", response_model=MessageResponse, status_code=201)
async def create_transfer(
    date_value: str | None = Form(default=None, alias="date"),
    person_name: str | None = Form(default=None),
    amount: str | None = Form(default=None),
    attachment: UploadFile | None = File(default=None),
    identity: Identity = Depends(entry_or_admin),
    settings: Settings = Depends(get_settings),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    payload = transfer_from_form(date_value=date_value, person_name=person_name, amount=amount)
    attachment_path = await save_attachment(attachment, settings.uploads_dir)
    transfer_id = persistence.create_transfer(replace(payload, attachment_path=attachment_path), identity.id)
    return MessageResponse(message="Transfer added", id=transfer_id)


@router.delete("/transfers/{transfer_id}", response_model=MessageResponse)
async def delete_transfer(
    transfer_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_transfer(transfer_id)
    return MessageResponse(message="Deleted")


# platforms and services


@router.get("/platforms", response_model=list[PlatformResponse])
async def list_platforms(
    identity: Identity = Depends(any_role),
    settings: Settings = Depends(get_settings),
    persistence: Persistence = Depends(get_persistence),
) -> list[PlatformResponse]:
    platforms = annotate_services(persistence.list_platforms(), date.today(), settings.expiry_warning_days)
    return [PlatformResponse(**row) for row in platforms]


@router.post("/platforms", response_model=MessageResponse, status_code=201)
async def create_platform(
    payload: PlatformCreate,
    identity: Identity = Depends(entry_or_admin),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    platform_id = persistence.create_platform(payload.name, payload.category, identity.id)
    return MessageResponse(message="Platform added", id=platform_id)


@router.delete("/platforms/{platform_id}", response_model=MessageResponse)
async def delete_platform(
    platform_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_platform(platform_id)
    return MessageResponse(message="Platform deleted")


@router.post("/services", response_model=MessageResponse, status_code=201)
async def create_service(
    platform_id: str | None = Form(default=None),
    name: str | None = Form(default=None),
    start_date: str | None = Form(default=None),
    end_date: str | None = Form(default=None),
    attachment: UploadFile | None = File(default=None),
    identity: Identity = Depends(entry_or_admin),
    settings: Settings = Depends(get_settings),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    payload = service_from_form(platform_id=platform_id, name=name, start_date=start_date, end_date=end_date)
    if not persistence.platform_exists(payload.platform_id):
        raise NotFound(f"platform not found: {payload.platform_id}")
    attachment_path = await save_attachment(attachment, settings.uploads_dir)
    service_id = persistence.create_service(replace(payload, attachment_path=attachment_path), identity.id)
    return MessageResponse(message="Service added", id=service_id)


@router.delete("/services/{service_id}", response_model=MessageResponse)
async def delete_service(
    service_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_service(service_id)
    return MessageResponse(message="Service deleted")


# users


@router.post("/users", response_model=MessageResponse, status_code=201)
async def create_user(
    payload: UserCreate,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    user = persistence.create_user(payload.username, payload.name, payload.email, payload.password, payload.role)
    logger.info("User %s created by %s", user["username"], identity.id)
    return MessageResponse(message="User created", id=user["id"])


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> list[UserResponse]:
    return [UserResponse(**row) for row in persistence.list_users()]


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    identity: Identity = Depends(admin_only),
    persistence: Persistence = Depends(get_persistence),
) -> MessageResponse:
    persistence.delete_user(user_id)
    return MessageResponse(message="User deleted")


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if settings.jwt_secret == DEV_JWT_SECRET:
        if settings.is_production:
            raise RuntimeError("JWT_SECRET is required in production")
        logger.warning("Using the development JWT secret; set JWT_SECRET")

    persistence = Persistence(settings.database_url)
    apply_migrations(persistence.engine)
    seed_defaults(persistence, settings)
    settings.uploads_dir.mkdir(parents=True, exist_ok=True)
    backup = BackupService(settings, persistence)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task: asyncio.Task | None = None
        if settings.backup_enabled:
            task = asyncio.create_task(backup_loop(backup))
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(
        title="Smart Wallet API",
        version="1.0.0",
        description="Bookkeeping API for operations, transfers, subscriptions and users.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.persistence = persistence
    app.state.tokens = TokenService(settings.jwt_secret, timedelta(hours=settings.token_ttl_hours))
    app.state.backup = backup

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WalletError, wallet_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    app.mount(UPLOADS_URL_PREFIX, StaticFiles(directory=settings.uploads_dir), name="uploads")
    return app


app = create_app()
