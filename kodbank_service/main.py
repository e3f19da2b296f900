"""API de KodBank: registro, login, dashboard, transferencias y restablecimiento de contraseña."""

import logging
import time
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import credentials, ledger, reset_tokens, schemas
from .auth import get_current_identity
from .config import Settings, load_settings
from .db import create_db_engine, create_session_factory, get_db, init_db, transaction_scope
from .exceptions import InvalidCredentials, KodBankError, StorageUnavailable
from .notifications import EmailNotifier
from .utils import (
    Identity,
    TokenService,
    build_password_context,
    dummy_verify_password,
    get_password_hash,
    verify_password,
)

# Configura logger
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a reset link has been sent."

# --- Métricas Prometheus ---
REQUEST_COUNT = Counter(
    "kodbank_requests_total",
    "Total requests processed by KodBank Service",
    ["method", "endpoint", "status_code"]
)
REQUEST_LATENCY = Histogram(
    "kodbank_request_latency_seconds",
    "Request latency in seconds for KodBank Service",
    ["endpoint"]
)
TRANSFER_COUNT = Counter("kodbank_transfers_total", "Transferencias procesadas por resultado", ["outcome"])
LOGIN_COUNT = Counter("kodbank_logins_total", "Intentos de login por resultado", ["outcome"])


def _error_response(exc: KodBankError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "detail": exc.detail})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Construye la aplicación con su engine, fábrica de sesiones, contexto bcrypt, servicio de tokens
    y notificador, todos guardados en app.state (sin estado global de conexión).
    """
    settings = settings or load_settings()

    engine = create_db_engine(settings.database_url, settings.db_statement_timeout_seconds)
    init_db(engine)

    app = FastAPI(
        title="KodBank Service",
        description="Handles registration, authentication, password reset and money transfers.",
        version="1.0.0"
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.pwd_context = build_password_context(settings.bcrypt_rounds)
    app.state.token_service = TokenService(settings.jwt_secret_key, settings.access_token_expire_minutes)
    app.state.notifier = EmailNotifier(settings.mail_api_url, settings.mail_api_key, settings.mail_from)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Middleware para Métricas ---
    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()
        response = None
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as exc:
            logger.error(f"Unhandled exception during request processing: {exc}", exc_info=True)
            response = JSONResponse(
                status_code=500,
                content={"error": "InternalError", "detail": "Internal server error"},
            )
        finally:
            latency = time.time() - start_time
            endpoint = request.url.path
            final_status_code = getattr(response, 'status_code', status_code)
            REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=final_status_code
            ).inc()

        return response

    # --- Traducción de errores a respuestas ---
    @app.exception_handler(KodBankError)
    async def kodbank_error_handler(request: Request, exc: KodBankError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        detail = "Invalid request"
        if errors:
            field = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
            msg = str(errors[0].get("msg", "")).removeprefix("Value error, ")
            detail = f"{field}: {msg}" if field else msg
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "ValidationError", "detail": detail},
        )

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Error de base de datos en {request.url.path}: {exc}", exc_info=True)
        return _error_response(StorageUnavailable())

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # --- Endpoints de Salud y Métricas ---
    @app.get("/metrics", tags=["Monitoring"])
    def metrics():
        """Exposes application metrics for Prometheus."""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health", tags=["Monitoring"])
    def health_check():
        return {"status": "ok", "service": "kodbank_service"}

    # --- Endpoints de Autenticación ---

    @app.post("/register", response_model=schemas.MessageResponse, status_code=status.HTTP_201_CREATED, tags=["Authentication"])
    def register(user: schemas.UserCreate, request: Request, db: Session = Depends(get_db)):
        """
        Registers a new user. The password is hashed with bcrypt before it reaches storage;
        the account opens with the configured demo balance.
        """
        logger.info(f"Registration attempt for email: {user.email}")
        hashed_password = get_password_hash(request.app.state.pwd_context, user.password)

        try:
            with transaction_scope(db):
                user_id = credentials.create_user(
                    db,
                    username=user.username,
                    email=user.email,
                    phone=user.phone,
                    password_hash=hashed_password,
                    initial_balance=request.app.state.settings.initial_balance,
                )
        except KodBankError as e:
            logger.warning(f"Registration failed for email {user.email}: {e.error}")
            raise

        logger.info(f"User created with ID: {user_id}")
        return {"message": "Registered successfully"}

    @app.post("/login", response_model=schemas.LoginResponse, tags=["Authentication"])
    def login(form: schemas.LoginRequest, request: Request, db: Session = Depends(get_db)):
        """
        Authenticates by email and password and returns a JWT valid for 24 hours.
        Unknown email and wrong password produce the same 401.
        """
        logger.info(f"Login attempt for user: {form.email}")
        user = credentials.get_by_email(db, form.email)

        if user is None:
            dummy_verify_password(request.app.state.pwd_context)
            LOGIN_COUNT.labels(outcome="failed").inc()
            logger.warning(f"Login failed for user: {form.email}")
            raise InvalidCredentials()
        if not verify_password(request.app.state.pwd_context, form.password, user.password):
            LOGIN_COUNT.labels(outcome="failed").inc()
            logger.warning(f"Login failed for user: {form.email}")
            raise InvalidCredentials()

        token = request.app.state.token_service.issue(user.id, user.email)
        LOGIN_COUNT.labels(outcome="success").inc()
        logger.info(f"Login successful for user_id: {user.id}")

        return {
            "token": token,
            "token_type": "bearer",
            "user": schemas.UserResponse.model_validate(user),
        }

    # --- Endpoints protegidos ---

    @app.get("/user/data", response_model=schemas.UserDataResponse, tags=["Ledger"])
    def user_data(identity: Identity = Depends(get_current_identity), db: Session = Depends(get_db)):
        """Datos del usuario autenticado y sus últimas 10 transacciones."""
        user, transactions = ledger.get_dashboard(db, identity.user_id)
        return {
            "user": schemas.UserResponse.model_validate(user),
            "transactions": [schemas.TransactionResponse.model_validate(t) for t in transactions],
        }

    @app.post("/transfer", response_model=schemas.TransferResponse, tags=["Ledger"])
    def transfer(
        transfer_in: schemas.TransferRequest,
        identity: Identity = Depends(get_current_identity),
        db: Session = Depends(get_db),
    ):
        """Transfiere fondos del usuario autenticado a otro usuario (por email o celular)."""
        logger.info(f"Transfer attempt by user_id {identity.user_id} to '{transfer_in.recipient}'")
        try:
            result = ledger.transfer(db, identity.user_id, transfer_in.recipient, transfer_in.amount)
        except KodBankError as e:
            TRANSFER_COUNT.labels(outcome=e.error).inc()
            logger.warning(f"Transfer rejected for user_id {identity.user_id}: {e.error}")
            raise

        TRANSFER_COUNT.labels(outcome="success").inc()
        return {
            "message": "Transfer successful",
            "balance": result.balance,
            "transaction": schemas.TransactionResponse.model_validate(result.debit),
        }

    # --- Restablecimiento de contraseña ---

    @app.post("/forgot-password", response_model=schemas.MessageResponse, tags=["Password Reset"])
    def forgot_password(
        body: schemas.ForgotPasswordRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
    ):
        """
        Siempre responde lo mismo, exista o no la cuenta. Si existe, el correo con
        el link de reset se envía en segundo plano, después de responder.
        """
        settings = request.app.state.settings
        user = credentials.get_by_email(db, body.email)
        if user is None:
            logger.info("Solicitud de reset para un email no registrado.")
            return {"message": FORGOT_PASSWORD_MESSAGE}

        try:
            token = reset_tokens.create(db, user.email, settings.reset_token_expire_minutes)
        except KodBankError as e:
            logger.error(f"No se pudo crear el token de reset para el usuario {user.id}: {e.error}")
            return {"message": FORGOT_PASSWORD_MESSAGE}

        reset_link = f"{settings.app_base_url}/reset-password?token={token}"
        background_tasks.add_task(
            _send_reset_email,
            request.app.state.notifier,
            user.id,
            user.email,
            reset_link,
            settings.reset_token_expire_minutes,
        )
        return {"message": FORGOT_PASSWORD_MESSAGE}

    @app.post("/reset-password", response_model=schemas.MessageResponse, tags=["Password Reset"])
    def reset_password(body: schemas.ResetPasswordRequest, request: Request, db: Session = Depends(get_db)):
        try:
            reset_tokens.consume(db, body.token, get_password_hash(request.app.state.pwd_context, body.password))
        except KodBankError as e:
            logger.warning(f"Reset de contraseña rechazado: {e.error}")
            raise
        return {"message": "Password reset successfully"}


async def _send_reset_email(notifier, user_id: int, email: str, reset_link: str, expire_minutes: int) -> None:
    sent = await notifier.send_password_reset(email, reset_link, expire_minutes)
    if not sent:
        logger.warning(f"No se pudo enviar el correo de reset al usuario {user_id}.")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kodbank_service.main:create_app", factory=True, host="0.0.0.0", port=8003)
