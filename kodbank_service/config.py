"""Carga y validación de la configuración del servicio desde variables de entorno (.env)."""

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

MIN_BCRYPT_ROUNDS = 10


@dataclass
class Settings:
    """Configuración del proceso. Se construye una vez y se inyecta en create_app()."""
    database_url: str
    jwt_secret_key: str
    access_token_expire_minutes: int = 60 * 24
    reset_token_expire_minutes: int = 30
    bcrypt_rounds: int = 12
    initial_balance: Decimal = Decimal("100000.00")
    db_statement_timeout_seconds: int = 10
    app_base_url: str = "http://localhost:8003"
    mail_api_url: Optional[str] = None
    mail_api_key: Optional[str] = None
    mail_from: str = "KodBank <no-reply@kodbank.app>"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


def _database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    # Credenciales MariaDB/MySQL por separado
    required_db_vars = {"DB_USER", "DB_PASS", "DB_HOST", "DB_NAME"}
    missing_vars = required_db_vars - set(os.environ)
    if missing_vars:
        msg = f"Faltan variables de entorno para la base de datos: {', '.join(sorted(missing_vars))}"
        logger.critical(msg)
        raise EnvironmentError(msg)

    return (
        f"mysql+pymysql://{os.getenv('DB_USER')}:{os.getenv('DB_PASS')}"
        f"@{os.getenv('DB_HOST')}/{os.getenv('DB_NAME')}"
    )


def load_settings() -> Settings:
    """
    Lee el entorno (cargando .env si existe) y devuelve un Settings validado.

    Raises:
        EnvironmentError: si falta JWT_SECRET_KEY o la configuración de base de datos.
            El servicio no arranca con una clave por defecto.
    """
    load_dotenv()

    secret_key = os.getenv("JWT_SECRET_KEY")
    if not secret_key:
        logger.critical("JWT_SECRET_KEY no está definida. El servicio no puede emitir tokens.")
        raise EnvironmentError("JWT_SECRET_KEY must be set")

    bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", 12))
    if bcrypt_rounds < MIN_BCRYPT_ROUNDS:
        logger.warning(f"BCRYPT_ROUNDS={bcrypt_rounds} es demasiado bajo, usando {MIN_BCRYPT_ROUNDS}.")
        bcrypt_rounds = MIN_BCRYPT_ROUNDS

    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    return Settings(
        database_url=_database_url_from_env(),
        jwt_secret_key=secret_key,
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)),
        reset_token_expire_minutes=int(os.getenv("RESET_TOKEN_EXPIRE_MINUTES", 30)),
        bcrypt_rounds=bcrypt_rounds,
        initial_balance=Decimal(os.getenv("INITIAL_BALANCE", "100000.00")),
        db_statement_timeout_seconds=int(os.getenv("DB_STATEMENT_TIMEOUT_SECONDS", 10)),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:8003").rstrip("/"),
        mail_api_url=os.getenv("MAIL_API_URL"),
        mail_api_key=os.getenv("MAIL_API_KEY"),
        mail_from=os.getenv("MAIL_FROM", "KodBank <no-reply@kodbank.app>"),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
