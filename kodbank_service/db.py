"""Configuración de la conexión a la base de datos usando SQLAlchemy.

El engine y la fábrica de sesiones no son globales: create_app() los construye
a partir de Settings y los guarda en app.state. Cada petición recibe su propia
sesión mediante la dependencia get_db().
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event, exc
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

# Clase base para los modelos declarativos (User, Transaction, ResetToken)
Base = declarative_base()


def _install_sqlite_locking(engine: Engine, timeout_seconds: int) -> None:
    # pysqlite no emite BEGIN hasta la primera escritura; forzamos BEGIN IMMEDIATE
    # para que las transacciones de escritura se serialicen como con FOR UPDATE.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {timeout_seconds * 1000}")
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _install_statement_timeout(engine: Engine, timeout_seconds: int) -> None:
    dialect = engine.dialect.name

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            if dialect == "mysql":
                cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {timeout_seconds}")
                cursor.execute(f"SET SESSION max_execution_time = {timeout_seconds * 1000}")
            elif dialect == "postgresql":
                cursor.execute(f"SET statement_timeout = {timeout_seconds * 1000}")
                cursor.execute(f"SET lock_timeout = {timeout_seconds * 1000}")
        finally:
            cursor.close()


def create_db_engine(database_url: str, statement_timeout_seconds: int = 10) -> Engine:
    """
    Crea el motor (Engine) de SQLAlchemy con los timeouts de sentencia/bloqueo configurados.
    pool_pre_ping=True ayuda a manejar conexiones inactivas en el pool.
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": statement_timeout_seconds},
        )
        _install_sqlite_locking(engine, statement_timeout_seconds)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
        _install_statement_timeout(engine, statement_timeout_seconds)

    logger.info(f"Motor de base de datos creado (dialecto: {engine.dialect.name}).")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Crea las tablas si no existen."""
    # Importa los modelos para registrarlos en Base.metadata
    from . import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Tablas de base de datos verificadas/creadas.")
    except exc.SQLAlchemyError as e:
        logger.error(f"Error al inicializar la base de datos: {e}", exc_info=True)
        raise StorageUnavailable() from e


# --- Función de Dependencia para FastAPI ---
def get_db(request: Request) -> Iterator[Session]:
    """
    Generador de dependencia de FastAPI para obtener una sesión de base de datos.
    Asegura que la sesión se cierre correctamente después de cada petición.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def transaction_scope(db: Session) -> Iterator[Session]:
    """
    Unidad atómica de trabajo: commit si el bloque termina sin errores,
    rollback en cualquier otra salida. Los errores de SQLAlchemy (constraints
    no controlados, lock wait timeout, conexión caída) se traducen a
    StorageUnavailable sin exponer el detalle al cliente.
    """
    try:
        yield db
        db.commit()
    except exc.SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error de base de datos, transacción revertida: {e}", exc_info=True)
        raise StorageUnavailable() from e
    except Exception:
        db.rollback()
        raise
