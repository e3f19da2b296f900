"""Define los modelos de las tablas 'users', 'transactions' y 'reset_tokens' usando SQLAlchemy ORM."""

import enum
from decimal import Decimal

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, func, Enum as SQLEnum

from .db import Base
from .utils import utcnow

# DECIMAL(15,2): nunca se usa Float para dinero
MONEY = Numeric(15, 2)


class User(Base):
    """
    Modelo SQLAlchemy que representa la tabla 'users'.
    Guarda la identidad del usuario y su saldo actual.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), nullable=False)

    # Email en minúsculas, identificador único para el login
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone = Column(String(20), nullable=False, index=True)

    # Hash bcrypt. Nunca la contraseña en texto plano.
    password = Column(String(255), nullable=False)

    balance = Column(MONEY, nullable=False, default=Decimal("0.00"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TransactionType(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(Base):
    """
    Registro append-only de movimientos. amount lleva signo:
    negativo para débitos, positivo para créditos.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(SQLEnum(TransactionType, values_callable=lambda e: [m.value for m in e]), nullable=False)

    # Contraparte visible en el dashboard (email del destinatario/remitente)
    merchant = Column(String(255), nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(
        SQLEnum(TransactionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TransactionStatus.PENDING,
    )
    date = Column(DateTime, nullable=False, default=utcnow, index=True)


class ResetToken(Base):
    """Token de un solo uso para restablecer contraseña. Solo se guarda el hash SHA-256."""
    __tablename__ = "reset_tokens"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Marcas de invalidación: usado, o reemplazado por un token más nuevo
    used_at = Column(DateTime, nullable=True)
    superseded_at = Column(DateTime, nullable=True)
