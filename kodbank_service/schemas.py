"""Modelos Pydantic (schemas) para validación de datos de entrada/salida."""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import TransactionStatus, TransactionType

PASSWORD_MIN_LENGTH = 8
# bcrypt solo usa los primeros 72 bytes
PASSWORD_MAX_BYTES = 72
SPECIAL_CHARACTERS = "!@#$%^&*"


def validate_password_strength(password: str) -> str:
    """
    Aplica la política de contraseñas en el servidor (la misma que muestra el frontend).

    Raises:
        ValueError: con el primer requisito incumplido.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password needs at least 1 uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password needs at least 1 lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password needs at least 1 number")
    if not any(c in SPECIAL_CHARACTERS for c in password):
        raise ValueError(f"Password needs at least 1 special character ({SPECIAL_CHARACTERS})")
    return password


# --- Schemas de Usuario ---

class UserCreate(BaseModel):
    """Schema para los datos requeridos al crear un nuevo usuario."""
    username: str = Field(..., min_length=3, max_length=255)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10}$", description="Número de 10 dígitos")
    password: str

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username must be at least 3 characters")
        return v

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    """Datos públicos del usuario (excluye el hash de contraseña)."""
    id: int
    username: str
    email: str
    phone: str
    balance: Decimal

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# --- Schemas de Token ---

class LoginResponse(BaseModel):
    """Token de acceso JWT devuelto tras un login exitoso, junto con el usuario."""
    token: str
    token_type: str = "bearer"
    user: UserResponse


# --- Schemas de Ledger ---

class TransactionResponse(BaseModel):
    id: int
    user_id: int
    type: TransactionType
    merchant: str
    amount: Decimal
    status: TransactionStatus
    date: datetime

    model_config = ConfigDict(from_attributes=True)


class UserDataResponse(BaseModel):
    user: UserResponse
    transactions: List[TransactionResponse]


class TransferRequest(BaseModel):
    """El monto se acepta tal cual (número o texto); ledger.validate_amount decide si es InvalidAmount."""
    recipient: str = Field(..., min_length=1, max_length=255)
    amount: Union[Decimal, str]


class TransferResponse(BaseModel):
    message: str
    balance: Decimal
    transaction: TransactionResponse


# --- Schemas de restablecimiento de contraseña ---

class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)
