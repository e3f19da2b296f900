"""Acceso a la tabla 'users': identidad, hash de contraseña y saldo.

Todas las funciones reciben la sesión explícitamente. Las que escriben deben
llamarse dentro de transaction_scope() del llamador: aquí solo se hace flush.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .exceptions import DuplicateEmail, InsufficientFunds, UserNotFound
from .models import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_user(
    db: Session,
    username: str,
    email: str,
    phone: str,
    password_hash: str,
    initial_balance: Decimal = Decimal("0.00"),
) -> int:
    """
    Inserta un nuevo usuario y devuelve su ID.

    Raises:
        DuplicateEmail: si el email ya está registrado (también si otra petición
            lo insertó entre la verificación y el INSERT).
    """
    email = normalize_email(email)
    if db.query(User.id).filter(User.email == email).first():
        raise DuplicateEmail()

    new_user = User(
        username=username,
        email=email,
        phone=phone,
        password=password_hash,
        balance=initial_balance,
    )
    try:
        # SAVEPOINT para que la violación de UNIQUE no invalide la transacción exterior
        with db.begin_nested():
            db.add(new_user)
    except IntegrityError as e:
        logger.warning(f"Registro concurrente con email duplicado: {email}")
        raise DuplicateEmail() from e

    return new_user.id


def get_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


def find_by_email(db: Session, email: str) -> User:
    user = get_by_email(db, email)
    if user is None:
        raise UserNotFound()
    return user


def find_by_id(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UserNotFound()
    return user


def lock_user(db: Session, user_id: int) -> User:
    """Lectura con SELECT ... FOR UPDATE; el bloqueo dura hasta el commit/rollback."""
    user = (
        db.query(User)
        .filter(User.id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if user is None:
        raise UserNotFound()
    return user


def adjust_balance(db: Session, user_id: int, delta: Decimal) -> Decimal:
    """
    Suma delta (positivo o negativo) al saldo del usuario y devuelve el nuevo saldo.
    Debe ejecutarse dentro de la transacción del llamador.

    Raises:
        InsufficientFunds: si el saldo resultante sería negativo. No se modifica nada.
    """
    user = lock_user(db, user_id)
    new_balance = user.balance + delta
    if new_balance < 0:
        raise InsufficientFunds()

    user.balance = new_balance
    db.flush()
    return new_balance


def update_password(db: Session, email: str, password_hash: str) -> None:
    user = (
        db.query(User)
        .filter(User.email == normalize_email(email))
        .with_for_update()
        .first()
    )
    if user is None:
        raise UserNotFound()
    user.password = password_hash
    db.flush()
