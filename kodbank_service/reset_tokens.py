"""Tokens de restablecimiento de contraseña: de un solo uso, con expiración.

Un token nuevo reemplaza (superseded_at) a los anteriores pendientes del mismo
email. En la tabla solo se guarda el SHA-256 del token.
"""

import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from . import credentials
from .db import transaction_scope
from .exceptions import ResetTokenAlreadyUsed, ResetTokenExpired, ResetTokenNotFound, UserNotFound
from .models import ResetToken
from .utils import generate_reset_token, hash_reset_token, utcnow

logger = logging.getLogger(__name__)

DEFAULT_EXPIRE_MINUTES = 30


def create(db: Session, email: str, expire_minutes: int = DEFAULT_EXPIRE_MINUTES) -> str:
    """
    Genera un token aleatorio para el email, lo guarda con su expiración e
    invalida los tokens anteriores aún pendientes. Devuelve el token en claro
    para enviarlo por correo.
    """
    email = credentials.normalize_email(email)
    token = generate_reset_token()
    now = utcnow()

    with transaction_scope(db):
        superseded = (
            db.query(ResetToken)
            .filter(
                ResetToken.email == email,
                ResetToken.used_at.is_(None),
                ResetToken.superseded_at.is_(None),
            )
            .update({ResetToken.superseded_at: now}, synchronize_session=False)
        )
        db.add(ResetToken(
            email=email,
            token_hash=hash_reset_token(token),
            expires_at=now + timedelta(minutes=expire_minutes),
        ))

    if superseded:
        logger.info(f"{superseded} token(s) de reset anteriores reemplazados para {email}")
    return token


def consume(db: Session, token: str, new_password_hash: str) -> None:
    """
    Valida el token, aplica el nuevo hash de contraseña y marca el token como usado,
    todo en una sola transacción. La fila del token se lee con FOR UPDATE: un segundo
    consumo concurrente espera al primero y encuentra used_at ya asignado.

    Raises:
        ResetTokenNotFound: el token no existe (o su usuario ya no existe).
        ResetTokenAlreadyUsed: ya se usó o fue reemplazado por uno más nuevo.
        ResetTokenExpired: pasó su expires_at.
    """
    with transaction_scope(db):
        reset = (
            db.query(ResetToken)
            .filter(ResetToken.token_hash == hash_reset_token(token))
            .with_for_update()
            .populate_existing()
            .first()
        )
        if reset is None:
            raise ResetTokenNotFound()
        if reset.used_at is not None or reset.superseded_at is not None:
            raise ResetTokenAlreadyUsed()

        now = utcnow()
        if reset.expires_at <= now:
            raise ResetTokenExpired()

        try:
            credentials.update_password(db, reset.email, new_password_hash)
        except UserNotFound as e:
            raise ResetTokenNotFound() from e

        reset.used_at = now

    logger.info(f"Contraseña restablecida para {reset.email}")
