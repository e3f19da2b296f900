"""Operaciones del ledger: transferencias entre usuarios y lectura del dashboard.

La exclusión mutua por cuenta la da la BD (SELECT ... FOR UPDATE). No hay locks
en proceso ni lógica compensatoria fuera de la transacción.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Tuple

from sqlalchemy.orm import Session

from . import credentials
from .db import transaction_scope
from .exceptions import InvalidAmount, RecipientNotFound, ValidationError
from .models import Transaction, TransactionStatus, TransactionType, User

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# Límite de DECIMAL(15,2)
MAX_AMOUNT = Decimal("9999999999999.99")
RECENT_TRANSACTIONS_LIMIT = 10


@dataclass
class TransferResult:
    balance: Decimal
    debit: Transaction
    credit: Transaction


def validate_amount(amount) -> Decimal:
    """
    Devuelve el monto como Decimal con 2 decimales.

    Raises:
        InvalidAmount: no numérico, no finito, <= 0, más de 2 decimales o fuera de rango.
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmount() from e

    if not value.is_finite() or value <= 0 or value > MAX_AMOUNT:
        raise InvalidAmount()
    if value != value.quantize(CENT):
        raise InvalidAmount()
    return value.quantize(CENT)


def resolve_recipient(db: Session, recipient_label: str) -> User:
    """El destinatario se identifica por email o por un número de celular no repetido."""
    label = recipient_label.strip()
    if not label:
        raise RecipientNotFound()

    user = credentials.get_by_email(db, label)
    if user is not None:
        return user

    matches = db.query(User).filter(User.phone == label).limit(2).all()
    if len(matches) == 1:
        return matches[0]
    if matches:
        logger.warning("Destinatario ambiguo: el número de celular pertenece a varios usuarios.")
    raise RecipientNotFound()


def transfer(db: Session, acting_user_id: int, recipient_label: str, amount) -> TransferResult:
    """
    Mueve amount del usuario autenticado al destinatario, de forma atómica.

    Ambas filas se bloquean en orden ascendente de id para que dos transferencias
    en sentidos opuestos no se bloqueen mutuamente. Si no hay fondos suficientes
    se revierte todo y no se escribe ningún registro.

    Raises:
        InvalidAmount, RecipientNotFound, ValidationError (transferencia a sí mismo),
        InsufficientFunds, StorageUnavailable.
    """
    value = validate_amount(amount)

    with transaction_scope(db):
        recipient = resolve_recipient(db, recipient_label)
        if recipient.id == acting_user_id:
            raise ValidationError("Cannot transfer to your own account")

        locked = {uid: credentials.lock_user(db, uid) for uid in sorted((acting_user_id, recipient.id))}
        sender, recipient = locked[acting_user_id], locked[recipient.id]

        new_balance = credentials.adjust_balance(db, sender.id, -value)
        credentials.adjust_balance(db, recipient.id, value)

        debit = Transaction(
            user_id=sender.id,
            type=TransactionType.DEBIT,
            merchant=recipient.email,
            amount=-value,
            status=TransactionStatus.COMPLETED,
        )
        credit = Transaction(
            user_id=recipient.id,
            type=TransactionType.CREDIT,
            merchant=sender.email,
            amount=value,
            status=TransactionStatus.COMPLETED,
        )
        db.add_all([debit, credit])
        db.flush()

    logger.info(f"Transferencia completada: user {sender.id} -> user {recipient.id}, monto {value}")
    return TransferResult(balance=new_balance, debit=debit, credit=credit)


def get_dashboard(db: Session, user_id: int) -> Tuple[User, List[Transaction]]:
    """Usuario y sus últimas 10 transacciones, la más reciente primero."""
    user = credentials.find_by_id(db, user_id)
    transactions = (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
        .limit(RECENT_TRANSACTIONS_LIMIT)
        .all()
    )
    return user, transactions
