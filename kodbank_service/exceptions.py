"""Taxonomía de errores del servicio. Los handlers de main.py los convierten en respuestas JSON."""

from fastapi import status


class KodBankError(Exception):
    """Error de dominio con su código HTTP y un mensaje seguro para el cliente."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "InternalError"
    detail = "Internal server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class ValidationError(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "ValidationError"
    detail = "Invalid request"


class DuplicateEmail(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "DuplicateEmail"
    detail = "Email already exists"


class InvalidCredentials(KodBankError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "InvalidCredentials"
    detail = "Invalid credentials"


class Unauthorized(KodBankError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error = "Unauthorized"
    detail = "Unauthorized"


class TokenInvalid(Unauthorized):
    """Firma incorrecta, payload malformado o claims ausentes."""


class TokenExpired(Unauthorized):
    """Firma válida pero el token superó su tiempo de vida."""


class UserNotFound(KodBankError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "UserNotFound"
    detail = "User not found"


class InsufficientFunds(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "InsufficientFunds"
    detail = "Insufficient balance"


class InvalidAmount(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "InvalidAmount"
    detail = "Amount must be a positive value with at most 2 decimals"


class RecipientNotFound(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "RecipientNotFound"
    detail = "Recipient not found"


class ResetTokenNotFound(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "TokenNotFound"
    detail = "Invalid reset token"


class ResetTokenExpired(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "TokenExpired"
    detail = "Reset token has expired"


class ResetTokenAlreadyUsed(KodBankError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "TokenAlreadyUsed"
    detail = "Reset token has already been used"


class StorageUnavailable(KodBankError):
    # Nunca se expone el error real de la BD
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "StorageUnavailable"
    detail = "Service temporarily unavailable"
