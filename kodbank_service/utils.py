"""Funciones de utilidad: hash de contraseñas, emisión/verificación de JWT y tokens de reset."""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from jose import JWTError, jwt
from passlib.context import CryptContext

from .exceptions import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def utcnow() -> datetime:
    """UTC sin tzinfo; es como se guardan las fechas en la BD."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_password_context(rounds: int = 12) -> CryptContext:
    """
    Crea el CryptContext de bcrypt con el coste indicado (mínimo 10 rondas,
    validado en config). create_app() lo guarda en app.state.pwd_context.
    """
    return CryptContext(
        schemes=["bcrypt"],
        deprecated="auto",
        bcrypt__rounds=rounds,
    )


def verify_password(pwd_context: CryptContext, plain_password: str, hashed_password: str) -> bool:
    """Verifica una contraseña plana contra un hash almacenado."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(pwd_context: CryptContext, password: str) -> str:
    """Genera el hash de una contraseña plana usando bcrypt."""
    return pwd_context.hash(password)


def dummy_verify_password(pwd_context: CryptContext) -> None:
    """Consume el mismo tiempo que una verificación real cuando el email no existe."""
    pwd_context.dummy_verify()


# --- Utilidades para Tokens JWT ---

@dataclass(frozen=True)
class Identity:
    """Identidad autenticada adjunta a la petición."""
    user_id: int
    email: str


class TokenService:
    """
    Emite y verifica tokens de sesión JWT firmados con una clave del proceso.

    No hay lista de revocación: la validez depende solo de la firma y de 'exp'.
    El reloj es inyectable para poder probar la expiración.
    """

    def __init__(
        self,
        secret_key: str,
        expire_minutes: int = 60 * 24,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not secret_key:
            raise EnvironmentError("JWT secret key must not be empty")
        self._secret_key = secret_key
        self._lifetime = timedelta(minutes=expire_minutes)
        self._clock = clock

    def issue(self, user_id: int, email: str) -> str:
        """
        Genera un token de acceso JWT para el usuario.

        Args:
            user_id: ID del usuario, va en el claim 'sub'.
            email: email del usuario.

        Returns:
            String del JWT codificado.
        """
        issued_at = self._clock()
        to_encode: Dict = {
            "sub": str(user_id),
            "email": email,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._lifetime).timestamp()),
        }
        return jwt.encode(to_encode, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> Identity:
        """
        Decodifica y valida un token JWT.

        Raises:
            TokenInvalid: firma incorrecta, payload malformado o sin claims.
            TokenExpired: el token ya superó su 'exp'.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False, "verify_aud": False},
            )
        except JWTError as e:
            raise TokenInvalid() from e

        exp = payload.get("exp")
        sub = payload.get("sub")
        email = payload.get("email")
        if not isinstance(exp, int) or not sub or not email:
            raise TokenInvalid()

        # La expiración se revisa contra el reloj inyectado
        if self._clock() >= datetime.fromtimestamp(exp, tz=timezone.utc):
            raise TokenExpired()

        try:
            user_id = int(sub)
        except ValueError as e:
            raise TokenInvalid() from e

        return Identity(user_id=user_id, email=email)


# --- Tokens de restablecimiento de contraseña ---

def generate_reset_token() -> str:
    """Token opaco de 256 bits, seguro para URLs."""
    return secrets.token_urlsafe(32)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
