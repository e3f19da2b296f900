"""Puerta de autenticación: valida el bearer token y adjunta la identidad a la petición."""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .exceptions import TokenExpired, Unauthorized
from .utils import Identity, TokenService

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def authenticate(token: Optional[str], token_service: TokenService) -> Identity:
    """
    Sin token -> Unauthorized. Con token -> se verifica; expirado y falsificado
    se registran por separado pero salen como el mismo Unauthorized.
    """
    if not token:
        raise Unauthorized()

    try:
        return token_service.verify(token)
    except TokenExpired:
        logger.info("Token rechazado: expirado.")
        raise Unauthorized() from None
    except Unauthorized:
        logger.warning("Token rechazado: firma o payload inválido.")
        raise Unauthorized() from None


async def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """
    Dependencia de FastAPI para todas las rutas protegidas.
    La identidad queda en request.state.identity para el resto de la petición.
    """
    token = credentials.credentials if credentials and credentials.scheme.lower() == "bearer" else None
    identity = authenticate(token, request.app.state.token_service)
    request.state.identity = identity
    return identity
