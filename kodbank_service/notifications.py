"""Envío de correos (link de restablecimiento) a través de una API HTTP de mailing usando httpx."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class EmailNotifier:
    """
    Cliente del relay de correo externo. Si MAIL_API_URL no está configurada,
    no se envía nada y se devuelve False.
    """

    def __init__(self, api_url: Optional[str], api_key: Optional[str], sender: str, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        if not api_url:
            logger.error("MAIL_API_URL no está definida. El envío de correos de reset fallará.")

    async def send_email(self, to: str, subject: str, text: str) -> bool:
        """Retorna True si el relay aceptó el mensaje, False si falló."""
        if not self.api_url:
            logger.error("No se puede enviar correo: MAIL_API_URL no configurada.")
            return False

        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"from": self.sender, "to": [to], "subject": subject, "text": text}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
                logger.info(f"Correo enviado exitosamente a {to}")
                return True
            except (httpx.RequestError, httpx.HTTPStatusError) as exc:
                logger.error(f"Error al enviar correo a {to}: {exc}")
                if isinstance(exc, httpx.HTTPStatusError):
                    logger.error(f"Respuesta del relay: {exc.response.status_code}")
                return False

    async def send_password_reset(self, to: str, reset_link: str, expire_minutes: int) -> bool:
        text = (
            "Hola,\n\n"
            "Recibimos una solicitud para restablecer la contraseña de tu cuenta KodBank.\n"
            f"Usa este enlace (expira en {expire_minutes} minutos):\n\n{reset_link}\n\n"
            "Si no fuiste tú, ignora este mensaje."
        )
        return await self.send_email(to, "KodBank - Restablecer contraseña", text)
