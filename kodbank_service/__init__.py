"""KodBank - servicio de cuentas y ledger (registro, sesiones, reset de contraseña y transferencias)."""
