"""ASGI entrypoint: ``uvicorn admission_gate.main:app``."""

from admission_gate.core.app_factory import create_app

app = create_app()
