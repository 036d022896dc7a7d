"""ASGI entry point: `uvicorn wabroker.api.app:app`."""

from wabroker.api.factory import create_app

app = create_app()
