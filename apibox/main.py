"""Entry point — run with: python -m apibox.main"""
import uvicorn

from apibox.api.app import app  # noqa: F401
from apibox.core.config import settings

if __name__ == "__main__":
    uvicorn.run("apibox.main:app", host=settings.host, port=settings.port)
