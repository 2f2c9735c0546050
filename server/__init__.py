"""FastAPI server for the CryptoQuest API."""

from server.app import Services, create_app
from server.config import Settings

__all__ = ["create_app", "Services", "Settings"]
