#!/usr/bin/env python3
"""
Run the CryptoQuest API server.

Usage:
    python server/run.py

Environment variables:
    HOST - Server host (default: 0.0.0.0)
    PORT - Server port (default: 8000)
    DEBUG - Enable auto-reload (default: false)
    STRIKE_API_KEY - Strike API key (invoices are simulated without it)
    STRIPE_SECRET_KEY - Stripe secret key
    DEEPSEEK_API_KEY, ANTHROPIC_API_KEY, OPENAI_API_KEY, XAI_API_KEY - AI providers
    CDP_API_KEY - Coinbase Developer Platform API key
    POLL_INTERVAL_SECONDS, POLL_MAX_ATTEMPTS - Settlement polling
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import uvicorn
from dotenv import load_dotenv

load_dotenv(project_root / ".env")

from server.config import get_settings


def main() -> None:
    """Run the server."""
    settings = get_settings()
    polling = f"every {settings.poll_interval_seconds}s, {settings.poll_max_attempts} attempts"

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                   CryptoQuest API Server                     ║
╠══════════════════════════════════════════════════════════════╣
║  Host: {settings.host:<54}║
║  Port: {settings.port:<54}║
║  Debug: {str(settings.debug):<53}║
║  Strike Configured: {str(bool(settings.strike_api_key)):<41}║
║  Stripe Configured: {str(bool(settings.stripe_secret_key)):<41}║
║  Polling: {polling:<51}║
╚══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "server.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
