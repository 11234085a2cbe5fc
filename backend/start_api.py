#!/usr/bin/env python3
"""
shopsync API Startup Script

Starts the FastAPI server (webhook intake, sync trigger, OAuth install).
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the shopsync API server."""
    print("Starting shopsync API server...")
    print("   Webhooks:  POST /webhooks/shopify")
    print("   Sync:      POST /sync/{tenant_id}/trigger")
    print("   OAuth:     POST /oauth/shopify/install, GET /oauth/shopify/callback")
    print("   Docs:      http://localhost:8000/docs")
    print("")

    env_file = Path(".env")
    if not env_file.exists():
        print("WARNING: No .env file found!")
        print("   Run generate_keys.py or create .env with at least:")
        print("   TOKEN_ENCRYPTION_KEY=<fernet key>")
        print("   SHOPIFY_API_SECRET=<app secret>")
        print("")

    try:
        uvicorn.run(
            "shopsync.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["shopsync"],
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\nShutting down shopsync API server...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
