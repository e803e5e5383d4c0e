#!/usr/bin/env python
"""Start the marketplace sync service with the port taken from the environment."""
import os
import uvicorn

if __name__ == "__main__":
    # Get port from environment, default to 8000
    port = int(os.environ.get("PORT", 8000))
    development = os.environ.get("ENVIRONMENT", "development") == "development"

    print(f"Starting marketplace sync service on port {port}")

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
        reload=development and os.environ.get("RELOAD", "false").lower() == "true",
    )
