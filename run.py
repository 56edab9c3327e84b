"""
run.py

Simple entry point to run the FastAPI application with Uvicorn.

It allows developers to start the server using:
    python run.py

No business logic should be written here.
"""

import os

import uvicorn


if __name__ == "__main__":
    # reload=True only outside production
    uvicorn.run(
        "rx_intake.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("APP_ENV", "development").lower() not in ("prod", "production"),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
