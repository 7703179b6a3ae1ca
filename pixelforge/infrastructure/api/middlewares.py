from __future__ import annotations

import os

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware


def add_default_middlewares(app: FastAPI) -> None:
    # development/staging: common local frontend origins only
    env = os.getenv("ENV", "development")
    extra = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

    if env in ("development", "staging"):
        allowed_origins = [
            "http://localhost:3000",
            "http://localhost:5173",  # Vite default
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
            *extra,
        ]
    else:
        allowed_origins = extra or ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=allowed_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        # binary responses carry the file name here
        expose_headers=["Content-Disposition", "Retry-After"],
    )
