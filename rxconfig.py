"""Configuration file for the trace explorer Reflex app."""

import os
import reflex as rx
from reflex.config import LogLevel

config = rx.Config(
    app_name="explorer",

    plugins=[
        rx.plugins.TailwindV4Plugin(),
        rx.plugins.SitemapPlugin(),
    ],

    # The query API (TRACE_API_URL) usually sits on 8080, keep clear of it
    frontend_port=3000,  # Reflex frontend (next.js)
    backend_port=8002,   # Reflex backend (fastapi)
    backend_host="0.0.0.0",

    # URL the browser uses to reach the Reflex backend, not the trace API
    api_url=os.environ.get(
        "REFLEX_API_URL",
        "http://localhost:8002",  # Must match backend_port
    ),

    env_file=".env",

    loglevel=LogLevel(os.environ.get("REFLEX_LOGLEVEL", "info").lower()),

    telemetry_enabled=False,
)
