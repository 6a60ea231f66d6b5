"""
tracegate.api.__main__

Entrypoint for running the gateway via `python -m tracegate.api` (or the `tracegate` script).

Responsibilities:
- Load settings and create the app.
- Start uvicorn with structlog-compatible logging config and the trusted proxy list.
"""

from __future__ import annotations

import uvicorn

from tracegate.api.app import create_app
from tracegate.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
        # The ASGI client address keys the pre-auth rate limits and audit source_ip.
        proxy_headers=True,
        forwarded_allow_ips=settings.trusted_proxies,
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Anything not listed in TRACEGATE_TRUSTED_PROXIES is rate limited by its socket address.
