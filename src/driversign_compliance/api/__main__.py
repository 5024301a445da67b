"""
driversign_compliance.api.__main__

`python -m driversign_compliance.api` (also `dsc serve`).

Responsibilities:
- Build the app from settings, loading the configured policy file at startup.
- Hand it to uvicorn with uvicorn's own logging config disabled, so structlog owns output.
"""

from __future__ import annotations

import uvicorn

from driversign_compliance.api.app import create_app
from driversign_compliance.observability.logging import get_logger
from driversign_compliance.settings import Settings, get_settings

log = get_logger(__name__)


def serve(settings: Settings | None = None) -> None:
    cfg = settings or get_settings()
    app = create_app(settings=cfg)
    log.info(
        "api_starting",
        host=cfg.api_host,
        port=cfg.api_port,
        policy_path=cfg.policy_path,
        env=cfg.env,
    )
    uvicorn.run(app, host=cfg.api_host, port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    serve()
