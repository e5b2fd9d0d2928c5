from __future__ import annotations

import logging
import sys

from concall import __version__
from concall.common.config import from_env
from concall.common.errors import ConfigError
from concall.common.logging import init_structured_logging, log_event

logger = logging.getLogger("concall")


def main() -> int:
    try:
        cfg = from_env()
    except ConfigError as e:
        init_structured_logging(service="concall-analyser", version=__version__)
        log_event(logger, "config.invalid", severity="CRITICAL", error=str(e))
        return 2

    init_structured_logging(service="concall-analyser", env=cfg.env, version=__version__)

    import uvicorn  # noqa: WPS433

    from concall.app import create_app  # noqa: WPS433

    uvicorn.run(
        create_app(cfg),
        host="0.0.0.0",
        port=cfg.port,
        log_config=None,
        timeout_graceful_shutdown=int(cfg.shutdown_grace_s),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
