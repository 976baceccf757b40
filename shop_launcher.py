#!/usr/bin/env python3
"""Shop Launcher: entry point for the auto-repair shop server.

Thin wrapper around the server app factory that adds:
- Logging setup
- Pre-flight checks (warn-only, never block startup)
- Data directory creation

Run directly:
    python3 shop_launcher.py

Or, once installed:
    autoshop
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger("shop.launcher")


def setup_logging(level: str = "info"):
    """Configure the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def ensure_data_dirs(config):
    """Create the directories the store and the event export write to."""
    for d in (Path(config.storage.db_path).parent, Path(config.events.export_dir)):
        d.mkdir(parents=True, exist_ok=True)
    logger.info("Data directories verified")


def run_preflight(config):
    """Quick checks. Warn on failure, never block startup."""
    from tools.shop.quotes import pdf_available

    checks = [
        (f"dir:{Path(config.storage.db_path).parent}",
         os.access(Path(config.storage.db_path).parent, os.W_OK)),
    ]
    for locale in config.locale.supported:
        checks.append((f"pdf:{locale}", pdf_available(locale, config.quote.font_path)))

    passed = sum(1 for _, ok in checks if ok)
    logger.info("Pre-flight: %d/%d checks passed", passed, len(checks))
    for name, ok in checks:
        if not ok:
            logger.warning("Pre-flight FAILED: %s", name)


def main():
    """Load config, prepare the data dirs and start uvicorn."""
    from core.config import get_config

    config = get_config()
    setup_logging(config.server.log_level)
    logger.info("=" * 60)
    logger.info("Auto Service starting")
    logger.info("=" * 60)

    ensure_data_dirs(config)
    run_preflight(config)

    import uvicorn
    logger.info("Starting uvicorn on %s:%d", config.server.host, config.server.port)
    uvicorn.run(
        "interfaces.dashboard.server:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        access_log=False,
    )


if __name__ == "__main__":
    main()
