from __future__ import annotations

import asyncio
import logging
import sys

from app.runtime import HelperApp
from app.state import AppState
from utils.config import load_config
from utils.log import setup_logging
from utils.notify import notify
from utils.paths import PathAccessError, get_env_path, get_temp_dir


def main() -> None:
    setup_logging()
    try:
        env_path = get_env_path()
        config = load_config(env_path)
        temp_dir = get_temp_dir()
    except PathAccessError as exc:
        notify("AI Helper Error", str(exc))
        logging.critical("Application directory is not writable: %s", exc)
        sys.exit(1)
    setup_logging(config.debug)
    logging.info("Configuration loaded from %s", env_path)

    state = AppState(config=config, env_path=env_path)
    app = HelperApp(state, temp_dir)
    try:
        code = asyncio.run(app.run())
    except KeyboardInterrupt:
        logging.info("Interrupted. Shutting down")
        app.close()
        code = 0
    except Exception:
        logging.critical("FATAL: unhandled error during startup", exc_info=True)
        app.close()
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
