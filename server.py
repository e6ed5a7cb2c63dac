#!/usr/bin/env python3
import signal
import sys
import threading

import structlog
from werkzeug.serving import make_server

from vpe.app import create_app
from vpe.config import Config
from vpe.utils.observability import configure_logging

LOGGER = structlog.get_logger("vpe.server")


def main():
    configure_logging("vpe-server", Config.LOG_LEVEL)
    app = create_app()
    server = make_server(app.config['HOST'], app.config['PORT'], app, threaded=True)

    def shutdown(signum, frame):
        LOGGER.info("shutting down", signal=signal.Signals(signum).name)
        # shutdown() blocks until serve_forever() returns, which runs in this thread
        threading.Thread(target=server.shutdown, daemon=True).start()

    for sig in (signal.SIGINT, signal.SIGTERM, signal.SIGHUP):
        signal.signal(sig, shutdown)

    LOGGER.info("server started", port=app.config['PORT'],
                config={k: v for k, v in app.config.items() if k.isupper() and k != 'SECRET_KEY'})
    try:
        server.serve_forever()
    finally:
        sweeper = app.extensions['vpe'].sweeper
        if sweeper is not None:
            sweeper.stop(timeout=10)
        LOGGER.info("server stopped")
    return 0


if __name__ == '__main__':
    sys.exit(main())
