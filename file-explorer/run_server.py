#!/usr/bin/env python3
"""Production entry point: gevent WSGI server around ``create_app()``."""
from gevent import monkey

# Must run before anything imports socket/subprocess/ssl.
monkey.patch_all()

from gevent import pywsgi  # noqa: E402

from app import create_app  # noqa: E402
from services.config import load_config  # noqa: E402
from services.logging_setup import core_log as _core_log  # noqa: E402


def main() -> None:
    config = load_config()
    application = create_app(config)
    server = pywsgi.WSGIServer((config.bind_host, config.port), application)
    _core_log("info", "server start", host=config.bind_host, port=config.port)
    print(f"File Explorer hub listening on http://{config.bind_host}:{config.port} (root: {config.root_dir})")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        _core_log("info", "server stop")
        server.stop()


if __name__ == "__main__":
    main()
