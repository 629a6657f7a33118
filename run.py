"""
Load environment variables for host and port, creates the Flask app instance,
and starts the development server.

Environment Variables
---------------------
HOST: The interface/IP the server should bind to. Defaults to "127.0.0.1".
PORT: The port number the server should listen on. Defaults to "3000".
LOG_LEVEL: Root logging level. Defaults to "INFO".
JELLYFIN_URL, JELLYFIN_API_KEY: Bootstrap connection used until the
    settings store holds both values.
ENCRYPTION_KEY: Secret protecting encrypted settings at rest.
"""

import logging
from os import getenv

from dotenv import load_dotenv

from app import create_app


def main() -> None:
    """
    Resolve host and port from env variables, instantiate app via
    create_app(), and start the server.
    """
    load_dotenv()

    logging.basicConfig(
        level=getattr(logging, getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    host = getenv("HOST", "127.0.0.1")
    port = int(getenv("PORT", "3000"))

    app = create_app({"PORT": port})
    logging.getLogger("run").info(
        "Server running on http://%s:%d (health check at /health)", host, port
    )
    app.run(host=host, port=port)


if __name__ == "__main__":
    main()
