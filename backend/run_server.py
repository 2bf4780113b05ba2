"""Start the tutor matching service with uvicorn.

HOST and PORT are read from the environment; everything else comes from
`tutormatch.config.Settings` (environment or `CONFIG_FILE`).
"""
import os

import uvicorn


def run():
    """Serve `tutormatch.main:app` until interrupted."""
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("tutormatch.main:app", host=host, port=port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == '__main__':
    run()
