"""
ASGI entry point.

Used by uvicorn / gunicorn:

    uvicorn server.asgi:app --app-dir backend

or, with backend/ on the import path:

    python -m server.asgi
"""

from dotenv import load_dotenv

load_dotenv()

import uvicorn  # pylint: disable=wrong-import-position

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=app.state.config.host,
        port=app.state.config.port,
        log_level=app.state.config.log_level.lower(),
    )
