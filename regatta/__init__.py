import logging
import os

from flask import Flask, request

DEFAULT_CORS_ORIGINS = "http://localhost:8080,https://regatta-project.onrender.com"


def _cors_origins() -> set:
    raw = os.environ.get("CORS_ORIGINS", DEFAULT_CORS_ORIGINS)
    return {o.strip().rstrip("/") for o in raw.split(",") if o.strip()}


def create_app(store=None):
    """Build the JSON API.

    ``store`` is any object with the ``PgStore`` interface; when omitted a
    PostgreSQL store is built from ``DATABASE_URL``.
    """
    app = Flask(__name__)

    if store is None:
        if not os.environ.get("DATABASE_URL"):
            raise RuntimeError(
                "DATABASE_URL is required unless a store is passed to create_app()."
            )
        from .datastore_pg import PgStore
        store = PgStore.from_env()

    app.extensions["regatta_store"] = store
    app.config["CORS_ORIGINS"] = _cors_origins()

    @app.after_request
    def _cors(response):
        origin = (request.headers.get("Origin") or "").rstrip("/")
        if origin and origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers.add("Vary", "Origin")
        return response

    from . import routes
    app.register_blueprint(routes.bp)

    app.logger.info("Ensuring database schema")
    try:
        store.init_schema()
    except Exception:  # pylint: disable=broad-except
        app.logger.exception("Schema initialization failed; continuing with existing tables")

    return app


def main():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        port = int(os.environ.get("PORT", 8081))
    except ValueError:
        port = 8081
    host = os.environ.get("BASE_URL") or "0.0.0.0"
    logging.getLogger(__name__).info("API server starting on %s:%s", host, port)
    create_app().run(host=host, port=port)


if __name__ == '__main__':
    main()
