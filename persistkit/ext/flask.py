"""Flask integration: request-scoped registry and session provider.

Usage::

    db = SQLAlchemy()
    uow_ext = UnitOfWorkExtension(db)

    def create_app():
        app = Flask(__name__)
        db.init_app(app)
        uow_ext.init_app(app)
        return app

    # inside a view or service
    with current_provider().create() as uow:
        ...
        uow.commit()
"""

from __future__ import annotations

import logging
from uuid import uuid4

from flask import Flask, current_app, g, has_app_context, has_request_context, request
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import Session

from persistkit.uow.errors import UnitOfWorkError
from persistkit.uow.provider import ResourceReuse
from persistkit.uow.registry import Stack, UnitOfWorkRegistry
from persistkit.uow.sqlalchemy_uow import SQLAlchemyUnitOfWorkProvider

log = logging.getLogger(__name__)

EXTENSION_KEY = "persistkit"
CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")


def ensure_request_id() -> str | None:
    """Return the current request identifier, generating one when necessary."""

    if not has_request_context():
        return None
    if hasattr(g, "request_id"):
        return g.request_id  # type: ignore[return-value]
    for header in CORRELATION_HEADERS:
        value = request.headers.get(header)
        if value:
            g.request_id = value
            return value
    request_id = str(uuid4())
    g.request_id = request_id
    return request_id


class RequestIdFilter(logging.Filter):
    """Ensure a ``request_id`` attribute is always present on log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = ensure_request_id()
        return True


class FlaskRequestUnitOfWorkRegistry(UnitOfWorkRegistry):
    """Keep the stack on :data:`flask.g`, so each app context has its own."""

    _ATTR = "_persistkit_uow_stack"

    def _get_stack(self) -> Stack:
        if not has_app_context():
            raise RuntimeError("FlaskRequestUnitOfWorkRegistry requires an application context.")
        return g.get(self._ATTR, ())

    def _set_stack(self, stack: Stack) -> None:
        if not has_app_context():
            raise RuntimeError("FlaskRequestUnitOfWorkRegistry requires an application context.")
        setattr(g, self._ATTR, stack)


class UnitOfWorkExtension:
    """
    Bind a session provider to a Flask application.

    Owning units open a dedicated :class:`Session` on the Flask-SQLAlchemy
    engine instead of using ``db.session``. Nested units reuse that session.

    At the end of every request, units still registered are disposed
    innermost first, and each one is logged as an error.
    """

    def __init__(self, db: SQLAlchemy, app: Flask | None = None) -> None:
        self.db = db
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Register the provider and the leak-check teardown on ``app``.

        Reads ``PERSISTKIT_RESOURCE_REUSE`` from ``app.config``.
        """
        reuse = ResourceReuse.parse(
            app.config.get("PERSISTKIT_RESOURCE_REUSE", ResourceReuse.REUSE_IF_AVAILABLE)
        )
        provider = SQLAlchemyUnitOfWorkProvider(
            self._open_session,
            registry=FlaskRequestUnitOfWorkRegistry(),
            reuse=reuse,
        )
        app.extensions[EXTENSION_KEY] = provider
        app.logger.addFilter(RequestIdFilter())

        @app.teardown_appcontext
        def _dispose_leaked_units(exc: BaseException | None) -> None:
            dispose_leaked_units(provider)

    def _open_session(self) -> Session:
        return Session(bind=self.db.engine, expire_on_commit=False)


def dispose_leaked_units(provider: SQLAlchemyUnitOfWorkProvider) -> int:
    """Dispose every unit left on the provider's registry, innermost first.

    :returns: Number of leaked units found.
    """
    leaked = list(provider.registry)
    for uow in leaked:
        log.error(
            "Unit of work %s was not disposed before the end of the request",
            uow.id,
            extra={"uow_id": uow.id, "request_id": ensure_request_id()},
        )
        try:
            uow.dispose()
        except UnitOfWorkError:
            log.error("Disposing leaked unit of work %s failed", uow.id, exc_info=True)
    return len(leaked)


def current_provider() -> SQLAlchemyUnitOfWorkProvider:
    """Return the provider registered on the current application.

    :raises RuntimeError: If :meth:`UnitOfWorkExtension.init_app` was not called.
    """
    try:
        return current_app.extensions[EXTENSION_KEY]
    except KeyError:
        raise RuntimeError("UnitOfWorkExtension is not initialised on this app.") from None


__all__ = [
    "FlaskRequestUnitOfWorkRegistry",
    "UnitOfWorkExtension",
    "RequestIdFilter",
    "current_provider",
    "dispose_leaked_units",
    "ensure_request_id",
]
