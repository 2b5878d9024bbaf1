"""Library settings with environment-based simple classes."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Final

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import sessionmaker

from persistkit.uow.provider import ResourceReuse
from persistkit.uow.registry import (
    ContextVarUnitOfWorkRegistry,
    ThreadLocalUnitOfWorkRegistry,
    UnitOfWorkRegistry,
)
from persistkit.uow.sqlalchemy_uow import SQLAlchemyUnitOfWorkProvider

# Public selector env var
ENV_VAR: Final[str] = "PERSISTKIT_ENV"  # 'development' | 'testing' | 'production'

# Loads .env during development (no-op when absent)
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


class BaseConfig:
    """Base configuration shared across environments.

    Attributes
    ----------
    DATABASE_URL: str
        Connection string consumed by :func:`sqlalchemy.create_engine`.
    SQLALCHEMY_ECHO: bool
        When ``True`` SQLAlchemy logs SQL statements for debugging.
    RESOURCE_REUSE: str
        Default reuse policy for providers, ``reuse-if-available`` or
        ``always-create-new``.
    REGISTRY: str
        Ambient registry flavor: ``context`` (asyncio-aware, default) or
        ``thread``.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).

    Notes
    -----
    Values are sourced from environment variables when the module is
    imported, enabling configuration without code changes.
    """

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./dev.db")
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)

    RESOURCE_REUSE = os.getenv("PERSISTKIT_RESOURCE_REUSE", ResourceReuse.REUSE_IF_AVAILABLE.value)
    REGISTRY = os.getenv("PERSISTKIT_REGISTRY", "context")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class DevelopmentConfig(BaseConfig):
    """Configuration tailored for local development."""

    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    Uses an in-memory SQLite database unless ``TEST_DATABASE_URL`` is set.
    """

    DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ECHO = env_bool("SQLALCHEMY_ECHO", False)


class ProductionConfig(BaseConfig):
    """Configuration defaults for production deployments."""

    SQLALCHEMY_ECHO = False


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}

REGISTRY_MAP: Mapping[str, type[UnitOfWorkRegistry]] = {
    "context": ContextVarUnitOfWorkRegistry,
    "thread": ThreadLocalUnitOfWorkRegistry,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``PERSISTKIT_ENV``.

    Falls back to :class:`DevelopmentConfig` when the variable is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)


def build_registry(config: type[BaseConfig]) -> UnitOfWorkRegistry:
    """Instantiate the registry flavor named by ``config.REGISTRY``.

    :raises ValueError: For unknown flavors.
    """
    name = str(config.REGISTRY).strip().lower()
    try:
        registry_cls = REGISTRY_MAP[name]
    except KeyError:
        raise ValueError(
            f"Unknown registry flavor {config.REGISTRY!r}; expected one of {sorted(REGISTRY_MAP)}"
        ) from None
    return registry_cls()


def build_engine(config: type[BaseConfig]) -> Engine:
    """Create the SQLAlchemy engine described by ``config``."""
    return create_engine(config.DATABASE_URL, echo=config.SQLALCHEMY_ECHO)


def build_provider(
    config: type[BaseConfig],
    *,
    engine: Engine | None = None,
    registry: UnitOfWorkRegistry | None = None,
) -> SQLAlchemyUnitOfWorkProvider:
    """Wire engine, registry and reuse policy into a session provider.

    :param config: Configuration class, usually from :func:`get_config`.
    :param engine: Existing engine; built from ``config`` when omitted.
    :param registry: Existing registry; built from ``config`` when omitted.
    """
    factory = sessionmaker(bind=engine or build_engine(config), expire_on_commit=False)
    return SQLAlchemyUnitOfWorkProvider(
        factory,
        registry=registry or build_registry(config),
        reuse=ResourceReuse.parse(config.RESOURCE_REUSE),
    )
