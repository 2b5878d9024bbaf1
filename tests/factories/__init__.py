"""Factory Boy helpers wired to the ambient unit-of-work session."""

from __future__ import annotations

import factory


class SQLAlchemySession:
    """Store the provider whose ambient session factories persist into."""

    _provider = None

    @classmethod
    def set(cls, provider):
        """Register the provider resolved on every factory call."""
        cls._provider = provider

    @classmethod
    def get(cls):
        """Return the session of the innermost active unit of work.

        Raises
        ------
        RuntimeError
            If factories are used without the ``provider`` fixture wiring.
        NoAmbientUnitOfWorkError
            If no unit of work is active when the factory runs.
        """
        if cls._provider is None:
            raise RuntimeError("Factories provider not set. Did you pass the 'provider' fixture?")
        return cls._provider.get_session()


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base class persisting factory objects through the ambient session."""

    class Meta:
        abstract = True
        sqlalchemy_session_factory = SQLAlchemySession.get
        sqlalchemy_session_persistence = "flush"
