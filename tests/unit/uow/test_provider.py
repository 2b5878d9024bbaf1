"""Unit tests for ``UnitOfWorkProvider`` resource ownership decisions."""

from __future__ import annotations

import pytest

from persistkit.uow import (
    ChildCommitAwareUnitOfWork,
    NoAmbientUnitOfWorkError,
    ResourceReuse,
    UnitOfWork,
)
from tests.helpers.fakes import RecordingProvider


class TestResourceReuse:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("reuse-if-available", ResourceReuse.REUSE_IF_AVAILABLE),
            ("REUSE_IF_AVAILABLE", ResourceReuse.REUSE_IF_AVAILABLE),
            (" always-create-new ", ResourceReuse.ALWAYS_CREATE_NEW),
            (ResourceReuse.ALWAYS_CREATE_NEW, ResourceReuse.ALWAYS_CREATE_NEW),
        ],
    )
    def test_parse(self, raw, expected):
        assert ResourceReuse.parse(raw) is expected

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError, match="Unknown resource reuse policy"):
            ResourceReuse.parse("sometimes")


class TestUnitOfWorkProvider:
    @pytest.mark.parametrize("depth", [1, 2, 3, 5, 8])
    def test_nested_units_share_one_owned_resource(self, fake_provider, registry, depth):
        """
        GIVEN reuse enabled and a single resource type
        WHEN N units are nested
        THEN only the outermost owns the resource and all share its identity.
        """
        units = [fake_provider.create() for _ in range(depth)]

        assert [u.owns_resource for u in units] == [True] + [False] * (depth - 1)
        assert all(u.resource is units[0].resource for u in units)
        assert len(fake_provider.created) == 1

        for uow in reversed(units):
            uow.dispose()
        assert len(registry) == 0

    def test_always_create_new_policy(self, registry):
        provider = RecordingProvider(registry, reuse=ResourceReuse.ALWAYS_CREATE_NEW)
        with provider.create() as outer, provider.create() as inner:
            assert outer.owns_resource and inner.owns_resource
            assert outer.resource is not inner.resource
            assert inner.parent is outer
        assert len(provider.created) == 2

    def test_per_call_policy_override(self, fake_provider):
        with fake_provider.create() as outer:
            with fake_provider.create(reuse="always-create-new") as inner:
                assert inner.owns_resource
                assert inner.resource is not outer.resource

    def test_parent_is_top_of_stack_even_for_other_resource_types(self, registry):
        """
        GIVEN providers for two resource types sharing one registry
        WHEN units of both types interleave
        THEN each unit reuses the nearest unit of its own type
        AND its parent is whatever unit was on top.
        """
        first = RecordingProvider(registry, resource_type="db1")
        second = RecordingProvider(registry, resource_type="db2")

        with first.create() as a, second.create() as b, first.create() as c:
            assert b.owns_resource
            assert b.parent is a
            assert not c.owns_resource
            assert c.resource is a.resource
            assert c.parent is b
            assert first.try_get_resource() is a.resource
            assert second.try_get_resource() is b.resource

    def test_resource_type_matches_by_equality_not_subtype(self, registry):
        outer = RecordingProvider(registry, resource_type=("sqlite", "main"))
        inner = RecordingProvider(registry, resource_type=("sqlite", "main"))
        other = RecordingProvider(registry, resource_type=("sqlite", "audit"))

        with outer.create() as a:
            with inner.create() as b:
                assert b.resource is a.resource
            with other.create() as c:
                assert c.owns_resource

    def test_factory_failure_propagates_and_nothing_is_pushed(self, registry):
        def broken():
            raise ConnectionError("database unreachable")

        provider = RecordingProvider(registry)
        provider.resource_factory = broken

        with pytest.raises(ConnectionError, match="unreachable"):
            provider.create()
        assert registry.get_current() is None

    def test_default_unit_class_tracks_child_commits(self, fake_provider):
        with fake_provider.create() as uow:
            assert isinstance(uow, ChildCommitAwareUnitOfWork)

    def test_custom_unit_class(self, registry):
        provider = RecordingProvider(registry, unit_of_work_class=UnitOfWork)
        with provider.create() as uow:
            assert type(uow) is UnitOfWork

    def test_get_resource_without_ambient_unit(self, fake_provider):
        assert fake_provider.try_get_resource() is None
        with pytest.raises(NoAmbientUnitOfWorkError, match="'db'"):
            fake_provider.get_resource()

    def test_get_current_delegates_to_registry(self, fake_provider, registry):
        with fake_provider.create() as outer, fake_provider.create() as inner:
            assert fake_provider.get_current() is inner
            assert fake_provider.get_current(1) is outer
            assert fake_provider.get_current(2) is None
