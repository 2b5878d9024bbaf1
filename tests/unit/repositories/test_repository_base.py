"""Unit tests for ``BaseRepository`` bound to the ambient unit of work."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy.orm import InstrumentedAttribute

from persistkit.query import SortDirection
from persistkit.repositories import BaseRepository, SortToken, parse_sort_tokens
from persistkit.uow import NoAmbientUnitOfWorkError
from tests.factories.customer import CustomerFactory
from tests.models import Customer, Invoice


class CustomerRepository(BaseRepository[Customer]):
    model = Customer

    def _sortable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]]:
        return {"name": self.model.name, "email": self.model.email}

    def _filterable_fields(self) -> Mapping[str, InstrumentedAttribute[Any]] | None:
        return {"email": self.model.email, "is_active": self.model.is_active}

    def _updatable_fields(self) -> set[str]:
        return {"name", "is_active"}

    def _soft_delete(self, instance: Customer) -> bool:
        instance.deleted_at = datetime.now(timezone.utc)
        instance.is_active = False
        return True


class InvoiceRepository(BaseRepository[Invoice]):
    model = Invoice


def test_parse_sort_tokens():
    assert parse_sort_tokens(["-name", " email ", " ", "-"]) == [
        SortToken("name", SortDirection.DESCENDING),
        SortToken("email", SortDirection.ASCENDING),
    ]


class TestBaseRepository:
    """Confirm repositories resolve the ambient session and stay thin."""

    @pytest.fixture()
    def repo(self, provider) -> CustomerRepository:
        return CustomerRepository(provider)

    def test_requires_active_unit(self, repo):
        with pytest.raises(NoAmbientUnitOfWorkError):
            repo.get(1)

    def test_add_and_get(self, repo, provider, read_session):
        with provider.create() as uow:
            c = repo.add(Customer(name="Ann", email="ann@example.com"))
            assert c.id is not None
            assert repo.get(c.id) is c
            uow.commit()
        assert read_session.get(Customer, c.id).email == "ann@example.com"

    def test_nested_repositories_share_transaction(self, repo, provider, read_session):
        """
        GIVEN two repositories used in an outer and a nested unit
        WHEN only the outer unit commits
        THEN both writes are persisted together.
        """
        invoices = InvoiceRepository(provider)
        with provider.create() as outer:
            customer = repo.add(Customer(name="Ben", email="ben@example.com"))
            with provider.create() as inner:
                invoices.add(Invoice(customer_id=customer.id, amount_cents=999))
                inner.commit()
            outer.commit()

        assert read_session.query(Invoice).count() == 1

    def test_find_one_and_exists_honour_whitelist(self, repo, provider):
        with provider.create():
            CustomerFactory(email="carl@example.com", name="Carl")
            assert repo.find_one(email="carl@example.com").name == "Carl"
            assert repo.exists(email="carl@example.com")
            assert not repo.exists(email="nobody@example.com")
            # unknown keys are ignored in whitelist mode
            assert repo.exists(name="does-not-matter")

    def test_get_many(self, repo, provider):
        with provider.create():
            a, b, _ = CustomerFactory.create_batch(3)
            assert [c.id for c in repo.get_many([b.id, a.id])] == sorted([a.id, b.id])
            assert repo.get_many([]) == []

    def test_update_whitelist(self, repo, provider):
        with provider.create():
            c = CustomerFactory(name="Dora")
            repo.update(c, name="Dora B.")
            assert c.name == "Dora B."

            with pytest.raises(ValueError, match="non-updatable"):
                repo.update(c, email="other@example.com")

            repo.assign_updates(c, {"email": "x@example.com", "is_active": False}, strict=False)
            assert c.is_active is False
            assert c.email != "x@example.com"

    def test_update_without_whitelist_fails_closed(self, provider):
        invoices = InvoiceRepository(provider)
        with provider.create():
            inv = invoices.add(
                Invoice(customer=Customer(name="Eli", email="eli@example.com"), amount_cents=1)
            )
            with pytest.raises(ValueError, match="No updatable fields"):
                invoices.update(inv, amount_cents=2)

    def test_soft_delete(self, repo, provider):
        with provider.create():
            c = CustomerFactory()
            repo.delete(c)
            assert c.deleted_at is not None
            assert repo.get(c.id) is c

    def test_hard_delete(self, provider):
        invoices = InvoiceRepository(provider)
        with provider.create():
            inv = invoices.add(
                Invoice(customer=Customer(name="Fay", email="fay@example.com"), amount_cents=5)
            )
            invoices.delete(inv)
            assert invoices.get(inv.id) is None

    def test_list_sort_filter_and_slice(self, repo, provider):
        with provider.create():
            CustomerFactory(name="Cleo", email="c@example.com")
            CustomerFactory(name="Abe", email="a@example.com")
            CustomerFactory(name="Bea", email="b@example.com", is_active=False)

            names = [c.name for c in repo.list(sort=["name"])]
            assert names == ["Abe", "Bea", "Cleo"]

            names = [c.name for c in repo.list(sort=["-name", "unknown"], limit=2)]
            assert names == ["Cleo", "Bea"]

            active = repo.list(filters={"is_active": True}, sort=["email"], offset=1)
            assert [c.name for c in active] == ["Cleo"]
