"""
Integration tests for the SQLAlchemy key store gateway.
"""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from agencyhub.core.database import create_session_factory
from agencyhub.core.exceptions import GatewayUnavailableError
from agencyhub.core.security import ApiKeyHasher, generate_api_key
from agencyhub.features.api_keys.gateway import ApiKeyRecord, SqlAlchemyKeyStore
from agencyhub.models.base import new_id
from agencyhub.utils.datetime import utcnow

hasher = ApiKeyHasher(rounds=4, lookup_secret="integration-lookup-secret")


def make_record(owner_id: str, *, scope_id=None, expires_at=None, name="svc-key") -> tuple[str, ApiKeyRecord]:
    material = generate_api_key("ahk_")
    return material.secret, ApiKeyRecord(
        id=new_id(),
        name=name,
        secret_hash=hasher.hash(material.secret),
        lookup_hash=hasher.lookup_digest(material.secret),
        display_prefix=material.display_prefix,
        owner_id=owner_id,
        scope_id=scope_id,
        created_at=utcnow(),
        expires_at=expires_at,
    )


@pytest.fixture
def store(session_factory) -> SqlAlchemyKeyStore:
    return SqlAlchemyKeyStore(session_factory)


@pytest.mark.integration
class TestSqlAlchemyKeyStore:
    """Test key persistence against a real database."""

    async def test_insert_and_fetch_by_hash(self, store, test_user, sub_agency):
        secret, record = make_record(test_user.id, scope_id=sub_agency.id)

        stored = await store.insert(record)
        lookup = await store.fetch_by_hash(hasher.lookup_digest(secret))

        assert stored.id == record.id
        assert stored.created_at.tzinfo is not None
        assert lookup is not None
        assert lookup.record.id == record.id
        assert lookup.record.scope_id == sub_agency.id
        assert lookup.owner.id == test_user.id
        assert lookup.owner.email == test_user.email
        assert hasher.verify(secret, lookup.record.secret_hash)

    async def test_fetch_unknown_hash_returns_none(self, store):
        assert await store.fetch_by_hash("0" * 64) is None

    async def test_fetch_does_not_filter_expired(self, store, test_user):
        secret, record = make_record(test_user.id, expires_at=utcnow() - timedelta(days=1))
        await store.insert(record)

        lookup = await store.fetch_by_hash(hasher.lookup_digest(secret))

        assert lookup is not None
        assert lookup.record.is_expired(utcnow())

    async def test_delete_owned(self, store, test_user):
        _, record = make_record(test_user.id)
        await store.insert(record)

        deleted = await store.delete_owned(record.id, test_user.id)

        assert deleted is not None
        assert deleted.id == record.id
        assert await store.list_for_owner(test_user.id) == []

    async def test_delete_foreign_key_looks_like_missing_key(self, store, test_user, other_user):
        _, record = make_record(test_user.id)
        await store.insert(record)

        assert await store.delete_owned(record.id, other_user.id) is None
        assert await store.delete_owned(new_id(), other_user.id) is None
        assert [r.id for r in await store.list_for_owner(test_user.id)] == [record.id]

    async def test_concurrent_deletes_report_one_deletion(self, store, test_user):
        _, record = make_record(test_user.id)
        await store.insert(record)

        results = await asyncio.gather(
            store.delete_owned(record.id, test_user.id),
            store.delete_owned(record.id, test_user.id),
        )

        deleted = [r for r in results if r is not None]
        assert len(deleted) == 1
        assert deleted[0].id == record.id
        assert await store.list_for_owner(test_user.id) == []

    async def test_touch_last_used(self, store, test_user):
        secret, record = make_record(test_user.id)
        await store.insert(record)
        now = utcnow()

        await store.touch_last_used(record.id, now)

        lookup = await store.fetch_by_hash(hasher.lookup_digest(secret))
        assert lookup.record.last_used_at is not None
        assert abs(lookup.record.last_used_at - now) < timedelta(seconds=1)

    async def test_list_for_owner_filters_by_scope(
        self, store, test_user, other_user, sub_agency, second_sub_agency
    ):
        await store.insert(make_record(test_user.id, scope_id=sub_agency.id, name="north")[1])
        await store.insert(make_record(test_user.id, scope_id=second_sub_agency.id, name="south")[1])
        await store.insert(make_record(test_user.id, name="any")[1])
        await store.insert(make_record(other_user.id, name="not-mine")[1])

        assert {r.name for r in await store.list_for_owner(test_user.id)} == {"north", "south", "any"}
        assert [r.name for r in await store.list_for_owner(test_user.id, sub_agency.id)] == ["north"]

    async def test_list_for_owner_includes_scope_name(self, store, test_user, sub_agency):
        await store.insert(make_record(test_user.id, scope_id=sub_agency.id, name="north")[1])
        await store.insert(make_record(test_user.id, name="any")[1])

        names = {r.name: r.scope_name for r in await store.list_for_owner(test_user.id)}

        assert names == {"north": sub_agency.name, "any": None}

    async def test_owns_scope(self, store, test_user, other_user, sub_agency):
        assert await store.owns_scope(test_user.id, sub_agency.id) is True
        assert await store.owns_scope(other_user.id, sub_agency.id) is False
        assert await store.owns_scope(test_user.id, new_id()) is False

    async def test_delete_expired(self, store, test_user):
        now = utcnow()
        await store.insert(make_record(test_user.id, expires_at=now - timedelta(hours=1), name="old")[1])
        await store.insert(make_record(test_user.id, expires_at=now + timedelta(days=1), name="fresh")[1])
        await store.insert(make_record(test_user.id, name="forever")[1])

        removed = await store.delete_expired(now)

        assert removed == 1
        assert {r.name for r in await store.list_for_owner(test_user.id)} == {"fresh", "forever"}

    async def test_unreachable_database_raises_gateway_unavailable(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'store.db'}"
        )
        store = SqlAlchemyKeyStore(create_session_factory(engine))

        try:
            with pytest.raises(GatewayUnavailableError):
                await store.fetch_by_hash("0" * 64)
        finally:
            await engine.dispose()
