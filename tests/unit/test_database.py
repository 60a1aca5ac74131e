"""Tests for session helpers: unit of work, row locks, and the FastAPI session dependency."""

import uuid

import pytest
from sqlalchemy import select

from assistant_core.db.database import get_async_session, lock_row, with_unit_of_work
from assistant_core.db.models import TargetCompany


class TestUnitOfWork:
    async def test_commits_on_success(self, session_factory, user):
        async with with_unit_of_work(session_factory) as session:
            session.add(TargetCompany(id=uuid.uuid4(), user_id=user.id, company_name="Acme"))

        async with session_factory() as session:
            names = (await session.execute(select(TargetCompany.company_name))).scalars().all()
        assert names == ["Acme"]

    async def test_rolls_back_on_error(self, session_factory, user):
        with pytest.raises(RuntimeError):
            async with with_unit_of_work(session_factory) as session:
                session.add(
                    TargetCompany(id=uuid.uuid4(), user_id=user.id, company_name="Acme")
                )
                await session.flush()
                raise RuntimeError("boom")

        async with session_factory() as session:
            rows = (await session.execute(select(TargetCompany))).scalars().all()
        assert rows == []

    async def test_falls_back_to_installed_factory(self, session_factory, user):
        async with with_unit_of_work() as session:
            session.add(TargetCompany(id=uuid.uuid4(), user_id=user.id, company_name="Initech"))

        async with session_factory() as session:
            assert (await session.execute(select(TargetCompany))).scalar_one().company_name == (
                "Initech"
            )


class TestLockRow:
    async def test_loads_row(self, session_factory, user):
        target_id = uuid.uuid4()
        async with with_unit_of_work(session_factory) as session:
            session.add(TargetCompany(id=target_id, user_id=user.id, company_name="Acme"))

        async with with_unit_of_work(session_factory) as session:
            locked = await lock_row(session, TargetCompany, target_id)
            locked.priority = 1

        async with session_factory() as session:
            assert (await session.get(TargetCompany, target_id)).priority == 1

    async def test_missing_row(self, session_factory):
        async with session_factory() as session:
            assert await lock_row(session, TargetCompany, uuid.uuid4()) is None


class TestSessionDependency:
    async def test_yields_session_from_installed_factory(self, session_factory):
        sessions = get_async_session()
        session = await sessions.__anext__()

        assert session.bind is not None
        await sessions.aclose()
