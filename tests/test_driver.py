from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from metaquery_mcp.data.driver import SqlAlchemyDriver, camelize_row

student = sa.table(
    "student",
    sa.column("id", sa.Integer()),
    sa.column("full_name", sa.Text()),
    sa.column("start_date", sa.Text()),
)


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    driver = SqlAlchemyDriver(engine)
    await driver.execute(
        sa.text("CREATE TABLE student (id INTEGER PRIMARY KEY, full_name TEXT, start_date TEXT)")
    )
    await driver.execute(
        sa.text(
            "INSERT INTO student (full_name, start_date) "
            "VALUES ('Ann', '2024-01-01'), ('Bob', '2024-02-01'), ('Cid', NULL)"
        )
    )
    yield engine
    await engine.dispose()


def test_camelize_row() -> None:
    assert camelize_row({"full_name": "Ann", "course__name": "Math", "id": 1}) == {
        "fullName": "Ann",
        "course_name": "Math",
        "id": 1,
    }


@pytest.mark.asyncio
async def test_fetch_camelizes_keys_and_binds_params(engine: AsyncEngine) -> None:
    driver = SqlAlchemyDriver(engine)
    rows = await driver.fetch(
        sa.text("SELECT id, full_name, start_date FROM student WHERE full_name = :name")
        .bindparams(name="Bob")
    )
    assert rows == [{"id": 2, "fullName": "Bob", "startDate": "2024-02-01"}]


@pytest.mark.asyncio
async def test_fetch_runs_core_selects(engine: AsyncEngine) -> None:
    driver = SqlAlchemyDriver(engine)
    s = student.alias("s")
    rows = await driver.fetch(
        sa.select(s.c.id, s.c.full_name.label("name"))
        .where(s.c.id.in_([1, 3]))
        .order_by(s.c.id.desc())
    )
    assert rows == [{"id": 3, "name": "Cid"}, {"id": 1, "name": "Ann"}]


@pytest.mark.asyncio
async def test_execute_returns_rowcount(engine: AsyncEngine) -> None:
    driver = SqlAlchemyDriver(engine)
    count = await driver.execute(
        sa.update(student).values(start_date="2025-01-01").where(student.c.id < 3)
    )
    assert count == 2


@pytest.mark.asyncio
async def test_transaction_rolls_back_on_error(engine: AsyncEngine) -> None:
    driver = SqlAlchemyDriver(engine)
    with pytest.raises(RuntimeError):
        async with driver.transaction() as tx:
            await tx.execute(sa.delete(student))
            # nested transactions join the outer one
            async with tx.transaction() as inner:
                assert inner is tx
            msg = "abort"
            raise RuntimeError(msg)

    rows = await driver.fetch(sa.select(sa.func.count().label("total")).select_from(student))
    assert rows == [{"total": 3}]


@pytest.mark.asyncio
async def test_transaction_commits(engine: AsyncEngine) -> None:
    driver = SqlAlchemyDriver(engine)
    ids = sa.select(student.c.id).order_by(student.c.id)
    async with driver.transaction() as tx:
        await tx.execute(sa.delete(student).where(student.c.id == 1))
        assert await tx.fetch(ids) == [{"id": 2}, {"id": 3}]

    assert await driver.fetch(ids) == [{"id": 2}, {"id": 3}]
