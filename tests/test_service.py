from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from metaquery_mcp.data.driver import SqlAlchemyDriver
from metaquery_mcp.data.service import (
    DataAccessService,
    FindAndCountResult,
    ManyToManyResult,
)
from metaquery_mcp.query.predicates import Number, String
from metaquery_mcp.schema.exceptions import InvalidInputError, InvalidRelationPayloadError
from metaquery_mcp.schema.registry import SchemaRegistry

STUDENT_COLUMNS = "s.id, s.name, s.age, s.start_date, s.course_id"
STUDENT_RETURNING = (
    "RETURNING student.id, student.name, student.age, student.start_date, student.course_id"
)


@pytest.fixture
def make_service(registry: SchemaRegistry, driver_factory: Any) -> Any:
    def _make(*results: Any) -> tuple[DataAccessService, Any]:
        driver = driver_factory(list(results))
        return DataAccessService(driver, registry), driver

    return _make


@pytest.mark.asyncio
async def test_find_many(make_service: Any) -> None:
    service, driver = make_service([{"id": 1, "name": "Ann"}])
    rows = await service.find_many(
        "Student",
        where={"age": Number.gt(18)},
        order_by="-name",
        take=10,
        skip=5,
        select=["id", "name", "grade"],
    )
    assert rows == [{"id": 1, "name": "Ann"}]
    assert driver.sql == [
        "SELECT s.id, s.name FROM student AS s WHERE s.age > 18 "
        "ORDER BY s.name DESC LIMIT 10 OFFSET 5"
    ]


@pytest.mark.asyncio
async def test_find_all_drops_unknown_order(make_service: Any) -> None:
    service, driver = make_service([])
    await service.find_all("Student", order_by=["grade", "age"])
    assert driver.sql == [f"SELECT {STUDENT_COLUMNS} FROM student AS s ORDER BY s.age ASC"]


@pytest.mark.asyncio
async def test_count_and_find_and_count(make_service: Any) -> None:
    service, driver = make_service([{"total": 7}])
    assert await service.count("Student", where={"age": 20}) == 7
    assert driver.sql == ["SELECT count(*) AS total FROM student AS s WHERE s.age = 20"]

    service, driver = make_service([{"id": 1}], [{"total": 3}])
    result = await service.find_and_count("Student", select=["id"], take=1)
    assert result == FindAndCountResult(data=[{"id": 1}], total=3)
    assert driver.transactions == 1
    assert driver.sql == [
        "SELECT s.id FROM student AS s LIMIT 1",
        "SELECT count(*) AS total FROM student AS s",
    ]


@pytest.mark.asyncio
async def test_find_first_full_load(make_service: Any) -> None:
    row = {"id": 1, "course": '{"id": 2, "name": "Math", "updated_on": null}'}
    service, driver = make_service([row])
    found = await service.find_first(
        "Student", where={"id": 1}, select=["id"], load=["course", "teacher"]
    )
    assert found == {"id": 1, "course": {"id": 2, "name": "Math", "updatedOn": None}}
    assert driver.sql == [
        "SELECT s.id, to_json(c) AS course "
        "FROM student AS s JOIN course AS c ON c.id = s.course_id "
        "WHERE s.id = 1 LIMIT 1"
    ]


@pytest.mark.asyncio
async def test_find_first_partial_load(make_service: Any) -> None:
    service, driver = make_service([{"id": 1, "course_name": "Math", "course_updatedOn": None}])
    found = await service.find_first(
        "Student", select=["id"], load={"course": ["name", "updatedOn", "bogus"]}
    )
    assert found == {"id": 1, "course": {"name": "Math", "updatedOn": None}}
    assert driver.sql[0].startswith(
        "SELECT s.id, c.name AS course__name, c.updated_on AS course__updated_on "
        "FROM student AS s JOIN course AS c"
    )


@pytest.mark.asyncio
async def test_find_first_returns_none(make_service: Any) -> None:
    service, _ = make_service([])
    assert await service.find_first("Student", where={"id": 99}) is None


@pytest.mark.asyncio
async def test_insert_returns_row(make_service: Any) -> None:
    service, driver = make_service([{"id": 5, "name": "Ann", "age": 20}])
    assert (await service.insert("Student", {"name": "Ann", "age": 20}))["id"] == 5
    assert driver.sql == [f"INSERT INTO student (name, age) VALUES ('Ann', 20) {STUDENT_RETURNING}"]


@pytest.mark.asyncio
async def test_update_by_primary_key(make_service: Any) -> None:
    service, driver = make_service([{"id": 1, "name": "Bob"}])
    await service.update("Student", {"id": 1, "name": "Bob"})
    assert driver.sql == [f"UPDATE student SET name='Bob' WHERE student.id = 1 {STUDENT_RETURNING}"]


@pytest.mark.asyncio
async def test_update_without_filter_requires_id(make_service: Any) -> None:
    service, driver = make_service()
    with pytest.raises(InvalidInputError, match="Id id not found"):
        await service.update("Student", {"name": "Bob"})
    with pytest.raises(InvalidInputError, match="empty"):
        await service.update("Student", {"id": 1})
    assert driver.statements == []


@pytest.mark.asyncio
async def test_update_many_and_delete_many(make_service: Any) -> None:
    service, driver = make_service(4, 2)
    assert await service.update_many("Student", {"age": 21}, where={"age": 20}) == 4
    assert await service.delete_many("Student", where={"age": Number.lt(5)}) == 2
    assert driver.sql == [
        "UPDATE student SET age=21 WHERE student.age = 20",
        "DELETE FROM student WHERE student.age < 5",
    ]


@pytest.mark.asyncio
async def test_delete_returns_first_row(make_service: Any) -> None:
    service, driver = make_service([{"id": 1}, {"id": 2}])
    assert await service.delete("Student", where={"age": 20}) == {"id": 1}
    assert driver.sql == [f"DELETE FROM student WHERE student.age = 20 {STUDENT_RETURNING}"]


@pytest.mark.asyncio
async def test_save_inserts_or_updates(make_service: Any) -> None:
    service, driver = make_service([{"id": 3}], [{"id": 3}])
    await service.save("Student", {"id": None, "name": "Ann"})
    await service.save("Student", {"id": 3, "name": "Ann"})
    assert driver.sql[0].startswith("INSERT INTO student (name) VALUES ('Ann')")
    assert driver.sql[1].startswith("UPDATE student SET name='Ann' WHERE student.id = 3")


@pytest.mark.asyncio
async def test_batches_run_in_one_transaction(make_service: Any) -> None:
    service, driver = make_service(2, 1)
    rows = [{"name": "a"}, {"name": "b"}, {"name": "c"}]
    assert await service.insert_batch("Student", rows, batch_size=2) == 3
    assert driver.transactions == 1
    assert driver.sql == [
        "INSERT INTO student (name) VALUES ('a'), ('b')",
        "INSERT INTO student (name) VALUES ('c')",
    ]

    service, driver = make_service(2)
    assert await service.update_batch("Student", [{"id": 1, "age": 3}, {"id": 2, "age": 4}]) == 2
    assert driver.transactions == 1


@pytest.mark.asyncio
async def test_update_many_to_many_relation(make_service: Any) -> None:
    current = [{"programId": 1, "textbookId": t} for t in range(1, 6)]
    service, driver = make_service(current, 1, 3)

    result = await service.update_many_to_many_relation(
        "ProgramTextbook", {"programId": 1, "textbookId": [1, 3, 7]}
    )

    assert result == ManyToManyResult(added=1, deleted=3)
    assert driver.sql == [
        "SELECT pt.program_id, pt.textbook_id FROM program_textbook AS pt "
        "WHERE pt.program_id = 1",
        "INSERT INTO program_textbook (program_id, textbook_id) VALUES (1, 7)",
        "DELETE FROM program_textbook WHERE program_textbook.program_id = 1 "
        "AND program_textbook.textbook_id IN (2, 4, 5)",
    ]


@pytest.mark.asyncio
async def test_update_many_to_many_relation_noop(make_service: Any) -> None:
    service, driver = make_service([{"programId": 1, "textbookId": 1}])
    result = await service.update_many_to_many_relation(
        "ProgramTextbook", {"programId": 1, "textbookId": [1]}
    )
    assert result == ManyToManyResult()
    assert len(driver.statements) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"programId": 1},
        {"textbookId": [1]},
        {"programId": 1, "other": 2, "textbookId": [1]},
        {"programId": [1], "textbookId": [1]},
    ],
)
async def test_update_many_to_many_relation_rejects_payload(
    make_service: Any, payload: dict[str, Any]
) -> None:
    service, _ = make_service()
    with pytest.raises(InvalidRelationPayloadError):
        await service.update_many_to_many_relation("ProgramTextbook", payload)


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.execute(
            sa.text(
                "CREATE TABLE student (id INTEGER PRIMARY KEY, name VARCHAR NOT NULL, "
                "age INTEGER, start_date DATE, course_id INTEGER)"
            )
        )
    yield engine
    await engine.dispose()


@pytest.mark.asyncio
async def test_statements_run_on_sqlite(engine: AsyncEngine, registry: SchemaRegistry) -> None:
    service = DataAccessService(SqlAlchemyDriver(engine), registry)
    rows = [{"name": "Ann", "age": 20}, {"name": "Bob", "age": 17}, {"name": "Cid", "age": 30}]
    assert await service.insert_batch("Student", rows, batch_size=2) == 3

    adults = await service.find_many(
        "Student", where={"age": Number.gt(18)}, select=["id", "name"], order_by="-age"
    )
    assert adults == [{"id": 3, "name": "Cid"}, {"id": 1, "name": "Ann"}]
    assert await service.count("Student", where={"OR": [{"name": "Bob"}, {"age": 30}]}) == 2

    updated = await service.update_many(
        "Student", {"age": 21}, where={"name": String.starts_with("a")}
    )
    assert updated == 1
    assert await service.find_first("Student", where={"name": "Ann"}, select=["age"]) == {
        "age": 21
    }

    assert await service.delete_many("Student", where={"age": Number.lt(21)}) == 1
    assert await service.count("Student") == 2
