import asyncio
import json

import pytest

from fleetsim.db import MySQLRepository
from fleetsim.schemas import Vehicle
from fleetsim.settings import Settings


class FakeCursor:
    """Just enough of a DictCursor for the document table statements."""

    def __init__(self, tables, log):
        self.tables = tables
        self.log = log
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=()):
        statement = " ".join(sql.split())
        self.log.append(statement)
        verb = statement.split()[0]
        if verb == "CREATE":
            self.tables.setdefault(statement.split()[5], {})
            return 0
        table = self.tables[statement.split(" FROM ")[-1].split()[0]] if verb in {"SELECT", "DELETE"} else None
        if verb == "INSERT":
            doc_id, doc = params
            self.tables[statement.split()[2]][doc_id] = doc
            return 1
        if verb == "UPDATE":
            doc, doc_id = params
            rows = self.tables[statement.split()[1]]
            if doc_id not in rows:
                return 0
            rows[doc_id] = doc
            return 1
        if verb == "DELETE":
            return 1 if table.pop(params[0], None) is not None else 0
        if "WHERE id" in statement:
            self._result = [{"doc": table[params[0]]}] if params[0] in table else []
        else:
            self._result = [{"doc": doc} for doc in table.values()]
        return len(self._result)

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    def __init__(self, tables, log):
        self.tables = tables
        self.log = log
        self.closed = False

    def cursor(self):
        return FakeCursor(self.tables, self.log)

    def close(self):
        self.closed = True


class FakeMySQLRepository(MySQLRepository):
    def __init__(self):
        super().__init__(Settings(storage_backend="mysql"))
        self.tables = {}
        self.log = []

    def _connect(self):
        return FakeConnection(self.tables, self.log)


def _vehicle():
    return Vehicle(id="veh-1", vehicle_number="VH-1", driver_name="Anjan Nair", latitude=20.0, longitude=85.0)


def test_schema_creates_one_table_per_collection():
    repo = FakeMySQLRepository()

    repo.ensure_schema()

    assert sorted(repo.tables) == ["alerts", "deliveries", "routes", "sensor_readings", "vehicles"]


def test_documents_are_stored_as_camel_case_json():
    repo = FakeMySQLRepository()
    repo.ensure_schema()

    async def scenario():
        await repo.create_vehicle(_vehicle())
        updated = await repo.update_vehicle("veh-1", {"status": "maintenance"})
        missing = await repo.update_vehicle("veh-404", {"status": "idle"})
        return updated, missing, await repo.list_vehicles()

    updated, missing, vehicles = asyncio.run(scenario())
    stored = json.loads(repo.tables["vehicles"]["veh-1"])

    assert stored["vehicleNumber"] == "VH-1"
    assert stored["status"] == "maintenance"
    assert updated.status == "maintenance"
    assert missing is None
    assert [v.id for v in vehicles] == ["veh-1"]
    assert any(statement.endswith("ORDER BY seq") for statement in repo.log)


def test_delete_reports_missing_rows():
    repo = FakeMySQLRepository()
    repo.ensure_schema()

    async def scenario():
        await repo.create_vehicle(_vehicle())
        return await repo.delete_vehicle("veh-1"), await repo.delete_vehicle("veh-1")

    assert asyncio.run(scenario()) == (True, False)


def test_unknown_collection_is_rejected():
    with pytest.raises(ValueError):
        FakeMySQLRepository()._table("robots; DROP TABLE vehicles")
