import re
from copy import deepcopy

import pytest

from asr_optimizer.database.client import RESULTS_TABLE
from asr_optimizer.jobs.store import JobStore

_EQ_CLAUSE = re.compile(r"\b(user_id|id)\s*=\s*'((?:[^']|'')*)'")


def _matches(row, clause):
    match = _EQ_CLAUSE.search(str(clause or ""))
    if not match:
        return True
    field = match.group(1)
    value = match.group(2).replace("''", "'")
    return str(row.get(field) or "") == value


class FakeQuery:
    def __init__(self, rows):
        self._rows = list(rows)

    def where(self, clause):
        return FakeQuery([row for row in self._rows if _matches(row, clause)])

    def limit(self, n):
        return FakeQuery(self._rows[: int(n)])

    def to_list(self):
        return deepcopy(self._rows)


class FakeTable:
    def __init__(self):
        self.rows = []

    def search(self, *_args, **_kwargs):
        return FakeQuery(self.rows)

    def add(self, rows):
        for row in rows:
            self.rows.append(deepcopy(dict(row)))

    def update(self, where, values):
        for row in self.rows:
            if _matches(row, where):
                row.update(deepcopy(values or {}))


class FakeDb:
    def __init__(self):
        self.tables = {RESULTS_TABLE: FakeTable()}

    def table_names(self):
        return list(self.tables.keys())

    def open_table(self, name):
        return self.tables[name]


@pytest.fixture
def fake_db():
    return FakeDb()


@pytest.fixture
def store(fake_db):
    return JobStore(fake_db)
