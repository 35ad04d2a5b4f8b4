"""Test doubles and small builders shared by the test modules."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any

from hypothesis import strategies as st

from speakersync.core.records import Dataset, DatasetRepository


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeRemote:
    """
    In-memory stand-in for the gist client.

    Set ``fail_with`` to make every call raise it.
    """

    def __init__(self, dataset: Dataset | None = None) -> None:
        self.dataset = dataset or Dataset()
        self.fail_with: Exception | None = None
        self.fetch_calls = 0
        self.replace_calls = 0
        self.files: dict[str, str] = {}

    async def fetch(self) -> Dataset:
        self.fetch_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.dataset.model_copy(deep=True)

    async def replace(self, dataset: Dataset) -> None:
        self.replace_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.dataset = dataset.model_copy(deep=True)

    async def put_file(self, file_name: str, content: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.files[file_name] = content


def ts(value: str) -> datetime:
    """Parse a short ISO timestamp as aware UTC."""
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def speaker(record_id: Any, name: Any, **fields: Any) -> dict[str, Any]:
    return {"id": record_id, "name": name, "status": "Ideas", **fields}


def seed(repository: DatasetRepository, dataset: Dataset) -> None:
    """Write a dataset to the repository as-is."""
    repository.save(copy.deepcopy(dataset))


# JSON-compatible values for property tests
json_values = st.recursive(
    st.one_of(
        st.none(),
        st.booleans(),
        st.integers(),
        st.floats(allow_nan=False, allow_infinity=False),
        st.text(),
    ),
    lambda children: st.one_of(
        st.lists(children, max_size=5),
        st.dictionaries(st.text(min_size=1, max_size=20), children, max_size=5),
    ),
    max_leaves=10,
)
