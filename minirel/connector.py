import asyncio
import copy
import itertools
import logging

from minirel.exceptions import RelationError
from minirel.filters import apply_filter, matches


class MemoryConnector:
    """Keeps every model's rows in process memory.

    Each call yields to the event loop once, so concurrent relation operations
    interleave exactly at storage boundaries.
    """

    logger = logging.getLogger("minirel.connector")

    def __init__(self):
        self._collections = {}
        self._counters = {}

    def _log(self, action, model_name, params=None):
        msg = f"[MEMORY EXECUTE]: {action} {model_name}"
        if params:
            msg += f" | [PARAMS]: {params}"
        self.logger.debug(msg)

    def _collection(self, model_name):
        return self._collections.setdefault(model_name, {})

    async def _yield(self):
        await asyncio.sleep(0)

    def generate_id(self, model_name, data=None, id_name="id"):
        counter = self._counters.setdefault(model_name, itertools.count(1))
        collection = self._collection(model_name)
        while True:
            candidate = next(counter)
            if _key(candidate) not in collection:
                return candidate

    async def create(self, model_name, data, id_name="id"):
        self._log("create", model_name, data)
        await self._yield()
        collection = self._collection(model_name)
        row = copy.deepcopy(data)
        if row.get(id_name) is None:
            row[id_name] = self.generate_id(model_name, row, id_name)
        key = _key(row[id_name])
        if key in collection:
            raise RelationError(f"Duplicate entry for {model_name}.{id_name}: {row[id_name]}")
        collection[key] = row
        return row[id_name]

    async def update(self, model_name, id_value, data, id_name="id"):
        self._log("update", model_name, {id_name: id_value, **data})
        await self._yield()
        collection = self._collection(model_name)
        key = _key(id_value)
        if key not in collection:
            return False
        row = copy.deepcopy(data)
        row[id_name] = collection[key][id_name]
        collection[key] = row
        return True

    async def find(self, model_name, filter=None):
        self._log("find", model_name, filter)
        await self._yield()
        rows = apply_filter(list(self._collection(model_name).values()), filter)
        fields = (filter or {}).get("fields")
        if fields:
            rows = [{k: v for k, v in row.items() if k in fields} for row in rows]
        return copy.deepcopy(rows)

    async def count(self, model_name, where=None):
        self._log("count", model_name, where)
        await self._yield()
        return sum(1 for row in self._collection(model_name).values() if matches(row, where))

    async def destroy(self, model_name, id_value):
        self._log("destroy", model_name, {"id": id_value})
        await self._yield()
        return self._collection(model_name).pop(_key(id_value), None) is not None

    async def destroy_all(self, model_name, where=None):
        self._log("destroy_all", model_name, where)
        await self._yield()
        collection = self._collection(model_name)
        doomed = [key for key, row in collection.items() if matches(row, where)]
        for key in doomed:
            del collection[key]
        return len(doomed)

    async def update_all(self, model_name, where, data):
        self._log("update_all", model_name, {"where": where, "data": data})
        await self._yield()
        count = 0
        for row in self._collection(model_name).values():
            if matches(row, where):
                row.update(copy.deepcopy(data))
                count += 1
        return count


def _key(id_value):
    return str(id_value)
