from minirel.exceptions import KeyMismatchError, NotFoundError
from minirel.relations.relation import Relation
from minirel.utils import find_index_of, ids_have_duplicates, merge_query


class ReferencesMany(Relation):
    """The source record keeps an ordered list of target ids."""

    def _ids(self):
        return list(getattr(self.model_instance, self.definition.key_from) or [])

    def related(self):
        return self.get_cache()

    async def load(self, refresh=False, filter=None):
        if not refresh and filter is None:
            cached = self.get_cache()
            if cached is not None:
                return cached
        query = dict(filter or {})
        self.definition.apply_scope(self.model_instance, query)
        found = await self.definition.model_to.find_by_ids(self._ids(), query)
        if filter is None:
            self.reset_cache(found)
        return found

    async def find_by_id(self, fk_id):
        definition = self.definition
        model_to = definition.model_to
        query = {}
        definition.apply_scope(self.model_instance, query)
        found = await model_to.find_by_ids([fk_id], query)
        if not found:
            raise NotFoundError(
                f"No instance with id {fk_id} found for {model_to.model_name}",
                details={"id": fk_id, "model": model_to.model_name},
            )
        inst = found[0]
        if find_index_of(self._ids(), inst.get_id()) > -1:
            return inst
        raise KeyMismatchError(
            f"Key mismatch: {definition.model_from.model_name}.{definition.key_from}: {self._ids()}, "
            f"{model_to.model_name}.{definition.key_to}: {inst.get_id()}"
        )

    async def exists(self, fk_id):
        return find_index_of(self._ids(), fk_id) > -1

    async def count(self, where=None):
        pk = self.definition.key_to
        ids = self._ids()
        if not ids:
            return 0
        query = {"where": merge_query({"where": {pk: {"inq": ids}}}, {"where": where})["where"]}
        self.definition.apply_scope(self.model_instance, query)
        return await self.definition.model_to.count(query["where"])

    async def at(self, index):
        ids = self._ids()
        index = int(index)
        if not 0 <= index < len(ids):
            raise NotFoundError(
                f"No instance at index {index} of {self.definition.name}",
                details={"index": index, "model": self.definition.model_to.model_name},
            )
        return await self.find_by_id(ids[index])

    async def update_by_id(self, fk_id, data):
        inst = await self.find_by_id(fk_id)
        return await inst.update_attributes(data)

    async def destroy_by_id(self, fk_id):
        inst = await self.find_by_id(fk_id)
        await self.remove(inst)
        return await inst.destroy()

    def build(self, data=None):
        data = dict(data or {})
        self.definition.apply_properties(self.model_instance, data)
        return self.definition.model_to(data)

    async def _insert(self, id_value):
        ids = self._ids()
        if self.definition.options.prepend:
            ids.insert(0, id_value)
        else:
            ids.append(id_value)
        await self.model_instance.update_attribute(self.definition.key_from, ids)
        self.reset_cache()

    async def create(self, data=None):
        inst = self.call_scope_method("build", data)
        await inst.save()
        await self._insert(inst.get_id())
        return inst

    async def add(self, target):
        definition = self.definition
        model_to = definition.model_to
        if isinstance(target, model_to):
            await self._insert(target.get_id())
            return target
        query = {"where": {definition.key_to: target}}
        definition.apply_scope(self.model_instance, query)
        inst = await model_to.find_one(query)
        if inst is None:
            return None
        await self._insert(inst.get_id())
        return inst

    async def remove(self, target):
        model_to = self.definition.model_to
        id_value = target.get_id() if isinstance(target, model_to) else target
        ids = self._ids()
        index = find_index_of(ids, id_value)
        if index > -1:
            del ids[index]
            await self.model_instance.update_attribute(self.definition.key_from, ids)
            self.reset_cache()
        return ids


def duplicate_ids_validator(definition):
    def validate(record):
        ids = getattr(record, definition.key_from) or []
        if ids_have_duplicates(ids):
            record.errors.add(
                definition.name,
                f"contains duplicate `{definition.model_to.model_name}` instance",
                "uniqueness",
            )
            return False
        return True

    return validate
