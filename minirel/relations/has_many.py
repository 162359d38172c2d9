import asyncio

from minirel.exceptions import KeyMismatchError, NotFoundError
from minirel.relations.relation import CachedListMixin, Relation, logger
from minirel.relations.utils import build_with_fk, prevent_fk_override, through_keys
from minirel.utils import id_equals


def _target_id(model, target):
    if isinstance(target, model):
        return target.get_id()
    return target


class HasMany(CachedListMixin, Relation):
    """Targets hold a foreign key to the source record."""

    async def find_by_id(self, fk_id):
        definition = self.definition
        model_to = definition.model_to
        fk = definition.key_to
        pk_value = getattr(self.model_instance, definition.key_from)
        if pk_value is None:
            return None

        query = {"where": {model_to._mapper.pk: fk_id, fk: pk_value}}
        definition.apply_scope(self.model_instance, query)
        inst = await model_to.find_one(query)
        if inst is None:
            raise NotFoundError(
                f"No instance with id {fk_id} found for {model_to.model_name}",
                details={"id": fk_id, "model": model_to.model_name},
            )
        if getattr(inst, fk) is not None and id_equals(getattr(inst, fk), pk_value):
            return inst
        raise KeyMismatchError(
            f"Key mismatch: {definition.model_from.model_name}.{definition.key_from}: {pk_value}, "
            f"{model_to.model_name}.{fk}: {getattr(inst, fk)}"
        )

    async def exists(self, fk_id):
        try:
            return await self.find_by_id(fk_id) is not None
        except NotFoundError:
            return False

    async def update_by_id(self, fk_id, data):
        inst = await self.find_by_id(fk_id)
        if inst is None:
            return None
        prevent_fk_override(inst, data, self.definition.key_to)
        updated = await inst.update_attributes(data)
        self.add_to_cache(updated)
        return updated

    async def destroy_by_id(self, fk_id):
        inst = await self.find_by_id(fk_id)
        if inst is None:
            return None
        self.remove_from_cache(fk_id)
        return await inst.destroy()

    def build(self, data=None):
        return build_with_fk(self.definition, self.model_instance, data)

    async def create(self, data=None):
        definition = self.definition
        inst = self.model_instance
        items = data if isinstance(data, (list, tuple)) else [data]
        prepared = []
        for item in items:
            item = dict(item or {})
            item[definition.key_to] = getattr(inst, definition.key_from)
            definition.apply_properties(inst, item)
            prepared.append(item)

        if isinstance(data, (list, tuple)):
            targets = await definition.model_to.create(prepared)
            for target in targets:
                self.add_to_cache(target)
            return targets
        target = await definition.model_to.create(prepared[0])
        self.add_to_cache(target)
        return target

    async def add(self, target, data=None):
        """Point an existing target at this record."""
        definition = self.definition
        model_to = definition.model_to
        if not isinstance(target, model_to):
            found = await model_to.find_by_id(target)
            if found is None:
                raise NotFoundError(
                    f"No instance with id {target} found for {model_to.model_name}",
                    details={"id": target, "model": model_to.model_name},
                )
            target = found
        changes = dict(data or {})
        changes[definition.key_to] = getattr(self.model_instance, definition.key_from)
        definition.apply_properties(self.model_instance, changes)
        await target.update_attributes(changes)
        self.add_to_cache(target)
        return target

    async def remove(self, target):
        fk_id = _target_id(self.definition.model_to, target)
        inst = await self.find_by_id(fk_id)
        if inst is None:
            return None
        await inst.update_attributes({self.definition.key_to: None})
        self.remove_from_cache(fk_id)
        return inst


class HasManyThrough(CachedListMixin, Relation):
    """Source and target are joined by rows of ``model_through``."""

    def _join_filter(self, target):
        definition = self.definition
        fk1, fk2 = through_keys(definition)
        query = {"where": {
            fk1: getattr(self.model_instance, definition.key_from),
            fk2: _target_id(definition.model_to, target),
        }}
        definition.apply_scope(self.model_instance, query)
        return query

    async def exists(self, target):
        if getattr(self.model_instance, self.definition.key_from) is None:
            return False
        query = self._join_filter(target)
        return await self.definition.model_through.count(query["where"]) > 0

    async def find_by_id(self, fk_id):
        definition = self.definition
        if not await self.exists(fk_id):
            raise NotFoundError(
                f"No relation found in {definition.model_through.model_name} for "
                f"({definition.model_from.model_name}.{getattr(self.model_instance, definition.key_from)},"
                f"{definition.model_to.model_name}.{fk_id})",
                details={"id": fk_id, "model": definition.model_through.model_name},
            )
        inst = await definition.model_to.find_by_id(fk_id)
        if inst is None:
            raise NotFoundError(
                f"No instance with id {fk_id} found for {definition.model_to.model_name}",
                details={"id": fk_id, "model": definition.model_to.model_name},
            )
        return inst

    async def update_by_id(self, fk_id, data):
        inst = await self.find_by_id(fk_id)
        prevent_fk_override(inst, data, self.definition.key_to)
        updated = await inst.update_attributes(data)
        self.add_to_cache(updated)
        return updated

    async def destroy_by_id(self, fk_id):
        definition = self.definition
        if not await self.exists(fk_id):
            raise NotFoundError(
                f"No record found in {definition.model_through.model_name} for "
                f"({definition.model_from.model_name}.{getattr(self.model_instance, definition.key_from)} ,"
                f"{definition.model_to.model_name}.{fk_id})",
                details={"id": fk_id, "model": definition.model_through.model_name},
            )
        await self.remove(fk_id)
        return await definition.model_to.delete_by_id(fk_id)

    async def _create_join(self, target):
        definition = self.definition
        fk1, fk2 = through_keys(definition)
        data = {
            fk1: getattr(self.model_instance, definition.key_from),
            fk2: getattr(target, definition.model_to._mapper.pk),
        }
        definition.apply_properties(self.model_instance, data)
        query = {"where": dict(data)}
        definition.apply_scope(self.model_instance, query)
        try:
            await definition.model_through.find_or_create(query, data)
        except Exception:
            logger.warning(
                f"Join row for {definition.model_to.model_name} {target.get_id()} failed, "
                f"removing the target created for {definition.name}"
            )
            await target.destroy()
            raise
        self.add_to_cache(target)
        return target

    async def create(self, data=None):
        model_to = self.definition.model_to
        if isinstance(data, (list, tuple)):
            targets = await model_to.create(list(data))
            return list(await asyncio.gather(*(self._create_join(t) for t in targets)))
        target = await model_to.create(data or {})
        return await self._create_join(target)

    async def add(self, target, data=None):
        definition = self.definition
        fk1, fk2 = through_keys(definition)
        query = self._join_filter(target)
        row = dict(data or {})
        row[fk1] = getattr(self.model_instance, definition.key_from)
        row[fk2] = _target_id(definition.model_to, target)
        definition.apply_properties(self.model_instance, row)
        through, _ = await definition.model_through.find_or_create(query, row)
        if isinstance(target, definition.model_to):
            self.add_to_cache(target)
        else:
            self.reset_cache()
        return through

    async def remove(self, target):
        query = self._join_filter(target)
        await self.definition.model_through.delete_all(query["where"])
        self.remove_from_cache(_target_id(self.definition.model_to, target))
