from minirel.exceptions import CardinalityError, EmptyRelationError, KeyMismatchError
from minirel.relations.relation import Relation
from minirel.relations.utils import build_with_fk, prevent_fk_override
from minirel.utils import id_equals, merge_query


class HasOne(Relation):
    """The target record holds the foreign key of its source."""

    def related(self):
        return self.get_cache()

    def set(self, new_value):
        definition = self.definition
        setattr(new_value, definition.key_to, getattr(self.model_instance, definition.key_from))
        self.reset_cache(new_value)
        return new_value

    async def fetch(self, refresh=False, filter=None):
        definition = self.definition
        inst = self.model_instance
        if not refresh and filter is None:
            cached = self.get_cache()
            if cached is not None:
                return cached

        fk = definition.key_to
        pk = definition.key_from
        pk_value = getattr(inst, pk)
        query = {"where": {fk: pk_value}}
        definition.apply_scope(inst, query)
        if filter:
            merge_query(query, filter)

        target = await definition.model_to.find_one(query)
        if target is None:
            return None
        target_fk = getattr(target, fk)
        if target_fk is not None and pk_value is not None and id_equals(target_fk, pk_value):
            self.reset_cache(target)
            return target
        raise KeyMismatchError(
            f"Key mismatch: {definition.model_from.model_name}.{pk}: {pk_value}, "
            f"{definition.model_to.model_name}.{fk}: {target_fk}"
        )

    async def load(self, refresh=False, filter=None):
        return await self.fetch(refresh=refresh, filter=filter)

    async def get(self):
        return await self.fetch(refresh=True)

    def build(self, data=None):
        return build_with_fk(self.definition, self.model_instance, data)

    async def create(self, data=None):
        definition = self.definition
        inst = self.model_instance
        fk = definition.key_to
        data = dict(data or {})
        data[fk] = getattr(inst, definition.key_from)

        query = {"where": {fk: data[fk]}}
        definition.apply_scope(inst, query)
        definition.apply_properties(inst, data)

        target, created = await definition.model_to.find_or_create(query, data)
        if not created:
            raise CardinalityError(
                f"HasOne relation cannot create more than one instance of {definition.model_to.model_name}",
                details={"relation": definition.name, "existing": target.get_id()},
            )
        self.reset_cache(target)
        return target

    async def update(self, data):
        target = await self.fetch()
        if target is None:
            raise EmptyRelationError(f"HasOne relation {self.definition.name} is empty")
        prevent_fk_override(target, data, self.definition.key_to)
        return await target.update_attributes(data)

    async def destroy(self):
        target = await self.fetch()
        if target is None:
            raise EmptyRelationError(f"HasOne relation {self.definition.name} is empty")
        await target.destroy()
        self.reset_cache()
        return target
