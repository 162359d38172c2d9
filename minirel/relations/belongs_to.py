from minirel.exceptions import EmptyRelationError, KeyMismatchError, PolymorphicError
from minirel.relations.relation import Relation
from minirel.relations.utils import prevent_fk_override
from minirel.utils import id_equals, merge_query


class BelongsTo(Relation):
    """The source record holds the foreign key of its target."""

    def _target_model(self):
        definition = self.definition
        if definition.polymorphic is None:
            return definition.model_to
        discriminator = definition.polymorphic.discriminator
        model_name = getattr(self.model_instance, discriminator)
        if not isinstance(model_name, str) or not model_name:
            raise PolymorphicError(f"Polymorphic model not found: `{discriminator}` not set")
        model = definition.model_from._data_source.lookup_model(model_name)
        if model is None:
            raise PolymorphicError(
                f"Polymorphic model not found: `{discriminator}` names unknown model `{model_name}`"
            )
        return model

    def related(self):
        return self.get_cache()

    def set(self, new_value):
        definition = self.definition
        inst = self.model_instance
        if new_value is None:
            setattr(inst, definition.key_from, None)
            if definition.polymorphic is not None:
                setattr(inst, definition.polymorphic.discriminator, None)
            self.reset_cache()
            return None
        setattr(inst, definition.key_from, getattr(new_value, definition.key_to))
        if definition.polymorphic is not None:
            setattr(inst, definition.polymorphic.discriminator, type(new_value).model_name)
        definition.apply_properties(inst, new_value)
        self.reset_cache(new_value)
        return new_value

    async def fetch(self, refresh=False, filter=None):
        definition = self.definition
        inst = self.model_instance
        if not refresh and filter is None:
            cached = self.get_cache()
            if cached is not None:
                return cached

        fk = definition.key_from
        pk = definition.key_to
        fk_value = getattr(inst, fk)
        if fk_value is None:
            return None
        model_to = self._target_model()

        query = {"where": {pk: fk_value}}
        definition.apply_scope(inst, query)
        if filter:
            merge_query(query, filter)
            fields = query.get("fields")
            if fields and pk not in fields:
                query["fields"] = list(fields) + [pk]

        target = await model_to.find_one(query)
        if target is None:
            return None
        target_key = getattr(target, pk)
        if target_key is not None and id_equals(target_key, fk_value):
            self.reset_cache(target)
            return target
        raise KeyMismatchError(
            f"Key mismatch: {definition.model_from.model_name}.{fk}: {fk_value}, "
            f"{model_to.model_name}.{pk}: {target_key}"
        )

    async def load(self, refresh=False, filter=None):
        return await self.fetch(refresh=refresh, filter=filter)

    async def get(self):
        return await self.fetch(refresh=True)

    def build(self, data=None):
        data = dict(data or {})
        self.definition.apply_properties(self.model_instance, data)
        return self.definition.model_to(data)

    async def create(self, data=None):
        definition = self.definition
        inst = self.model_instance
        data = dict(data or {})
        definition.apply_properties(inst, data)
        target = await definition.model_to.create(data)
        setattr(inst, definition.key_from, getattr(target, definition.key_to))
        if not inst.is_new_record():
            await inst.save()
        self.reset_cache(target)
        return target

    async def update(self, data):
        target = await self.fetch(refresh=True)
        if target is None:
            raise EmptyRelationError(f"BelongsTo relation {self.definition.name} is empty")
        prevent_fk_override(target, data, self.definition.key_to)
        updated = await target.update_attributes(data)
        self.reset_cache(updated)
        return updated

    async def destroy(self):
        target = await self.fetch(refresh=True)
        if target is None:
            raise EmptyRelationError(f"BelongsTo relation {self.definition.name} is empty")
        setattr(self.model_instance, self.definition.key_from, None)
        self.reset_cache()
        return await self.model_instance.save()
