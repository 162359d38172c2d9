from minirel.base import HookContext
from minirel.exceptions import RelationConfigError, ValidationError
from minirel.filters import apply_filter, as_where, matches
from minirel.relations.relation import Relation
from minirel.states import ObjectState
from minirel.utils import find_index_of, id_equals, ids_have_duplicates


def _assign_id_wanted(definition, data):
    pk = definition.key_to
    return (definition.options.force_id or data.get(pk) is None) and not definition.options.persistent


def _mark_persisted(definition, item):
    if definition.options.persistent:
        persisted = item.get_id() is not None
    else:
        persisted = True
    object.__setattr__(item, "_orm_state", ObjectState.PERSISTENT if persisted else ObjectState.TRANSIENT)


class EmbedsOne(Relation):
    """A single target record stored in a property of the source record."""

    def prepare_embedded_instance(self, inst):
        if inst is None or not hasattr(inst, "attach_parent"):
            return
        definition = self.definition
        owner = self.model_instance
        prop = definition.key_from

        async def propagate(action):
            if action == "save":
                await owner.update_attribute(prop, inst)
            elif action == "destroy":
                owner.unset_attribute(prop)
                await owner.save()

        if inst._parent_link is None:
            _mark_persisted(definition, inst)
        inst.attach_parent(propagate, persistent=definition.options.persistent)

    def embedded_value(self):
        value = getattr(self.model_instance, self.definition.key_from)
        self.prepare_embedded_instance(value)
        return value

    def related(self):
        return self.embedded_value()

    def set(self, new_value):
        definition = self.definition
        if new_value is not None and not isinstance(new_value, definition.model_to):
            raise TypeError(f"{definition.name} expects a {definition.model_to.model_name} record")
        if new_value is not None:
            definition.apply_properties(self.model_instance, new_value)
        self.model_instance.set_attribute(definition.key_from, new_value)
        self.prepare_embedded_instance(new_value)
        return new_value

    async def load(self, refresh=False, filter=None):
        return self.embedded_value()

    async def get(self):
        return self.embedded_value()

    def build(self, data=None):
        definition = self.definition
        model_to = definition.model_to
        data = dict(data or {})
        definition.apply_properties(self.model_instance, data)

        pk = definition.key_to
        pk_column = model_to._mapper.properties.get(pk)
        if _assign_id_wanted(definition, data) and pk_column is not None and pk_column.generated:
            connector = model_to._data_source.connector
            data[pk] = connector.generate_id(model_to.model_name, data, pk)

        inst = model_to(data)
        self.model_instance.set_attribute(definition.key_from, inst)
        self.prepare_embedded_instance(inst)
        return inst

    async def _update_embedded(self, inst):
        owner = self.model_instance
        prop = self.definition.key_from
        if owner.is_new_record():
            owner.set_attribute(prop, inst)
            await owner.save()
        else:
            await owner.update_attribute(prop, inst)

    async def create(self, data=None):
        definition = self.definition
        model_to = definition.model_to
        inst = self.call_scope_method("build", data)

        if definition.options.persistent:
            await inst.save()
            await self._update_embedded(inst)
            return inst

        context = HookContext(model_to, instance=inst, data=inst.to_dict(), options={})
        await model_to.notify_observers_of("before save", context)
        if not inst.is_valid():
            self.model_instance.unset_attribute(definition.key_from)
            raise ValidationError(inst)
        await self._update_embedded(inst)
        await model_to.notify_observers_of("after save", context)
        return inst

    async def update(self, data):
        definition = self.definition
        model_to = definition.model_to
        if hasattr(data, "to_dict"):
            data = data.to_dict()
        inst = self.embedded_value()
        if not isinstance(inst, model_to):
            return await self.create(data)

        context = HookContext(model_to, current_instance=inst, data=dict(data or {}), options={})
        await model_to.notify_observers_of("before save", context)
        inst.set_attributes(context.data)
        if not inst.is_valid():
            raise ValidationError(inst)
        owner = await self.model_instance.save()
        context.instance = getattr(owner, definition.key_from) or inst
        await model_to.notify_observers_of("after save", context)
        return context.instance

    async def destroy(self):
        definition = self.definition
        model_to = definition.model_to
        inst = getattr(self.model_instance, definition.key_from)
        if inst is None:
            return None
        self.model_instance.unset_attribute(definition.key_from)
        context = HookContext(model_to, instance=inst, where={definition.key_to: inst.get_id()}, options={})
        await model_to.notify_observers_of("before delete", context)
        await self.model_instance.save()
        await model_to.notify_observers_of("after delete", context)
        return inst


class EmbedsMany(Relation):
    """An ordered list of target records stored in a property of the source record."""

    def prepare_embedded_instance(self, inst):
        if inst is None or not hasattr(inst, "attach_parent"):
            return
        definition = self.definition
        owner = self.model_instance
        prop = definition.key_from

        async def propagate(action):
            items = list(getattr(owner, prop) or [])
            if action == "destroy":
                items = [item for item in items if item is not inst]
            await owner.update_attribute(prop, items)

        if inst._parent_link is None:
            _mark_persisted(definition, inst)
        inst.attach_parent(propagate, persistent=definition.options.persistent)

    def embedded_list(self):
        items = getattr(self.model_instance, self.definition.key_from)
        if items is None:
            return []
        for item in items:
            self.prepare_embedded_instance(item)
        return items

    def embedded_value(self):
        return self.embedded_list()

    def related(self):
        return self.embedded_list()

    async def load(self, refresh=False, filter=None):
        items = list(self.embedded_list())
        query = {"where": as_where((filter or {}).get("where"))}
        for key in ("order", "limit", "skip", "offset"):
            if filter and key in filter:
                query[key] = filter[key]
        self.definition.apply_scope(self.model_instance, query)
        if query.get("where") or any(k in query for k in ("order", "limit", "skip", "offset")):
            items = apply_filter(items, query)
        return items

    def _items(self):
        model_to = self.definition.model_to
        return [item for item in self.embedded_list() if isinstance(item, model_to)]

    async def find_by_id(self, fk_id):
        pk = self.definition.key_to
        for item in self._items():
            if id_equals(getattr(item, pk), fk_id):
                return item
        return None

    get = find_by_id

    async def exists(self, fk_id):
        return await self.find_by_id(fk_id) is not None

    async def count(self, where=None):
        return len(await self.load(filter={"where": where} if where else None))

    async def at(self, index):
        items = self.embedded_list()
        index = int(index)
        if 0 <= index < len(items) and isinstance(items[index], self.definition.model_to):
            return items[index]
        return None

    def value(self):
        return self.embedded_list()

    async def update_by_id(self, fk_id, data):
        definition = self.definition
        model_to = definition.model_to
        inst = await self.find_by_id(fk_id)
        if inst is None:
            return None
        if hasattr(data, "to_dict"):
            data = data.to_dict()

        context = HookContext(model_to, current_instance=inst, data=dict(data or {}), options={})
        await model_to.notify_observers_of("before save", context)
        inst.set_attributes(context.data)
        if not inst.is_valid():
            raise ValidationError(inst)
        await self.model_instance.update_attribute(definition.key_from, self.embedded_list())
        context.instance = inst
        await model_to.notify_observers_of("after save", context)
        return inst

    set = update_by_id

    async def destroy_by_id(self, fk_id):
        definition = self.definition
        model_to = definition.model_to
        inst = fk_id if isinstance(fk_id, model_to) else await self.find_by_id(fk_id)
        if inst is None:
            return None

        context = HookContext(model_to, instance=inst, where={definition.key_to: inst.get_id()}, options={})
        await model_to.notify_observers_of("before delete", context)
        items = [item for item in self.embedded_list() if item is not inst]
        await self.model_instance.update_attribute(definition.key_from, items)
        await model_to.notify_observers_of("after delete", context)
        return inst

    unset = destroy_by_id

    async def destroy_all(self, where=None):
        where = as_where(where)
        if where:
            items = [item for item in self.embedded_list() if not matches(item, where)]
        else:
            items = []
        await self.model_instance.update_attribute(self.definition.key_from, items)
        return items

    def build(self, data=None):
        definition = self.definition
        model_to = definition.model_to
        owner = self.model_instance
        pk = definition.key_to
        data = dict(data or {})
        items = list(self.embedded_list())

        if _assign_id_wanted(definition, data):
            pk_column = model_to._mapper.properties.get(pk)
            if pk_column is not None and pk_column.dtype is int:
                ids = [item.get_id() if isinstance(item.get_id(), int) else 0 for item in items]
                data[pk] = max(ids) + 1 if ids else 1
            else:
                connector = model_to._data_source.connector
                data[pk] = connector.generate_id(model_to.model_name, data, pk)

        definition.apply_properties(owner, data)
        inst = model_to(data)
        if definition.options.prepend:
            items.insert(0, inst)
        else:
            items.append(inst)
        owner.set_attribute(definition.key_from, items)
        self.prepare_embedded_instance(inst)
        return inst

    async def _update_embedded(self):
        owner = self.model_instance
        prop = self.definition.key_from
        if owner.is_new_record():
            await owner.save()
        else:
            await owner.update_attribute(prop, self.embedded_list())

    async def create(self, data=None):
        definition = self.definition
        model_to = definition.model_to
        inst = self.call_scope_method("build", data)

        if definition.options.persistent:
            await inst.save()
            await self._update_embedded()
            return inst

        if not inst.is_valid():
            remaining = [item for item in self.embedded_list() if item is not inst]
            self.model_instance.set_attribute(definition.key_from, remaining)
            raise ValidationError(inst)
        context = HookContext(model_to, instance=inst, data=inst.to_dict(), options={})
        await model_to.notify_observers_of("before save", context)
        await self._update_embedded()
        await model_to.notify_observers_of("after save", context)
        return inst

    def _reference(self):
        definition = self.definition
        name = definition.options.belongs_to
        belongs_to = name and definition.model_to._mapper.relations.get(name)
        if not belongs_to:
            raise RelationConfigError(f"Invalid reference: {name or '(none)'}")
        return belongs_to

    async def add(self, target, data=None):
        belongs_to = self._reference()
        referenced = belongs_to.model_to
        key = target.get_id() if isinstance(target, referenced) else target
        query = {"where": {belongs_to.key_to: key}}
        belongs_to.apply_scope(self.model_instance, query)
        ref = await referenced.find_one(query)
        if ref is None:
            return None
        inst = self.build(data)
        getattr(inst, belongs_to.name)(ref)
        await self.model_instance.save()
        return inst

    async def remove(self, target):
        belongs_to = self._reference()
        referenced = belongs_to.model_to
        key = target.get_id() if isinstance(target, referenced) else target
        query = {"where": {belongs_to.key_from: key}}
        doomed = await self.load(filter=query)
        model_to = self.definition.model_to
        items = self.embedded_list()
        for item in doomed:
            context = HookContext(model_to, instance=item, options={})
            await model_to.notify_observers_of("before delete", context)
            index = find_index_of(items, item, equals=lambda a, b: a is b)
            if index > -1:
                del items[index]
        self.model_instance.set_attribute(self.definition.key_from, items)
        await self.model_instance.save()
        return doomed


def embeds_one_validator(definition):
    def validate(record):
        inst = getattr(record, definition.key_from)
        if not isinstance(inst, definition.model_to) or inst.is_valid():
            return True
        field = next(iter(inst.errors), None)
        message = f"is invalid: `{field}` {' '.join(inst.errors[field])}" if field else "is invalid"
        record.errors.add(definition.name, message, "invalid")
        return False
    return validate


def embeds_many_validators(definition, unique=True):
    """Validators for the embedded list: ids present, unique and items valid."""
    model_to = definition.model_to
    pk = definition.key_to
    prop = definition.key_from

    def validate_ids(record):
        connector = model_to._data_source.connector
        if callable(getattr(connector, "generate_id", None)):
            return True
        for index, item in enumerate(getattr(record, prop) or []):
            if getattr(item, pk, None) is None:
                record.errors.add(definition.name, f"contains invalid item at index `{index}`: `{pk}` is blank", "presence")
                return False
        return True

    def validate_unique(record):
        items = getattr(record, prop) or []
        ids = [str(getattr(item, pk)) if getattr(item, pk, None) is not None else None for item in items]
        if ids_have_duplicates(ids):
            record.errors.add(definition.name, f"contains duplicate `{pk}`", "uniqueness")
            return False
        return True

    def validate_items(record):
        ok = True
        for index, item in enumerate(getattr(record, prop) or []):
            if not isinstance(item, model_to):
                record.errors.add(definition.name, "contains invalid item", "invalid")
                ok = False
                continue
            if item.is_valid():
                continue
            field = next(iter(item.errors), None)
            detail = f" (`{field}` {' '.join(item.errors[field])})" if field else ""
            item_id = item.get_id()
            if item_id is not None:
                message = f"contains invalid item: `{item_id}`{detail}"
            else:
                message = f"contains invalid item at index `{index}`{detail}"
            record.errors.add(definition.name, message, "invalid")
            ok = False
        return ok

    validators = [validate_ids]
    if unique:
        validators.append(validate_unique)
    if definition.options.validate:
        validators.append(validate_items)
    return validators
