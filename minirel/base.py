import asyncio
import inspect

from minirel.cache import RelationCache
from minirel.exceptions import NotFoundError, RelationConfigError, ValidationError
from minirel.filters import as_where
from minirel.mapper import Mapper, collect_declarations
from minirel.relations.definition import RelationKind
from minirel.states import ObjectState
from minirel.utils import find_index_of, id_equals, merge_query
from minirel.validations import Errors, validate_presence


class HookContext:
    """Passed to observers registered with ``ModelBase.observe``."""

    def __init__(self, model, instance=None, current_instance=None, data=None, where=None, options=None):
        self.model = model
        self.instance = instance
        self.current_instance = current_instance
        self.data = data
        self.where = where
        self.options = options or {}
        self.hook_state = {}

    def __repr__(self):
        target = self.instance if self.instance is not None else self.current_instance
        return f"<HookContext {self.model.__name__} {target!r}>"


class ParentLink:
    """Routes save/destroy of an embedded record to the record that owns it."""

    def __init__(self, propagate, persistent=False):
        self._propagate = propagate
        self.persistent = persistent

    async def propagate(self, action):
        await self._propagate(action)


class ModelBase:
    _mapper = None
    _data_source = None

    def __repr__(self):
        mapper = type(self)._mapper
        pk_val = self._data.get(mapper.pk) if mapper else None
        return f"<{self.__class__.__name__}(id={pk_val if pk_val is not None else 'New'})>"

    def __init__(self, data=None, **kwargs):
        mapper = type(self)._mapper
        if mapper is None:
            raise RelationConfigError(f"{type(self).__name__} is not attached to a data source")
        object.__setattr__(self, "_data", {})
        object.__setattr__(self, "_orm_state", ObjectState.TRANSIENT)
        object.__setattr__(self, "_relation_cache", RelationCache())
        object.__setattr__(self, "_parent_link", None)
        object.__setattr__(self, "errors", Errors())

        values = dict(data or {})
        values.update(kwargs)
        for name, column in mapper.properties.items():
            if name not in values:
                default = column.get_default()
                if default is not None:
                    self._data[name] = column.coerce(default)
        for key, value in values.items():
            self.set_attribute(key, value)

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        columns, relationships = collect_declarations(cls)

        own_meta = cls.__dict__.get("Meta")
        meta_attrs = {}
        if own_meta:
            for attr in dir(own_meta):
                if not attr.startswith("_"):
                    meta_attrs[attr] = getattr(own_meta, attr)

        data_source = None
        for klass in cls.__mro__:
            meta = klass.__dict__.get("Meta")
            if meta is not None and getattr(meta, "data_source", None) is not None:
                data_source = meta.data_source
                break

        if data_source is None or meta_attrs.get("abstract", False):
            cls._mapper = None
            return

        cls._mapper = Mapper(cls, columns, relationships, meta_attrs, data_source)
        cls._data_source = data_source
        cls.model_name = cls._mapper.model_name
        cls.plural_model_name = cls._mapper.plural_model_name
        data_source.register(cls)

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        try:
            data = object.__getattribute__(self, "_data")
        except AttributeError:
            raise AttributeError(name) from None
        if name in data:
            return data[name]
        mapper = type(self)._mapper
        if mapper is not None and name in mapper.properties:
            return None
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name, value):
        mapper = type(self)._mapper
        if mapper is not None and name in mapper.properties:
            self.set_attribute(name, value)
            return
        class_attr = getattr(type(self), name, None)
        if name.startswith("_") or isinstance(class_attr, property):
            object.__setattr__(self, name, value)
            return
        self._data[name] = value

    # -- attributes -------------------------------------------------------

    @classmethod
    def id_name(cls):
        return cls._mapper.id_name()

    def get_id(self):
        return self._data.get(type(self)._mapper.pk)

    def set_attribute(self, name, value):
        mapper = type(self)._mapper
        column = mapper.properties.get(name)
        if column is not None:
            value = column.coerce(value)
        current = self._data.get(name)

        if name == mapper.pk and self._orm_state == ObjectState.PERSISTENT and current is not None:
            if not id_equals(current, value):
                raise AttributeError(
                    f"Critical error: Cannot change primary key '{name}' "
                    f"for {self.__class__.__name__} after it has been persisted."
                )

        self._data[name] = value

        if not id_equals(current, value):
            for relation in mapper.relations.values():
                if relation.kind != RelationKind.BELONGS_TO:
                    continue
                polymorphic = relation.polymorphic
                if relation.key_from == name or (polymorphic is not None and polymorphic.discriminator == name):
                    self._relation_cache.remove(relation.name)

    def set_attributes(self, data):
        for key, value in (data or {}).items():
            self.set_attribute(key, value)

    def unset_attribute(self, name):
        self._data.pop(name, None)

    def to_dict(self):
        mapper = type(self)._mapper
        result = {}
        for name, value in self._data.items():
            column = mapper.properties.get(name)
            result[name] = column.serialize(value) if column is not None else _serialize(value)
        return result

    def is_new_record(self):
        return self._orm_state == ObjectState.TRANSIENT

    def is_valid(self):
        self.errors.clear()
        mapper = type(self)._mapper
        validate_presence(self, mapper)
        for name, fn, code in mapper.validators:
            before = len(self.errors[name])
            if fn(self) is False and len(self.errors[name]) == before:
                self.errors.add(name, "is invalid", code)
        return not self.errors

    @classmethod
    def validate(cls, name, fn, code="invalid"):
        """Register ``fn(record)``; returning False (or adding errors) fails validation."""
        cls._mapper.add_validator(name, fn, code)

    def attach_parent(self, propagate, persistent=False):
        if self._parent_link is None:
            object.__setattr__(self, "_parent_link", ParentLink(propagate, persistent))

    # -- hooks ------------------------------------------------------------

    @classmethod
    def observe(cls, operation, handler):
        cls._mapper.observers[operation].append(handler)

    @classmethod
    async def notify_observers_of(cls, operation, context):
        for handler in list(cls._mapper.observers.get(operation, ())):
            result = handler(context)
            if inspect.isawaitable(result):
                await result
        return context

    # -- persistence ------------------------------------------------------

    async def _persist(self):
        cls = type(self)
        mapper = cls._mapper
        connector = cls._data_source.connector
        data = self.to_dict()
        if self.is_new_record():
            if data.get(mapper.pk) is None:
                data.pop(mapper.pk, None)
            new_id = await connector.create(mapper.model_name, data, mapper.pk)
            self._data[mapper.pk] = new_id
            object.__setattr__(self, "_orm_state", ObjectState.PERSISTENT)
        else:
            updated = await connector.update(mapper.model_name, self.get_id(), data, mapper.pk)
            if not updated:
                raise NotFoundError(f"No instance with id {self.get_id()} found for {mapper.model_name}")

    async def save(self, options=None):
        cls = type(self)
        context = HookContext(cls, instance=self, options=options)
        await cls.notify_observers_of("before save", context)
        if not self.is_valid():
            raise ValidationError(self)
        link = self._parent_link
        if link is None or link.persistent:
            await self._persist()
        if link is not None:
            await link.propagate("save")
            if not link.persistent:
                object.__setattr__(self, "_orm_state", ObjectState.PERSISTENT)
        await cls.notify_observers_of("after save", context)
        return self

    async def update_attributes(self, data, options=None):
        cls = type(self)
        if self.is_new_record() and self._parent_link is None:
            self.set_attributes(data)
            return await self.save(options)
        context = HookContext(cls, current_instance=self, data=dict(data or {}), options=options)
        await cls.notify_observers_of("before save", context)
        missing = object()
        previous = {key: self._data.get(key, missing) for key in context.data}
        self.set_attributes(context.data)
        if not self.is_valid():
            for key, value in previous.items():
                if value is missing:
                    self._data.pop(key, None)
                else:
                    self._data[key] = value
            raise ValidationError(self)
        link = self._parent_link
        if link is None or link.persistent:
            await self._persist()
        if link is not None:
            await link.propagate("save")
        context.instance = self
        await cls.notify_observers_of("after save", context)
        return self

    async def update_attribute(self, name, value, options=None):
        return await self.update_attributes({name: value}, options)

    async def destroy(self, options=None):
        cls = type(self)
        mapper = cls._mapper
        context = HookContext(cls, instance=self, where={mapper.pk: self.get_id()}, options=options)
        await cls.notify_observers_of("before delete", context)
        link = self._parent_link
        if link is None or link.persistent:
            await cls._data_source.connector.destroy(mapper.model_name, self.get_id())
        if link is not None:
            await link.propagate("destroy")
        object.__setattr__(self, "_orm_state", ObjectState.DELETED)
        await cls.notify_observers_of("after delete", context)
        return self

    # -- class level data access -------------------------------------------

    @classmethod
    def _from_row(cls, row):
        inst = cls(row)
        object.__setattr__(inst, "_orm_state", ObjectState.PERSISTENT)
        return inst

    @classmethod
    def _normalize_filter(cls, filter):
        filter = dict(filter or {})
        if "where" in filter:
            filter["where"] = as_where(filter["where"])
        fields = filter.get("fields")
        if fields and cls._mapper.pk not in fields:
            filter["fields"] = list(fields) + [cls._mapper.pk]
        return filter

    @classmethod
    async def create(cls, data=None, options=None):
        if isinstance(data, (list, tuple)):
            return list(await asyncio.gather(*(cls.create(item, options) for item in data)))
        inst = data if isinstance(data, cls) else cls(data)
        return await inst.save(options)

    @classmethod
    async def find(cls, filter=None, options=None):
        mapper = cls._mapper
        rows = await cls._data_source.connector.find(mapper.model_name, cls._normalize_filter(filter))
        return [cls._from_row(row) for row in rows]

    @classmethod
    async def find_one(cls, filter=None, options=None):
        filter = dict(filter or {})
        filter["limit"] = 1
        found = await cls.find(filter, options)
        return found[0] if found else None

    @classmethod
    async def find_by_id(cls, id, filter=None, options=None):
        query = merge_query({"where": {cls._mapper.pk: id}}, filter)
        return await cls.find_one(query, options)

    @classmethod
    async def find_by_ids(cls, ids, filter=None, options=None):
        """Records whose id is in ``ids``, in the order of ``ids`` unless ``order`` is given."""
        ids = list(ids or [])
        if not ids:
            return []
        pk = cls._mapper.pk
        query = merge_query({"where": {pk: {"inq": ids}}}, filter)
        skip = query.pop("skip", None)
        offset = query.pop("offset", None)
        skip = skip or offset or 0
        limit = query.pop("limit", None)
        found = await cls.find(query, options)
        if not query.get("order"):
            found.sort(key=lambda inst: find_index_of(ids, inst.get_id()))
        found = found[int(skip):]
        if limit is not None:
            found = found[: int(limit)]
        return found

    @classmethod
    async def find_or_create(cls, filter, data=None, options=None):
        """Returns ``(record, created)``."""
        found = await cls.find_one(filter, options)
        if found is not None:
            return found, False
        if data is None:
            where = as_where((filter or {}).get("where"))
            data = {k: v for k, v in where.items() if k not in ("and", "or") and not isinstance(v, dict)}
        created = await cls.create(data, options)
        return created, True

    @classmethod
    async def count(cls, where=None, options=None):
        return await cls._data_source.connector.count(cls._mapper.model_name, as_where(where))

    @classmethod
    async def exists(cls, id, options=None):
        if id is None:
            return False
        return await cls.count({cls._mapper.pk: id}) > 0

    @classmethod
    async def delete_all(cls, where=None, options=None):
        where = as_where(where)
        context = HookContext(cls, where=where, options=options)
        await cls.notify_observers_of("before delete", context)
        count = await cls._data_source.connector.destroy_all(cls._mapper.model_name, context.where)
        await cls.notify_observers_of("after delete", context)
        return count

    destroy_all = delete_all

    @classmethod
    async def delete_by_id(cls, id, options=None):
        inst = await cls.find_by_id(id)
        if inst is None:
            return False
        await inst.destroy(options)
        return True

    @classmethod
    async def update_all(cls, where, data, options=None):
        return await cls._data_source.connector.update_all(cls._mapper.model_name, as_where(where), data)

    # -- relation factories ---------------------------------------------------

    @classmethod
    def belongs_to(cls, model_to, **params):
        from minirel.relations import factories
        return factories.belongs_to(cls, model_to, **params)

    @classmethod
    def has_one(cls, model_to, **params):
        from minirel.relations import factories
        return factories.has_one(cls, model_to, **params)

    @classmethod
    def has_many(cls, model_to, **params):
        from minirel.relations import factories
        return factories.has_many(cls, model_to, **params)

    @classmethod
    def has_and_belongs_to_many(cls, model_to, **params):
        from minirel.relations import factories
        return factories.has_and_belongs_to_many(cls, model_to, **params)

    @classmethod
    def embeds_one(cls, model_to, **params):
        from minirel.relations import factories
        return factories.embeds_one(cls, model_to, **params)

    @classmethod
    def embeds_many(cls, model_to, **params):
        from minirel.relations import factories
        return factories.embeds_many(cls, model_to, **params)

    @classmethod
    def references_many(cls, model_to, **params):
        from minirel.relations import factories
        return factories.references_many(cls, model_to, **params)


def _serialize(value):
    if isinstance(value, ModelBase):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value
