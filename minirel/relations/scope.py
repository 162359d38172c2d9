import asyncio
import copy

from minirel.filters import apply_filter, as_where
from minirel.relations.accessor import AccessorSpec, install_accessor, install_alias
from minirel.utils import merge_query

SCOPE_ALIASES = {
    "get": "load",
    "create": "create",
    "delete": "destroy_all",
    "update": "update_all",
    "count": "count",
    "find_by_id": "find_by_id",
}


def _merge_where(scope_where, where):
    scope_where = as_where(scope_where)
    where = as_where(where)
    if scope_where and where:
        return {"and": [copy.deepcopy(scope_where), where]}
    return copy.deepcopy(scope_where) if scope_where else where


class ScopeDefinition:
    """Named, parameterised query from ``model_from`` records onto ``model_to``.

    ``params`` is a filter dict or a callable building one from the receiver.
    A callable returns None when the receiver cannot have targets yet.
    A ``collect`` key in the params names a belongs-to relation of
    ``model_to``; the scope then yields the records that relation points at.
    """

    def __init__(self, model_from, model_to, name, params=None, options=None, related=None):
        self.model_from = model_from
        self.model_to = model_to
        self.name = name
        self.params = params
        self.options = options or {}
        self.custom_related = related

    def __repr__(self):
        return f"<ScopeDefinition {self.model_from.__name__}.{self.name} -> {self.model_to.__name__}>"

    def target_model(self, receiver):
        return self.model_to

    def scope_params(self, receiver):
        if callable(self.params):
            return self.params(receiver)
        return copy.deepcopy(self.params or {})

    async def related(self, receiver, refresh=False, filter=None):
        if self.custom_related is not None:
            return await self.custom_related(receiver, refresh=refresh, filter=filter)

        cache = receiver._relation_cache
        if self.name in cache and not refresh and filter is None:
            return cache.get(self.name)

        if filter is not None and filter.get("where") is not None:
            filter = {**filter, "where": as_where(filter["where"])}

        scope_params = self.scope_params(receiver)
        if scope_params is None:
            return []
        collect = scope_params.pop("collect", None)
        scope_params.pop("include", None)
        target = self.target_model(receiver)

        if collect:
            rows = await target.find(scope_params)
            found = await asyncio.gather(*(getattr(row, collect).load() for row in rows))
            result = [item for item in found if item is not None]
            if filter:
                result = apply_filter(result, filter)
        else:
            params = merge_query(copy.deepcopy(filter or {}), scope_params)
            result = await target.find(params)

        if filter is None:
            cache.set(self.name, result)
        return result

    def _scoped(self, receiver, where=None):
        params = self.scope_params(receiver)
        if params is None:
            return None
        return _merge_where(params.get("where"), where)

    # default operations, all take the receiver first

    async def load(self, receiver, refresh=False, filter=None):
        return await self.related(receiver, refresh=refresh, filter=filter)

    async def get(self, receiver, filter=None):
        return await self.related(receiver, refresh=True, filter=filter)

    async def find(self, receiver, filter=None):
        return await self.related(receiver, refresh=True, filter=dict(filter or {}))

    async def find_one(self, receiver, filter=None):
        params = self.scope_params(receiver)
        if params is None:
            return None
        params.pop("collect", None)
        params.pop("include", None)
        query = merge_query(copy.deepcopy(filter or {}), params)
        return await self.target_model(receiver).find_one(query)

    async def find_by_id(self, receiver, id):
        target = self.target_model(receiver)
        where = self._scoped(receiver, {target._mapper.pk: id})
        if where is None:
            return None
        return await target.find_one({"where": where})

    async def count(self, receiver, where=None):
        scoped = self._scoped(receiver, where)
        if scoped is None:
            return 0
        return await self.target_model(receiver).count(scoped)

    async def destroy_all(self, receiver, where=None):
        scoped = self._scoped(receiver, where)
        if scoped is None:
            return 0
        count = await self.target_model(receiver).delete_all(scoped)
        receiver._relation_cache.remove(self.name)
        return count

    async def update_all(self, receiver, where=None, data=None):
        scoped = self._scoped(receiver, where)
        if scoped is None:
            return 0
        count = await self.target_model(receiver).update_all(scoped, data or {})
        receiver._relation_cache.remove(self.name)
        return count

    def build(self, receiver, data=None):
        data = dict(data or {})
        where = as_where((self.scope_params(receiver) or {}).get("where"))
        for key, value in where.items():
            if key in ("and", "or") or isinstance(value, dict):
                continue
            data.setdefault(key, value)
        return self.target_model(receiver)(data)

    async def create(self, receiver, data=None):
        return await self.build(receiver, data).save()


DEFAULT_OPERATIONS = (
    "load", "get", "find", "find_one", "find_by_id", "count",
    "destroy_all", "update_all", "build", "create",
)


def define_scope(definition, model_to, params, methods=None, getter=None, related=None, aliases=None):
    """Install the accessor of a multiple relation on ``definition.model_from``.

    ``methods`` maps operation names to ``fn(instance, *args)`` and overrides
    the scope defaults of the same name. ``aliases`` maps alias verbs to
    operation names on top of the scope's own aliases.
    """
    model_from = definition.model_from
    scope = ScopeDefinition(model_from, model_to, definition.name, params, related=related)

    operations = {name: getattr(scope, name) for name in DEFAULT_OPERATIONS}
    operations.update(methods or {})

    if getter is None:
        def getter(instance):
            return instance._relation_cache.get(definition.name)

    spec = AccessorSpec(definition, getter, operations=operations)
    spec.scope = scope
    install_accessor(model_from, spec)

    for verb, operation in {**SCOPE_ALIASES, **(aliases or {})}.items():
        install_alias(model_from, definition.name, verb, operation)
    return scope
