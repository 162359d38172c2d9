"""Accessor specs and the callable handles they produce.

Each relation registers one ``AccessorSpec`` in its source model's mapper.
Accessing the relation attribute on a record looks the spec up and returns
a ``RelationAccessor`` bound to that record::

    order.customer()            # cached value, no storage access
    order.customer(customer)    # set the relation
    await order.customer.load() # resolve from storage
    await author.books.find_by_id(3)
"""
import functools
import inspect

from minirel.exceptions import RelationConfigError
from minirel.mapper import SharedMethod

# alias verb -> (http verb, path suffix)
ALIAS_ROUTES = {
    "get": ("get", ""),
    "create": ("post", ""),
    "update": ("put", ""),
    "destroy": ("delete", ""),
    "delete": ("delete", ""),
    "count": ("get", "/count"),
    "find_by_id": ("get", "/{fk}"),
    "update_by_id": ("put", "/{fk}"),
    "destroy_by_id": ("delete", "/{fk}"),
    "exists": ("head", "/rel/{fk}"),
    "link": ("put", "/rel/{fk}"),
    "unlink": ("delete", "/rel/{fk}"),
}


class AccessorSpec:
    def __init__(self, definition, getter, setter=None, operations=None):
        self.definition = definition
        self.name = definition.name
        self.kind = definition.kind
        self.getter = getter
        self.setter = setter
        self.operations = dict(operations or {})

    def __repr__(self):
        return f"<AccessorSpec {self.name} ops=[{', '.join(sorted(self.operations))}]>"


class RelationAccessor:
    __slots__ = ("_spec", "_instance")

    def __init__(self, spec, instance):
        self._spec = spec
        self._instance = instance

    def __call__(self, *args):
        if not args:
            return self._spec.getter(self._instance)
        if len(args) == 1 and self._spec.setter is not None:
            return self._spec.setter(self._instance, args[0])
        raise TypeError(f"{self._spec.name}() accepts no arguments")

    def __getattr__(self, name):
        operation = self._spec.operations.get(name)
        if operation is None:
            raise AttributeError(f"Relation '{self._spec.name}' has no operation '{name}'")
        return functools.partial(operation, self._instance)

    def __dir__(self):
        return sorted(self._spec.operations)

    def __repr__(self):
        return f"<RelationAccessor {self._spec.name} of {self._instance!r}>"

    @property
    def definition(self):
        return self._spec.definition


def bound(relation_class, definition, method_name):
    """Operation ``(instance, *args)`` that runs ``method_name`` on a fresh runtime object."""

    def operation(instance, *args, **kwargs):
        return getattr(relation_class(definition, instance), method_name)(*args, **kwargs)

    operation.__name__ = method_name
    return operation


def install_accessor(model, spec):
    mapper = model._mapper
    name = spec.name
    if name in mapper.properties:
        raise RelationConfigError(
            f"Relation {mapper.model_name}.{name} conflicts with a property of the same name"
        )
    mapper.accessors[name] = spec

    def getter(self):
        return RelationAccessor(model._mapper.accessors[name], self)

    def setter(self, value):
        current = model._mapper.accessors[name]
        if current.setter is None:
            raise AttributeError(f"Relation '{name}' cannot be assigned")
        current.setter(self, value)

    setattr(model, name, property(getter, setter, doc=f"{spec.kind.value} relation {name}"))
    return spec


def install_alias(model, relation_name, verb, operation):
    alias = f"__{verb}__{relation_name}"

    async def method(self, *args, **kwargs):
        result = getattr(getattr(self, relation_name), operation)(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    method.__name__ = alias
    setattr(model, alias, method)
    http_verb, suffix = ALIAS_ROUTES.get(verb, ("post", f"/{verb}"))
    model._mapper.shared_methods[alias] = SharedMethod(
        alias, relation_name, operation, http_verb, f"/{{id}}/{relation_name}{suffix}"
    )
    return alias


def add_relation_method(definition, name, fn):
    """Expose ``fn(relation, *args)`` through the relation's accessor."""
    from minirel.relations.runtime import relation_class_for

    model = definition.model_from
    spec = model._mapper.accessors.get(definition.name)
    if spec is None:
        raise RelationConfigError(f"Relation {definition.name} has no accessor on {model.model_name}")
    relation_class = relation_class_for(definition)

    def operation(instance, *args, **kwargs):
        return fn(relation_class(definition, instance), *args, **kwargs)

    operation.__name__ = name
    spec.operations[name] = operation
    if getattr(fn, "shared", False):
        install_alias(model, definition.name, name, name)
