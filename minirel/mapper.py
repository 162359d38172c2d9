from collections import defaultdict

from minirel.exceptions import RelationConfigError
from minirel.orm_types import Column, Relationship
from minirel.relations.definition import RelationKind
from minirel.utils import pluralize, singularize


class SharedMethod:
    """Remote-invocable alias of a relation operation, e.g. ``__get__books``."""

    def __init__(self, alias, relation, operation, verb, path):
        self.alias = alias
        self.relation = relation
        self.operation = operation
        self.verb = verb
        self.path = path

    def __repr__(self):
        return f"<SharedMethod {self.alias} {self.verb.upper()} {self.path}>"


class Mapper:
    def __init__(self, cls, columns, relationships, meta_attrs, data_source):
        self.cls = cls
        self.meta = meta_attrs or {}
        self.data_source = data_source

        self.model_name = self.meta.get("model_name", cls.__name__)
        self.plural_model_name = self.meta.get("plural", pluralize(self.model_name))

        self.pk = None
        self.properties = dict(columns)
        self.declared_relationships = dict(relationships)
        self.relations = {}
        self.accessors = {}
        self.shared_methods = {}
        self.observers = defaultdict(list)
        self.validators = []
        self._pending_relationships = []

        self._resolve_pk()

    def __repr__(self):
        props = ", ".join(self.properties.keys())
        rels = ", ".join(self.relations.keys())
        return f"<Mapper model={self.model_name} properties=[{props}] relations=[{rels}] pk={self.pk}>"

    def _resolve_pk(self):
        pk_cols = [name for name, col in self.properties.items() if col.pk]
        if pk_cols:
            self.pk = pk_cols[0]
            return
        id_type = (self.data_source.settings.get("default_id_type", int)
                   if self.data_source else int)
        self.properties = {"id": Column(id_type, pk=True, generated=True), **self.properties}
        self.pk = "id"

    def id_name(self):
        return self.pk

    def id_type(self):
        return self.properties[self.pk].dtype

    def coerce_id(self, value):
        if value is None:
            return None
        dtype = self.id_type()
        if dtype is int and isinstance(value, str) and value.lstrip("-").isdigit():
            return int(value)
        return value

    def add_property(self, name, column):
        self.properties[name] = column
        if column.pk:
            self.pk = name

    def add_relation(self, definition):
        if definition.name in self.relations:
            self.data_source.logger.debug(
                f"Relation {self.model_name}.{definition.name} redefined as {definition.kind.value}"
            )
        self.relations[definition.name] = definition

    def add_validator(self, name, fn, code="invalid"):
        self.validators.append((name, fn, code))

    def resolve_relationships(self):
        """Apply declared relationships whose target is registered. Defer the rest."""
        pending = list(self.declared_relationships.items()) + self._pending_relationships
        self.declared_relationships = {}
        self._pending_relationships = []
        for name, rel in pending:
            target_cls = self._resolve_target_class(rel.target)
            if target_cls is None:
                self._pending_relationships.append((name, rel))
                continue
            self._apply_relationship(name, rel, target_cls)

    def _resolve_target_class(self, target):
        if isinstance(target, type) and hasattr(target, "_mapper"):
            return target
        if isinstance(target, str) and self.data_source is not None:
            model = self.data_source.lookup_model(target)
            if model is None:
                model = self.data_source.lookup_model(singularize(target))
            return model
        return None

    def _apply_relationship(self, name, rel, target_cls):
        from minirel.relations import factories

        kind = RelationKind.normalize(rel.r_type)
        params = dict(rel.params)
        params.setdefault("as_", name)
        factory = factories.FACTORIES[kind]
        rel.definition = factory(self.cls, target_cls, **params)

        if rel.backref:
            if kind == RelationKind.BELONGS_TO:
                factories.has_many(target_cls, self.cls, as_=rel.backref,
                                   foreign_key=rel.definition.key_from)
            elif kind == RelationKind.HAS_AND_BELONGS_TO_MANY:
                factories.has_and_belongs_to_many(target_cls, self.cls, as_=rel.backref,
                                                  through=rel.definition.model_through)
            else:
                raise RelationConfigError(
                    f"backref is only supported for belongs_to and has_and_belongs_to_many "
                    f"relations ({self.model_name}.{name})"
                )

    def pending(self):
        return [(n, getattr(r.target, "__name__", r.target)) for n, r in self._pending_relationships]


def collect_declarations(cls):
    """Pop columns and relationships declared on ``cls`` and its model bases."""
    columns = {}
    relationships = {}
    for klass in reversed(cls.__mro__):
        inherited = klass.__dict__.get("_declared_columns")
        if inherited and klass is not cls:
            columns.update(inherited)
    for name, value in list(cls.__dict__.items()):
        if isinstance(value, Column):
            columns[name] = value
            delattr(cls, name)
        elif isinstance(value, Relationship):
            relationships[name] = value
            delattr(cls, name)
    cls._declared_columns = dict(columns)
    return columns, relationships
