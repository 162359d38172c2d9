from dataclasses import dataclass, field, fields
from enum import Enum

from minirel.exceptions import RelationConfigError
from minirel.filters import as_where
from minirel.utils import get_value, merge_query, set_value


class RelationKind(Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    HAS_MANY_THROUGH = "has_many_through"
    HAS_AND_BELONGS_TO_MANY = "has_and_belongs_to_many"
    EMBEDS_ONE = "embeds_one"
    EMBEDS_MANY = "embeds_many"
    REFERENCES_MANY = "references_many"

    @classmethod
    def normalize(cls, value):
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("-", "_")
        key = _ALIASES.get(key, key)
        for kind in cls:
            if kind.value == key or kind.value.replace("_", "") == key.replace("_", ""):
                return kind
        raise RelationConfigError(f"Invalid relation type: {value}")

    @property
    def multiple(self):
        return self in MULTIPLE_KINDS


_ALIASES = {
    "many_to_one": "belongs_to",
    "one_to_one": "has_one",
    "one_to_many": "has_many",
    "many_to_many": "has_and_belongs_to_many",
    "habtm": "has_and_belongs_to_many",
}

MULTIPLE_KINDS = frozenset({
    RelationKind.HAS_MANY,
    RelationKind.HAS_MANY_THROUGH,
    RelationKind.HAS_AND_BELONGS_TO_MANY,
    RelationKind.EMBEDS_MANY,
    RelationKind.REFERENCES_MANY,
})


@dataclass(frozen=True)
class PolymorphicConfig:
    selector: str
    foreign_key: str
    discriminator: str
    invert: bool = False
    id_type: type = None

    def to_dict(self):
        return {
            "selector": self.selector,
            "foreign_key": self.foreign_key,
            "discriminator": self.discriminator,
            "invert": self.invert,
        }


@dataclass(frozen=True)
class RelationOptions:
    persistent: bool = False
    force_id: bool = False
    prepend: bool = False
    invert_properties: bool = False
    embeds_properties: bool = False
    disable_include: bool = False
    belongs_to: str = None
    validate: bool = True
    omit_default_embedded_item: bool = False
    property: dict = None

    @classmethod
    def from_value(cls, value):
        if isinstance(value, cls):
            return value
        value = dict(value or {})
        known = {f.name for f in fields(cls)}
        unknown = set(value) - known
        if unknown:
            raise RelationConfigError(f"Unknown relation option(s): {', '.join(sorted(unknown))}")
        return cls(**value)


@dataclass(frozen=True, eq=False)
class RelationDescriptor:
    name: str
    kind: RelationKind
    model_from: type
    key_from: str = None
    model_to: type = None
    key_to: str = None
    model_through: type = None
    key_through: str = None
    multiple: bool = False
    properties: object = None
    scope: object = None
    options: RelationOptions = field(default_factory=RelationOptions)
    polymorphic: PolymorphicConfig = None
    embed: bool = False
    methods: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise RelationConfigError("Relation name is required")
        if not isinstance(self.kind, RelationKind):
            object.__setattr__(self, "kind", RelationKind.normalize(self.kind))
        if self.model_from is None:
            raise RelationConfigError(f"Source model is required for relation {self.name}")
        if self.model_to is None and self.polymorphic is None:
            raise RelationConfigError(f"Target model is required for relation {self.name}")
        if bool(self.multiple) != self.kind.multiple:
            raise RelationConfigError(
                f"Relation {self.name} of type {self.kind.value} cannot have multiple={self.multiple}"
            )

    def __repr__(self):
        return (f"<RelationDescriptor {self.model_from.__name__}.{self.name} "
                f"{self.kind.value} -> {self._model_to_name()}>")

    def _model_to_name(self):
        return self.model_to.model_name if self.model_to is not None else "<polymorphic>"

    def to_dict(self):
        data = {
            "name": self.name,
            "type": self.kind.value,
            "model_from": self.model_from.model_name,
            "key_from": self.key_from,
            "model_to": self._model_to_name(),
            "key_to": self.key_to,
            "multiple": self.multiple,
        }
        if self.model_through is not None:
            data["model_through"] = self.model_through.model_name
            data["key_through"] = self.key_through
        if self.polymorphic is not None:
            data["polymorphic"] = self.polymorphic.to_dict()
        return data

    def define_method(self, name, fn):
        """Attach ``fn(relation, *args)`` as an extra operation of this relation."""
        from minirel.relations.accessor import add_relation_method

        self.methods[name] = fn
        add_relation_method(self, name, fn)
        return fn

    def _discriminator_value(self):
        model = self.model_to if self.polymorphic.invert else self.model_from
        return model.model_name

    def apply_scope(self, instance, filter):
        """Add the discriminator condition and the custom scope to ``filter``."""
        filter["where"] = as_where(filter.get("where"))
        if self.polymorphic is not None and self.kind != RelationKind.BELONGS_TO:
            filter["where"][self.polymorphic.discriminator] = self._discriminator_value()
        scope = self.scope(instance, filter) if callable(self.scope) else self.scope
        if isinstance(scope, dict):
            merge_query(filter, scope)
        return filter

    def apply_properties(self, instance, obj):
        """Copy the configured properties from the source record onto ``obj``."""
        source, target = instance, obj
        if self.options.invert_properties:
            source, target = obj, instance
        if self.options.embeds_properties:
            embedded = {self.key_to: get_value(source, self.key_to)}
            set_value(target, self.name, embedded)
            target = embedded

        if callable(self.properties):
            for key, value in (self.properties(source, target) or {}).items():
                set_value(target, key, value)
        elif isinstance(self.properties, (list, tuple)):
            for key in self.properties:
                set_value(target, key, get_value(source, key))
        elif isinstance(self.properties, dict):
            for source_key, target_key in self.properties.items():
                set_value(target, target_key, get_value(source, source_key))

        if self.polymorphic is not None and self.kind != RelationKind.BELONGS_TO:
            set_value(obj, self.polymorphic.discriminator, self._discriminator_value())
        return obj
