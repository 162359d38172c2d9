"""Relation factories.

Each factory derives the default names and keys of one relation kind,
defines the fields the relation needs, builds the ``RelationDescriptor``,
registers it in the source mapper and installs the accessor together with
its ``__<verb>__<relation>`` aliases::

    Book.belongs_to(Author)
    Author.has_many(Book)
    Post.has_and_belongs_to_many(Tag)
    Customer.embeds_many(Email, as_="emails")
"""
import dataclasses

from minirel.exceptions import RelationConfigError
from minirel.orm_types import Column, Embedded, EmbeddedList, ListOf, Text
from minirel.relations.accessor import AccessorSpec, add_relation_method, bound, install_accessor, install_alias
from minirel.relations.belongs_to import BelongsTo
from minirel.relations.definition import PolymorphicConfig, RelationDescriptor, RelationKind, RelationOptions
from minirel.relations.embeds import EmbedsMany, EmbedsOne, embeds_many_validators, embeds_one_validator
from minirel.relations.has_many import HasMany, HasManyThrough
from minirel.relations.has_one import HasOne
from minirel.relations.references_many import ReferencesMany, duplicate_ids_validator
from minirel.relations.relation import logger
from minirel.relations.scope import define_scope
from minirel.utils import singularize, underscore

SINGLE_OPERATIONS = ("load", "get", "build", "create", "update", "destroy")
SINGLE_ALIASES = {"get": "load", "create": "create", "update": "update", "destroy": "destroy"}
BY_ID_NAMES = ("find_by_id", "destroy_by_id", "update_by_id")
BY_ID_ALIASES = {
    "find_by_id": "find_by_id",
    "destroy_by_id": "destroy_by_id",
    "update_by_id": "update_by_id",
}


def normalize_relation_as(params, model_to_ref):
    if isinstance(model_to_ref, str) and not params.get("as_"):
        params["as_"] = model_to_ref
    return params


def lookup_model_to(model_from, model_to_ref, params, singular=False):
    """Resolve the target class from a class or a model name."""
    if isinstance(model_to_ref, type):
        return model_to_ref
    model = params.get("model")
    if isinstance(model, type):
        return model

    data_source = model_from._data_source
    for candidate in (model or model_to_ref, params.get("as_") or model_to_ref):
        if not candidate:
            continue
        name = str(candidate)
        if singular:
            name = singularize(name)
        model_to = data_source.lookup_model(name)
        if model_to is not None:
            return model_to
    raise RelationConfigError(
        f"Could not find relation {params.get('as_') or model_to_ref} for model {model_from.model_name}"
    )


def normalize_polymorphic(polymorphic, relation_name):
    """``True``, a selector name or a config dict -> ``PolymorphicConfig``."""
    if isinstance(polymorphic, PolymorphicConfig):
        return polymorphic
    config = {}
    if isinstance(polymorphic, str):
        selector = polymorphic
    elif isinstance(polymorphic, dict):
        config = polymorphic
        selector = config.get("selector") or config.get("as")
    else:
        selector = relation_name
    selector = selector or relation_name or "reference"
    return PolymorphicConfig(
        selector=selector,
        foreign_key=config.get("foreign_key") or f"{selector}_id",
        discriminator=config.get("discriminator") or f"{selector}_type",
        invert=bool(config.get("invert", False)),
        id_type=config.get("id_type"),
    )


def _primary_key(model, params):
    return params.get("primary_key") or model._data_source.id_name(model.model_name) or "id"


def _descriptor(model_from, name, kind, params, **fields):
    return RelationDescriptor(
        name=name,
        kind=kind,
        model_from=model_from,
        multiple=kind.multiple,
        properties=params.get("properties"),
        scope=params.get("scope"),
        options=RelationOptions.from_value(params.get("options")),
        methods=dict(params.get("methods") or {}),
        **fields,
    )


def _operations(relation_class, definition, names):
    """``names`` holds operation names or ``(operation, method)`` pairs."""
    operations = {}
    for entry in names:
        name, method = entry if isinstance(entry, tuple) else (entry, entry)
        operations[name] = bound(relation_class, definition, method)
    return operations


def _install_single(definition, relation_class, operations, aliases):
    model_from = definition.model_from
    spec = AccessorSpec(
        definition,
        getter=bound(relation_class, definition, "related"),
        setter=bound(relation_class, definition, "set"),
        operations=operations,
    )
    install_accessor(model_from, spec)
    for verb, operation in aliases.items():
        install_alias(model_from, definition.name, verb, operation)
    for name, fn in definition.methods.items():
        add_relation_method(definition, name, fn)
    return spec


def _extend_scope_methods(definition, relation_class, scope_methods):
    """Add caller-supplied operations to a multiple relation.

    A dict maps names to ``fn(relation, *args)``. A callable receives
    ``(definition, operations, relation_class)``, may add ``fn(instance, *args)``
    entries to ``operations`` and returns the names it added.
    """
    if not scope_methods:
        return []
    if isinstance(scope_methods, dict):
        for name, fn in scope_methods.items():
            definition.define_method(name, fn)
        return list(scope_methods)

    spec = definition.model_from._mapper.accessors[definition.name]
    names = list(scope_methods(definition, spec.operations, relation_class) or [])
    for name in names:
        if getattr(spec.operations.get(name), "shared", False):
            install_alias(definition.model_from, definition.name, name, name)
    return names


def _register(definition):
    definition.model_from._mapper.add_relation(definition)
    logger.debug(f"Defined {definition!r}")
    return definition


def belongs_to(model_from, model_to_ref, **params):
    data_source = model_from._data_source
    polymorphic = None

    if params.get("polymorphic"):
        name = params.get("as_") or (model_to_ref if isinstance(model_to_ref, str) else None)
        polymorphic = normalize_polymorphic(params["polymorphic"], name)
        model_to = None
        pk = params.get("primary_key") or params.get("id_name") or "id"
        fk = polymorphic.foreign_key
        if polymorphic.id_type is not None:
            data_source.define_property(model_from.model_name, fk, Column(polymorphic.id_type, index=True))
        else:
            data_source.define_foreign_key(model_from.model_name, fk, model_from.model_name, pk)
        data_source.define_property(model_from.model_name, polymorphic.discriminator, Text(index=True))
    else:
        normalize_relation_as(params, model_to_ref)
        model_to = lookup_model_to(model_from, model_to_ref, params)
        pk = params.get("primary_key") or data_source.id_name(model_to.model_name) or "id"
        name = params.get("as_") or underscore(model_to.model_name)
        fk = params.get("foreign_key") or f"{name}_id"
        data_source.define_foreign_key(model_from.model_name, fk, model_to.model_name, pk)

    definition = _descriptor(
        model_from, name, RelationKind.BELONGS_TO, params,
        key_from=fk, key_to=pk, model_to=model_to, polymorphic=polymorphic,
    )

    names = ("load", "get", "update", "destroy") if polymorphic else SINGLE_OPERATIONS
    aliases = dict(SINGLE_ALIASES)
    if polymorphic:
        aliases.pop("create")
    _install_single(definition, BelongsTo, _operations(BelongsTo, definition, names), aliases)
    return _register(definition)


def has_one(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params)
    data_source = model_from._data_source

    pk = _primary_key(model_from, params)
    name = params.get("as_") or underscore(model_to.model_name)
    fk = params.get("foreign_key") or f"{underscore(model_from.model_name)}_id"

    polymorphic = None
    if params.get("polymorphic"):
        polymorphic = normalize_polymorphic(params["polymorphic"], name)
        fk = polymorphic.foreign_key
        data_source.define_property(model_to.model_name, polymorphic.discriminator, Text(index=True))

    definition = _descriptor(
        model_from, name, RelationKind.HAS_ONE, params,
        key_from=pk, key_to=fk, model_to=model_to, polymorphic=polymorphic,
    )
    data_source.define_foreign_key(model_to.model_name, fk, model_from.model_name, pk)

    _install_single(definition, HasOne, _operations(HasOne, definition, SINGLE_OPERATIONS), SINGLE_ALIASES)
    return _register(definition)


def _collect_relation(definition):
    """Name of the belongs-to relation of the through model that yields targets."""
    polymorphic = definition.polymorphic
    if polymorphic is not None and polymorphic.invert:
        return polymorphic.selector
    for relation in definition.model_through._mapper.relations.values():
        if relation.kind != RelationKind.BELONGS_TO:
            continue
        target_matches = (relation.polymorphic is not None and relation.model_to is None) \
            or relation.model_to is definition.model_to
        if target_matches and relation.key_from == definition.key_through:
            return relation.name
    return underscore(definition.model_to.model_name)


def has_many(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params, True)
    data_source = model_from._data_source
    through = params.get("through")
    if isinstance(through, str):
        through = data_source.get_model(through)

    name = params.get("as_") or underscore(model_to.plural_model_name)
    fk = params.get("foreign_key") or f"{underscore(model_from.model_name)}_id"
    key_through = params.get("key_through") or f"{underscore(model_to.model_name)}_id"
    pk = _primary_key(model_from, params)

    polymorphic = None
    if params.get("polymorphic"):
        polymorphic = normalize_polymorphic(params["polymorphic"], name)
        if params.get("invert"):
            polymorphic = dataclasses.replace(polymorphic, invert=True)
            key_through = polymorphic.foreign_key
        else:
            fk = polymorphic.foreign_key
        if through is None:
            data_source.define_property(model_to.model_name, polymorphic.discriminator, Text(index=True))

    kind = params.get("kind")
    if kind is None:
        kind = RelationKind.HAS_MANY_THROUGH if through is not None else RelationKind.HAS_MANY
    definition = _descriptor(
        model_from, name, kind, params,
        key_from=pk, key_to=fk, model_to=model_to,
        model_through=through, key_through=key_through, polymorphic=polymorphic,
    )

    if through is None:
        data_source.define_foreign_key(model_to.model_name, fk, model_from.model_name, pk)
        relation_class = HasMany
        names = BY_ID_NAMES + ("exists", "create", "build", "add", "remove")
    else:
        relation_class = HasManyThrough
        names = BY_ID_NAMES + ("exists", "create", "add", "remove")

    def scope_params(receiver):
        source_id = getattr(receiver, pk)
        if source_id is None:
            return None
        filter = {"where": {fk: source_id}}
        definition.apply_scope(receiver, filter)
        if through is not None:
            filter["collect"] = _collect_relation(definition)
            filter["include"] = filter["collect"]
        return filter

    aliases = {**BY_ID_ALIASES, "exists": "exists", "link": "add", "unlink": "remove"}
    define_scope(
        definition, through or model_to, scope_params,
        methods=_operations(relation_class, definition, names),
        aliases=aliases,
    )
    _extend_scope_methods(definition, relation_class, params.get("scope_methods"))
    return _register(definition)


def _lookup_through(model_from, model_to, params):
    data_source = model_from._data_source
    through = params.get("through")
    if isinstance(through, str):
        return data_source.get_model(through)
    if through is not None:
        return through
    if params.get("polymorphic"):
        raise RelationConfigError("Polymorphic relations need a through model")
    if params.get("through_table"):
        return data_source.define(params["through_table"])
    name1 = model_from.model_name + model_to.model_name
    name2 = model_to.model_name + model_from.model_name
    through = data_source.lookup_model(name1) or data_source.lookup_model(name2)
    if through is None:
        logger.debug(f"Defining through model {name1} for {model_from.model_name}.{params.get('as_')}")
        through = data_source.define(name1)
    return through


def has_and_belongs_to_many(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params, True)
    through = _lookup_through(model_from, model_to, params)
    through_relations = through._mapper.relations

    options = {
        "as_": params.get("as_"),
        "through": through,
        "properties": params.get("properties"),
        "scope": params.get("scope"),
        "options": params.get("options"),
        "scope_methods": params.get("scope_methods"),
        "invert": params.get("invert"),
        "kind": RelationKind.HAS_AND_BELONGS_TO_MANY,
    }
    for key in ("foreign_key", "key_through", "primary_key"):
        if params.get(key):
            options[key] = params[key]

    if params.get("polymorphic"):
        name = params.get("as_") or underscore(model_to.plural_model_name)
        polymorphic = normalize_polymorphic(params["polymorphic"], name)
        options["polymorphic"] = polymorphic
        if polymorphic.selector not in through_relations:
            through.belongs_to(polymorphic.selector, polymorphic=True)
    elif underscore(model_from.model_name) not in through_relations:
        through.belongs_to(model_from)

    if underscore(model_to.model_name) not in through_relations:
        through.belongs_to(model_to)

    return has_many(model_from, model_to, **options)


def _embedded_property(name, default_name, params):
    prop = params.get("property") or default_name
    if prop == name:
        prop = "_" + prop
        logger.debug(f"Embedded property cannot be equal to relation name: using property {prop} for {name}")
    return prop


def _embedded_default(model_to, values):
    def build():
        return model_to(dict(values))
    return build


def embeds_one(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params)
    data_source = model_from._data_source

    name = params.get("as_") or f"{underscore(model_to.model_name)}_item"
    prop = _embedded_property(name, underscore(model_to.model_name), params)
    id_name = data_source.id_name(model_to.model_name) or "id"

    definition = _descriptor(
        model_from, name, RelationKind.EMBEDS_ONE, params,
        key_from=prop, key_to=id_name, model_to=model_to, embed=True,
    )

    default = params.get("default")
    if default is True:
        default = model_to
    elif isinstance(default, dict):
        default = _embedded_default(model_to, default)
    else:
        default = None
    column = Embedded(model_to, default=default, **(definition.options.property or {}))
    data_source.define_property(model_from.model_name, prop, column)

    if definition.options.validate:
        model_from.validate(name, embeds_one_validator(definition))

    operations = _operations(EmbedsOne, definition, SINGLE_OPERATIONS + (("value", "embedded_value"),))
    _install_single(definition, EmbedsOne, operations, SINGLE_ALIASES)
    return _register(definition)


def embeds_many(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params, True)
    data_source = model_from._data_source

    name = params.get("as_") or f"{underscore(model_to.model_name)}_list"
    prop = _embedded_property(name, underscore(model_to.plural_model_name), params)
    id_name = data_source.id_name(model_to.model_name) or "id"

    definition = _descriptor(
        model_from, name, RelationKind.EMBEDS_MANY, params,
        key_from=prop, key_to=id_name, model_to=model_to,
        embed=True,
    )

    options = definition.options
    default = None if options.omit_default_embedded_item else list
    column = EmbeddedList(model_to, default=default, **(options.property or {}))
    data_source.define_property(model_from.model_name, prop, column)

    for validator in embeds_many_validators(definition, unique=not params.get("polymorphic")):
        model_from.validate(name, validator)

    names = BY_ID_NAMES + (
        "get", "exists", "set", "unset", "at", "value", "count",
        "add", "remove", "create", "build", "load",
    )
    if not options.persistent:
        names += ("destroy_all",)
    operations = _operations(EmbedsMany, definition, names)

    define_scope(
        definition, model_to, lambda receiver: {},
        methods=operations,
        getter=lambda instance: EmbedsMany(definition, instance).embedded_list(),
        related=lambda receiver, refresh=False, filter=None: EmbedsMany(definition, receiver).load(refresh, filter),
        aliases={**BY_ID_ALIASES, "link": "add", "unlink": "remove"},
    )
    _extend_scope_methods(definition, EmbedsMany, params.get("scope_methods"))
    return _register(definition)


def references_many(model_from, model_to_ref, **params):
    normalize_relation_as(params, model_to_ref)
    model_to = lookup_model_to(model_from, model_to_ref, params, True)
    data_source = model_from._data_source

    name = params.get("as_") or underscore(model_to.plural_model_name)
    fk = params.get("foreign_key") or f"{underscore(model_to.model_name)}_ids"
    id_name = data_source.id_name(model_to.model_name) or "id"
    id_type = model_to._mapper.properties[id_name].dtype

    definition = _descriptor(
        model_from, name, RelationKind.REFERENCES_MANY, params,
        key_from=fk, key_to=id_name, model_to=model_to,
    )

    data_source.define_property(model_from.model_name, fk, ListOf(id_type))
    model_from.validate(name, duplicate_ids_validator(definition), "uniqueness")

    names = BY_ID_NAMES + ("load", "exists", "at", "count", "create", "build", "add", "remove")
    define_scope(
        definition, model_to, lambda receiver: {},
        methods=_operations(ReferencesMany, definition, names),
        getter=lambda instance: ReferencesMany(definition, instance).related(),
        related=lambda receiver, refresh=False, filter=None: ReferencesMany(definition, receiver).load(refresh, filter),
        aliases={**BY_ID_ALIASES, "exists": "exists", "link": "add", "unlink": "remove"},
    )
    _extend_scope_methods(definition, ReferencesMany, params.get("scope_methods"))
    return _register(definition)


FACTORIES = {
    RelationKind.BELONGS_TO: belongs_to,
    RelationKind.HAS_ONE: has_one,
    RelationKind.HAS_MANY: has_many,
    RelationKind.HAS_MANY_THROUGH: has_many,
    RelationKind.HAS_AND_BELONGS_TO_MANY: has_and_belongs_to_many,
    RelationKind.EMBEDS_ONE: embeds_one,
    RelationKind.EMBEDS_MANY: embeds_many,
    RelationKind.REFERENCES_MANY: references_many,
}
