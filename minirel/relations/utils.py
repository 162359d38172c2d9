from minirel.exceptions import ForeignKeyOverrideError, RelationConfigError
from minirel.relations.definition import RelationKind
from minirel.utils import get_value, id_equals


def prevent_fk_override(inst, data, fk_prop):
    """Raise if ``data`` would move ``inst`` to a different ``fk_prop`` value."""
    if not fk_prop or not data or fk_prop not in data:
        return
    old = get_value(inst, fk_prop)
    new = data[fk_prop]
    if not id_equals(old, new):
        raise ForeignKeyOverrideError(fk_prop, old, new)


def find_belongs_to(model_from, model_to, key_to=None):
    """Foreign keys of ``model_from``'s belongs-to relations pointing at ``model_to``."""
    keys = []
    for relation in model_from._mapper.relations.values():
        if relation.kind != RelationKind.BELONGS_TO or relation.model_to is not model_to:
            continue
        if key_to is None or relation.key_to == key_to:
            keys.append(relation.key_from)
    return keys


def through_keys(definition):
    """The two foreign keys of the through model, source side first."""
    model_through = definition.model_through
    pk2 = definition.model_to._mapper.pk
    if definition.polymorphic is not None:
        fk1 = definition.key_to
        if definition.polymorphic.invert:
            fk2 = definition.polymorphic.foreign_key
        else:
            fk2 = definition.key_through
        return fk1, fk2

    if definition.model_from is definition.model_to:
        keys = find_belongs_to(model_through, definition.model_to, pk2)
        keys = sorted(keys, key=lambda k: 0 if k == definition.key_to else 1)
        if len(keys) < 2:
            raise RelationConfigError(
                f"{model_through.model_name} needs two belongs_to relations to "
                f"{definition.model_to.model_name} for relation {definition.name}"
            )
        return keys[0], keys[1]

    from_keys = find_belongs_to(model_through, definition.model_from, definition.key_from)
    to_keys = find_belongs_to(model_through, definition.model_to, pk2)
    if not from_keys or not to_keys:
        raise RelationConfigError(
            f"{model_through.model_name} has no belongs_to relation to "
            f"{definition.model_from.model_name} and {definition.model_to.model_name} "
            f"for relation {definition.name}"
        )
    return from_keys[0], to_keys[0]


def build_with_fk(definition, instance, data=None):
    """New target record joined to ``instance`` through ``key_to``."""
    data = dict(data or {})
    data[definition.key_to] = getattr(instance, definition.key_from)
    definition.apply_properties(instance, data)
    return definition.model_to(data)
