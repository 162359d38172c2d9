from minirel.relations.belongs_to import BelongsTo
from minirel.relations.definition import RelationKind
from minirel.relations.embeds import EmbedsMany, EmbedsOne
from minirel.relations.has_many import HasMany, HasManyThrough
from minirel.relations.has_one import HasOne
from minirel.relations.references_many import ReferencesMany

RELATION_CLASSES = {
    RelationKind.BELONGS_TO: BelongsTo,
    RelationKind.HAS_ONE: HasOne,
    RelationKind.HAS_MANY: HasMany,
    RelationKind.HAS_MANY_THROUGH: HasManyThrough,
    RelationKind.HAS_AND_BELONGS_TO_MANY: HasManyThrough,
    RelationKind.EMBEDS_ONE: EmbedsOne,
    RelationKind.EMBEDS_MANY: EmbedsMany,
    RelationKind.REFERENCES_MANY: ReferencesMany,
}


def relation_class_for(definition):
    return RELATION_CLASSES[definition.kind]
