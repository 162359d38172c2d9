class Column:
    def __init__(self, dtype, pk=False, nullable=True, unique=False, default=None, generated=False, index=False):
        self.dtype = dtype
        self.pk = pk
        self.nullable = nullable
        self.unique = unique
        self.default = default
        self.generated = generated
        self.index = index

    def __repr__(self):
        dtype = getattr(self.dtype, "__name__", self.dtype)
        flags = [f for f in ("pk", "generated", "index") if getattr(self, f)]
        return f"<{type(self).__name__} {dtype}{' ' + ','.join(flags) if flags else ''}>"

    def get_default(self):
        if callable(self.default):
            return self.default()
        return self.default

    def coerce(self, value):
        return value

    def serialize(self, value):
        return value


class Text(Column):
    def __init__(self, pk=False, nullable=True, unique=False, default=None, generated=False, index=False):
        super().__init__(str, pk, nullable, unique, default, generated, index)


class Number(Column):
    def __init__(self, pk=False, nullable=True, unique=False, default=None, generated=False, index=False):
        super().__init__(int, pk, nullable, unique, default, generated, index)


class Boolean(Column):
    def __init__(self, nullable=True, default=None):
        super().__init__(bool, nullable=nullable, default=default)


class Json(Column):
    def __init__(self, nullable=True, default=None):
        super().__init__(dict, nullable=nullable, default=default)


class ForeignKey(Column):
    def __init__(self, target_model, target_column, dtype=int, nullable=True, index=True):
        super().__init__(dtype, nullable=nullable, index=index)
        self.target_model = target_model
        self.target_column = target_column

    def __repr__(self):
        return f"<ForeignKey {self.target_model}.{self.target_column}>"


class ListOf(Column):
    """An ordered list of scalar values, e.g. referenced ids."""

    def __init__(self, item_type=int, nullable=True, default=list):
        super().__init__(list, nullable=nullable, default=default)
        self.item_type = item_type

    def coerce(self, value):
        if value is None:
            return None
        return list(value)


class Embedded(Column):
    """A single record of ``model`` stored inside the owning record."""

    def __init__(self, model, nullable=True, default=None, **extra):
        super().__init__(model, nullable=nullable, default=default)
        self.model = model
        self.extra = extra

    def coerce(self, value):
        if isinstance(value, dict):
            return self.model._from_row(value)
        return value

    def serialize(self, value):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return value


class EmbeddedList(Column):
    """An ordered list of ``model`` records stored inside the owning record."""

    def __init__(self, model, nullable=True, default=list, **extra):
        super().__init__(list, nullable=nullable, default=default)
        self.model = model
        self.extra = extra

    def coerce(self, value):
        if value is None:
            return None
        return [self.model._from_row(item) if isinstance(item, dict) else item for item in value]

    def serialize(self, value):
        if value is None:
            return None
        return [item.to_dict() if hasattr(item, "to_dict") else item for item in value]


class Relationship:
    """Relation declared in a model body, resolved once its target is registered.

    ``r_type`` accepts the relation kinds (``belongs_to``, ``has_many`` ...)
    or the cardinality names ``many-to-one``, ``one-to-many``, ``one-to-one``
    and ``many-to-many``.
    """

    def __init__(self, target, r_type="many-to-one", backref=None, **params):
        self.target = target
        self.r_type = r_type
        self.backref = backref
        self.params = params
        self.definition = None

    def __repr__(self):
        target = getattr(self.target, "__name__", self.target)
        parts = [f"{self.r_type}", f"target={target}"]
        if self.backref:
            parts.append(f"backref={self.backref}")
        if self.definition is not None:
            parts.append(f"name={self.definition.name}")
        return f"<Relationship {', '.join(parts)}>"
