import logging

from minirel.connector import MemoryConnector
from minirel.exceptions import RelationConfigError
from minirel.orm_types import Column, ForeignKey


class DataSource:
    """Owns a set of models, their type descriptors and the storage connector."""

    logger = logging.getLogger("minirel")
    if not logger.handlers:
        logging.basicConfig(level=logging.INFO)

    def __init__(self, connector=None, settings=None):
        self.connector = connector or MemoryConnector()
        self.settings = dict(settings or {})
        self.models = {}
        if "log_level" in self.settings:
            self.logger.setLevel(self.settings["log_level"])

    def __repr__(self):
        return f"<DataSource {type(self.connector).__name__} models=[{', '.join(self.models)}]>"

    def register(self, model):
        name = model._mapper.model_name
        if name in self.models and self.models[name] is not model:
            self.logger.debug(f"Model {name} replaced in {self!r}")
        self.models[name] = model
        self._resolve_pending()

    def _resolve_pending(self):
        for model in list(self.models.values()):
            mapper = model._mapper
            if mapper.declared_relationships or mapper._pending_relationships:
                mapper.resolve_relationships()

    def finalize(self):
        """Resolve deferred relationships; raise for any target still unknown."""
        self._resolve_pending()
        for model in self.models.values():
            pending = model._mapper.pending()
            if pending:
                raise RelationConfigError(
                    f"Cannot resolve relationship target(s) after all models loaded: "
                    f"{model._mapper.model_name} pending: {pending}"
                )

    def define(self, name, properties=None, **meta):
        """Create and register a model class at runtime."""
        from minirel.base import ModelBase

        meta_cls = type("Meta", (), {"data_source": self, "model_name": name, **meta})
        namespace = {"Meta": meta_cls, **(properties or {})}
        self.logger.debug(f"Defining model {name}")
        return type(name, (ModelBase,), namespace)

    def get_model(self, name):
        model = self.lookup_model(name)
        if model is None:
            raise RelationConfigError(f"Model {name} is not defined in {self!r}")
        return model

    def lookup_model(self, name):
        """Case-insensitive lookup that ignores underscores."""
        if not name:
            return None
        if name in self.models:
            return self.models[name]
        wanted = name.replace("_", "").lower()
        for model_name, model in self.models.items():
            if model_name.replace("_", "").lower() == wanted:
                return model
        return None

    def id_name(self, model_name):
        model = self.lookup_model(model_name)
        if model is None:
            return None
        return model._mapper.id_name()

    def define_property(self, model_name, prop, column):
        model = self.get_model(model_name)
        if not isinstance(column, Column):
            column = Column(column)
        model._mapper.add_property(prop, column)

    def define_foreign_key(self, model_name, fk, target_model_name, pk_name=None):
        model = self.get_model(model_name)
        mapper = model._mapper
        if fk in mapper.properties:
            existing = mapper.properties[fk]
            if not isinstance(existing, ForeignKey):
                self.logger.debug(f"{mapper.model_name}.{fk} already defined, not redefined as foreign key")
            return
        target = self.lookup_model(target_model_name)
        dtype = int
        if target is not None:
            target_mapper = target._mapper
            pk_name = pk_name or target_mapper.id_name()
            column = target_mapper.properties.get(pk_name)
            if column is not None:
                dtype = column.dtype
        mapper.add_property(fk, ForeignKey(target_model_name, pk_name or "id", dtype=dtype))
