import logging

from minirel.utils import id_equals

logger = logging.getLogger("minirel.relations")


class Relation:
    """A relation bound to one record. Built per operation and then dropped."""

    def __init__(self, definition, model_instance):
        self.definition = definition
        self.model_instance = model_instance

    def __repr__(self):
        return f"<{type(self).__name__} {self.definition.name} of {self.model_instance!r}>"

    @property
    def model_to(self):
        return self.definition.model_to

    def get_cache(self):
        return self.model_instance._relation_cache.get(self.definition.name)

    def reset_cache(self, value=None):
        self.model_instance._relation_cache.set(self.definition.name, value)

    def call_scope_method(self, name, *args, **kwargs):
        accessor = getattr(self.model_instance, self.definition.name)
        return getattr(accessor, name)(*args, **kwargs)


class CachedListMixin:
    """List-cache maintenance shared by the has-many variants."""

    def add_to_cache(self, inst):
        if inst is None:
            return
        cache = self.get_cache()
        if cache is None:
            return
        pk = self.definition.model_to._mapper.pk
        for index, item in enumerate(cache):
            if id_equals(item.get_id(), getattr(inst, pk)):
                cache[index] = inst
                return
        cache.append(inst)

    def remove_from_cache(self, id_value):
        cache = self.get_cache()
        if cache is None:
            return None
        for index, item in enumerate(cache):
            if id_equals(item.get_id(), id_value):
                return cache.pop(index)
        return None
