class RelationCache:
    """Resolved relation values of a single record, keyed by relation name.

    A missing key means "not resolved yet"; a stored value is either a record
    or a list of records.
    """

    def __init__(self):
        self._map = {}

    def __contains__(self, name):
        return name in self._map

    def get(self, name, default=None):
        return self._map.get(name, default)

    def set(self, name, value):
        if value is None:
            self._map.pop(name, None)
        else:
            self._map[name] = value

    def remove(self, name):
        self._map.pop(name, None)

    def clear(self):
        self._map.clear()

    def names(self):
        return list(self._map)
