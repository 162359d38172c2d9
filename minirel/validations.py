class Errors:
    """Per-field validation messages collected by ``ModelBase.is_valid()``."""

    def __init__(self):
        self._messages = {}
        self._codes = {}

    def add(self, field, message, code="invalid"):
        self._messages.setdefault(field, []).append(message)
        self._codes.setdefault(field, []).append(code)

    def clear(self):
        self._messages.clear()
        self._codes.clear()

    def __bool__(self):
        return bool(self._messages)

    def __contains__(self, field):
        return field in self._messages

    def __getitem__(self, field):
        return self._messages.get(field, [])

    def __iter__(self):
        return iter(self._messages)

    def to_dict(self):
        return {field: list(messages) for field, messages in self._messages.items()}

    def codes(self):
        return {field: list(codes) for field, codes in self._codes.items()}

    def __repr__(self):
        return f"<Errors {self.to_dict()}>"


def validate_presence(record, mapper):
    for name, column in mapper.properties.items():
        if column.nullable or (column.pk and column.generated):
            continue
        value = record._data.get(name)
        if value is None or value == "":
            record.errors.add(name, "can't be blank", "presence")
