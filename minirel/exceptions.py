"""Exceptions raised by minirel.

Every runtime error carries an HTTP-style ``status_code`` so the remoting
layer can translate it without a lookup table.
"""


class RelationError(Exception):
    """Base exception for all minirel errors."""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class RelationConfigError(RelationError, ValueError):
    """Raised while wiring models and relations together."""

    pass


class NotFoundError(RelationError):
    status_code = 404


class KeyMismatchError(RelationError):
    """The record found does not point back at the owning instance."""

    status_code = 400


class ForeignKeyOverrideError(RelationError):
    status_code = 400

    def __init__(self, fk, old, new):
        super().__init__(
            f"Cannot override foreign key {fk} from {old} to {new}",
            details={"key": fk, "from": old, "to": new},
        )


class EmptyRelationError(RelationError):
    status_code = 404


class CardinalityError(RelationError):
    status_code = 409


class PolymorphicError(RelationError):
    status_code = 400


class ValidationError(RelationError):
    """Raised when a record fails validation.

    ``errors`` maps each offending field to its list of messages.
    """

    status_code = 422

    def __init__(self, record):
        self.record = record
        self.errors = record.errors.to_dict()
        self.codes = record.errors.codes()
        model = type(record).model_name
        parts = "; ".join(
            f"`{field}` {', '.join(messages)}" for field, messages in self.errors.items()
        )
        super().__init__(
            f"The `{model}` instance is not valid. Details: {parts}.",
            details={"model": model, "errors": self.errors, "codes": self.codes},
        )
