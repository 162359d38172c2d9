"""
Filter expressions and in-memory ``where`` evaluation for minirel.

A ``where`` clause is a plain dict::

    {"title": "Dune"}                              # equality
    {"pages": {"gt": 100}}                         # operator
    {"or": [{"title": {"like": "D%"}}, {"pages": {"lt": 50}}]}

Expressions built with ``col()`` compile to the same dicts::

    where = (col("pages") > 100) & col("title").like("D%")
    Book.find({"where": where.to_where()})
"""
import re

from minirel.utils import id_equals

NEGATED = {
    "eq": "neq",
    "neq": "eq",
    "gt": "lte",
    "gte": "lt",
    "lt": "gte",
    "lte": "gt",
    "inq": "nin",
    "nin": "inq",
    "like": "nlike",
    "nlike": "like",
    "ilike": "nilike",
    "nilike": "ilike",
}


class FilterExpression:
    """Base class for all filter expressions"""

    def to_where(self):
        raise NotImplementedError

    def __and__(self, other):
        """Combine with AND operator"""
        return CombinedFilter(self, other, logic="AND")

    def __or__(self, other):
        """Combine with OR operator"""
        return CombinedFilter(self, other, logic="OR")

    def __invert__(self):
        """Negate a filter using the ~ operator"""
        return NotFilter(self)


class ColumnFilter:
    """Represents a field that can be used in filter expressions"""

    def __init__(self, column_name):
        self.column_name = column_name

    def __eq__(self, other):
        return ComparisonFilter(self.column_name, "eq", other)

    def __ne__(self, other):
        return ComparisonFilter(self.column_name, "neq", other)

    def __lt__(self, other):
        return ComparisonFilter(self.column_name, "lt", other)

    def __le__(self, other):
        return ComparisonFilter(self.column_name, "lte", other)

    def __gt__(self, other):
        return ComparisonFilter(self.column_name, "gt", other)

    def __ge__(self, other):
        return ComparisonFilter(self.column_name, "gte", other)

    __hash__ = None

    def in_(self, values):
        """IN operator - filter by list of values"""
        return ComparisonFilter(self.column_name, "inq", list(values))

    def not_in(self, values):
        return ComparisonFilter(self.column_name, "nin", list(values))

    def like(self, pattern):
        """LIKE operator, ``%`` and ``_`` wildcards"""
        return ComparisonFilter(self.column_name, "like", pattern)

    def ilike(self, pattern):
        """Case-insensitive LIKE operator"""
        return ComparisonFilter(self.column_name, "ilike", pattern)

    def is_null(self):
        return ComparisonFilter(self.column_name, "exists", False)

    def is_not_null(self):
        return ComparisonFilter(self.column_name, "exists", True)

    def between(self, lower, upper):
        return ComparisonFilter(self.column_name, "between", [lower, upper])


class ComparisonFilter(FilterExpression):
    def __init__(self, column_name, operator, value):
        self.column_name = column_name
        self.operator = operator
        self.value = value

    def to_where(self):
        if self.operator == "eq":
            return {self.column_name: self.value}
        return {self.column_name: {self.operator: self.value}}

    def negate(self):
        if self.operator == "exists":
            return ComparisonFilter(self.column_name, "exists", not self.value)
        if self.operator in NEGATED:
            return ComparisonFilter(self.column_name, NEGATED[self.operator], self.value)
        return None


class NotFilter(FilterExpression):
    """Negates a filter expression (NOT logic)"""

    def __init__(self, filter_expr):
        self.filter_expr = filter_expr

    def to_where(self):
        inner = self.filter_expr
        if isinstance(inner, NotFilter):
            return inner.filter_expr.to_where()
        if isinstance(inner, ComparisonFilter):
            negated = inner.negate()
            if negated is not None:
                return negated.to_where()
        if isinstance(inner, CombinedFilter):
            # De Morgan
            logic = "OR" if inner.logic == "AND" else "AND"
            return CombinedFilter(*(NotFilter(f) for f in inner.filters), logic=logic).to_where()
        raise ValueError(f"Cannot negate filter {inner!r}")


class CombinedFilter(FilterExpression):
    """Combines multiple filters with AND or OR logic"""

    def __init__(self, *filters, logic="AND"):
        self.filters = filters
        self.logic = logic.upper()
        if self.logic not in ("AND", "OR"):
            raise ValueError("Logic must be 'AND' or 'OR'")

    def __and__(self, other):
        if self.logic == "AND":
            if isinstance(other, CombinedFilter) and other.logic == "AND":
                return CombinedFilter(*self.filters, *other.filters, logic="AND")
            return CombinedFilter(*self.filters, other, logic="AND")
        return CombinedFilter(self, other, logic="AND")

    def __or__(self, other):
        if self.logic == "OR":
            if isinstance(other, CombinedFilter) and other.logic == "OR":
                return CombinedFilter(*self.filters, *other.filters, logic="OR")
            return CombinedFilter(*self.filters, other, logic="OR")
        return CombinedFilter(self, other, logic="OR")

    def to_where(self):
        return {self.logic.lower(): [f.to_where() for f in self.filters]}


def col(column_name):
    """Create a ColumnFilter to start building filter expressions"""
    return ColumnFilter(column_name)


def and_(*filters):
    return CombinedFilter(*filters, logic="AND")


def or_(*filters):
    return CombinedFilter(*filters, logic="OR")


def as_where(where):
    """Accept either a dict or a filter expression."""
    if where is None:
        return {}
    if isinstance(where, FilterExpression):
        return where.to_where()
    return where


def get_path(data, path):
    """Resolve ``a.b.c`` against nested dicts and records."""
    value = data
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        elif hasattr(value, "to_dict") and not isinstance(value, type):
            value = getattr(value, part, None)
        else:
            return None
    return value


def _like_to_regex(pattern, flags=0):
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", flags | re.DOTALL)


def _compare(value, op, example):
    if op == "eq":
        return _equals(value, example)
    if op == "neq":
        return not _equals(value, example)
    if op == "inq":
        return any(_equals(value, e) for e in example)
    if op == "nin":
        return not any(_equals(value, e) for e in example)
    if op == "exists":
        return (value is not None) == bool(example)
    if op in ("like", "nlike", "ilike", "nilike"):
        if value is None:
            return op.startswith("n")
        regex = _like_to_regex(example, re.IGNORECASE if "ilike" in op else 0)
        found = regex.match(str(value)) is not None
        return not found if op.startswith("n") else found
    if op == "regexp":
        return value is not None and re.search(example, str(value)) is not None
    if value is None:
        return False
    try:
        if op == "gt":
            return value > example
        if op == "gte":
            return value >= example
        if op == "lt":
            return value < example
        if op == "lte":
            return value <= example
        if op == "between":
            return example[0] <= value <= example[1]
    except TypeError:
        return False
    raise ValueError(f"Unknown filter operator: {op}")


def _equals(value, example):
    if isinstance(value, (list, tuple)) and not isinstance(example, (list, tuple)):
        return any(id_equals(v, example) for v in value)
    return id_equals(value, example)


def _test(value, condition):
    if isinstance(condition, dict):
        return all(_compare(value, op, example) for op, example in condition.items())
    return _equals(value, condition)


def matches(data, where):
    """True when ``data`` (dict or record) satisfies ``where``."""
    where = as_where(where)
    for key, condition in where.items():
        if key == "and":
            if not all(matches(data, sub) for sub in condition):
                return False
        elif key == "or":
            if not any(matches(data, sub) for sub in condition):
                return False
        elif not _test(get_path(data, key), condition):
            return False
    return True


def apply_filter(items, filter=None):
    """Apply ``where``, ``order``, ``skip``/``offset`` and ``limit`` to a list."""
    filter = filter or {}
    where = filter.get("where")
    result = [item for item in items if matches(item, where)] if where else list(items)

    order = filter.get("order")
    if order:
        if isinstance(order, str):
            order = [order]
        for clause in reversed(order):
            field, _, direction = clause.strip().partition(" ")
            reverse = direction.strip().upper() == "DESC"
            result.sort(
                key=lambda item: (get_path(item, field) is None, get_path(item, field)),
                reverse=reverse,
            )

    skip = filter.get("skip") or filter.get("offset") or 0
    if skip:
        result = result[int(skip):]
    limit = filter.get("limit")
    if limit is not None:
        result = result[: int(limit)]
    return result
