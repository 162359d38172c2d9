import copy
import re

_IRREGULAR = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "goose": "geese",
    "foot": "feet",
    "tooth": "teeth",
}
_IRREGULAR_PLURALS = {v: k for k, v in _IRREGULAR.items()}
_UNCOUNTABLE = {"data", "information", "equipment", "news", "series", "species", "sheep", "fish"}


def _match_case(template, word):
    if template[:1].isupper():
        return word[:1].upper() + word[1:]
    return word


def pluralize(word):
    if not word:
        return word
    lower = word.lower()
    if lower in _UNCOUNTABLE:
        return word
    for singular, plural in _IRREGULAR.items():
        if lower.endswith(singular):
            return word[: len(word) - len(singular)] + _match_case(word[len(word) - len(singular):], plural)
    if lower.endswith("y") and lower[-2:] not in ("ay", "ey", "iy", "oy", "uy"):
        return word[:-1] + "ies"
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    return word + "s"


def singularize(word):
    if not word:
        return word
    lower = word.lower()
    if lower in _UNCOUNTABLE:
        return word
    for plural, singular in _IRREGULAR_PLURALS.items():
        if lower.endswith(plural):
            return word[: len(word) - len(plural)] + _match_case(word[len(word) - len(plural):], singular)
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lower.endswith(("sses", "xes", "zes", "ches", "shes")):
        return word[:-2]
    if lower.endswith("s") and not lower.endswith("ss"):
        return word[:-1]
    return word


def underscore(name):
    """``OrderItem`` -> ``order_item``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.replace("-", "_").lower()


def camelize(name, lower_first=False):
    """``order_item`` -> ``OrderItem`` (or ``orderItem``)."""
    parts = [p for p in re.split(r"[_\-\s]+", name) if p]
    if not parts:
        return name
    result = "".join(p[:1].upper() + p[1:] for p in parts)
    if lower_first:
        result = result[:1].lower() + result[1:]
    return result


def id_equals(id1, id2):
    if id1 is None or id2 is None:
        return id1 is id2
    return id1 == id2 or str(id1) == str(id2)


def ids_have_duplicates(ids):
    seen = set()
    for value in ids:
        if value is None:
            continue
        key = str(value)
        if key in seen:
            return True
        seen.add(key)
    return False


def find_index_of(items, value, equals=id_equals):
    for index, item in enumerate(items):
        if equals(item, value):
            return index
    return -1


def get_value(obj, key):
    """Read ``key`` from a plain dict or a record."""
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def set_value(obj, key, value):
    if isinstance(obj, dict):
        obj[key] = value
    else:
        setattr(obj, key, value)


def merge_query(base, update, spec=None):
    """Merge filter ``update`` into ``base`` in place and return ``base``.

    Both ``where`` clauses are kept and and-ed together. ``spec`` switches off
    merging of individual keys (``{"fields": False}`` appends fields instead
    of replacing them, ``{"order": False}`` lets ``update`` override an
    existing order).
    """
    if base is None:
        base = {}
    if not update:
        return base
    spec = spec or {}

    update_where = update.get("where")
    if update_where:
        if base.get("where"):
            base["where"] = {"and": [base["where"], copy.deepcopy(update_where)]}
        else:
            base["where"] = copy.deepcopy(update_where)

    if spec.get("include", True) and update.get("include"):
        if not base.get("include"):
            base["include"] = update["include"]
        else:
            base["include"] = _as_list(base["include"]) + [
                inc for inc in _as_list(update["include"]) if inc not in _as_list(base["include"])
            ]

    if spec.get("collect", True) and update.get("collect"):
        base["collect"] = update["collect"]

    if "fields" in update:
        if spec.get("fields", True):
            base["fields"] = update["fields"]
        else:
            base["fields"] = _as_list(base.get("fields")) + _as_list(update["fields"])

    if (not base.get("order") or spec.get("order") is False) and update.get("order"):
        base["order"] = update["order"]

    if spec.get("limit", True) and update.get("limit") is not None:
        base["limit"] = update["limit"]

    skip = spec.get("skip", True) and spec.get("offset", True)
    if skip and update.get("skip") is not None:
        base["skip"] = update["skip"]
    if skip and update.get("offset") is not None:
        base["offset"] = update["offset"]

    return base


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
