"""
Filter expression and where-evaluation tests

KEY USAGE PATTERNS:
==================

1. Basic comparison:
   (col('pages') > 100).to_where()  ->  {'pages': {'gt': 100}}

2. Combining with AND/OR:
   ((col('pages') > 100) & col('title').like('D%')).to_where()

3. Negation with ~ operator:
   (~col('pages').in_([1, 2])).to_where()  ->  {'pages': {'nin': [1, 2]}}
"""
from minirel.filters import and_, apply_filter, col, matches, or_

BOOKS = [
    {"id": 1, "title": "Dune", "pages": 412, "tags": ["scifi"]},
    {"id": 2, "title": "Emma", "pages": 320, "tags": ["classic"]},
    {"id": 3, "title": "Dracula", "pages": 418, "tags": ["classic", "horror"]},
    {"id": 4, "title": "Ubik", "pages": None, "tags": []},
]


def _ids(rows):
    return [row["id"] for row in rows]


def test_expressions_compile_to_where_dicts():
    assert (col("title") == "Dune").to_where() == {"title": "Dune"}
    assert (col("pages") >= 300).to_where() == {"pages": {"gte": 300}}
    assert ((col("pages") > 100) & (col("id") < 3)).to_where() == {
        "and": [{"pages": {"gt": 100}}, {"id": {"lt": 3}}]
    }
    assert or_(col("id") == 1, col("id") == 2).to_where() == {"or": [{"id": 1}, {"id": 2}]}


def test_negation():
    assert (~(col("pages") > 400)).to_where() == {"pages": {"lte": 400}}
    assert (~col("id").in_([1, 2])).to_where() == {"id": {"nin": [1, 2]}}
    assert (~and_(col("id") == 1, col("title") == "Dune")).to_where() == {
        "or": [{"id": {"neq": 1}}, {"title": {"neq": "Dune"}}]
    }


def test_matches_operators():
    dune = BOOKS[0]
    assert matches(dune, {"title": "Dune"})
    assert matches(dune, {"pages": {"between": [400, 420]}})
    assert matches(dune, {"title": {"like": "D%"}})
    assert matches(dune, {"title": {"ilike": "d%e"}})
    assert not matches(dune, {"title": {"nlike": "D%"}})
    assert matches(dune, {"id": {"inq": [1, 3]}})
    assert matches(dune, {"tags": "scifi"})
    assert matches(BOOKS[3], {"pages": {"exists": False}})


def test_matches_accepts_expressions():
    where = (col("pages") > 400) & col("title").like("Dr%")
    assert [b["id"] for b in BOOKS if matches(b, where)] == [3]


def test_apply_filter_where_order_skip_limit():
    rows = apply_filter(BOOKS, {"where": {"pages": {"gt": 300}}, "order": "pages DESC"})
    assert _ids(rows) == [3, 1, 2]

    rows = apply_filter(BOOKS, {"order": "title ASC", "skip": 1, "limit": 2})
    assert _ids(rows) == [1, 2]


def test_apply_filter_none_values_sort_last():
    rows = apply_filter(BOOKS, {"order": "pages ASC"})
    assert _ids(rows)[-1] == 4


def test_null_and_not_in_helpers():
    assert col("pages").is_null().to_where() == {"pages": {"exists": False}}
    assert [b["id"] for b in BOOKS if matches(b, col("pages").is_not_null())] == [1, 2, 3]
    assert [b["id"] for b in BOOKS if matches(b, col("id").not_in([1, 2]))] == [3, 4]
