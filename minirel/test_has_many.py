"""
HasMany relation tests (Author -> Book)
"""
import asyncio

import pytest

from minirel import DataSource, ModelBase, Text, col
from minirel.exceptions import ForeignKeyOverrideError, KeyMismatchError, NotFoundError, RelationConfigError


def make_models(**params):
    ds = DataSource()

    class Author(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Book(ModelBase):
        title = Text()
        genre = Text()

        class Meta:
            data_source = ds

    Author.has_many(Book, **params)
    return ds, Author, Book


def test_defaults_and_aliases():
    ds, Author, Book = make_models()
    definition = Author._mapper.relations["books"]
    assert definition.key_from == "id"
    assert definition.key_to == "author_id"
    assert definition.key_through == "book_id"
    assert definition.multiple
    assert "author_id" in Book._mapper.properties

    shared = Author._mapper.shared_methods
    for alias in (
        "__get__books", "__create__books", "__delete__books", "__update__books", "__count__books",
        "__find_by_id__books", "__destroy_by_id__books", "__update_by_id__books",
        "__exists__books", "__link__books", "__unlink__books",
    ):
        assert alias in shared
    assert shared["__find_by_id__books"].verb == "get"
    assert shared["__find_by_id__books"].path == "/{id}/books/{fk}"
    assert shared["__exists__books"].verb == "head"


def test_create_then_find_by_id():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        book = await author.books.create({"title": "X"})
        assert book.author_id == author.id

        found = await author.books.find_by_id(book.id)
        assert found.id == book.id
        assert found.title == "X"

    asyncio.run(run())


def test_create_many():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        books = await author.books.create([{"title": "A"}, {"title": "B"}])
        assert [b.author_id for b in books] == [author.id, author.id]
        assert await author.books.count() == 2

    asyncio.run(run())


def test_load_is_cached_until_refresh():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        await author.books.create({"title": "A"})
        assert author.books() is None

        first = await author.books.load()
        assert [b.title for b in first] == ["A"]
        assert await author.books.load() is first
        assert author.books() is first

        await Book.create({"title": "B", "author_id": author.id})
        assert len(await author.books.load()) == 1
        assert len(await author.books.load(refresh=True)) == 2
        assert len(await author.books.get()) == 2

    asyncio.run(run())


def test_creating_through_the_relation_updates_a_loaded_cache():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        cached = await author.books.load()
        assert cached == []
        book = await author.books.create({"title": "A"})
        assert author.books() == [book]

        await author.books.destroy_by_id(book.id)
        assert author.books() == []

    asyncio.run(run())


def test_load_with_filter_bypasses_cache():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        await author.books.create([{"title": "Dune", "genre": "scifi"}, {"title": "Emma", "genre": "classic"}])

        scifi = await author.books.load(filter={"where": {"genre": "scifi"}})
        assert [b.title for b in scifi] == ["Dune"]
        assert author.books() is None

        classic = await author.books.find({"where": col("genre") == "classic"})
        assert [b.title for b in classic] == ["Emma"]
        assert (await author.books.find_one({"where": {"genre": "scifi"}})).title == "Dune"

    asyncio.run(run())


def test_find_by_id_outside_the_relation():
    ds, Author, Book = make_models()

    async def run():
        frank, ann = await Author.create([{"name": "Frank"}, {"name": "Ann"}])
        book = await ann.books.create({"title": "Emma"})

        with pytest.raises(NotFoundError) as info:
            await frank.books.find_by_id(book.id)
        assert info.value.status_code == 404
        assert not await frank.books.exists(book.id)
        assert await ann.books.exists(book.id)

    asyncio.run(run())


def test_find_by_id_key_mismatch():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        book = await author.books.create({"title": "X"})

        async def wrong_find(model_name, filter=None):
            return [{"id": book.id, "title": "X", "author_id": author.id + 1}]

        ds.connector.find = wrong_find
        with pytest.raises(KeyMismatchError):
            await author.books.find_by_id(book.id)

    asyncio.run(run())


def test_update_by_id_and_destroy_by_id():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        book = await author.books.create({"title": "X"})

        updated = await author.books.update_by_id(book.id, {"title": "Y"})
        assert updated.title == "Y"
        with pytest.raises(ForeignKeyOverrideError):
            await author.books.update_by_id(book.id, {"author_id": 99})

        await author.books.destroy_by_id(book.id)
        assert await Book.count() == 0

    asyncio.run(run())


def test_add_then_find_by_id_keeps_join_integrity():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        loose = await Book.create({"title": "Loose"})

        await author.books.add(loose.id)
        found = await author.books.find_by_id(loose.id)
        assert found.author_id == author.id

        await author.books.remove(loose)
        assert (await Book.find_by_id(loose.id)).author_id is None
        assert not await author.books.exists(loose.id)

    asyncio.run(run())


def test_build_and_scope_operations():
    ds, Author, Book = make_models()

    async def run():
        author = await Author.create({"name": "Frank"})
        built = author.books.build({"title": "Draft"})
        assert built.author_id == author.id
        assert built.is_new_record()

        await author.books.create([{"title": "A", "genre": "x"}, {"title": "B", "genre": "y"}])
        other = await Author.create({"name": "Ann"})
        await other.books.create({"title": "C", "genre": "x"})

        assert await author.books.update_all({"genre": "x"}, {"genre": "z"}) == 1
        assert await Book.count({"genre": "z"}) == 1
        assert await author.books.destroy_all() == 2
        assert await Book.count() == 1

    asyncio.run(run())


def test_unsaved_author_does_not_match_orphan_books():
    ds, Author, Book = make_models()

    async def run():
        await Book.create({"title": "Loose"})
        author = Author({"name": "new"})

        assert await author.books.load() == []
        assert author.books() is None
        assert await author.books.count() == 0
        assert await author.books.find_one() is None
        assert await author.books.destroy_all() == 0
        assert await Book.count() == 1

    asyncio.run(run())


def test_custom_scope_and_properties():
    ds = DataSource()

    class Author(ModelBase):
        name = Text()
        country = Text()

        class Meta:
            data_source = ds

    class Book(ModelBase):
        title = Text()
        published = Text()
        country = Text()

        class Meta:
            data_source = ds

    Author.has_many(
        Book,
        as_="published_books",
        scope={"where": {"published": "yes"}},
        properties=["country"],
    )

    async def run():
        author = await Author.create({"name": "Frank", "country": "US"})
        book = await author.published_books.create({"title": "A", "published": "yes"})
        assert book.country == "US"
        await Book.create({"title": "B", "published": "no", "author_id": author.id})

        loaded = await author.published_books.load()
        assert [b.title for b in loaded] == ["A"]

    asyncio.run(run())


def test_scope_methods_extension():
    async def newest(relation):
        books = await relation.model_to.find({"where": {"author_id": relation.model_instance.id}, "order": "id DESC"})
        return books[0] if books else None

    newest.shared = True
    ds, Author, Book = make_models(scope_methods={"newest": newest})

    async def run():
        author = await Author.create({"name": "Frank"})
        await author.books.create([{"title": "A"}, {"title": "B"}])
        latest = await author.books.newest()
        assert latest.title in ("A", "B")
        assert latest.id == max(b.id for b in await Book.find())
        assert "__newest__books" in Author._mapper.shared_methods
        assert (await getattr(author, "__newest__books")()).id == latest.id

    asyncio.run(run())


def test_relation_name_cannot_shadow_a_property():
    ds = DataSource()

    class Author(ModelBase):
        books = Text()

        class Meta:
            data_source = ds

    class Book(ModelBase):
        class Meta:
            data_source = ds

    with pytest.raises(RelationConfigError):
        Author.has_many(Book)


def test_unknown_target_name_is_a_config_error():
    ds, Author, Book = make_models()
    with pytest.raises(RelationConfigError):
        Author.has_many("ghosts")


def test_target_resolved_by_plural_name():
    ds = DataSource()

    class Author(ModelBase):
        class Meta:
            data_source = ds

    class Book(ModelBase):
        class Meta:
            data_source = ds

    definition = Author.has_many("books")
    assert definition.name == "books"
    assert definition.model_to is Book
