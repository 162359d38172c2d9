"""
Record layer tests: persistence, validation, hooks and model registration
"""
import asyncio

import pytest

from minirel import DataSource, ModelBase, Number, Relationship, Text
from minirel.exceptions import RelationConfigError, ValidationError
from minirel.relations.definition import RelationKind


def make_models():
    ds = DataSource()

    class Book(ModelBase):
        title = Text(nullable=False)
        pages = Number()

        class Meta:
            data_source = ds

    return ds, Book


def test_create_assigns_id_and_persists():
    ds, Book = make_models()

    async def run():
        book = await Book.create({"title": "Dune", "pages": 412})
        assert book.id == 1
        assert not book.is_new_record()

        found = await Book.find_by_id(1)
        assert found.title == "Dune"
        assert found is not book
        assert await Book.count() == 1
        assert await Book.exists(1)
        assert not await Book.exists(2)

    asyncio.run(run())


def test_update_and_destroy():
    ds, Book = make_models()

    async def run():
        book = await Book.create({"title": "Dune"})
        await book.update_attributes({"pages": 500})
        assert (await Book.find_by_id(book.id)).pages == 500

        await book.update_attribute("title", "Dune Messiah")
        assert (await Book.find_one({"where": {"pages": 500}})).title == "Dune Messiah"

        await book.destroy()
        assert await Book.count() == 0

    asyncio.run(run())


def test_create_list_and_find_with_filter():
    ds, Book = make_models()

    async def run():
        await Book.create([{"title": "A", "pages": 10}, {"title": "B", "pages": 20}, {"title": "C", "pages": 30}])
        found = await Book.find({"where": {"pages": {"gte": 20}}, "order": "pages DESC"})
        assert [b.title for b in found] == ["C", "B"]
        assert await Book.count({"pages": {"lt": 25}}) == 2

        removed = await Book.delete_all({"title": "A"})
        assert removed == 1
        assert await Book.count() == 2

    asyncio.run(run())


def test_find_by_ids_keeps_requested_order():
    ds, Book = make_models()

    async def run():
        books = await Book.create([{"title": "A"}, {"title": "B"}, {"title": "C"}])
        ids = [books[2].id, books[0].id]
        found = await Book.find_by_ids(ids)
        assert [b.get_id() for b in found] == ids
        assert await Book.find_by_ids([]) == []

    asyncio.run(run())


def test_find_by_ids_applies_skip_once():
    ds, Book = make_models()

    async def run():
        books = await Book.create([{"title": str(n)} for n in range(6)])
        ids = [b.id for b in books]
        found = await Book.find_by_ids(ids, {"skip": 2, "offset": 2})
        assert [b.id for b in found] == ids[2:]
        found = await Book.find_by_ids(ids, {"offset": 1, "limit": 2})
        assert [b.id for b in found] == ids[1:3]

    asyncio.run(run())


def test_find_or_create():
    ds, Book = make_models()

    async def run():
        book, created = await Book.find_or_create({"where": {"title": "Dune"}}, {"title": "Dune"})
        assert created
        again, created = await Book.find_or_create({"where": {"title": "Dune"}}, {"title": "Dune"})
        assert not created
        assert again.id == book.id

    asyncio.run(run())


def test_presence_validation():
    ds, Book = make_models()

    async def run():
        with pytest.raises(ValidationError) as info:
            await Book.create({"pages": 3})
        assert info.value.errors == {"title": ["can't be blank"]}
        assert info.value.status_code == 422

    asyncio.run(run())


def test_failed_update_restores_previous_values():
    ds, Book = make_models()

    async def run():
        book = await Book.create({"title": "Dune", "pages": 412})
        with pytest.raises(ValidationError):
            await book.update_attributes({"title": None, "pages": 500})
        assert book.title == "Dune"
        assert book.pages == 412
        assert book.is_valid()
        assert (await Book.find_by_id(book.id)).pages == 412

    asyncio.run(run())


def test_custom_validator():
    ds, Book = make_models()
    Book.validate("pages", lambda record: record.pages is None or record.pages > 0)

    book = Book({"title": "Dune", "pages": -1})
    assert not book.is_valid()
    assert book.errors["pages"] == ["is invalid"]

    book.pages = 10
    assert book.is_valid()


def test_observers_run_around_save_and_delete():
    ds, Book = make_models()
    seen = []

    async def before_save(context):
        seen.append(("before save", context.instance.title))

    Book.observe("before save", before_save)
    Book.observe("after save", lambda context: seen.append(("after save", context.instance.id)))
    Book.observe("before delete", lambda context: seen.append(("before delete", context.where)))

    async def run():
        book = await Book.create({"title": "Dune"})
        await book.destroy()

    asyncio.run(run())
    assert seen == [("before save", "Dune"), ("after save", 1), ("before delete", {"id": 1})]


def test_primary_key_cannot_change_after_persist():
    ds, Book = make_models()

    async def run():
        book = await Book.create({"title": "Dune"})
        with pytest.raises(AttributeError):
            book.id = 5

    asyncio.run(run())


def test_define_and_lookup_model():
    ds = DataSource()
    Tag = ds.define("Tag", {"name": Text()})

    assert ds.lookup_model("tag") is Tag
    assert ds.lookup_model("TAG") is Tag
    assert ds.lookup_model("missing") is None
    assert ds.id_name("Tag") == "id"
    assert Tag.plural_model_name == "Tags"


def test_declared_relationship_resolves_when_target_registers():
    ds = DataSource()

    class Order(ModelBase):
        total = Number()
        customer = Relationship("Customer", r_type="many-to-one", backref="orders")

        class Meta:
            data_source = ds

    assert Order._mapper.pending() == [("customer", "Customer")]

    class Customer(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    ds.finalize()
    assert Order._mapper.relations["customer"].kind == RelationKind.BELONGS_TO
    assert Customer._mapper.relations["orders"].kind == RelationKind.HAS_MANY
    assert Customer._mapper.relations["orders"].key_to == "customer_id"

    async def run():
        customer = await Customer.create({"name": "Ann"})
        order = await customer.orders.create({"total": 10})
        assert order.customer_id == customer.id
        assert (await order.customer.load()).name == "Ann"

    asyncio.run(run())


def test_finalize_reports_unresolved_targets():
    ds = DataSource()

    class Order(ModelBase):
        customer = Relationship("Ghost", r_type="belongs_to")

        class Meta:
            data_source = ds

    with pytest.raises(RelationConfigError):
        ds.finalize()


def test_abstract_models_are_not_registered():
    ds = DataSource()

    class Base(ModelBase):
        created = Text()

        class Meta:
            data_source = ds
            abstract = True

    class Note(Base):
        body = Text()

    assert "Base" not in ds.models
    assert ds.models["Note"] is Note
    assert set(Note._mapper.properties) >= {"id", "created", "body"}
