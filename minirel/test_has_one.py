"""
HasOne relation tests (Supplier -> Account)
"""
import asyncio

import pytest

from minirel import DataSource, ModelBase, Text
from minirel.exceptions import CardinalityError, EmptyRelationError, ForeignKeyOverrideError, KeyMismatchError


def make_models():
    ds = DataSource()

    class Supplier(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Account(ModelBase):
        number = Text()

        class Meta:
            data_source = ds

    Supplier.has_one(Account)
    return ds, Supplier, Account


def test_defaults():
    ds, Supplier, Account = make_models()
    definition = Supplier._mapper.relations["account"]
    assert definition.key_from == "id"
    assert definition.key_to == "supplier_id"
    assert "supplier_id" in Account._mapper.properties


def test_create_then_load():
    ds, Supplier, Account = make_models()

    async def run():
        supplier = await Supplier.create({"name": "Acme"})
        account = await supplier.account.create({"number": "A-1"})
        assert account.supplier_id == supplier.id
        assert supplier.account() is account

        fresh = await Supplier.find_by_id(supplier.id)
        assert fresh.account() is None
        loaded = await fresh.account.load()
        assert loaded.number == "A-1"
        assert await fresh.account.load() is loaded

    asyncio.run(run())


def test_second_create_is_a_cardinality_error():
    ds, Supplier, Account = make_models()

    async def run():
        supplier = await Supplier.create({"name": "Acme"})
        await supplier.account.create({"number": "A-1"})
        with pytest.raises(CardinalityError):
            await supplier.account.create({"number": "A-2"})
        assert await Account.count() == 1

    asyncio.run(run())


def test_key_mismatch_is_reported():
    ds, Supplier, Account = make_models()

    async def run():
        supplier = await Supplier.create({"name": "Acme"})

        async def wrong_find(model_name, filter=None):
            return [{"id": 1, "number": "X", "supplier_id": supplier.id + 1}]

        ds.connector.find = wrong_find
        with pytest.raises(KeyMismatchError):
            await supplier.account.load()

    asyncio.run(run())


def test_update_and_destroy():
    ds, Supplier, Account = make_models()

    async def run():
        supplier = await Supplier.create({"name": "Acme"})
        await supplier.account.create({"number": "A-1"})

        updated = await supplier.account.update({"number": "A-9"})
        assert updated.number == "A-9"
        with pytest.raises(ForeignKeyOverrideError):
            await supplier.account.update({"supplier_id": 99})

        await supplier.account.destroy()
        assert await Account.count() == 0
        assert supplier.account() is None
        with pytest.raises(EmptyRelationError):
            await supplier.account.destroy()

    asyncio.run(run())


def test_setter_and_build():
    ds, Supplier, Account = make_models()

    async def run():
        supplier = await Supplier.create({"name": "Acme"})
        built = supplier.account.build({"number": "B"})
        assert built.supplier_id == supplier.id
        assert built.is_new_record()

        other = Account({"number": "C"})
        supplier.account(other)
        assert other.supplier_id == supplier.id
        assert supplier.account() is other

    asyncio.run(run())
