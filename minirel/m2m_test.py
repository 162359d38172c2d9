"""
M2M (Many-to-Many) Relationship Test
Validates join-model wiring, has-many-through operations and
has-and-belongs-to-many declarations
"""
import asyncio

import pytest

from minirel import DataSource, ModelBase, Text
from minirel.exceptions import NotFoundError, RelationConfigError, ValidationError
from minirel.relations.definition import RelationKind
from minirel.relations.utils import through_keys


def make_clinic():
    ds = DataSource()

    class Physician(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Patient(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Appointment(ModelBase):
        room = Text()

        class Meta:
            data_source = ds

    Appointment.belongs_to(Physician)
    Appointment.belongs_to(Patient)
    Physician.has_many(Patient, through=Appointment)
    return ds, Physician, Patient, Appointment


def test_through_definition():
    ds, Physician, Patient, Appointment = make_clinic()
    definition = Physician._mapper.relations["patients"]
    assert definition.kind == RelationKind.HAS_MANY_THROUGH
    assert definition.model_through is Appointment
    assert definition.key_to == "physician_id"
    assert definition.key_through == "patient_id"
    assert through_keys(definition) == ("physician_id", "patient_id")


def test_create_through_adds_join_row():
    ds, Physician, Patient, Appointment = make_clinic()

    async def run():
        doc = await Physician.create({"name": "House"})
        patient = await doc.patients.create({"name": "Ann"})

        rows = await Appointment.find()
        assert len(rows) == 1
        assert rows[0].physician_id == doc.id
        assert rows[0].patient_id == patient.id

        loaded = await doc.patients.load()
        assert [p.name for p in loaded] == ["Ann"]
        assert await doc.patients.count() == 1

    asyncio.run(run())


def test_create_many_through():
    ds, Physician, Patient, Appointment = make_clinic()

    async def run():
        doc = await Physician.create({"name": "House"})
        patients = await doc.patients.create([{"name": "Ann"}, {"name": "Bob"}])
        assert sorted(p.name for p in patients) == ["Ann", "Bob"]
        assert await Appointment.count({"physician_id": doc.id}) == 2

    asyncio.run(run())


def test_failed_join_row_removes_the_new_target():
    ds, Physician, Patient, Appointment = make_clinic()
    Appointment.validate("room", lambda record: False)

    async def run():
        doc = await Physician.create({"name": "House"})
        with pytest.raises(ValidationError):
            await doc.patients.create({"name": "Ann"})
        assert await Patient.count() == 0
        assert await Appointment.count() == 0

    asyncio.run(run())


def test_add_exists_remove():
    ds, Physician, Patient, Appointment = make_clinic()

    async def run():
        doc = await Physician.create({"name": "House"})
        ann = await Patient.create({"name": "Ann"})

        join = await doc.patients.add(ann, {"room": "B2"})
        assert isinstance(join, Appointment)
        assert join.room == "B2"
        assert await doc.patients.exists(ann.id)

        again = await doc.patients.add(ann.id)
        assert again.id == join.id
        assert await Appointment.count() == 1

        await doc.patients.remove(ann)
        assert not await doc.patients.exists(ann)
        assert await Patient.count() == 1

    asyncio.run(run())


def test_unsaved_source_has_no_patients():
    ds, Physician, Patient, Appointment = make_clinic()

    async def run():
        ann = await Patient.create({"name": "Ann"})
        await Appointment.create({"patient_id": ann.id, "room": "A1"})
        doc = Physician({"name": "New"})

        assert await doc.patients.load() == []
        assert await doc.patients.count() == 0
        assert not await doc.patients.exists(ann.id)

    asyncio.run(run())


def test_find_update_destroy_by_id_through():
    ds, Physician, Patient, Appointment = make_clinic()

    async def run():
        doc = await Physician.create({"name": "House"})
        ann = await doc.patients.create({"name": "Ann"})
        stranger = await Patient.create({"name": "Zed"})

        assert (await doc.patients.find_by_id(ann.id)).name == "Ann"
        with pytest.raises(NotFoundError):
            await doc.patients.find_by_id(stranger.id)

        updated = await doc.patients.update_by_id(ann.id, {"name": "Anna"})
        assert updated.name == "Anna"

        await doc.patients.destroy_by_id(ann.id)
        assert await Patient.count() == 1
        assert await Appointment.count() == 0
        with pytest.raises(NotFoundError):
            await doc.patients.destroy_by_id(ann.id)

    asyncio.run(run())


def test_habtm_defines_join_model():
    ds = DataSource()

    class Post(ModelBase):
        title = Text()

        class Meta:
            data_source = ds

    class Tag(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    Post.has_and_belongs_to_many(Tag)
    Tag.has_and_belongs_to_many(Post)

    PostTag = ds.lookup_model("PostTag")
    assert PostTag is not None
    assert set(PostTag._mapper.relations) == {"post", "tag"}
    assert Post._mapper.relations["tags"].kind == RelationKind.HAS_AND_BELONGS_TO_MANY
    assert Tag._mapper.relations["posts"].model_through is PostTag

    async def run():
        post = await Post.create({"title": "Hello"})
        tag = await Tag.create({"name": "news"})
        await post.tags.add(tag)

        assert [t.name for t in await post.tags.load()] == ["news"]
        assert [p.title for p in await tag.posts.load()] == ["Hello"]

        created = await tag.posts.create({"title": "Second"})
        assert await tag.posts.count() == 2
        assert (await created.tags.load())[0].id == tag.id

    asyncio.run(run())


def test_habtm_through_table():
    ds = DataSource()

    class Student(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Course(ModelBase):
        title = Text()

        class Meta:
            data_source = ds

    definition = Student.has_and_belongs_to_many(Course, through_table="Enrollment")
    assert definition.model_through is ds.lookup_model("Enrollment")

    async def run():
        student = await Student.create({"name": "Ann"})
        await student.courses.create([{"title": "Python"}, {"title": "SQL"}])
        titles = sorted(c.title for c in await student.courses.load())
        assert titles == ["Python", "SQL"]

    asyncio.run(run())


def test_habtm_polymorphic_needs_through():
    ds = DataSource()

    class Picture(ModelBase):
        class Meta:
            data_source = ds

    class Author(ModelBase):
        class Meta:
            data_source = ds

    with pytest.raises(RelationConfigError):
        Author.has_and_belongs_to_many(Picture, polymorphic="imageable")


def test_self_referential_through():
    ds = DataSource()

    class User(ModelBase):
        name = Text()

        class Meta:
            data_source = ds

    class Follow(ModelBase):
        class Meta:
            data_source = ds

    Follow.belongs_to(User, as_="follower")
    Follow.belongs_to(User, as_="followee")
    User.has_many(User, as_="followers", through=Follow, foreign_key="followee_id", key_through="follower_id")
    User.has_many(User, as_="following", through=Follow, foreign_key="follower_id", key_through="followee_id")

    assert through_keys(User._mapper.relations["followers"]) == ("followee_id", "follower_id")
    assert through_keys(User._mapper.relations["following"]) == ("follower_id", "followee_id")

    async def run():
        ann, bob, cid = await User.create([{"name": "Ann"}, {"name": "Bob"}, {"name": "Cid"}])
        await ann.followers.add(bob)
        await ann.followers.add(cid)

        assert sorted(u.name for u in await ann.followers.load()) == ["Bob", "Cid"]
        assert [u.name for u in await bob.following.load()] == ["Ann"]
        assert await bob.followers.load() == []

    asyncio.run(run())
