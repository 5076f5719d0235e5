"""
Mapper Tests

🔁 Record <-> Document Translation:
Hydration, dehydration, value conversion, criteria mapping, identity
within a hydration scope and discriminated subtypes.
"""

from datetime import datetime
from typing import Optional

import pytest

from docmapper import (
    ConversionError, FieldMapping, FieldType, HydrationScope, IdStrategy, InvalidOperationError,
    Metadata, Query, SortDirection,
)
from docmapper.core.document import UNDEFINED, instantiate

from sample_documents import Address, Car, Post, Truck, User, Vehicle


class SpecialVehicle(Vehicle):
    label: Optional[str] = None


def _special_vehicle_metadata(registry):
    """Register SpecialVehicle and a listener routing kind 'special' records to it"""
    metadata = Metadata(name="SpecialVehicle", document_class=SpecialVehicle,
                        collection="special_vehicles", id_field="id")
    metadata.add_field(FieldMapping("id", type=FieldType.ID))
    metadata.add_field(FieldMapping("kind"))
    metadata.add_field(FieldMapping("wheels", type=FieldType.NUMBER))
    metadata.add_field(FieldMapping("label"))
    registry.register_metadata(metadata)

    def route(context):
        if (context.data or {}).get("kind") == "special":
            context.metadata = metadata
            context.document = instantiate(SpecialVehicle)

    registry.register_event_listener("preHydrate", route)
    return metadata


class TestHydration:
    """Records to documents"""

    @pytest.mark.asyncio
    async def test_hydrate_converts_and_defaults(self, mapper, user_meta):
        user = await mapper.hydrate(user_meta, {
            "id": 1,
            "email_address": "ann@example.com",
            "age": "42",
            "created_at": "2024-01-02T03:04:05",
        })

        assert isinstance(user, User)
        assert user.email == "ann@example.com"
        assert user.age == 42
        assert user.active is True
        assert user.created_at == datetime(2024, 1, 2, 3, 4, 5)
        assert user.is_new is False
        assert user.posts == []

    @pytest.mark.asyncio
    async def test_boolean_coercion(self, mapper, user_meta):
        user = await mapper.hydrate(user_meta, {"id": 1, "active": "false"})
        assert user.active is False

    @pytest.mark.asyncio
    async def test_bad_value_raises_conversion_error(self, mapper, user_meta):
        with pytest.raises(ConversionError) as exc_info:
            await mapper.hydrate(user_meta, {"id": 1, "age": "forty"})
        assert exc_info.value.field == "age"

    @pytest.mark.asyncio
    async def test_embedded_document(self, mapper, user_meta):
        user = await mapper.hydrate(user_meta, {
            "id": 1, "address": {"street": "Main St", "city": "Oslo"}
        })

        assert isinstance(user.address, Address)
        assert user.address.city == "Oslo"

    @pytest.mark.asyncio
    async def test_inline_relations_terminate_cycles(self, mapper, user_meta):
        record = {"id": 1, "email_address": "ann@example.com"}
        record["posts"] = [
            {"id": 10, "title": "second", "position": 2, "author": record},
            {"id": 11, "title": "first", "position": 1, "author": record},
        ]

        user = await mapper.hydrate(user_meta, record)

        assert [p.title for p in user.posts] == ["first", "second"]
        assert all(p.author is user for p in user.posts)

    @pytest.mark.asyncio
    async def test_same_record_twice_yields_one_instance(self, mapper, user_meta):
        documents = await mapper.hydrate_many(user_meta, [{"id": 7}, {"id": 7}, {"id": 8}])

        assert documents[0] is documents[1]
        assert documents[0] is not documents[2]

    @pytest.mark.asyncio
    async def test_scope_lookup_reuses_known_instances(self, mapper, user_meta):
        known = User(id=5)
        scope = HydrationScope(lookup=lambda name, id_value: known if id_value == 5 else None)

        assert await mapper.hydrate(user_meta, {"id": 5}, scope) is known

    @pytest.mark.asyncio
    async def test_existing_documents_are_kept(self, mapper, registry):
        author = User(id=3)
        post = await mapper.hydrate(
            registry.get_metadata_by_name("Post"), {"id": 1, "author": author}
        )
        assert post.author is author

    @pytest.mark.asyncio
    async def test_post_hydrate_event_and_snapshot(self, mapper, registry, user_meta):
        seen = []
        registry.register_event_listener("postHydrate", lambda context: seen.append(context.document))

        user = await mapper.hydrate(user_meta, {"id": 1, "age": 30})

        assert len(seen) == 1 and seen[0] is user
        assert user._snapshot["age"] == 30

    @pytest.mark.asyncio
    async def test_discriminator_selects_subclass(self, mapper, registry):
        metadata = registry.get_metadata_by_name("Vehicle")

        car = await mapper.hydrate(metadata, {"id": 1, "kind": "car", "wheels": 4})
        truck = await mapper.hydrate(metadata, {"id": 2, "kind": "truck", "wheels": 18})
        created = await mapper.create_document(metadata, {"kind": "car"})

        assert type(car) is Car
        assert car.honk() == "beep"
        assert car.wheels == 4
        assert type(truck) is Truck
        assert type(created) is Car
        assert created.is_new

    @pytest.mark.asyncio
    async def test_pre_hydrate_listener_can_swap_metadata(self, mapper, registry):
        special_meta = _special_vehicle_metadata(registry)
        vehicle_meta = registry.get_metadata_by_name("Vehicle")

        vehicle = await mapper.hydrate(vehicle_meta, {"id": 1, "kind": "special", "wheels": 3,
                                                      "label": "x"})

        assert type(vehicle) is SpecialVehicle
        assert vehicle.label == "x"
        assert vehicle.wheels == 3
        assert vehicle._snapshot["label"] == "x"
        assert special_meta.name == "SpecialVehicle"

    @pytest.mark.asyncio
    async def test_swapped_metadata_in_batch(self, mapper, registry):
        _special_vehicle_metadata(registry)
        vehicle_meta = registry.get_metadata_by_name("Vehicle")

        special, car = await mapper.hydrate_many(vehicle_meta, [
            {"id": 1, "kind": "special", "wheels": 3, "label": "x"},
            {"id": 2, "kind": "car", "wheels": 4},
        ])

        assert type(special) is SpecialVehicle
        assert special.label == "x"
        assert "label" in special._snapshot
        assert type(car) is Car
        assert "label" not in car._snapshot



class TestDehydration:
    """Documents to records"""

    @pytest.mark.asyncio
    async def test_auto_id_omitted_when_unset(self, mapper, user_meta):
        user = await mapper.create_document(user_meta, {"email": "new@example.com"})
        record = await mapper.dehydrate(user_meta, user)

        assert "id" not in record
        assert record["email_address"] == "new@example.com"
        assert record["active"] is True
        assert record["posts"] == []
        assert record["address"] is None

    @pytest.mark.asyncio
    async def test_manual_id_always_present(self, mapper, registry):
        metadata = registry.get_metadata_by_name("Post")
        metadata.id_strategy = IdStrategy.MANUAL

        record = await mapper.dehydrate(metadata, Post(title="x"))
        assert "id" in record and record["id"] is None

    @pytest.mark.asyncio
    async def test_relations_stored_as_references(self, mapper, user_meta):
        user = User(id=1, posts=[Post(id=10), Post(id=11), Post()])
        user.address = Address(street="Main", city="Oslo")
        user.created_at = datetime(2024, 5, 6)

        record = await mapper.dehydrate(user_meta, user)

        assert record["id"] == 1
        assert record["posts"] == [10, 11]
        assert record["address"] == {"street": "Main", "city": "Oslo"}
        assert record["created_at"] == "2024-05-06T00:00:00"

    @pytest.mark.asyncio
    async def test_hydrate_then_dehydrate_restores_record(self, mapper, user_meta):
        record = {
            "id": 1,
            "email_address": "ann@example.com",
            "age": 30,
            "active": False,
            "created_at": "2024-01-02T03:04:05",
            "updated_at": None,
            "version": 2,
            "preferences": {"theme": "dark", "tags": ["a", "b"]},
            "posts": [],
            "address": {"street": "Main", "city": "Oslo"},
        }

        user = await mapper.hydrate(user_meta, record)

        assert await mapper.dehydrate(user_meta, user) == mapper.reduce_for_storage(user_meta, record)

    def test_reduce_for_storage(self, mapper, user_meta):

        user_meta.get_field_by_property("version").read_only = True

        reduced = mapper.reduce_for_storage(user_meta, {"age": 3, "version": 2, "email_address": UNDEFINED})
        assert reduced == {"age": 3}

    @pytest.mark.asyncio
    async def test_compute_changes(self, mapper, user_meta):
        user = await mapper.hydrate(user_meta, {"id": 1, "age": 30})
        user.age = 31

        changes = mapper.compute_changes(user_meta, user)
        assert changes == {"age": {"old": 30, "new": 31}}


class TestCriteriaMapping:
    """Property names to storage names"""

    def test_criteria_and_sort(self, mapper, user_meta):
        criteria = mapper.map_criteria_to_storage(user_meta, {
            "email": "a@example.com", "age": {"in": ["1", 2]}, "posts": [1],
        })

        assert criteria == {"email_address": "a@example.com", "age": {"in": ["1", 2]}, "posts": [1]}
        assert mapper.map_sort_to_storage(user_meta, {"email": "desc"}) == {
            "email_address": SortDirection.DESC
        }

    def test_dates_are_converted_in_criteria(self, mapper, user_meta):
        criteria = mapper.map_criteria_to_storage(user_meta, {
            "created_at": {"gt": datetime(2024, 1, 1)}
        })
        assert criteria == {"created_at": {"gt": "2024-01-01T00:00:00"}}

    def test_patch_values_are_converted_whole(self, mapper, user_meta, monkeypatch):
        converted = []

        def to_storage_value(field_type, value):
            converted.append((field_type, value))
            return value

        monkeypatch.setattr(mapper.adapter, "to_storage_value", to_storage_value)
        patch = mapper.map_patch_to_storage(user_meta, {
            "preferences": {"gt": 1, "theme": "dark"},
            "email": "b@example.com",
        })

        assert patch == {
            "preferences": {"gt": 1, "theme": "dark"},
            "email_address": "b@example.com",
        }
        assert (FieldType.OBJECT, {"gt": 1, "theme": "dark"}) in converted
        with pytest.raises(InvalidOperationError, match="nickname"):
            mapper.map_patch_to_storage(user_meta, {"nickname": "x"})

    def test_patch_dates_are_converted(self, mapper, user_meta):
        patch = mapper.map_patch_to_storage(user_meta, {"updated_at": datetime(2024, 1, 1)})
        assert patch == {"updated_at": "2024-01-01T00:00:00"}

    def test_unknown_field_raises(self, mapper, user_meta):

        with pytest.raises(InvalidOperationError, match="nickname"):
            mapper.map_criteria_to_storage(user_meta, {"nickname": "x"})
        with pytest.raises(InvalidOperationError):
            mapper.map_sort_to_storage(user_meta, {"nickname": "asc"})

    def test_dotted_paths(self, mapper, user_meta):
        assert mapper.storage_name_for_property(user_meta, "email.domain") == "email_address.domain"
        assert mapper.storage_name_for_property(user_meta, "address.city") == "address.city"
        assert mapper.storage_name_for_property(user_meta, "unknown.city") is None

    def test_map_query(self, mapper, user_meta):
        query = Query().where("email").equals("x").sort("age", "desc").skip(1).limit(2)
        mapped = mapper.map_query_to_storage(user_meta, query)

        assert mapped.get_conditions() == {"email_address": "x"}
        assert mapped.get_sort() == {"age": SortDirection.DESC}
        assert (mapped.get_skip(), mapped.get_limit()) == (1, 2)

    def test_names(self, mapper):
        assert mapper.collection_name_for_document("User") == "users"
        assert mapper.collection_name_for_document("Nope") is None
        assert mapper.document_name_for_collection("posts") == "Post"
