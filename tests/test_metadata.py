"""
Metadata and Registry Tests

🧪 Schema Validation:
Covers field/relation mapping rules, inheritance merging and document
type lookup through the registry.
"""

from typing import Any, Optional

import pytest

from docmapper import (
    ConfigurationError, Document, FieldMapping, FieldType, IdStrategy, Metadata,
    MetadataRegistry, NotFoundError, RelationKind, RelationMapping,
)
from docmapper.core.events import LifecycleEvent

from sample_documents import Address, User, address_metadata, user_metadata


class Content(Document):
    id: Optional[Any] = None
    title: Optional[Any] = None


class Article(Content):
    body: Optional[Any] = None


class Loop(Document):
    id: Optional[Any] = None


class TestMetadata:
    """Schema building and validation"""

    def test_collection_defaults_to_snake_case_name(self):
        metadata = Metadata(name="BlogPost", document_class=Content)
        assert metadata.collection == "blog_post"

    def test_field_mapping_defaults(self):
        mapping = FieldMapping("email")
        assert mapping.name == "email"
        assert mapping.type == "string"

        typed = FieldMapping("age", type=FieldType.NUMBER)
        assert typed.type == "number"

    def test_mutable_defaults_are_copied(self):
        mapping = FieldMapping("tags", type=FieldType.OBJECT, default=[])
        first = mapping.default_value()
        first.append("x")
        assert mapping.default_value() == []

    def test_duplicate_field_rejected(self):
        metadata = user_metadata()
        with pytest.raises(ConfigurationError):
            metadata.add_field(FieldMapping("email"))
        with pytest.raises(ConfigurationError):
            metadata.add_field(FieldMapping("mail", name="email_address"))

    def test_validate_requires_id_field(self):
        metadata = Metadata(name="Content", document_class=Content)
        metadata.add_field(FieldMapping("title"))
        with pytest.raises(ConfigurationError, match="no id field"):
            metadata.validate()

    def test_validate_id_field_must_be_mapped_once(self):
        metadata = Metadata(name="Content", document_class=Content, id_field="id")
        metadata.add_field(FieldMapping("title"))
        with pytest.raises(ConfigurationError):
            metadata.validate()

        metadata.fields.append(FieldMapping("id"))
        metadata.fields.append(FieldMapping("id", name="other_id"))
        with pytest.raises(ConfigurationError):
            metadata.validate()

    def test_validate_rejects_field_relation_collision(self):
        metadata = Metadata(name="Content", document_class=Content, id_field="id")
        metadata.add_field(FieldMapping("id"))
        metadata.add_field(FieldMapping("title"))
        metadata.add_relation(RelationMapping("title", "User"))
        with pytest.raises(ConfigurationError, match="both a field and a relation"):
            metadata.validate()

    def test_embedded_documents_need_no_id(self):
        metadata = address_metadata()
        metadata.validate()
        assert metadata.get_id_field() is None
        assert metadata.id_field_name is None

    def test_lookups(self):
        metadata = user_metadata()

        assert metadata.get_field_by_property("email").name == "email_address"
        assert metadata.get_field_by_name("email_address").property == "email"
        assert metadata.storage_name_for_property("email") == "email_address"
        assert metadata.storage_name_for_property("posts") is None
        assert metadata.id_field_name == "id"
        assert metadata.get_relation("posts").kind == RelationKind.ONE_TO_MANY
        assert metadata.get_embed("address").document == "Address"
        assert metadata.indexes["single"][0].fields == ["email"]

    def test_add_event_accepts_enum_members(self):
        metadata = user_metadata()
        metadata.add_event(LifecycleEvent.PRE_PERSIST, "on_pre_persist")
        assert [h.method for h in metadata.events["prePersist"]] == ["on_pre_persist"]

    def test_custom_setter_is_used(self):
        class Tagged(Document):
            label: Optional[Any] = None

            def set_label(self, value):
                self.label = str(value).upper()

        metadata = Metadata(name="Tagged", document_class=Tagged, is_embedded=True)
        metadata.add_field(FieldMapping("label"))
        metadata.build_accessors()

        document = Tagged()
        metadata.set_value(document, "label", "hello")
        assert document.label == "HELLO"

    def test_merge_keeps_child_values(self):
        parent = Metadata(name="Content", document_class=Content, id_field="id",
                          id_strategy=IdStrategy.MANUAL, version_property="version")
        parent.add_field(FieldMapping("id"))
        parent.add_field(FieldMapping("title", name="parent_title"))
        parent.add_event("prePersist", "parent_hook")
        parent.listeners.append("audit")

        child = Metadata(name="Article", document_class=Article, inherits=["Content"])
        child.add_field(FieldMapping("title", name="child_title"))
        child.add_field(FieldMapping("body"))
        child.add_event("prePersist", "child_hook")

        child.merge(parent)

        assert child.id_field == "id"
        assert child.id_strategy == IdStrategy.MANUAL
        assert child.version_property == "version"
        assert [f.property for f in child.fields] == ["id", "title", "body"]
        assert child.get_field_by_property("title").name == "child_title"
        assert [h.method for h in child.events["prePersist"]] == ["parent_hook", "child_hook"]
        assert child.listeners == ["audit"]

    def test_merge_shares_parent_collection(self):
        parent = Metadata(name="Content", document_class=Content, collection="contents",
                          id_field="id")
        child = Metadata(name="Article", document_class=Article, inherits=["Content"])
        named = Metadata(name="Article", document_class=Article, collection="articles_v2",
                         inherits=["Content"])

        child.merge(parent)
        named.merge(parent)

        assert child.collection == "contents"
        assert named.collection == "articles_v2"



class TestMetadataRegistry:
    """Registration, lookup and inheritance resolution"""

    def _content(self) -> Metadata:
        metadata = Metadata(name="Content", document_class=Content, id_field="id")
        metadata.add_field(FieldMapping("id"))
        metadata.add_field(FieldMapping("title"))
        return metadata

    def test_register_and_lookup(self):
        registry = MetadataRegistry()
        metadata = user_metadata()
        registry.register_metadata(metadata)

        assert registry.has_metadata("User")
        assert "User" in registry
        assert len(registry) == 1
        assert registry.get_metadata_by_name("User") is metadata
        assert registry.get_metadata_for_document(User()) is metadata
        assert registry.get_metadata_for_document(User) is metadata

    def test_unknown_name_raises_not_found(self):
        registry = MetadataRegistry()
        with pytest.raises(NotFoundError):
            registry.get_metadata_by_name("Missing")
        with pytest.raises(NotFoundError):
            registry.get_metadata_for_document(Address())

    def test_subclass_resolves_to_registered_parent(self):
        class Admin(User):
            pass

        registry = MetadataRegistry()
        metadata = user_metadata()
        registry.register_metadata(metadata)

        assert Admin.__document_type__ == "Admin"
        assert registry.get_metadata_for_document(Admin()) is metadata

    def test_class_without_identity_tag_is_rejected(self):
        class Plain:
            pass

        registry = MetadataRegistry()
        with pytest.raises(ConfigurationError, match="identity tag"):
            registry.register_metadata(Metadata(name="Plain", document_class=Plain))

    def test_duplicate_name_is_rejected(self):
        registry = MetadataRegistry()
        metadata = user_metadata()
        registry.register_metadata(metadata)
        registry.register_metadata(metadata)

        with pytest.raises(ConfigurationError, match="already registered"):
            registry.register_metadata(user_metadata())

    def test_handle_inheritance_merges_parent(self):
        registry = MetadataRegistry()
        child = Metadata(name="Article", document_class=Article, inherits=["Content"])
        child.add_field(FieldMapping("body"))
        registry.register_metadata(child)
        registry.register_metadata(self._content())

        registry.handle_inheritance()

        assert child.inherited
        assert child.id_field == "id"
        assert [f.property for f in child.fields] == ["id", "title", "body"]
        assert registry.get_metadata_for_document(Article()) is child

    def test_missing_parent_raises_not_found(self):
        registry = MetadataRegistry()
        registry.register_metadata(
            Metadata(name="Article", document_class=Article, inherits=["Content"])
        )
        with pytest.raises(NotFoundError, match="Content"):
            registry.handle_inheritance()

    def test_inheritance_cycle_is_detected(self):
        class Other(Document):
            id: Optional[Any] = None

        registry = MetadataRegistry()
        first = Metadata(name="Loop", document_class=Loop, id_field="id", inherits=["Other"])
        first.add_field(FieldMapping("id"))
        second = Metadata(name="Other", document_class=Other, id_field="id", inherits=["Loop"])
        second.add_field(FieldMapping("id"))
        registry.register_metadata(first)
        registry.register_metadata(second)

        with pytest.raises(ConfigurationError, match="cycle"):
            registry.handle_inheritance()
