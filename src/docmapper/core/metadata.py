"""
Document Metadata - Schema Descriptions

🗂️ Mapping Schema:
Metadata describes how one document type maps onto its storage
collection: scalar fields, relations to other documents, embedded
documents, indexes, lifecycle hooks and inheritance parents.

Key Features:
- Field, relation and embed mappings as dataclasses
- Per-class setter tables built once and reused for every hydrate
- Parent merging for document inheritance
"""

import copy
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import ConfigurationError


class FieldType(str, Enum):
    """Well-known field types understood by the mapper"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    OBJECT = "object"
    ID = "id"


class IdStrategy(str, Enum):
    """Who assigns document ids"""
    AUTO = "AUTO"
    MANUAL = "MANUAL"


class RelationKind(str, Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"


class EmbedKind(str, Enum):
    ONE = "one"
    MANY = "many"


@dataclass
class FieldMapping:
    """A scalar property and its storage counterpart"""
    property: str
    name: Optional[str] = None
    type: str = FieldType.STRING.value
    table: Optional[str] = None
    default: Any = None
    read_only: bool = False

    def __post_init__(self):
        if self.name is None:
            self.name = self.property
        self.type = str(getattr(self.type, "value", self.type)).lower()

    def default_value(self) -> Any:
        """Fresh copy of the default so mutable defaults are never shared"""
        return copy.deepcopy(self.default)


@dataclass
class RelationMapping:
    """Reference from one document to one or many other documents"""
    field: str
    document: str
    kind: RelationKind = RelationKind.ONE_TO_ONE
    column: Optional[str] = None
    sort: Optional[str] = None
    direction: str = "asc"

    def __post_init__(self):
        self.kind = RelationKind(self.kind)


@dataclass
class EmbedMapping:
    """Document stored inline inside its owner"""
    field: str
    document: str
    kind: EmbedKind = EmbedKind.ONE

    def __post_init__(self):
        self.kind = EmbedKind(self.kind)


@dataclass
class IndexDefinition:
    fields: List[str]
    name: Optional[str] = None
    unique: bool = False
    sparse: bool = False


@dataclass
class EventHook:
    """Document method invoked for a lifecycle event"""
    method: str


@dataclass
class Discriminator:
    """Chooses a concrete document class from a stored value"""
    field: str
    mapping: Dict[Any, type] = field(default_factory=dict)


def _default_collection(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass
class Metadata:
    """
    Mapping description for one document type.

    The ``name`` is unique within a registry. After ``validate()`` the
    id field resolves to exactly one field mapping and no property is
    claimed twice.
    """
    name: str
    document_class: Optional[type] = None
    collection: Optional[str] = None
    id_field: Optional[str] = None
    id_strategy: IdStrategy = IdStrategy.AUTO
    fields: List[FieldMapping] = field(default_factory=list)
    relations: Dict[RelationKind, Dict[str, RelationMapping]] = field(default_factory=dict)
    embeds: Dict[EmbedKind, Dict[str, EmbedMapping]] = field(default_factory=dict)
    indexes: Dict[str, List[IndexDefinition]] = field(default_factory=dict)
    listeners: List[str] = field(default_factory=list)
    events: Dict[str, List[EventHook]] = field(default_factory=dict)
    inherits: List[str] = field(default_factory=list)
    inherited: bool = False
    is_embedded: bool = False
    discriminator: Optional[Discriminator] = None
    created_at_property: Optional[str] = None
    updated_at_property: Optional[str] = None
    version_property: Optional[str] = None
    repository_class: Optional[type] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self._collection_derived = not self.collection
        if self._collection_derived:
            self.collection = _default_collection(self.name)
        self.id_strategy = IdStrategy(self.id_strategy)
        for kind in RelationKind:
            self.relations.setdefault(kind, {})
        for kind in EmbedKind:
            self.embeds.setdefault(kind, {})
        self.indexes.setdefault("single", [])
        self.indexes.setdefault("compound", [])
        self._setters: Dict[Tuple[type, str], Callable[[Any, Any], None]] = {}

    # Schema building

    def add_field(self, mapping: FieldMapping) -> "Metadata":
        for existing in self.fields:
            if existing.property == mapping.property or existing.name == mapping.name:
                raise ConfigurationError(
                    f"Field '{mapping.property}' is mapped twice on '{self.name}'"
                )
        self.fields.append(mapping)
        self._setters.clear()
        return self

    def add_relation(self, mapping: RelationMapping) -> "Metadata":
        self.relations[mapping.kind][mapping.field] = mapping
        return self

    def add_embed(self, mapping: EmbedMapping) -> "Metadata":
        self.embeds[mapping.kind][mapping.field] = mapping
        return self

    def add_single_index(self, property: str, name: Optional[str] = None,
                         unique: bool = False, sparse: bool = False) -> "Metadata":
        self.indexes["single"].append(IndexDefinition([property], name, unique, sparse))
        return self

    def add_compound_index(self, properties: List[str], name: Optional[str] = None,
                           unique: bool = False) -> "Metadata":
        self.indexes["compound"].append(IndexDefinition(list(properties), name, unique))
        return self

    def add_event(self, event: str, method: str) -> "Metadata":
        self.events.setdefault(str(getattr(event, "value", event)), []).append(EventHook(method))
        return self

    # Lookups

    def get_field_by_property(self, property: str) -> Optional[FieldMapping]:
        for mapping in self.fields:
            if mapping.property == property:
                return mapping
        return None

    def get_field_by_name(self, name: str) -> Optional[FieldMapping]:
        for mapping in self.fields:
            if mapping.name == name:
                return mapping
        return None

    def storage_name_for_property(self, property: str) -> Optional[str]:
        mapping = self.get_field_by_property(property)
        return mapping.name if mapping else None

    def get_id_field(self) -> Optional[FieldMapping]:
        """Field mapping of the id property, None for embedded documents"""
        if self.id_field is None:
            return None
        return self.get_field_by_property(self.id_field)

    @property
    def id_field_name(self) -> Optional[str]:
        """Storage name of the id field"""
        mapping = self.get_id_field()
        return mapping.name if mapping else None

    def get_relation(self, field_name: str) -> Optional[RelationMapping]:
        for mappings in self.relations.values():
            if field_name in mappings:
                return mappings[field_name]
        return None

    def get_embed(self, field_name: str) -> Optional[EmbedMapping]:
        for mappings in self.embeds.values():
            if field_name in mappings:
                return mappings[field_name]
        return None

    def relation_mappings(self) -> List[RelationMapping]:
        return [m for kind in RelationKind for m in self.relations[kind].values()]

    def embed_mappings(self) -> List[EmbedMapping]:
        return [m for kind in EmbedKind for m in self.embeds[kind].values()]

    def read_only_names(self) -> List[str]:
        return [m.name for m in self.fields if m.read_only]

    def owns_field(self, mapping: FieldMapping) -> bool:
        """False when the field is declared for another table"""
        return not mapping.table or mapping.table in (self.name, self.collection)

    # Validation

    def validate(self) -> None:
        """Check the schema invariants, raising ConfigurationError on violation"""
        properties = [m.property for m in self.fields]
        names = [m.name for m in self.fields]
        if len(set(properties)) != len(properties):
            raise ConfigurationError(f"Duplicate field property on '{self.name}'")
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate storage field name on '{self.name}'")

        if not self.is_embedded:
            if self.id_field is None:
                raise ConfigurationError(f"Document '{self.name}' has no id field")
            matches = [m for m in self.fields if m.property == self.id_field]
            if len(matches) != 1:
                raise ConfigurationError(
                    f"Id field '{self.id_field}' of '{self.name}' must map to exactly one field"
                )

        for mapping in self.relation_mappings() + self.embed_mappings():
            if mapping.field in properties:
                raise ConfigurationError(
                    f"'{mapping.field}' on '{self.name}' is both a field and a relation"
                )

    # Accessors

    def setter_for(self, document_class: type, property: str) -> Callable[[Any, Any], None]:
        """Resolve the setter for a property once per document class"""
        key = (document_class, property)
        setter = self._setters.get(key)
        if setter is None:
            custom = getattr(document_class, f"set_{property}", None)
            if callable(custom):
                setter = lambda document, value, _m=f"set_{property}": getattr(document, _m)(value)
            else:
                setter = lambda document, value, _p=property: setattr(document, _p, value)
            self._setters[key] = setter
        return setter

    def set_value(self, document: Any, property: str, value: Any) -> None:
        self.setter_for(type(document), property)(document, value)

    def build_accessors(self) -> None:
        """Build the setter table for the mapped class and every field"""
        self._setters.clear()
        if self.document_class is None:
            return
        for mapping in self.fields:
            self.setter_for(self.document_class, mapping.property)
        for mapping in self.relation_mappings() + self.embed_mappings():
            self.setter_for(self.document_class, mapping.field)

    # Inheritance

    def merge(self, parent: "Metadata") -> None:
        """
        Merge a parent's mapping into this one.

        Scalar settings already set on the child win, and a child without
        an explicit collection shares the parent's. Mappings are unioned,
        with the child's entries winning ties by name.
        """
        if self._collection_derived and parent.collection:
            self.collection = parent.collection
            self._collection_derived = False
        for attr in ("id_field", "discriminator", "created_at_property", "updated_at_property",
                     "version_property", "repository_class"):
            if getattr(self, attr) is None and getattr(parent, attr) is not None:
                setattr(self, attr, getattr(parent, attr))
        if self.id_field == parent.id_field and self.id_strategy == IdStrategy.AUTO:
            self.id_strategy = parent.id_strategy

        own = {m.property for m in self.fields}
        self.fields = [copy.copy(m) for m in parent.fields if m.property not in own] + self.fields

        for kind in RelationKind:
            merged = dict(parent.relations.get(kind, {}))
            merged.update(self.relations[kind])
            self.relations[kind] = merged
        for kind in EmbedKind:
            merged = dict(parent.embeds.get(kind, {}))
            merged.update(self.embeds[kind])
            self.embeds[kind] = merged

        for key in ("single", "compound"):
            existing = {tuple(i.fields) for i in self.indexes[key]}
            self.indexes[key] = self.indexes[key] + [
                i for i in parent.indexes.get(key, []) if tuple(i.fields) not in existing
            ]

        self.listeners = self.listeners + [n for n in parent.listeners if n not in self.listeners]

        for event, hooks in parent.events.items():
            own_methods = {h.method for h in self.events.get(event, [])}
            inherited = [h for h in hooks if h.method not in own_methods]
            self.events[event] = inherited + self.events.get(event, [])

        for key, value in parent.options.items():
            self.options.setdefault(key, value)

        self._setters.clear()


# Export main components
__all__ = [
    'FieldType',
    'IdStrategy',
    'RelationKind',
    'EmbedKind',
    'FieldMapping',
    'RelationMapping',
    'EmbedMapping',
    'IndexDefinition',
    'EventHook',
    'Discriminator',
    'Metadata',
]
