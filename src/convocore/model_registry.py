# src/convocore/model_registry.py
"""
ModelRegistry: the deduplicated, categorized and sorted model catalog.

The catalog is a single top-level list holding both plain
``ModelDescriptor`` records and ``ModelCategoryEntry`` nodes. Members of a
category live inside their category node. Every list is kept sorted by the
``index`` field with a stable sort, so ties keep insertion order.

Model ids are unique across the whole catalog: inserting a descriptor whose
id is already present (flat or inside any category) is a no-op.
"""

import logging
import math
from collections.abc import Mapping
from typing import Any, Iterator, List, Optional, Union

from pydantic import BaseModel

from .events import ChangeNotifier, StoreEvent
from .exceptions import MalformedModelDescriptor
from .models import ModelCategory, ModelCategoryEntry, ModelDescriptor

logger = logging.getLogger(__name__)

CatalogItem = Union[ModelDescriptor, ModelCategoryEntry]

DEFAULT_MODEL_INDEX = 9999999

_STRING_FIELDS = ("id", "name", "displayName", "version", "description")
_NUMBER_FIELDS = ("inputTokenLimit", "outputTokenLimit", "temperature", "maxTemperature", "topP", "topK")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not (
        isinstance(value, float) and math.isnan(value)
    )


def _lookup(source: Mapping, camel: str) -> Any:
    """Read a field by its wire (camelCase) name, falling back to snake_case."""
    if camel in source:
        return source[camel]
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in camel)
    return source.get(snake)


class ModelRegistry:
    """Catalog of the models a provider reported as available."""

    def __init__(self, notifier: Optional[ChangeNotifier] = None):
        self._items: List[CatalogItem] = []
        self._notifier = notifier
        self.next_page_token: Optional[str] = None

    @staticmethod
    def normalize(source: Mapping) -> ModelDescriptor:
        """
        Build a descriptor from a raw mapping. Values with a mismatched type
        are replaced by None instead of failing the insertion.
        """
        fields: dict[str, Any] = {}
        for key in _STRING_FIELDS:
            value = _lookup(source, key)
            fields[key] = value if isinstance(value, str) else None
        for key in _NUMBER_FIELDS:
            value = _lookup(source, key)
            fields[key] = value if _is_number(value) else None

        index = source.get("index")
        fields["index"] = index if _is_number(index) else DEFAULT_MODEL_INDEX

        methods = _lookup(source, "supportedGenerationMethods")
        if isinstance(methods, (list, tuple, set, frozenset)):
            fields["supportedGenerationMethods"] = [m for m in methods if isinstance(m, str)]

        category = source.get("category")
        if isinstance(category, ModelCategory):
            fields["category"] = category
        elif isinstance(category, Mapping):
            cat_id = category.get("id")
            cat_name = _lookup(category, "displayName")
            cat_index = category.get("index")
            if isinstance(cat_id, str) and isinstance(cat_name, str) and _is_number(cat_index):
                fields["category"] = ModelCategory(id=cat_id, display_name=cat_name, index=cat_index)

        fields["raw_response"] = source.get("raw_response", source.get("_response"))
        return ModelDescriptor(**fields)

    def insert(self, descriptor: Union[ModelDescriptor, Mapping]) -> Optional[ModelDescriptor]:
        """
        Add a model to the catalog.

        Args:
            descriptor: A ``ModelDescriptor`` or a raw mapping (camelCase or
                snake_case keys).

        Returns:
            The normalized descriptor that was stored, or None if a model with
            the same id already exists.

        Raises:
            MalformedModelDescriptor: If ``descriptor`` is not an object.
        """
        if isinstance(descriptor, ModelDescriptor):
            source: Mapping = descriptor.model_dump(by_alias=True)
            source = {**source, "raw_response": descriptor.raw_response}
            if descriptor.category is not None:
                source["category"] = descriptor.category
        elif isinstance(descriptor, Mapping):
            source = descriptor
        elif isinstance(descriptor, BaseModel):
            source = descriptor.model_dump(by_alias=True)
        else:
            raise MalformedModelDescriptor(
                f"Model data must be a valid object, got {type(descriptor).__name__}."
            )

        model_id = _lookup(source, "id")
        if self.exists(model_id if isinstance(model_id, str) else None):
            logger.debug("Model '%s' already in catalog; insertion skipped.", model_id)
            return None

        record = self.normalize(source)
        if record.category is not None:
            entry = self._find_category(record.category.id)
            if entry is None:
                entry = ModelCategoryEntry(
                    category=record.category.id,
                    display_name=record.category.display_name,
                    index=record.category.index,
                )
                self._items.append(entry)
            entry.models.append(record)
            entry.models.sort(key=lambda item: item.index)
        else:
            self._items.append(record)

        self._items.sort(key=lambda item: item.index)
        logger.debug("Inserted model '%s' into catalog.", record.id)
        if self._notifier is not None:
            self._notifier.publish(StoreEvent.MODEL_INSERTED, record)
        return record

    def _find_category(self, category_id: str) -> Optional[ModelCategoryEntry]:
        for item in self._items:
            if isinstance(item, ModelCategoryEntry) and item.category == category_id:
                return item
        return None

    def iter_models(self) -> Iterator[ModelDescriptor]:
        """Yield every descriptor: flat entries first, then category members."""
        for item in self._items:
            if isinstance(item, ModelDescriptor):
                yield item
        for item in self._items:
            if isinstance(item, ModelCategoryEntry):
                yield from item.models

    def find(self, model_id: Optional[str]) -> Optional[ModelDescriptor]:
        """Return the descriptor with ``model_id``, searching flat entries before categories."""
        for model in self.iter_models():
            if model.id == model_id:
                return model
        return None

    def exists(self, model_id: Optional[str]) -> bool:
        return self.find(model_id) is not None

    def list(self) -> List[CatalogItem]:
        """The top-level catalog (a shallow copy)."""
        return list(self._items)

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_models())

    def clear(self) -> None:
        self._items.clear()
        self.next_page_token = None
