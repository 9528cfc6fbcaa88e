from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Protocol

from dental_quotes.schemas.catalog import CatalogItem


class CatalogLookup(Protocol):
    def get_catalog_item(self, catalog_item_id: str) -> CatalogItem | None:
        raise NotImplementedError


class StaticCatalog(CatalogLookup):
    def __init__(self, items: Iterable[CatalogItem] = ()) -> None:
        self._items = {item.catalog_item_id: item for item in items}

    @classmethod
    def from_json(cls, path: Path) -> "StaticCatalog":
        raw = path.read_text(encoding="utf-8")
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON list.")
        return cls(CatalogItem.model_validate(item) for item in data)

    def get_catalog_item(self, catalog_item_id: str) -> CatalogItem | None:
        item = self._items.get(catalog_item_id)
        if item is None or not item.is_active:
            return None
        return item

    def list_items(self) -> list[CatalogItem]:
        return [item for item in self._items.values() if item.is_active]
