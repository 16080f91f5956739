"""
Reference-data catalog protocol.

Products, stores and suppliers are owned outside this core.  The ledger
only needs display names (exports, search) and name lookups.
"""

from __future__ import annotations

from typing import Protocol


class Catalog(Protocol):
    def product_name(self, product_id: str) -> str | None: ...

    def store_name(self, store_id: str) -> str | None: ...

    def supplier_name(self, supplier_id: str) -> str | None: ...

    def find_products(self, term: str) -> set[str]: ...

    def find_stores(self, term: str) -> set[str]: ...


class InMemoryCatalog:
    """Dictionary-backed catalog for embedding and tests."""

    def __init__(
        self,
        products: dict[str, str] | None = None,
        stores: dict[str, str] | None = None,
        suppliers: dict[str, str] | None = None,
    ):
        self.products = dict(products or {})
        self.stores = dict(stores or {})
        self.suppliers = dict(suppliers or {})

    def product_name(self, product_id: str) -> str | None:
        return self.products.get(product_id)

    def store_name(self, store_id: str) -> str | None:
        return self.stores.get(store_id)

    def supplier_name(self, supplier_id: str) -> str | None:
        return self.suppliers.get(supplier_id)

    @staticmethod
    def _match(names: dict[str, str], term: str) -> set[str]:
        needle = term.lower()
        return {key for key, name in names.items() if needle in name.lower()}

    def find_products(self, term: str) -> set[str]:
        return self._match(self.products, term)

    def find_stores(self, term: str) -> set[str]:
        return self._match(self.stores, term)
