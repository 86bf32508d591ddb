"""
Product specification resolver.

Reads packaging ratios from the products table and the current line rate
from production_settings, and returns an immutable ProductSpec.
"""

from typing import Optional
import structlog

from config import get_supabase_client, settings
from models.product import ProductSpec
from utils.date_utils import coerce_quantity
from exceptions import (
    ProductNotFoundError,
    InvalidProductSpecError,
    DatabaseError
)

logger = structlog.get_logger(__name__)


def build_spec(product_row: dict, settings_row: Optional[dict] = None) -> ProductSpec:
    """
    Map stored product + production settings rows to a ProductSpec.

    Args:
        product_row: Row from products (bottles_per_case, bottles_per_truck,
            cases_per_pallet, optional pallets_per_truck)
        settings_row: Row from production_settings, or None

    Returns:
        ProductSpec (ratios not yet validated; unreadable values become 0)
    """
    settings_row = settings_row or {}
    return ProductSpec(
        sku=product_row["name"],
        units_per_case=int(coerce_quantity(product_row.get("bottles_per_case"))),
        cases_per_pallet=int(coerce_quantity(product_row.get("cases_per_pallet"))),
        units_per_truck=int(coerce_quantity(product_row.get("bottles_per_truck"))),
        pallets_per_truck_override=int(coerce_quantity(product_row.get("pallets_per_truck"))) or None,
        production_rate=float(coerce_quantity(settings_row.get("production_rate"))),
        downtime_hours=float(coerce_quantity(settings_row.get("downtime_hours"))),
    )


class ProductService:
    """
    Product specification lookups.

    The engine never writes products; this service is read-only.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "products"
        self.owner_id = settings.supabase_owner_id

    # ===================
    # READ OPERATIONS
    # ===================

    def _get_product_row(self, sku: str) -> Optional[dict]:
        query = self.db.table(self.table).select("*").eq("name", sku)
        if self.owner_id:
            query = query.eq("user_id", self.owner_id)
        # Oldest first so duplicates resolve deterministically
        result = query.order("created_at").limit(1).execute()
        return result.data[0] if result.data else None

    def _get_settings_row(self, product_id: str) -> Optional[dict]:
        result = (
            self.db.table("production_settings")
            .select("*")
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    def get_product_id(self, sku: str) -> str:
        """
        Get the stored UUID for a SKU.

        Raises:
            ProductNotFoundError: If the SKU is unknown
        """
        try:
            row = self._get_product_row(sku)
        except Exception as e:
            logger.error("get_product_id_failed", sku=sku, error=str(e))
            raise DatabaseError("select", str(e))
        if not row:
            raise ProductNotFoundError(sku)
        return row["id"]

    def resolve(self, sku: str) -> ProductSpec:
        """
        Resolve a SKU to its packaging ratios and production rate.

        Args:
            sku: Product name

        Returns:
            ProductSpec

        Raises:
            ProductNotFoundError: If the SKU is unknown
            InvalidProductSpecError: If a packaging ratio is not positive
            DatabaseError: If the store query fails
        """
        logger.debug("resolving_product_spec", sku=sku)

        try:
            product_row = self._get_product_row(sku)
            if not product_row:
                raise ProductNotFoundError(sku)
            settings_row = self._get_settings_row(product_row["id"])
        except ProductNotFoundError:
            logger.info("product_spec_not_found", sku=sku)
            raise
        except Exception as e:
            logger.error(
                "resolve_product_spec_failed",
                sku=sku,
                error=str(e)
            )
            raise DatabaseError("select", str(e))

        spec = build_spec(product_row, settings_row)

        invalid = spec.invalid_ratio()
        if invalid:
            field, value = invalid
            logger.warning(
                "product_spec_invalid",
                sku=sku,
                field=field,
                value=value
            )
            raise InvalidProductSpecError(sku, field, value)

        return spec

    def get_all_skus(self) -> list[str]:
        """
        List the owner's product names in creation order.

        This order is the row order of the master schedule.
        """
        logger.debug("getting_all_skus")

        try:
            query = self.db.table(self.table).select("name, created_at")
            if self.owner_id:
                query = query.eq("user_id", self.owner_id)
            result = query.order("created_at").execute()
        except Exception as e:
            logger.error("get_all_skus_failed", error=str(e))
            raise DatabaseError("select", str(e))

        skus: list[str] = []
        for row in result.data or []:
            name = row.get("name")
            if name and name not in skus:
                skus.append(name)
        return skus


# Singleton instance
_product_service: Optional[ProductService] = None


def get_product_service() -> ProductService:
    """Get or create ProductService instance."""
    global _product_service
    if _product_service is None:
        _product_service = ProductService()
    return _product_service
