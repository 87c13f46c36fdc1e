"""
Sale Write-Back

Copies the latest recorded sale resolved to each property onto its
last_sale_price, last_sale_date and price_per_sqft columns. Those columns
feed the ZIP market aggregates and the opportunity score.

Sales reach a property through the regular resolution tiers. Only exact
(lot BBL) and address matches are written back: a registry match links a
single condo unit's sale to its whole building, and one unit's price is not
the building's.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from src.propsignal.db.models import AcrisSale, EntityResolutionRecord, Property
from src.propsignal.pipelines.entity_resolution import ADDRESS, EXACT
from src.propsignal.utils.logger import get_logger

logger = get_logger(__name__)

SALES_SOURCE_SYSTEM = "acris_sales"
WRITE_BACK_MATCH_TYPES = (EXACT, ADDRESS)


@dataclass(frozen=True)
class MatchedSale:
    """One staged sale with the property it resolved to."""
    property_id: str
    match_type: str
    sale_price: float
    sale_date: date
    gross_square_feet: Optional[int] = None


def latest_sales(sales: Iterable[MatchedSale]) -> Dict[str, MatchedSale]:
    """
    Latest sale per property. Same-day sales keep the higher price.
    """
    latest: Dict[str, MatchedSale] = {}
    for sale in sales:
        current = latest.get(sale.property_id)
        if current is None or (sale.sale_date, sale.sale_price) > (current.sale_date, current.sale_price):
            latest[sale.property_id] = sale
    return latest


def price_per_sqft(
    sale_price: float,
    gross_square_feet: Optional[int],
    property_sqft: Optional[int]
) -> Optional[float]:
    """
    Sale price over the sale's gross area, falling back to the property's.

    Returns:
        Price per square foot rounded to cents, or None without an area
    """
    area = gross_square_feet if gross_square_feet and gross_square_feet > 0 else property_sqft
    if not area or area <= 0:
        return None
    return round(sale_price / area, 2)


class SaleWriteBack:
    """Runs after entity resolution, before market aggregates are refreshed."""

    def matched_sales(self, session: Session) -> List[MatchedSale]:
        query = (
            select(
                EntityResolutionRecord.matched_property_id,
                EntityResolutionRecord.match_type,
                AcrisSale.sale_price,
                AcrisSale.sale_date,
                AcrisSale.gross_square_feet,
            )
            .join(AcrisSale, AcrisSale.source_id == EntityResolutionRecord.source_record_id)
            .where(
                and_(
                    EntityResolutionRecord.source_system == SALES_SOURCE_SYSTEM,
                    EntityResolutionRecord.matched_property_id.isnot(None),
                )
            )
            .order_by(EntityResolutionRecord.source_record_id)
        )
        return [MatchedSale(*row) for row in session.execute(query).all()]

    def write_back(self, session: Session) -> Dict[str, Any]:
        """
        Write each property's latest matched sale.

        A property whose recorded last sale is newer than every matched sale
        keeps it. Rewriting identical values is not counted as an update.

        Returns:
            {"matched_sales", "registry_skipped", "properties_updated", "older_than_recorded"}
        """
        sales = self.matched_sales(session)
        eligible = [sale for sale in sales if sale.match_type in WRITE_BACK_MATCH_TYPES]
        latest = latest_sales(eligible)

        properties = {}
        if latest:
            query = select(Property).where(Property.id.in_(list(latest)))
            properties = {prop.id: prop for prop in session.execute(query).scalars()}

        updated = 0
        older = 0
        for property_id in sorted(latest):
            prop = properties.get(property_id)
            if prop is None:
                continue
            sale = latest[property_id]
            if prop.last_sale_date is not None and prop.last_sale_date > sale.sale_date:
                older += 1
                continue

            values = (sale.sale_price, sale.sale_date, price_per_sqft(sale.sale_price, sale.gross_square_feet, prop.sqft))
            if (prop.last_sale_price, prop.last_sale_date, prop.price_per_sqft) == values:
                continue
            prop.last_sale_price, prop.last_sale_date, prop.price_per_sqft = values
            updated += 1

        session.flush()
        result = {
            "matched_sales": len(sales),
            "registry_skipped": len(sales) - len(eligible),
            "properties_updated": updated,
            "older_than_recorded": older,
        }
        logger.info("property_sales_written", **result)
        return result
