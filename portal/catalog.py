from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from portal.errors import NotFound
from portal.models import Product


@dataclass(frozen=True)
class CatalogItem:
    slug: str
    name: str
    price: Decimal
    category: str


def _item(slug, name, category, price):
    return CatalogItem(slug=slug, name=name, price=Decimal(price), category=category)


STATIC_PRODUCTS = {
    item.slug: item
    for item in [
        _item("google-ads-starter", "Google Ads - Starter Campaign", "advertising", "1500"),
        _item("google-ads-pro", "Google Ads - Professional Campaign", "advertising", "3500"),
        _item("meta-ads-starter", "Facebook & Instagram Ads - Starter", "advertising", "1200"),
        _item("meta-ads-pro", "Facebook & Instagram Ads - Professional", "advertising", "3000"),
        _item("seo-local", "Local SEO Package", "seo", "2000"),
        _item("seo-national", "National SEO Package", "seo", "5000"),
        _item("social-media-basic", "Social Media Management - Basic", "social_media", "1800"),
        _item("social-media-premium", "Social Media Management - Premium", "social_media", "4000"),
        _item("web-design-custom", "Custom Web Design", "web_development", "5000"),
        _item("web-app-development", "Web Application Development", "web_development", "12000"),
        _item("branding-starter", "Brand Identity - Starter", "branding", "2500"),
        _item("branding-complete", "Complete Brand Identity", "branding", "6000"),
    ]
}


# an active products row overrides the static table for its slug
def find_product(db: Session, slug: str) -> CatalogItem | None:
    row = (
        db.query(Product)
        .filter(Product.slug == slug, Product.is_active.is_(True))
        .first()
    )
    if row is not None:
        return CatalogItem(
            slug=row.slug, name=row.name, price=Decimal(row.price_usd), category=row.category
        )
    return STATIC_PRODUCTS.get(slug)


def resolve_product(db: Session, slug: str) -> CatalogItem:
    item = find_product(db, slug)
    if item is None:
        raise NotFound(f"Product not found: {slug}")
    return item


def price_order(db: Session, product_slug: str, addon_slugs=()):
    """
    Resolve the main product and every add-on and return
    ``(product, addons, total)``. Any unknown slug raises ``NotFound``.
    """
    product = resolve_product(db, product_slug)
    addons = [resolve_product(db, slug) for slug in addon_slugs]
    total = product.price + sum((addon.price for addon in addons), Decimal("0"))
    return product, addons, total.quantize(Decimal("0.01"))
