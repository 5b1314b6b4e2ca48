from decimal import Decimal

import pytest

from portal import catalog
from portal.errors import NotFound
from portal.models import Product


def test_static_fallback_when_no_row(db):
    item = catalog.resolve_product(db, "seo-local")
    assert item.name == "Local SEO Package"
    assert item.price == Decimal("2000")


def test_database_row_is_authoritative(db):
    db.add(Product(slug="seo-local", name="Local SEO (2025)", category="seo", price_usd=Decimal("2200")))
    db.commit()

    assert catalog.resolve_product(db, "seo-local").price == Decimal("2200")


def test_inactive_row_falls_back_to_static(db):
    db.add(Product(slug="seo-local", name="Old SEO", category="seo",
                   price_usd=Decimal("999"), is_active=False))
    db.commit()

    assert catalog.resolve_product(db, "seo-local").price == Decimal("2000")


def test_database_only_product(db):
    db.add(Product(slug="audit-basic", name="Website Audit", category="seo", price_usd=Decimal("350")))
    db.commit()

    assert catalog.find_product(db, "audit-basic").name == "Website Audit"


def test_unknown_slug(db):
    assert catalog.find_product(db, "does-not-exist") is None
    with pytest.raises(NotFound):
        catalog.resolve_product(db, "does-not-exist")


def test_price_order_sums_addons(db):
    product, addons, total = catalog.price_order(db, "google-ads-starter", ["branding-starter"])

    assert product.slug == "google-ads-starter"
    assert [a.slug for a in addons] == ["branding-starter"]
    assert total == Decimal("4000.00")


def test_price_order_rejects_unknown_addon(db):
    with pytest.raises(NotFound):
        catalog.price_order(db, "seo-local", ["not-a-product"])
