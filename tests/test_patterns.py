from __future__ import annotations

from webaccess.access_core.extract.patterns import (
    deobfuscate_emails,
    extract_emails,
    extract_phones,
    extract_products,
    merge_products,
)
from webaccess.access_core.models.interfaces import ProductSummary


def test_extract_emails_prefers_mailto_and_dedupes():
    html = """
    <p>Write to Sales@Acme.io or <a href="mailto:support@acme.io?subject=Hi">support</a></p>
    <p>sales@acme.io</p>
    """
    assert extract_emails(html) == ["support@acme.io", "sales@acme.io"]


def test_extract_emails_filters_junk_addresses():
    html = """
    noreply@acme.io no-reply@acme.io user@example.com
    d41d8cd98f00b204e9800998ecf8427e@acme.io logo@2x.png
    abc123@sentry.io real.person@acme.io icon.png@cdn.acme.io
    """
    assert extract_emails(html) == ["real.person@acme.io"]


def test_extract_emails_keeps_example_org():
    assert extract_emails("contact: info@example.org") == ["info@example.org"]


def test_deobfuscate_emails_handles_common_spellings():
    assert "jane@acme.io" in deobfuscate_emails("jane [at] acme [dot] io")
    assert extract_emails("jane (at) acme (dot) io") == ["jane@acme.io"]
    assert extract_emails("jane&#64;acme.io") == ["jane@acme.io"]


def test_extract_phones_normalizes_formatting():
    text = "Call 555-123-4567 or (555) 123-4567. Fax: +44 20 7946 0958. Order #42."
    phones = extract_phones(text)
    assert "5551234567" in phones
    assert all(7 <= len(phone.lstrip("+")) <= 15 for phone in phones)
    assert len(phones) == len(set(phones))


def test_extract_phones_empty():
    assert extract_phones("") == []
    assert extract_phones("no digits here") == []


def test_extract_phones_enforces_digit_count():
    assert extract_phones("Ref 123 456.") == []
    assert extract_phones("Card 1234567890123456 on file") == []
    assert extract_phones("Call 555-1234 today.") == ["5551234"]
    assert extract_phones("Intl: +123 4567 8901 2345") == ["+123456789012345"]


PRODUCT_HTML = """
<div class="product-card">
  <a href="/product/red-shoe"><h3 class="product-title">Red Shoe</h3></a>
  <span class="price">$49.00</span>
</div>
<div class="product-card">
  <a href="/product/blue-shoe"><h3 class="product-title">Blue Shoe</h3></a>
</div>
<div class="product-card">
  <a href="/product/red-shoe">Duplicate</a>
</div>
"""


def test_extract_products_from_cards():
    products = extract_products(PRODUCT_HTML, "https://shop.example.com/")
    assert products == [
        ProductSummary(name="Red Shoe", url="https://shop.example.com/product/red-shoe", price="$49.00"),
        ProductSummary(name="Blue Shoe", url="https://shop.example.com/product/blue-shoe", price=None),
    ]


def test_extract_products_respects_limit():
    assert len(extract_products(PRODUCT_HTML, "https://shop.example.com/", max_products=1)) == 1


def test_merge_products_dedupes_by_url_and_caps():
    a = ProductSummary(name="A", url="https://s.com/a")
    b = ProductSummary(name="B", url="https://s.com/b")
    c = ProductSummary(name="C", url="https://s.com/c")
    merged = merge_products([a], [ProductSummary(name="A again", url="https://s.com/a"), b, c], limit=2)
    assert merged == [a, b]
