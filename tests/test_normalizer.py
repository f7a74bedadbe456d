import unittest
from datetime import datetime, timezone

from aviso.engine.normalizer import extract_tags, normalize_item, passes_filters, pick_category, resolve_category
from aviso.engine.text import canonicalize_url
from aviso.errors import ParseError
from aviso.models import Source
from aviso.providers.base import RawItem


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _source(**kw):
    base = dict(id="reuters", name="Reuters", feed_url="https://example.com/rss", category="business")
    base.update(kw)
    return Source(**base)


def _raw(**kw):
    base = dict(
        title="Markets rally as inflation cools - Reuters",
        link="https://www.reuters.com/markets/rally/?utm_source=rss&id=7",
        guid="tag:reuters.com,2026:rally-7",
        summary="<p>Stocks climbed on Monday. Analysts said the move was broad.</p>",
        published="Mon, 19 Oct 2026 09:00:00 GMT",
    )
    base.update(kw)
    return RawItem(**base)


class NormalizeItemTests(unittest.TestCase):
    def test_id_is_stable_across_refetches(self):
        first = normalize_item(_raw(), _source(), NOW)
        second = normalize_item(_raw(summary="changed body"), _source(), datetime(2026, 10, 20, tzinfo=timezone.utc))
        self.assertEqual(first.id, second.id)
        self.assertTrue(first.id.startswith("reuters-"))

    def test_id_falls_back_to_canonical_url(self):
        a = normalize_item(_raw(guid=None, link="https://ex.com/a?utm_campaign=x"), _source(), NOW)
        b = normalize_item(_raw(guid=None, link="https://ex.com/a/?utm_medium=y"), _source(), NOW)
        self.assertEqual(a.id, b.id)
        self.assertEqual(a.canonical_url, "https://ex.com/a")

    def test_fields_are_populated(self):
        article = normalize_item(_raw(), _source(), NOW)
        self.assertEqual(article.source_id, "reuters")
        self.assertEqual(article.source_name, "Reuters")
        self.assertEqual(article.published_at, "2026-10-19T09:00:00Z")
        self.assertEqual(article.imported_at, "2026-10-19T12:00:00Z")
        self.assertEqual(article.title_ai, "Markets rally as inflation cools")
        self.assertEqual(article.image_url, "")
        self.assertNotIn("<p>", article.excerpt)
        self.assertEqual(article.status, "published")
        self.assertEqual(article.canonical_url, canonicalize_url("https://www.reuters.com/markets/rally/?id=7"))

    def test_unparseable_date_raises_parse_error(self):
        with self.assertRaises(ParseError) as ctx:
            normalize_item(_raw(published="sometime yesterday"), _source(), NOW)
        self.assertEqual(ctx.exception.source_id, "reuters")

    def test_missing_date_is_never_fabricated(self):
        with self.assertRaises(ParseError):
            normalize_item(_raw(published=None), _source(), NOW)

    def test_missing_title_or_link(self):
        with self.assertRaises(ParseError):
            normalize_item(_raw(title="  "), _source(), NOW)
        with self.assertRaises(ParseError):
            normalize_item(_raw(link=""), _source(), NOW)

    def test_first_usable_image_wins(self):
        article = normalize_item(
            _raw(image_candidates=["", "data:image/png;base64,xx", "https://img.example.com/a.jpg", "https://b.jpg"]),
            _source(),
            NOW,
        )
        self.assertEqual(article.image_url, "https://img.example.com/a.jpg")

    def test_manual_review_sources_produce_drafts(self):
        article = normalize_item(_raw(), _source(auto_publish=False), NOW)
        self.assertEqual(article.status, "draft")
        self.assertEqual(article.moderation_status, "pending")
        self.assertFalse(article.is_automated)


class CategoryTests(unittest.TestCase):
    def test_aliases_resolve(self):
        self.assertEqual(resolve_category("Technology"), "tech")
        self.assertEqual(resolve_category("economy"), "business")
        self.assertIsNone(resolve_category("knitting"))

    def test_item_category_overrides_source(self):
        raw = _raw(categories=["Sport"])
        self.assertEqual(pick_category(raw, _source(), raw.title), "sports")

    def test_source_category_then_inference(self):
        raw = _raw(categories=["unknown-tag"])
        self.assertEqual(pick_category(raw, _source(), raw.title), "business")
        self.assertEqual(pick_category(raw, _source(category=None), "NASA research team"), "science")
        self.assertEqual(pick_category(raw, _source(category=None), "Quiet day"), "world")

    def test_tags_prefer_feed_keywords(self):
        tags = extract_tags("AI startup raises money in the stock market", ["Funding"])
        self.assertEqual(tags[0], "funding")
        self.assertIn("ai", tags)
        self.assertLessEqual(len(tags), 5)


class FilterTests(unittest.TestCase):
    def test_exclude_keywords(self):
        self.assertFalse(passes_filters(_raw(title="Sponsored: buy now"), _source(exclude_keywords=["sponsored"])))

    def test_blocklist_and_allowlist(self):
        raw = _raw(link="https://spam.example.net/x")
        self.assertFalse(passes_filters(raw, _source(blocklist=["example.net"])))
        self.assertFalse(passes_filters(raw, _source(allowlist=["reuters.com"])))
        self.assertTrue(passes_filters(_raw(), _source(allowlist=["reuters.com"])))


if __name__ == "__main__":
    unittest.main()
