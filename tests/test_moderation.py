import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from aviso.config import default_settings
from aviso.engine.text import to_iso
from aviso.errors import NotFoundError, ValidationError
from aviso.main import build_services
from aviso.services.repository import SqlArticleRepository
from aviso.models import (
    Article,
    ArticleUpdate,
    BiasRating,
    BulkOperationRequest,
    FactCheckRequest,
    ModerationRequest,
    Source,
    SourceUpdate,
)


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _article(aid, source_id="wire", hours_ago=1, **kw):
    return Article(
        id=aid,
        source_id=source_id,
        source_name=source_id.upper(),
        canonical_url=f"https://{source_id}.example.com/{aid}",
        title=f"Headline {aid}",
        published_at=to_iso(NOW - timedelta(hours=hours_ago)),
        imported_at=to_iso(NOW),
        **kw,
    )


class ModerationServiceTests(unittest.TestCase):
    def setUp(self):
        self.services = build_services(default_settings(), use_cache=False)
        self.services.moderation.clock = lambda: NOW
        self.repo = self.services.repo
        self.services.registry.register(Source(id="wire", name="Wire", trust_rating=70))
        for aid in ("a1", "a2", "a3"):
            self.repo.put_article(_article(aid))
        self.repo.put_article(_article("d1", status="draft", moderation_status="pending", is_automated=False))

    def test_bulk_delete_reports_missing_ids(self):
        op = self.services.moderation.bulk(BulkOperationRequest(operation="delete", article_ids=["a1", "ghost", "a2"]))
        self.assertEqual(op.success, 2)
        self.assertEqual(op.failed, 1)
        self.assertEqual(op.errors, ["Article ghost not found"])
        self.assertEqual(op.status, "partial")
        self.assertIsNone(self.repo.get_article("a1"))
        self.assertIsNone(self.repo.get_article("a2"))
        self.assertIsNotNone(self.repo.get_article("a3"))
        self.assertEqual([h.id for h in self.services.moderation.bulk_history()], [op.id])

    def test_invalid_params_fail_before_any_mutation(self):
        with self.assertRaises(ValidationError):
            self.services.moderation.bulk(
                BulkOperationRequest(operation="update_trust_score", article_ids=["a1"], params={"trust_score": 140})
            )
        with self.assertRaises(ValidationError):
            self.services.moderation.bulk(
                BulkOperationRequest(operation="update_category", article_ids=["a1"], params={"category": "knitting"})
            )
        self.assertIsNone(self.repo.get_article("a1").trust_override)
        self.assertEqual(self.services.moderation.bulk_history(), [])

    def test_bulk_updates(self):
        mod = self.services.moderation
        mod.bulk(BulkOperationRequest(operation="update_category", article_ids=["a1"], params={"category": "Technology"}))
        mod.bulk(BulkOperationRequest(operation="update_trust_score", article_ids=["a2"], params={"trust_score": 88}))
        mod.bulk(BulkOperationRequest(operation="archive", article_ids=["a3"]))
        self.assertEqual(self.repo.get_article("a1").category, "tech")
        self.assertEqual(self.repo.get_article("a2").effective_trust(), 88)
        archived = self.repo.get_article("a3")
        self.assertEqual(archived.status, "draft")
        self.assertEqual(archived.moderation_status, "archived")

    def test_all_missing_is_failed(self):
        op = self.services.moderation.bulk(BulkOperationRequest(operation="publish", article_ids=["x", "y"]))
        self.assertEqual(op.status, "failed")
        self.assertEqual(op.failed, 2)

    def test_approve_publishes_pending_draft(self):
        mod = self.services.moderation
        self.assertEqual([a.id for a in mod.list_articles(status="pending").articles], ["d1"])
        record = mod.moderate(ModerationRequest(article_id="d1", status="approved", moderator="ed"))
        self.assertEqual(record.created_at, to_iso(NOW))
        article = self.repo.get_article("d1")
        self.assertEqual(article.status, "published")
        self.assertEqual(article.moderation_status, "approved")
        self.assertEqual(mod.list_articles(status="pending").total, 0)
        self.assertEqual(len(self.repo.list_moderations("d1")), 1)

    def test_reject_and_flag(self):
        mod = self.services.moderation
        mod.moderate(ModerationRequest(article_id="a1", status="rejected", reason="off-topic"))
        mod.moderate(ModerationRequest(article_id="a2", status="flagged"))
        self.assertEqual(self.repo.get_article("a1").status, "draft")
        self.assertEqual(self.repo.get_article("a2").status, "published")
        self.assertEqual([a.id for a in mod.list_articles(status="flagged").articles], ["a2"])

    def test_moderating_missing_article(self):
        with self.assertRaises(NotFoundError):
            self.services.moderation.moderate(ModerationRequest(article_id="ghost", status="approved"))

    def test_list_articles_rejects_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.services.moderation.list_articles(status="weird")

    def test_update_article(self):
        mod = self.services.moderation
        updated = mod.update_article("a1", ArticleUpdate(title="  New title ", category="sport", trust_override=12))
        self.assertEqual(updated.title, "New title")
        self.assertEqual(updated.category, "sports")
        self.assertEqual(self.repo.get_article("a1").trust_override, 12)
        cleared = mod.update_article("a1", ArticleUpdate(clear_trust_override=True))
        self.assertIsNone(cleared.trust_override)
        with self.assertRaises(ValidationError):
            mod.update_article("a1", ArticleUpdate(category="knitting"))

    def test_source_rerating_rescores_its_articles(self):
        mod = self.services.moderation
        mod.update_source("wire", SourceUpdate(trust_rating=95, bias_rating=BiasRating(factual="very-high", overall=95)))
        article = self.repo.get_article("a3")
        self.assertIsNotNone(article.trust_score)
        self.assertEqual(article.trust_score.source_credibility, 95)
        self.assertEqual(self.services.registry.get("wire").trust_rating, 95)
        with self.assertRaises(ValidationError):
            mod.update_source("wire", SourceUpdate())
        with self.assertRaises(NotFoundError):
            mod.update_source("ghost", SourceUpdate(active=False))

    def test_source_rerating_is_one_commit(self):
        generation = self.repo.generation()
        with patch.object(SqlArticleRepository, "commit_batch", side_effect=RuntimeError("disk full")):
            with self.assertRaises(RuntimeError):
                self.services.moderation.update_source("wire", SourceUpdate(trust_rating=95))
        self.assertEqual(self.services.registry.get("wire").trust_rating, 70)
        self.assertIsNone(self.repo.get_article("a3").trust_score)
        self.assertEqual(self.repo.generation(), generation)

        self.services.moderation.update_source("wire", SourceUpdate(trust_rating=95))
        self.assertEqual(self.repo.generation(), generation + 1)
        self.assertEqual(self.repo.get_article("a3").trust_score.source_credibility, 95)

    def test_toggling_active_keeps_scores(self):
        source = self.services.moderation.update_source("wire", SourceUpdate(active=False))
        self.assertFalse(source.active)
        self.assertFalse(self.services.registry.get("wire").active)
        self.assertIsNone(self.repo.get_article("a1").trust_score)

    def test_admin_paging_is_validated(self):
        mod = self.services.moderation
        with self.assertRaises(ValidationError):
            mod.list_articles(offset=-2)
        with self.assertRaises(ValidationError):
            mod.list_articles(limit=0)
        with self.assertRaises(ValidationError):
            mod.bulk_history(limit=-1)
        page = mod.list_articles(limit=2, offset=2)
        self.assertEqual(page.total, 4)
        self.assertEqual(len(page.articles), 2)
        self.assertFalse(page.has_more)

    def test_admin_category_filter_accepts_aliases(self):
        self.services.moderation.update_article("a1", ArticleUpdate(category="tech"))
        page = self.services.moderation.list_articles(category="Technology")
        self.assertEqual([a.id for a in page.articles], ["a1"])
        with self.assertRaises(ValidationError):
            self.services.moderation.list_articles(category="knitting")

    def test_fact_check_override(self):
        article = self.services.moderation.fact_check(
            FactCheckRequest(article_id="a1", status="false", sources=["https://www.politifact.com/x"], notes="checked")
        )
        self.assertEqual(article.fact_check.status, "false")
        self.assertEqual(article.trust_score.factual_accuracy, 0)
        with self.assertRaises(NotFoundError):
            self.services.moderation.fact_check(FactCheckRequest(article_id="ghost", status="verified"))

    def test_stats(self):
        stats = self.services.moderation.stats()
        self.assertEqual(stats.total_articles, 4)
        self.assertEqual(stats.published_articles, 3)
        self.assertEqual(stats.pending_moderation, 1)
        self.assertEqual(stats.curated_articles, 1)
        self.assertEqual(stats.today_articles, 4)
        self.assertEqual(stats.total_sources, 1)


if __name__ == "__main__":
    unittest.main()
