from __future__ import annotations

import logging
from typing import List, Tuple

import yaml

from aviso.errors import NotFoundError, ValidationError
from aviso.models import Source, SourceUpdate
from aviso.services.repository import ArticleRepository


logger = logging.getLogger("aviso.registry")


def load_sources_file(path: str) -> List[Source]:
    with open(path, "r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    rows = payload.get("sources", []) if isinstance(payload, dict) else payload
    sources: List[Source] = []
    for row in rows or []:
        try:
            sources.append(Source.model_validate(row))
        except Exception as exc:
            raise ValidationError(f"invalid source entry {row.get('id') if isinstance(row, dict) else row!r}: {exc}") from exc
    return sources


class SourceRegistry:
    """Owns Source records. Ratings are editorial inputs and are only changed here."""

    def __init__(self, repo: ArticleRepository):
        self.repo = repo

    def list_sources(self) -> List[Source]:
        return self.repo.list_sources()

    def list_active_sources(self) -> List[Source]:
        return [s for s in self.repo.list_sources() if s.active]

    def get(self, source_id: str) -> Source:
        source = self.repo.get_source(source_id)
        if source is None:
            raise NotFoundError(f"Source {source_id} not found")
        return source

    def register(self, source: Source) -> Source:
        self.repo.put_source(source)
        return source

    def load_file(self, path: str) -> int:
        sources = load_sources_file(path)
        for source in sources:
            existing = self.repo.get_source(source.id)
            if existing is not None:
                source.last_fetched_at = existing.last_fetched_at
            self.repo.put_source(source)
        logger.info("registry loaded %s sources from %s", len(sources), path)
        return len(sources)

    def prepare_update(self, source_id: str, update: SourceUpdate) -> Tuple[Source, bool]:
        """Apply an edit in memory. The flag says whether trust or bias ratings changed."""
        source = self.get(source_id)
        changes = update.model_dump(exclude_none=True)
        if not changes:
            raise ValidationError("no fields to update")
        ratings_changed = False
        if update.trust_rating is not None and update.trust_rating != source.trust_rating:
            ratings_changed = True
        if update.bias_rating is not None and update.bias_rating != source.bias_rating:
            ratings_changed = True
        if update.transparency_score is not None and update.transparency_score != source.transparency_score:
            ratings_changed = True
        updated = source.model_copy(
            update={
                "trust_rating": update.trust_rating if update.trust_rating is not None else source.trust_rating,
                "bias_rating": update.bias_rating or source.bias_rating,
                "transparency_score": (
                    update.transparency_score if update.transparency_score is not None else source.transparency_score
                ),
                "active": update.active if update.active is not None else source.active,
                "auto_publish": update.auto_publish if update.auto_publish is not None else source.auto_publish,
            }
        )
        logger.info("registry edit source=%s fields=%s ratings_changed=%s", source_id, sorted(changes), ratings_changed)
        return updated, ratings_changed
