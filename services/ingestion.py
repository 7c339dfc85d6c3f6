"""
Provider title ingestion.

Loads categories and titles through a provider adapter, matches new titles
against TMDB and persists the result in the provider's titles collection.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from db.crud import provider_titles as provider_titles_crud
from db.crud import providers as providers_crud
from db.database import MongoStore
from db.enums import TitleType
from db.schemas.titles import ProviderTitle
from providers.base import BaseProvider, FetchReport
from services.matcher import TitleMatcher
from utils.exceptions import UpstreamAuthError, UpstreamError, error_kind

logger = logging.getLogger(__name__)


@dataclass
class IngestionSummary:
    provider_id: str
    loaded: dict[str, int] = field(default_factory=dict)
    matched: int = 0
    ignored: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "providerId": self.provider_id,
            "loaded": dict(self.loaded),
            "matched": self.matched,
            "ignored": self.ignored,
            "errors": list(self.errors),
        }


class IngestionService:
    def __init__(self, store: MongoStore, matcher: TitleMatcher, match_concurrency: int = 20):
        self.store = store
        self.matcher = matcher
        self.match_concurrency = match_concurrency

    async def sync_provider(
        self, adapter: BaseProvider, since: datetime | None = None
    ) -> IngestionSummary:
        """
        Ingest movies and TV shows of one provider in parallel.

        A type that fails with a transient or HTTP error counts as zero titles
        for this run.

        Raises:
            UpstreamAuthError: The provider rejected its credentials
        """
        summary = IngestionSummary(adapter.provider_id)
        title_types = list(TitleType)
        results = await asyncio.gather(
            *(self.sync_type(adapter, title_type, since, summary) for title_type in title_types),
            return_exceptions=True,
        )
        for title_type, result in zip(title_types, results):
            if isinstance(result, UpstreamAuthError):
                raise result
            if isinstance(result, UpstreamError):
                logger.error(f"{adapter.provider_id}: failed to sync {title_type}: {result}")
                summary.loaded[title_type.value] = 0
                summary.errors.append(
                    {"id": title_type.value, "error": str(result), "kind": error_kind(result)}
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                summary.loaded[title_type.value] = result
        logger.info(
            f"{adapter.provider_id}: ingested {summary.loaded}, matched {summary.matched}, "
            f"ignored {summary.ignored}, errors {len(summary.errors)}"
        )
        return summary

    async def sync_type(
        self,
        adapter: BaseProvider,
        title_type: TitleType,
        since: datetime | None,
        summary: IngestionSummary,
    ) -> int:
        provider_id = adapter.provider_id
        categories = await adapter.load_categories(title_type)
        await providers_crud.save_categories(self.store, provider_id, categories)

        existing = await provider_titles_crud.get_title_index(self.store, provider_id, title_type)
        report = await adapter.load_titles(title_type, since, existing)
        titles: list[ProviderTitle] = report.items

        in_batch = {title.title_key for title in titles}
        unmatched = [
            title
            for title in existing.values()
            if title.tmdb_id is None and not title.ignored and title.title_key not in in_batch
        ]
        pending = [title for title in titles if title.tmdb_id is None and not title.ignored]
        await self.match_titles(pending + unmatched, report)

        # Previously unmatched titles are rewritten only when the matcher decided
        resolved = [title for title in unmatched if title.tmdb_id is not None or title.ignored]
        saved = await provider_titles_crud.upsert_titles(self.store, provider_id, titles + resolved)

        for title in titles + resolved:
            if title.ignored:
                summary.ignored += 1
            elif title.tmdb_id is not None:
                summary.matched += 1
        summary.errors.extend(report.errors)
        logger.debug(f"{provider_id}: saved {saved} {title_type}")
        return len(titles)

    async def match_titles(self, titles: list[ProviderTitle], report: FetchReport):
        """Run the matcher over ``titles`` in place; TMDB failures leave a title unmatched."""
        if not titles:
            return
        semaphore = asyncio.Semaphore(self.match_concurrency)

        async def match(title: ProviderTitle):
            async with semaphore:
                try:
                    result = await self.matcher.match(title)
                except UpstreamAuthError:
                    raise
                except UpstreamError as e:
                    logger.warning(f"Matching {title.title_key} failed: {e}")
                    report.add_error(title.title_key, e)
                    return
                title.tmdb_id = result.tmdb_id
                title.ignored = not result.matched
                title.ignored_reason = result.reason

        results = await asyncio.gather(
            *(match(title) for title in titles), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
