import abc
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable

from db.enums import ProviderType, TitleType
from db.schemas.providers import ProviderCategory, ProviderConfig
from db.schemas.titles import ProviderTitle
from utils.exceptions import ConfigError, UpstreamAuthError, error_kind
from utils.http_client import RateLimitedClient
from utils.title_utils import apply_cleanup

logger = logging.getLogger(__name__)


@dataclass
class ProviderMetrics:
    provider_id: str
    title_type: TitleType
    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    total_items_found: int = 0
    total_items_processed: int = 0
    error_counts: Counter = field(default_factory=Counter)
    skip_reasons: Counter = field(default_factory=Counter)

    def stop(self):
        self.end_time = datetime.now()

    def record_found_items(self, count: int):
        self.total_items_found += count

    def record_processed_item(self):
        self.total_items_processed += 1

    def record_error(self, error_type: str):
        self.error_counts[error_type] += 1

    def record_skip(self, reason: str):
        self.skip_reasons[reason] += 1

    def get_summary(self) -> dict:
        duration = (self.end_time or datetime.now()) - self.start_time
        return {
            "provider_id": self.provider_id,
            "type": self.title_type.value,
            "duration_seconds": round(duration.total_seconds(), 2),
            "found": self.total_items_found,
            "processed": self.total_items_processed,
            "skipped": dict(self.skip_reasons),
            "errors": dict(self.error_counts),
        }

    def log_summary(self):
        summary = self.get_summary()
        logger.info(
            f"{self.provider_id} {summary['type']}: found {summary['found']}, "
            f"processed {summary['processed']}, skipped {sum(self.skip_reasons.values())}, "
            f"errors {sum(self.error_counts.values())} in {summary['duration_seconds']}s"
        )


@dataclass
class FetchReport:
    """Partial result of a fetch: the items that succeeded and per-item errors."""

    items: list[Any] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    metrics: ProviderMetrics | None = None

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def add_error(self, item_id: Any, error: BaseException):
        self.errors.append({"id": str(item_id), "error": str(error), "kind": error_kind(error)})


class BaseProvider(abc.ABC):
    """
    Adapter for one upstream IPTV provider.

    Subclasses build ProviderTitles from the upstream feed; persistence and
    matching are done by the ingestion service.
    """

    provider_type: ProviderType

    def __init__(self, config: ProviderConfig, http: RateLimitedClient):
        self.http = http
        self.config: ProviderConfig = config
        self.config_update(config)

    @property
    def provider_id(self) -> str:
        return self.config.id

    def config_update(self, config: ProviderConfig):
        """Validate a new configuration and rebuild the request plans."""
        if config.type != self.provider_type:
            raise ConfigError(
                f"Provider {config.id} is of type {config.type}, expected {self.provider_type}"
            )
        if not config.api_url:
            raise ConfigError(f"Provider {config.id} has no streams URL")
        if not config.username or not config.password:
            raise ConfigError(f"Provider {config.id} is missing credentials")
        self.config = config
        self.http.configure_provider(config.id, config.api_rate)
        self._build_plans()

    @abc.abstractmethod
    def _build_plans(self):
        pass

    async def verify(self):
        """Check the credentials before the first sync."""
        return None

    @abc.abstractmethod
    async def load_categories(self, title_type: TitleType) -> list[ProviderCategory]:
        pass

    @abc.abstractmethod
    async def load_titles(
        self,
        title_type: TitleType,
        since: datetime | None = None,
        existing: dict[str, ProviderTitle] | None = None,
    ) -> FetchReport:
        """
        Load new or changed titles.

        Args:
            title_type: movies or tvshows
            since: Last successful sync; titles not modified after it are skipped
            existing: Stored titles of this type keyed by title_key

        Returns:
            FetchReport with the ProviderTitles to persist
        """

    @abc.abstractmethod
    async def load_extended(self, title_type: TitleType, title_id: str) -> dict:
        pass

    def load_stream_url(self, title: ProviderTitle, slot: str) -> list[str]:
        """Playback URLs of a slot, one per configured streams URL."""
        path = title.streams.get(slot)
        if not path:
            return []
        if path.startswith(("http://", "https://")):
            return [path]
        return [f"{base.rstrip('/')}{path}" for base in self.config.streams_urls if base]

    def is_category_enabled(self, title_type: TitleType, category_id: str | None) -> bool:
        return f"{title_type}-{category_id}" in self.config.enabled_categories.for_type(title_type)

    def clean_title(self, name: str) -> str:
        return apply_cleanup(name or "", self.config.cleanup)

    async def gather_bounded(
        self,
        items: Iterable[Any],
        worker: Callable[[Any], Awaitable[Any]],
        report: FetchReport,
    ) -> list[Any]:
        """
        Run ``worker`` over ``items`` with at most ``api_rate.concurrent`` in flight.

        Per-item failures are logged and recorded on ``report``; authentication
        failures abort the whole fetch.
        """
        semaphore = asyncio.Semaphore(self.config.api_rate.concurrent)

        async def run(item):
            async with semaphore:
                try:
                    return await worker(item)
                except UpstreamAuthError:
                    raise
                except Exception as e:
                    logger.warning(f"{self.provider_id}: failed to process {item}: {e}")
                    report.add_error(item, e)
                    if report.metrics:
                        report.metrics.record_error(error_kind(e))
                    return None

        results = await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return [result for result in results if result is not None]
