"""
Database schemas package.

This module re-exports all Pydantic schemas for easy importing:
    from db.schemas import ProviderConfig, CanonicalTitle, ...
"""

from db.schemas.jobs import (
    ActionResponse,
    JobInfo,
    JobRecord,
    JobsResponse,
    TriggerResponse,
)
from db.schemas.providers import (
    ApiRate,
    EnabledCategories,
    ProviderCategory,
    ProviderChangeRequest,
    ProviderConfig,
)
from db.schemas.titles import (
    CanonicalTitle,
    ProviderTitle,
    StreamSources,
    TitleStream,
    build_stream_key,
    build_title_key,
)

__all__ = [
    "ActionResponse",
    "ApiRate",
    "CanonicalTitle",
    "EnabledCategories",
    "JobInfo",
    "JobRecord",
    "JobsResponse",
    "ProviderCategory",
    "ProviderChangeRequest",
    "ProviderConfig",
    "ProviderTitle",
    "StreamSources",
    "TitleStream",
    "TriggerResponse",
    "build_stream_key",
    "build_title_key",
]
