"""
Database CRUD operations package.

Operations are grouped by collection and take the ``MongoStore`` first.

Usage:
    from db.crud import providers, titles
    provider = await providers.get_provider(store, "px")
    await titles.delete_title(store, "movies-438631")
"""

from db.crud import jobs, provider_titles, providers, settings, titles, users

__all__ = ["jobs", "provider_titles", "providers", "settings", "titles", "users"]
