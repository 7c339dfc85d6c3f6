"""
Read access to canonical titles and their playlist entries.
"""

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_engine
from db.crud import titles as titles_crud
from db.schemas.titles import CanonicalTitle
from jobs.context import EngineContext
from utils.exceptions import TitleNotFoundError
from utils.m3u_parser import render_m3u

router = APIRouter(prefix="/api/titles", tags=["Titles"])


async def _load_title(engine: EngineContext, title_key: str) -> CanonicalTitle:
    title = await titles_crud.get_title(engine.store, title_key)
    if title is None:
        raise TitleNotFoundError(f"Title '{title_key}' not found")
    return title


@router.get("/{title_key}")
async def get_title(title_key: str, engine: EngineContext = Depends(get_engine)):
    title = await _load_title(engine, title_key)
    streams = await titles_crud.get_title_streams(engine.store, title_key)
    return {
        "title": title.model_dump(mode="json"),
        "streams": [stream.model_dump(mode="json") for stream in streams],
    }


@router.get("/{title_key}/playlist.m3u")
async def get_title_playlist(title_key: str, engine: EngineContext = Depends(get_engine)):
    """M3U entries of every stream of a title, pointing at the web API stream proxy."""
    await _load_title(engine, title_key)
    streams = await titles_crud.get_title_streams(engine.store, title_key)
    return Response(
        content=render_m3u(streams, engine.settings.web_api_url),
        media_type="application/x-mpegurl",
    )
