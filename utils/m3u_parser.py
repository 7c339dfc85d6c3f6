"""
M3U playlist utilities.

Parses AGTV style playlists into entries and renders the playlist of
generated title streams.
"""

import logging
import re
from dataclasses import dataclass, field
from urllib.parse import urlparse

from ipytv import playlist
from ipytv.channel import IPTVAttr
from ipytv.exceptions import MalformedPlaylistException

from db.schemas.titles import TitleStream
from utils.exceptions import UpstreamHTTPError

logger = logging.getLogger(__name__)

M3U_HEADER = "#EXTM3U"
DIGITS_PATTERN = re.compile(r"^(\d+)")


@dataclass
class M3UEntry:
    """A single #EXTINF entry and its stream URL."""

    name: str
    url: str
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def tvg_id(self) -> str | None:
        return self.attributes.get(IPTVAttr.TVG_ID.value) or None

    @property
    def tvg_name(self) -> str:
        return self.attributes.get(IPTVAttr.TVG_NAME.value) or self.name

    @property
    def tvg_logo(self) -> str | None:
        return self.attributes.get(IPTVAttr.TVG_LOGO.value) or None

    @property
    def group_title(self) -> str:
        return self.attributes.get(IPTVAttr.GROUP_TITLE.value, "")


def parse_m3u(content: str) -> list[M3UEntry]:
    """
    Parse M3U playlist content.

    Raises:
        UpstreamHTTPError: If the content is not a playlist
    """
    content = (content or "").lstrip("\ufeff").strip()
    if not content:
        return []
    if not content.startswith(M3U_HEADER):
        content = f"{M3U_HEADER}\n{content}"
    try:
        iptv_playlist = playlist.loads(content)
    except MalformedPlaylistException as e:
        raise UpstreamHTTPError(f"Malformed M3U playlist: {e}")

    entries = []
    for channel in iptv_playlist:
        name = re.sub(r"\s+", " ", channel.name or "").strip()
        if not channel.url:
            continue
        entries.append(M3UEntry(name=name, url=channel.url.strip(), attributes=dict(channel.attributes)))
    return entries


def parse_episode_from_url(url: str) -> tuple[int, int] | None:
    """
    Read season and episode numbers from the last two path segments,
    e.g. ``.../show/1/3.mp4`` -> (1, 3).
    """
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if len(segments) < 2:
        return None
    season = DIGITS_PATTERN.match(segments[-2])
    episode = DIGITS_PATTERN.match(segments[-1])
    if not season or not episode:
        return None
    return int(season.group(1)), int(episode.group(1))


def render_m3u(streams: list[TitleStream], base_url: str) -> str:
    """
    Render title streams as an M3U playlist.

    Each entry points to ``{base_url}/api/stream/{proxy_url}``.
    """
    lines = [M3U_HEADER]
    base_url = base_url.rstrip("/")
    for stream in streams:
        if not stream.tvg_name or not stream.proxy_url:
            continue
        params = " ".join(
            f'{key}="{value}"' for key, value in stream.m3u_attributes().items()
        )
        lines.append(f"#EXTINF:-1 {params},{stream.tvg_name}")
        lines.append(f"{base_url}/api/stream/{stream.proxy_url.lstrip('/')}")
    return "\n".join(lines) + "\n"
