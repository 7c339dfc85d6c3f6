"""
Title matcher.

Maps a provider title to a TMDB id by searching TMDB with the normalized name
and scoring each candidate. Titles that cannot be matched with confidence get
an ``IgnoredReason`` instead.
"""

import logging
from dataclasses import dataclass

from thefuzz import fuzz

from db.enums import IgnoredReason, TitleType
from db.schemas.titles import ProviderTitle
from providers.tmdb import TMDBCandidate, TMDBProvider
from utils.title_utils import extract_year_from_release_date, normalize_title, parse_year

logger = logging.getLogger(__name__)

EXACT_NAME_SCORE = 100
PREFIX_NAME_SCORE = 50
SIMILARITY_WEIGHT = 20
EXACT_YEAR_SCORE = 30
YEAR_DIFF_PENALTY = 10
TYPE_MISMATCH_PENALTY = 15


@dataclass(frozen=True)
class MatchResult:
    tmdb_id: int | None = None
    reason: IgnoredReason | None = None

    @property
    def matched(self) -> bool:
        return self.tmdb_id is not None

    @classmethod
    def ignored(cls, reason: IgnoredReason) -> "MatchResult":
        return cls(tmdb_id=None, reason=reason)


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: TMDBCandidate
    score: float


def score_candidate(
    name: str, year: int | None, title_type: TitleType, candidate: TMDBCandidate
) -> float:
    """
    Score a TMDB candidate against a normalized name.

    Name: +100 when equal, +50 when one is a prefix of the other, otherwise
    20 times the similarity ratio. Year: +30 when equal, -10 per year of
    difference. Type: -15 on mismatch. The total never goes below 0.
    """
    candidate_name, _ = normalize_title(candidate.title)
    if candidate_name == name:
        score = EXACT_NAME_SCORE
    elif candidate_name and (candidate_name.startswith(name) or name.startswith(candidate_name)):
        score = PREFIX_NAME_SCORE
    else:
        score = SIMILARITY_WEIGHT * fuzz.ratio(candidate_name, name) / 100

    candidate_year = candidate.year
    if year is not None and candidate_year is not None:
        difference = abs(candidate_year - year)
        score += EXACT_YEAR_SCORE if difference == 0 else -YEAR_DIFF_PENALTY * difference

    if candidate.media_type != title_type.tmdb_type:
        score -= TYPE_MISMATCH_PENALTY
    return max(score, 0)


class TitleMatcher:
    def __init__(self, tmdb: TMDBProvider, threshold: int = 80, margin: int = 15):
        self.tmdb = tmdb
        self.threshold = threshold
        self.margin = margin

    def decide(self, scored: list[ScoredCandidate], year: int | None) -> MatchResult:
        """
        Pick the winner among scored candidates.

        The top candidate must reach the threshold and lead the runner-up by
        the margin. When only the margin fails, the year is unknown and the
        close candidates disagree on year, the title is ``missing_year``.
        """
        if not scored:
            return MatchResult.ignored(IgnoredReason.NO_CANDIDATE)
        ranked = sorted(scored, key=lambda item: (-item.score, -item.candidate.popularity))
        top = ranked[0]
        runner_up = ranked[1].score if len(ranked) > 1 else 0
        if top.score >= self.threshold and top.score - runner_up >= self.margin:
            return MatchResult(tmdb_id=top.candidate.id)

        if year is None and top.score >= self.threshold:
            close_years = {
                item.candidate.year
                for item in ranked
                if top.score - item.score < self.margin
            }
            if len(close_years) > 1:
                return MatchResult.ignored(IgnoredReason.MISSING_YEAR)
        return MatchResult.ignored(IgnoredReason.AMBIGUOUS_MATCH)

    async def match_name(
        self, name_raw: str, year_raw, title_type: str | TitleType
    ) -> MatchResult:
        """
        Match a raw provider name.

        Raises:
            UpstreamError: TMDB could not be queried; the title stays unmatched
        """
        if title_type not in set(TitleType):
            return MatchResult.ignored(IgnoredReason.UNKNOWN_TYPE)
        title_type = TitleType(title_type)

        name, suffix_year = normalize_title(name_raw)
        if not name:
            return MatchResult.ignored(IgnoredReason.EMPTY_NAME)
        year = parse_year(year_raw) or parse_year(suffix_year)

        candidates = await self.tmdb.search(name, year, title_type)
        scored = [
            ScoredCandidate(candidate, score_candidate(name, year, title_type, candidate))
            for candidate in candidates
        ]
        result = self.decide(scored, year)
        if not result.matched:
            logger.debug(f"No match for {title_type} '{name_raw}' ({year}): {result.reason}")
        return result

    async def match(self, title: ProviderTitle) -> MatchResult:
        """Match a provider title, trusting provider-supplied ids first."""
        if title.tmdb_hint and title.tmdb_hint > 0:
            return MatchResult(tmdb_id=title.tmdb_hint)
        if title.imdb_id:
            tmdb_id = await self.tmdb.find_by_imdb(title.imdb_id, title.type)
            if tmdb_id is not None:
                return MatchResult(tmdb_id=tmdb_id)
        year = title.year or extract_year_from_release_date(title.release_date)
        return await self.match_name(title.title, year, title.type)
