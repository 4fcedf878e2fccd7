"""Identity resolution against the current metadata provider."""

from __future__ import annotations

import logging

from providers.base import ExternalCandidate, MetadataProvider
from reconcile.matching import TitleMatcher, build_matcher

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Pick the provider candidate that denotes the same game as a local title.

    Candidates are checked in the provider's relevance order and the first one
    accepted by the matcher wins; nothing is re-ranked locally.
    """

    def __init__(
        self,
        provider: MetadataProvider,
        *,
        search_limit: int = 10,
        strategy: str = "containment",
        threshold: float = 90.0,
        matcher: TitleMatcher | None = None,
    ) -> None:
        self._provider = provider
        self._search_limit = max(1, int(search_limit))
        self._matches = matcher or build_matcher(strategy, threshold)

    def resolve(self, local_title: str) -> ExternalCandidate | None:
        """Return the matching candidate for ``local_title`` or ``None``.

        Provider errors propagate to the caller.
        """

        candidates = self._provider.search_games(local_title, limit=self._search_limit)
        if not candidates:
            logger.warning("No %s results for %r", self._provider.name, local_title)
            return None

        for candidate in candidates[: self._search_limit]:
            if candidate.name and self._matches(local_title, candidate.name):
                logger.info(
                    "Resolved %r to %s game %s (%r)",
                    local_title,
                    self._provider.name,
                    candidate.id,
                    candidate.name,
                )
                return candidate

        logger.warning(
            "No good %s match found for %r among %d candidates",
            self._provider.name,
            local_title,
            len(candidates),
        )
        return None


__all__ = ["IdentityResolver"]
