"""
Domain authority scoring for web results.

Looks up how trustworthy a result's source domain is and boosts or demotes
the result's score accordingly. Domains with no known authority are left
alone.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.metrics import track_dropped
from retrieval_shaping.models import Candidate, CandidateKind, DomainAuthorityConfig
from retrieval_shaping.scorers import coerce_signal

_HOST_FALLBACK = re.compile(r"^(?:[a-z][a-z0-9+.-]*://)?([^/?#:]+)", re.IGNORECASE)


def extract_domain(url: Optional[str]) -> Optional[str]:
    """Lowercased host of a URL without a leading 'www.'; None when there is no host."""
    if not url:
        return None
    try:
        host = urlparse(url if "://" in url else f"http://{url}").hostname
    except ValueError:
        host = None
    if not host:
        match = _HOST_FALLBACK.match(url.strip())
        host = match.group(1) if match else None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def candidate_domain(candidate: Candidate) -> Optional[str]:
    if candidate.domain:
        return candidate.domain.lower().removeprefix("www.")
    return extract_domain(candidate.url)


class DomainAuthorityScorer:
    """Adjust web result scores by source authority."""

    def __init__(self, config: Optional[DomainAuthorityConfig] = None):
        self.config = config or DomainAuthorityConfig()

    def authority_for_domain(self, domain: Optional[str]) -> Optional[float]:
        """
        Authority in [0,1] for a domain, or None when it is unknown.

        Custom scores win over the built-in table; both match the domain
        itself first and then each parent domain. Top-level domains with a
        known reputation (gov, edu, org) are the last resort.
        """
        if not domain:
            return None
        labels = domain.split(".")
        for table in (self.config.custom_domain_scores, tc.KNOWN_DOMAIN_AUTHORITY):
            for i in range(len(labels) - 1):
                score = table.get(".".join(labels[i:]))
                if score is not None:
                    return score
        return tc.TLD_AUTHORITY.get(labels[-1])

    def authority_for(self, candidate: Candidate) -> Optional[float]:
        signal = coerce_signal(candidate.authority_score)
        if signal is not None:
            return signal
        return self.authority_for_domain(candidate_domain(candidate))

    def adjust(self, candidate: Candidate) -> Candidate:
        """Boost or demote one candidate; unknown domains pass through unchanged."""
        if not self.config.enabled or not candidate.has_score:
            return candidate
        authority = self.authority_for(candidate)
        if authority is None:
            return candidate

        if authority >= self.config.min_authority_score:
            factor = self.config.high_authority_boost
        else:
            factor = self.config.low_authority_penalty
        score = min(1.0, max(0.0, candidate.score * factor))
        return candidate.with_score(score, authority=authority, authority_factor=factor)

    def apply(self, candidates: Sequence[Candidate]) -> Tuple[List[Candidate], int]:
        """
        Adjust every web candidate and drop low-authority ones when filtering is on.

        Returns:
            (adjusted candidates in input order, number dropped)
        """
        if not self.config.enabled:
            return list(candidates), 0

        kept: List[Candidate] = []
        dropped = 0
        for candidate in candidates:
            if candidate.kind is not CandidateKind.WEB:
                kept.append(candidate)
                continue
            if self.config.filter_by_authority:
                authority = self.authority_for(candidate)
                effective = authority if authority is not None else tc.NEUTRAL_AUTHORITY
                if effective < self.config.min_authority_filter:
                    logger.debug(f"Dropping {candidate.id}: authority {effective:.2f} below filter")
                    dropped += 1
                    continue
            kept.append(self.adjust(candidate))

        track_dropped("authority", "min_authority_filter", dropped)
        return kept, dropped

    def authority_statistics(self, candidates: Sequence[Candidate]) -> Dict[str, float]:
        """Known/unknown counts and mean authority of known domains."""
        known = [a for a in (self.authority_for(c) for c in candidates) if a is not None]
        return {
            "total": len(candidates),
            "known": len(known),
            "unknown": len(candidates) - len(known),
            "mean_authority": sum(known) / len(known) if known else 0.0,
            "high_authority": sum(1 for a in known if a >= self.config.min_authority_score),
        }
