"""
Pluggable trust and vetting providers.

A provider is any callable ``(candidate) -> TrustVettingSignal``. The trust
provider supplies ``trust_score``; the vetting provider supplies
``vetted_status``. Both default to "always unknown", in which case the
reranker applies its fallback quality gate and skips the trust tiebreak.
"""

from typing import Callable, Dict, Optional

from .models import Candidate, TrustVettingSignal

SignalProvider = Callable[[Candidate], TrustVettingSignal]


def unknown_trust_provider(candidate: Candidate) -> TrustVettingSignal:
    return TrustVettingSignal.unknown()


def unknown_vetting_provider(candidate: Candidate) -> TrustVettingSignal:
    return TrustVettingSignal.unknown()


class StaticSignalProvider:
    """
    Provider backed by a fixed identifier -> signal table.

    Useful for wiring an offline export of an external rating source.
    Identifiers missing from the table resolve to unknown.
    """

    def __init__(self, signals: Dict[str, TrustVettingSignal], source: str = "static"):
        self.signals = dict(signals)
        self.source = source

    @classmethod
    def from_scores(cls, scores: Dict[str, float], source: str = "static") -> "StaticSignalProvider":
        return cls({k: TrustVettingSignal(trust_score=v, source=source) for k, v in scores.items()}, source)

    @classmethod
    def from_vetted(cls, statuses: Dict[str, bool], source: str = "static") -> "StaticSignalProvider":
        return cls(
            {k: TrustVettingSignal(vetted_status="true" if v else "false", source=source) for k, v in statuses.items()},
            source,
        )

    def __call__(self, candidate: Candidate) -> TrustVettingSignal:
        signal: Optional[TrustVettingSignal] = self.signals.get(candidate.identifier)
        if signal is None and candidate.slug:
            signal = self.signals.get(candidate.slug)
        return signal or TrustVettingSignal.unknown(self.source)
