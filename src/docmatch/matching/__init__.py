"""Matching engine: criterion scorers, ranking and multi-document combinations."""

from docmatch.matching.cancellation import CancellationToken
from docmatch.matching.combinations import CombinationFinder, enumerate_combinations, find_combinations
from docmatch.matching.composite import CompositeScorer
from docmatch.matching.engine import MatchingEngine
from docmatch.matching.ranker import rank, rank_batch

__all__ = [
    "CancellationToken",
    "CombinationFinder",
    "CompositeScorer",
    "MatchingEngine",
    "enumerate_combinations",
    "find_combinations",
    "rank",
    "rank_batch",
]
