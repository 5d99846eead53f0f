"""Tests for the multi-document combination finder."""

from __future__ import annotations

import pytest

from conftest import make_document, make_transaction
from docmatch.config import AmountValidationConfig, CombinationConfig, MatchingConfig
from docmatch.matching import CancellationToken, CombinationFinder, enumerate_combinations, find_combinations
from docmatch.schemas.models import ConfidenceLevel, MatchStrategy


@pytest.fixture
def cfg() -> MatchingConfig:
    return MatchingConfig()


class TestEnumerateCombinations:
    """Iterative k-combination enumerator."""

    def test_lexicographic_order(self):
        assert list(enumerate_combinations("abcd", 2)) == [
            ("a", "b"),
            ("a", "c"),
            ("a", "d"),
            ("b", "c"),
            ("b", "d"),
            ("c", "d"),
        ]

    def test_limit(self):
        assert len(list(enumerate_combinations(range(10), 3, limit=4))) == 4

    def test_full_size(self):
        assert list(enumerate_combinations([1, 2, 3], 3)) == [(1, 2, 3)]

    def test_singletons(self):
        assert list(enumerate_combinations([1, 2], 1)) == [(1,), (2,)]

    @pytest.mark.parametrize("size", [0, 4])
    def test_impossible_sizes(self, size):
        assert list(enumerate_combinations([1, 2, 3], size)) == []

    def test_count_matches_binomial(self):
        assert len(list(enumerate_combinations(range(7), 3))) == 35


class TestAmountStrategy:
    """Subsets whose amounts add up to the payment."""

    def test_split_payment_found(self, cfg):
        txn = make_transaction(amount="-100.00", reference=None)
        pool = [
            make_document(1, total="47.60", invoice_number="A-77"),
            make_document(2, total="52.40", invoice_number="ZZ-1"),
            make_document(3, total="300.00"),
        ]

        results = find_combinations(txn, pool, cfg)

        pair = [r for r in results if r.key == (1, 2)]
        assert len(pair) == 1
        assert pair[0].document_count == 2
        assert pair[0].breakdown.amount_score == pytest.approx(1.0)
        assert pair[0].total_amount == 100
        assert pair[0].confidence_level == ConfidenceLevel.HIGH

    def test_oversized_documents_excluded(self, cfg):
        txn = make_transaction(amount="-100.00")
        pool = [make_document(1, total="50.00"), make_document(2, total="500.00")]
        assert all(2 not in r.key for r in find_combinations(txn, pool, cfg))

    def test_overage_warning_attached(self):
        cfg = MatchingConfig(validation=AmountValidationConfig(overage_threshold=0.05))
        txn = make_transaction(amount="-100.00")
        pool = [make_document(1, total="60.00"), make_document(2, total="49.00")]

        results = find_combinations(txn, pool, cfg)

        assert results
        assert results[0].has_warnings
        assert "significantly exceeds" in results[0].warnings[0]

    def test_exact_amount_matches_counted(self, cfg):
        txn = make_transaction(amount="-100.00")
        pool = [make_document(1, total="100.00"), make_document(2, total="0.50")]

        results = find_combinations(txn, pool, cfg)

        assert results[0].breakdown.exact_amount_matches == 1


class TestReferenceStrategy:
    """Invoice numbers quoted in the transaction text."""

    @pytest.fixture
    def txn(self):
        return make_transaction(amount="-300.00", note="Sammelzahlung RE-1001 RE-1002")

    @pytest.fixture
    def pool(self):
        return [
            make_document(1, total="100.00", invoice_number="RE-1001"),
            make_document(2, total="200.00", invoice_number="RE-1002"),
            make_document(3, total="75.00", invoice_number="XY-555", vendor_name="Other"),
        ]

    def test_referenced_documents_combined(self, cfg, txn, pool):
        best = find_combinations(txn, pool, cfg)[0]

        assert best.key == (1, 2)
        assert best.strategy == MatchStrategy.REFERENCE
        assert best.match_score == 1.0
        assert best.breakdown.reference_matches == 2
        assert best.breakdown.multiple_reference_bonus == pytest.approx(0.2)

    def test_single_referenced_document_is_not_a_combination(self, cfg, pool):
        txn = make_transaction(amount="-300.00", note="RE-1001")
        results = find_combinations(txn, pool, cfg)

        assert results
        assert all(r.strategy != MatchStrategy.REFERENCE for r in results)


class TestCombinationResults:
    """Result set properties."""

    @pytest.fixture
    def crowded_pool(self):
        return [make_document(i, total=f"{10 * i}.00", invoice_number=f"RE-{1000 + i}") for i in range(1, 9)]

    def test_no_duplicate_document_sets(self, cfg, crowded_pool):
        txn = make_transaction(amount="-90.00", note="RE-1004 RE-1005")
        results = find_combinations(txn, crowded_pool, cfg)

        keys = [r.key for r in results]
        assert len(keys) == len(set(keys))

    def test_sorted_and_above_minimum(self, cfg, crowded_pool):
        txn = make_transaction(amount="-90.00")
        results = find_combinations(txn, crowded_pool, cfg)

        scores = [r.match_score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(s >= cfg.minimum_match_score for s in scores)

    def test_max_results(self, crowded_pool):
        cfg = MatchingConfig(combinations=CombinationConfig(max_results=3))
        txn = make_transaction(amount="-90.00")
        assert len(find_combinations(txn, crowded_pool, cfg)) <= 3

    def test_sizes_bounded(self, cfg, crowded_pool):
        txn = make_transaction(amount="-150.00")
        for result in find_combinations(txn, crowded_pool, cfg):
            assert 2 <= result.document_count <= cfg.combinations.max_size

    def test_fewer_than_two_candidates(self, cfg):
        assert CombinationFinder(cfg).find(make_transaction(), [make_document(1)]) == []

    def test_unconnected_only(self, cfg):
        txn = make_transaction(amount="-100.00")
        pool = [
            make_document(1, total="47.60"),
            make_document(2, total="52.40", unconnected=False),
            make_document(3, total="52.40"),
        ]

        results = find_combinations(txn, pool, cfg, unconnected_only=True)

        assert results
        assert all(2 not in r.key for r in results)

    def test_cancelled_search_returns_nothing(self, cfg, crowded_pool):
        token = CancellationToken()
        token.cancel()
        txn = make_transaction(amount="-90.00")
        assert find_combinations(txn, crowded_pool, cfg, cancel=token) == []

    def test_cancelled_between_sizes_keeps_smaller_combinations(self, cfg, crowded_pool):
        class CancelAfterChecks(CancellationToken):
            """Reports cancellation once the allowed number of checks is used up."""

            def __init__(self, checks: int) -> None:
                super().__init__()
                self.remaining = checks

            @property
            def is_cancelled(self) -> bool:
                self.remaining -= 1
                return self.remaining < 0 or self._event.is_set()

        txn = make_transaction(amount="-90.00")
        assert any(r.document_count == 3 for r in find_combinations(txn, crowded_pool, cfg))

        # Checks: before reference, before amount, amount size 2, amount size 3
        results = find_combinations(txn, crowded_pool, cfg, cancel=CancelAfterChecks(3))

        assert results
        assert all(r.document_count == 2 for r in results)


class TestHybridStrategy:
    """Reference-like documents whose amounts also add up."""

    def test_passes_both_gates_with_bonus(self, cfg):
        txn = make_transaction(amount="-300.00", note="RE-1001 RE-1002 RE-1003")
        pool = [
            make_document(1, total="100.00", vendor_name="Other", invoice_number="RE-1001"),
            make_document(2, total="200.00", vendor_name="Other", invoice_number="RE-1002"),
            make_document(3, total="500.00", vendor_name="Other", invoice_number="RE-1003"),
        ]

        results = find_combinations(txn, pool, cfg)

        best = results[0]
        assert best.key == (1, 2)
        assert best.strategy == MatchStrategy.HYBRID
        # 0.75 weighted, x1.1 strong-criterion bonus, x1.1 hybrid bonus
        assert best.match_score == pytest.approx(0.9075)
        # The plain amount match on the same documents was deduplicated away
        assert [r.key for r in results].count((1, 2)) == 1
        assert results[1].strategy == MatchStrategy.REFERENCE
        assert results[1].key == (1, 2, 3)

    def test_amount_gate(self, cfg):
        txn = make_transaction(amount="-300.00", note="RE-1001 RE-1002 RE-1003")
        pool = [
            make_document(1, total="100.00", vendor_name="Other", invoice_number="RE-1001"),
            make_document(2, total="150.00", vendor_name="Other", invoice_number="RE-1002"),
            make_document(3, total="500.00", vendor_name="Other", invoice_number="RE-1003"),
        ]

        results = find_combinations(txn, pool, cfg)
        assert [r.strategy for r in results] == [MatchStrategy.REFERENCE]

        # 250 against 300 only scores ~0.13 on amount
        relaxed = MatchingConfig(combinations=CombinationConfig(hybrid_min_amount_score=0.1))
        hybrid = [r for r in find_combinations(txn, pool, relaxed) if r.strategy == MatchStrategy.HYBRID]
        assert [r.key for r in hybrid] == [(1, 2)]

    def test_combination_reference_gate(self, cfg):
        # Same "LL-##" shape scores 0.3 each, but no invoice number is quoted
        txn = make_transaction(amount="-300.00", reference="XY-99")
        pool = [
            make_document(1, total="100.00", vendor_name="Other", invoice_number="AB-12"),
            make_document(2, total="200.00", vendor_name="Other", invoice_number="CD-34"),
        ]

        results = find_combinations(txn, pool, cfg)
        assert [r.strategy for r in results] == [MatchStrategy.AMOUNT]
        amount_only = results[0]

        relaxed = MatchingConfig(
            combinations=CombinationConfig(hybrid_min_combination_reference_score=0.3)
        )
        results = find_combinations(txn, pool, relaxed)
        assert [r.strategy for r in results] == [MatchStrategy.HYBRID]
        assert results[0].breakdown.reference_score == pytest.approx(0.3)
        assert results[0].match_score == pytest.approx(amount_only.match_score * 1.1)

    def test_entry_filter_on_individual_reference(self):
        txn = make_transaction(amount="-300.00", reference="XY-99")
        pool = [
            make_document(1, total="100.00", vendor_name="Other"),
            make_document(2, total="200.00", vendor_name="Other"),
        ]
        open_gates = CombinationConfig(
            hybrid_min_amount_score=0.0, hybrid_min_combination_reference_score=0.0
        )

        results = find_combinations(txn, pool, MatchingConfig(combinations=open_gates))
        assert [r.strategy for r in results] == [MatchStrategy.AMOUNT]

        open_gates.hybrid_min_reference_score = 0.0
        results = find_combinations(txn, pool, MatchingConfig(combinations=open_gates))
        assert [r.strategy for r in results] == [MatchStrategy.HYBRID]
