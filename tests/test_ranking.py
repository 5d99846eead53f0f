"""Tests for composite scoring, single ranking and batch ranking."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from conftest import make_document, make_transaction
from docmatch.config import MatchingConfig
from docmatch.matching import CancellationToken, CompositeScorer, MatchingEngine, rank, rank_batch


@pytest.fixture
def cfg() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def pool():
    """Mixed pool: one perfect match, near misses and noise."""
    return [
        make_document(1, total="238.00", invoice_number="RE-2024-0815"),
        make_document(2, total="240.00", invoice_date=date(2024, 11, 20), vendor_name="Stadtwerke"),
        make_document(3, total="99.90", invoice_date=date(2024, 6, 1), vendor_name="Spar"),
        make_document(4, total="238.00", invoice_date=date(2024, 10, 1), vendor_name="Billa"),
        make_document(5, total=None, invoice_date=None, vendor_name=None),
        make_document(6, total="1200.00", vendor_name="Stadtwerke Graz GmbH", invoice_number="RE-2024-0816"),
    ]


class TestCompositeScorer:
    """Weighted sum, bonus and clamp."""

    def test_weighted_sum_without_bonus(self, cfg):
        breakdown = CompositeScorer(cfg).combine(0.8, 0.8, 0.8, 0.8)
        assert breakdown.composite_score == pytest.approx(0.8)
        assert breakdown.bonus_applied is False

    def test_bonus_on_strong_single_criterion(self, cfg):
        breakdown = CompositeScorer(cfg).combine(1.0, 0.0, 0.0, 0.0)
        assert breakdown.weighted_score == pytest.approx(0.4)
        assert breakdown.composite_score == pytest.approx(0.44)
        assert breakdown.bonus_applied is True

    def test_clamped_to_one(self, cfg):
        breakdown = CompositeScorer(cfg).combine(1.0, 1.0, 1.0, 1.0)
        assert breakdown.composite_score == 1.0

    @pytest.mark.parametrize(
        "scores",
        [
            (0.0, 0.0, 0.0, 0.0),
            (0.9, 0.1, 0.2, 0.3),
            (0.5, 0.95, 0.5, 0.0),
            (1.0, 1.0, 0.7, 1.0),
            (0.89, 0.89, 0.89, 0.89),
        ],
    )
    def test_bonus_never_lowers_score(self, cfg, scores):
        breakdown = CompositeScorer(cfg).combine(*scores)
        assert breakdown.composite_score >= min(breakdown.weighted_score, 1.0) - 1e-12
        assert 0.0 <= breakdown.composite_score <= 1.0

    def test_perfect_match_reaches_one(self, cfg, sample_transaction, sample_document):
        match = CompositeScorer(cfg).score_document(sample_transaction, sample_document)

        assert match.breakdown.criterion_scores == (1.0, 1.0, 1.0, 1.0)
        assert match.breakdown.bonus_applied is True
        assert match.match_score == 1.0

    def test_distant_date_alone_is_excluded(self, cfg):
        txn = make_transaction(amount="-50.00", counterparty="Someone Else", reference=None)
        doc = make_document(
            total="999.00",
            invoice_date=date(2024, 10, 4),
            vendor_name="Unrelated Vendor",
            invoice_number=None,
        )
        match = CompositeScorer(cfg).score_document(txn, doc)

        assert match.breakdown.date_score == pytest.approx(0.15)
        assert match.match_score < cfg.minimum_match_score
        assert rank(txn, [doc], cfg) == []

    def test_scores_within_unit_interval(self, cfg, pool):
        transactions = [
            make_transaction(1),
            make_transaction(2, amount="15.00", counterparty=None, note="RE-2024-0816"),
            make_transaction(3, amount="-0.01", when=datetime(2020, 1, 1)),
        ]
        scorer = CompositeScorer(cfg)
        for txn in transactions:
            for doc in pool:
                breakdown = scorer.score_breakdown(txn, doc)
                for score in (*breakdown.criterion_scores, breakdown.composite_score):
                    assert 0.0 <= score <= 1.0


class TestRank:
    """Single-transaction ranking."""

    def test_sorted_descending(self, cfg, pool, sample_transaction):
        matches = rank(sample_transaction, pool, cfg)
        scores = [m.match_score for m in matches]

        assert scores == sorted(scores, reverse=True)
        assert matches[0].document_id == 1

    def test_nothing_below_minimum(self, cfg, pool, sample_transaction):
        matches = rank(sample_transaction, pool, cfg)
        assert all(m.match_score >= cfg.minimum_match_score for m in matches)
        assert 5 not in [m.document_id for m in matches]

    def test_ties_keep_pool_order(self, cfg, sample_transaction):
        twins = [make_document(7), make_document(3), make_document(5)]
        matches = rank(sample_transaction, twins, cfg)
        assert [m.document_id for m in matches] == [7, 3, 5]

    def test_unconnected_only_filters_pool(self, cfg, sample_transaction):
        docs = [make_document(1, unconnected=False), make_document(2)]
        matches = rank(sample_transaction, docs, cfg, unconnected_only=True)
        assert [m.document_id for m in matches] == [2]

    def test_direction_independent(self, cfg, pool):
        outgoing = make_transaction(amount="-238.00", reference="RE-2024-0815")
        incoming = make_transaction(amount="238.00", reference="RE-2024-0815")

        out_scores = [(m.document_id, m.match_score) for m in rank(outgoing, pool, cfg)]
        in_scores = [(m.document_id, m.match_score) for m in rank(incoming, pool, cfg)]
        assert out_scores == in_scores

    def test_empty_pool(self, cfg, sample_transaction):
        assert rank(sample_transaction, [], cfg) == []


class TestRankBatch:
    """Batch ranking equals per-transaction ranking."""

    @pytest.fixture
    def transactions(self):
        return [
            make_transaction(1, reference="RE-2024-0815"),
            make_transaction(2, amount="-99.90", counterparty="Spar", when=datetime(2024, 6, 2)),
            make_transaction(3, amount="-1200.00", note="RE-2024-0816"),
            make_transaction(4, amount="-5.00", counterparty="Nobody"),
        ]

    @pytest.mark.parametrize("workers", [1, 4])
    def test_batch_equals_single(self, cfg, pool, transactions, workers):
        batch = rank_batch(transactions, pool, cfg, max_workers=workers)

        assert set(batch) == {t.id for t in transactions}
        for txn in transactions:
            expected = [(m.document_id, m.match_score) for m in rank(txn, pool, cfg)]
            actual = [(m.document_id, m.match_score) for m in batch[txn.id]]
            assert actual == expected

    def test_pool_generator_consumed_once(self, cfg, pool, transactions):
        batch = rank_batch(transactions, (d for d in pool), cfg, max_workers=1)
        assert batch[1][0].document_id == 1

    @pytest.mark.parametrize("workers", [1, 4])
    def test_cancelled_before_start(self, cfg, pool, transactions, workers):
        token = CancellationToken()
        token.cancel()
        assert rank_batch(transactions, pool, cfg, max_workers=workers, cancel=token) == {}


class TestMatchingEngine:
    """Store-backed ranking."""

    @pytest.fixture
    def engine(self, store, pool, cfg):
        for doc in pool:
            store.upsert_document(doc)
        store.upsert_transaction(make_transaction(1, reference="RE-2024-0815"))
        store.upsert_transaction(make_transaction(2, amount="-1200.00", note="RE-2024-0816"))
        return MatchingEngine(store, cfg, max_workers=2)

    def test_rank_by_id(self, engine):
        matches = engine.rank(1)
        assert matches[0].document_id == 1
        assert matches[0].match_score == 1.0

    def test_unknown_transaction(self, engine):
        assert engine.rank(999) == []
        assert engine.find_combinations(999) == []

    def test_rank_batch_skips_unknown_ids(self, engine):
        batch = engine.rank_batch([1, 2, 999])
        assert set(batch) == {1, 2}
        assert batch[2][0].document_id == 6

    def test_attached_documents_leave_unconnected_pool(self, engine, store):
        store.create_attachment(2, 1)

        assert 1 in [m.document_id for m in engine.rank(1)]
        assert 1 not in [m.document_id for m in engine.rank(1, unconnected_only=True)]

    def test_decimal_amounts_round_trip(self, engine, store):
        assert store.get_document(1).total == Decimal("238.00")
