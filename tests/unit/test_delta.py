"""Tests for delta computation and skeleton accumulation."""

import json

import pytest

from hcc.errors.exceptions import GeneratorError
from hcc.hierarchy.delta import DeltaTracker, fold_deltas, merge_delta
from hcc.state.enums import DeltaMode, HierarchyLevel, LedgerEntryType
from hcc.state.models import Delta, KeyTerm, LedgerEntry, Skeleton


@pytest.fixture
def inherited():
    return Skeleton(
        level=HierarchyLevel.DOCUMENT,
        budget_words=600,
        thesis="Monetary policy shapes credit conditions",
        key_terms=[KeyTerm(term="liquidity", meaning="ease of trading assets")],
        commitment_ledger=[
            LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Central banks control short term interest rates"),
            LedgerEntry(type=LedgerEntryType.REJECTS, claim="Technical analysis earns excess returns"),
            LedgerEntry(type=LedgerEntryType.ASSUMES, claim="Markets clear every period"),
        ],
    )


@pytest.fixture
def tracker():
    return DeltaTracker()


# =============================================================================
# Local Mode
# =============================================================================


class TestLocalDelta:
    """Tests for the deterministic lexical delta."""

    def test_same_input_same_delta(self, tracker, inherited):
        output = "Banks lend against collateral posted by firms. Solvency means assets exceed liabilities."
        first = tracker.compute(output, inherited, chunk_index=3)
        second = tracker.compute(output, inherited, chunk_index=3)
        assert first.model_dump() == second.model_dump()

    def test_definitions(self, tracker, inherited):
        delta = tracker.compute("Solvency means assets exceed liabilities over time.", inherited)
        assert delta.term_definitions == {"solvency": "assets exceed liabilities over time"}
        assert "solvency" in delta.terms_used

    def test_inherited_terms_used(self, tracker, inherited):
        delta = tracker.compute("Liquidity dried up across bond markets in March.", inherited)
        assert "liquidity" in delta.terms_used

    def test_premises(self, tracker, inherited):
        delta = tracker.compute("Assuming that rates stay low, firms borrow more.", inherited, chunk_index=2)
        assert delta.premises == ["rates stay low, firms borrow more"]
        assumed = [e for e in delta.ledger_additions if e.type == LedgerEntryType.ASSUMES]
        assert [e.claim for e in assumed] == ["rates stay low, firms borrow more"]
        assert assumed[0].source_chunk == 2

    def test_negated_assertion_conflicts(self, tracker, inherited):
        delta = tracker.compute("Central banks do not control short term interest rates.", inherited)
        assert len(delta.conflicts) == 1
        assert delta.conflicts[0].skeleton_item == "Central banks control short term interest rates"

    def test_asserted_rejection_conflicts(self, tracker, inherited):
        delta = tracker.compute("Technical analysis earns excess returns for patient traders.", inherited)
        assert [c.skeleton_item for c in delta.conflicts] == ["Technical analysis earns excess returns"]

    def test_agreement_is_not_a_conflict(self, tracker, inherited):
        delta = tracker.compute("Central banks control short term interest rates directly.", inherited)
        assert delta.conflicts == []

    def test_new_claims_skip_known_questions_and_fragments(self, tracker, inherited):
        output = (
            "Central banks control short term interest rates. "
            "Why would lenders accept negative real yields on government debt? "
            "Yes indeed. "
            "Pension funds hold long dated sovereign bonds for matching."
        )
        delta = tracker.compute(output, inherited, chunk_index=1)
        assert delta.new_claims == ["Pension funds hold long dated sovereign bonds for matching."]
        asserted = [e for e in delta.ledger_additions if e.type == LedgerEntryType.ASSERTS]
        assert asserted[0].source_chunk == 1

    def test_new_claims_capped(self, tracker):
        output = " ".join(f"Region r{i} exports grain g{i} through port p{i} yearly." for i in range(12))
        delta = tracker.compute(output, None)
        assert len(delta.new_claims) == 8

    def test_no_inherited_skeleton(self, tracker):
        delta = tracker.compute("Firms hire workers when demand rises sharply.", None)
        assert delta.conflicts == []
        assert delta.new_claims == ["Firms hire workers when demand rises sharply."]


# =============================================================================
# Generator Mode
# =============================================================================


class TestGeneratorDelta:
    """Tests for model-computed deltas."""

    def test_requires_generator(self):
        with pytest.raises(ValueError):
            DeltaTracker(mode=DeltaMode.GENERATOR)

    def test_parses_and_memoizes(self, scripted_generator, inherited):
        raw = json.dumps({
            "new_claims": ["Banks hoard reserves"],
            "terms_used": ["Liquidity"],
            "term_definitions": {"Solvency": "assets exceed liabilities"},
            "premises": ["rates stay low"],
            "conflicts": [{"skeleton_item": "x", "chunk_content": "y", "description": "z"}],
        })
        generator = scripted_generator([raw])
        tracker = DeltaTracker(generator, mode=DeltaMode.GENERATOR)

        first = tracker.compute("Some output.", inherited, chunk_index=4)
        second = tracker.compute("Some output.", inherited, chunk_index=4)

        assert len(generator.contexts) == 1
        assert first.model_dump() == second.model_dump()
        assert first.terms_used == ["liquidity"]
        assert first.term_definitions == {"solvency": "assets exceed liabilities"}
        assert [e.type for e in first.ledger_additions] == [LedgerEntryType.ASSERTS, LedgerEntryType.ASSUMES]
        assert all(e.source_chunk == 4 for e in first.ledger_additions)

    def test_unparseable_falls_back_to_local(self, scripted_generator, inherited):
        generator = scripted_generator(["no json here"])
        tracker = DeltaTracker(generator, mode=DeltaMode.GENERATOR)
        output = "Central banks do not control short term interest rates."
        delta = tracker.compute(output, inherited)
        assert delta.model_dump() == DeltaTracker().compute(output, inherited).model_dump()

    @pytest.mark.parametrize("reply", [
        {"term_definitions": ["solvency", "assets exceed liabilities"]},
        {"new_claims": 7},
        {"conflicts": {"skeleton_item": "x"}},
    ])
    def test_wrong_field_shapes_fall_back_to_local(self, scripted_generator, inherited, reply):
        generator = scripted_generator([json.dumps(reply)])
        tracker = DeltaTracker(generator, mode=DeltaMode.GENERATOR)
        output = "Solvency means assets exceed liabilities over time."
        delta = tracker.compute(output, inherited, chunk_index=1)
        assert delta.model_dump() == DeltaTracker().compute(output, inherited, chunk_index=1).model_dump()

    def test_generator_error_falls_back_to_local(self, scripted_generator, inherited):
        generator = scripted_generator([GeneratorError("backend down"), json.dumps({"new_claims": ["Banks hoard reserves"]})])
        tracker = DeltaTracker(generator, mode=DeltaMode.GENERATOR)
        output = "Central banks do not control short term interest rates."

        first = tracker.compute(output, inherited)
        assert first.model_dump() == DeltaTracker().compute(output, inherited).model_dump()

        # The failure is not memoized
        second = tracker.compute(output, inherited)
        assert second.new_claims == ["Banks hoard reserves"]
        assert len(generator.contexts) == 2


# =============================================================================
# Accumulation
# =============================================================================


class TestMergeDelta:
    """Tests for merge_delta and fold_deltas."""

    def test_near_duplicates_skipped(self, inherited):
        delta = Delta(ledger_additions=[
            LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Central banks control short term interest rates today"),
            LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Households save more in recessions", source_chunk=0),
        ])
        merged = merge_delta(inherited, delta)
        claims = [e.claim for e in merged.commitment_ledger]
        assert "Households save more in recessions" in claims
        assert len(claims) == 4

    def test_established_meaning_kept(self, inherited):
        delta = Delta(term_definitions={"liquidity": "cash on hand", "solvency": "assets exceed debts"})
        merged = merge_delta(inherited, delta)
        assert merged.term_map() == {
            "liquidity": "ease of trading assets",
            "solvency": "assets exceed debts",
        }

    def test_source_untouched(self, inherited):
        before = inherited.model_dump()
        merge_delta(inherited, Delta(ledger_additions=[
            LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Households save more in recessions"),
        ]))
        assert inherited.model_dump() == before

    def test_fold_in_order_within_budget(self, inherited):
        deltas = [
            Delta(ledger_additions=[
                LedgerEntry(type=LedgerEntryType.ASSERTS, claim=f"Sector s{i} grows output o{i} steadily", source_chunk=i)
            ])
            for i in range(5)
        ]
        folded = fold_deltas(inherited, deltas, budget=600)
        derived = [e.source_chunk for e in folded.commitment_ledger if e.source_chunk is not None]
        assert derived == [0, 1, 2, 3, 4]

        tight = fold_deltas(inherited, deltas, budget=30)
        assert tight.word_size <= 30
        assert tight.budget_words == 30
