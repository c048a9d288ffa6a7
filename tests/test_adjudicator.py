"""
Tests for comparing and selecting between strategy outcomes.
"""
import pytest

from scangrade.errors import AdjudicationRequired, PolicyViolation
from scangrade.grading.adjudicator import (
    SelectionMethod,
    adjudicate,
    auto_select,
    compare,
    resolve_declined,
    select,
)
from scangrade.grading.outcomes import GradingOutcome, OutcomeTag


def ai(grade=None, percentage=None):
    return GradingOutcome(OutcomeTag.AI, grade=grade, raw_percentage=percentage)


def guided(grade=None, percentage=None):
    return GradingOutcome(OutcomeTag.TEACHER_GUIDED, grade=grade, raw_percentage=percentage)


class TestCompare:

    def test_major_difference(self):
        comparison = compare([ai(70), guided(84)])
        assert comparison.delta == 14
        assert comparison.requires_human

    def test_minor_difference(self):
        comparison = compare([ai(70), guided(77)])
        assert comparison.delta == 7
        assert not comparison.requires_human

    def test_threshold_is_inclusive(self):
        assert compare([ai(70), guided(80)]).requires_human
        assert not compare([ai(70), guided(79)]).requires_human

    def test_order_does_not_matter(self):
        assert compare([ai(62), guided(91)]) == compare([guided(91), ai(62)])

    def test_single_outcome(self):
        comparison = compare([guided(40)])
        assert comparison.delta == 0
        assert not comparison.requires_human

    def test_falls_back_to_percentage(self):
        assert compare([ai(percentage=72.5), guided(70)]).delta == 3

    def test_level_only_outcomes_use_the_level_table(self):
        comparison = compare([
            GradingOutcome(OutcomeTag.AI, proficiency_level=4),
            GradingOutcome(OutcomeTag.TEACHER_GUIDED, proficiency_level=0),
        ])
        assert comparison.delta == 30
        assert comparison.requires_human

    def test_level_only_outcome_against_a_grade(self):
        comparison = compare([GradingOutcome(OutcomeTag.AI, proficiency_level=3), guided(85)])
        assert comparison.delta == 0
        assert auto_select([GradingOutcome(OutcomeTag.AI, proficiency_level=3), guided(85)]).selected_tag is OutcomeTag.TEACHER_GUIDED

    def test_level_beats_percentage(self):
        outcome = GradingOutcome(OutcomeTag.AI, proficiency_level=2, raw_percentage=30.0)
        assert outcome.suggested_grade == 75

    def test_rejects_bad_input(self):
        with pytest.raises(PolicyViolation):
            compare([])
        with pytest.raises(PolicyViolation):
            compare([ai(70), ai(80)])
        with pytest.raises(PolicyViolation):
            compare([ai(70), guided(70), GradingOutcome(OutcomeTag.MANUAL, grade=70)])


class TestAutoSelect:

    def test_prefers_teacher_guided(self):
        decision = auto_select([ai(70), guided(77)])
        assert decision.selected_tag is OutcomeTag.TEACHER_GUIDED
        assert decision.method is SelectionMethod.AUTOMATIC
        assert decision.automatic
        assert decision.delta == 7

    def test_single_outcome_is_selected(self):
        assert auto_select([ai(82)]).selected_tag is OutcomeTag.AI

    def test_major_difference_needs_a_human(self):
        with pytest.raises(AdjudicationRequired):
            auto_select([ai(70), guided(84)])


class TestHumanSelection:

    def test_any_outcome_may_be_chosen(self):
        decision = select([ai(70), guided(84)], OutcomeTag.AI)
        assert decision.selected_tag is OutcomeTag.AI
        assert decision.method is SelectionMethod.HUMAN
        assert decision.delta == 14

    def test_choice_must_exist(self):
        with pytest.raises(PolicyViolation):
            select([ai(70)], OutcomeTag.TEACHER_GUIDED)

    def test_declined_uses_preference_order(self):
        decision = resolve_declined([ai(70), guided(84)])
        assert decision.selected_tag is OutcomeTag.TEACHER_GUIDED
        assert decision.method is SelectionMethod.TIE_BREAK

    def test_adjudicate_entry_point(self):
        outcomes = [ai(70), guided(84)]
        assert adjudicate(outcomes, choice=OutcomeTag.AI).method is SelectionMethod.HUMAN
        assert adjudicate(outcomes, declined=True).method is SelectionMethod.TIE_BREAK
        with pytest.raises(AdjudicationRequired):
            adjudicate(outcomes)
        assert adjudicate([ai(70), guided(75)]).method is SelectionMethod.AUTOMATIC

    def test_decision_dict(self):
        decision = select([ai(70), guided(84)], OutcomeTag.AI)
        assert type(decision).from_dict(decision.to_dict()) == decision
