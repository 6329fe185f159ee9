import logging
import math

import pytest

from dicepmf.dice import Dice
from dicepmf.errors import DiceError
from dicepmf.outcomes import CheckKind, Outcome


def assert_bins_consistent(pmf):
    for damage, bin in pmf:
        assert sum(bin.count) == pytest.approx(bin.p, abs=1e-12)
        attr = bin.attr or ()
        assert sum(attr) == pytest.approx(damage * bin.p, abs=1e-12)


class TestConstruction:
    def test_uniform_die(self):
        d = Dice(6)
        assert d.face_map() == {1: 1, 2: 1, 3: 1, 4: 1, 5: 1, 6: 1}
        assert d.total() == 6
        assert len(d) == 6
        assert d.kind == CheckKind.PLAIN

    def test_scalar_and_from_faces(self):
        assert Dice.scalar(5).face_map() == {5: 1}
        d = Dice.from_faces({0: 3, 2: 1}, CheckKind.SAVE)
        assert d.get(0) == 3
        assert d.get(7) == 0
        assert d.kind == CheckKind.SAVE

    def test_statistics(self):
        d = Dice(4)
        assert d.average() == 2.5
        assert d.percent() == {1: 0.25, 2: 0.25, 3: 0.25, 4: 0.25}
        assert d.min_face() == 1
        assert d.max_face() == 4

    def test_empty_extremes_raise(self):
        with pytest.raises(DiceError):
            Dice().max_face()
        with pytest.raises(DiceError):
            Dice().min_face()

    def test_scale_also_scales_outcome_tables(self):
        d = Dice(4)
        d.set_outcome_distribution(Outcome.CRIT, {4: 1})
        scaled = d.scale(0.5)
        assert scaled.get(1) == 0.5
        assert scaled.get_outcome_count(Outcome.CRIT, 4) == 0.5
        assert d.get(1) == 1

    def test_delete_face(self):
        d = Dice(4).delete_face(2)
        assert d.keys() == [1, 3, 4]


class TestArithmetic:
    def test_add_dice(self):
        two = Dice(6).add(Dice(6))
        assert two.total() == 36
        assert two.get(7) == 6
        assert two.min_face() == 2
        assert two.max_face() == 12

    def test_scalar_ops_keep_weights(self):
        d = Dice(4)
        assert d.add(2).face_map() == {3: 1, 4: 1, 5: 1, 6: 1}
        assert d.subtract(1).face_map() == {0: 1, 1: 1, 2: 1, 3: 1}
        assert d.multiply(2).face_map() == {2: 1, 4: 1, 6: 1, 8: 1}

    def test_divide_rounding(self):
        d = Dice(6)
        assert d.divide_round_up(2).face_map() == {1: 2, 2: 2, 3: 2}
        assert d.divide_round_down(2).face_map() == {0: 1, 1: 2, 2: 2, 3: 1}
        assert d.divide(2).get(1.5) == 1

    def test_divide_by_zero_does_not_raise(self):
        assert Dice.scalar(3).divide(0).keys() == [math.inf]
        assert Dice.scalar(-2).divide(0).keys() == [-math.inf]
        (face,) = Dice.scalar(0).divide(0).keys()
        assert math.isnan(face)
        assert Dice.scalar(3).divide_round_down(0).keys() == [math.inf]

    def test_min_max_advantage(self):
        adv = Dice(20).advantage()
        assert adv.total() == 400
        assert adv.get(20) == 39
        assert adv.get(1) == 1
        dis = Dice(20).disadvantage()
        assert dis.get(1) == 39
        assert Dice(4).max(3).face_map() == {3: 3, 4: 1}
        assert Dice(4).min(2).face_map() == {1: 1, 2: 3}

    def test_comparisons(self):
        assert Dice(6).eq(6).face_map() == {0: 5, 1: 1}
        assert Dice(20).ge(11).face_map() == {1: 10, 0: 10}
        assert Dice.scalar(0).and_(Dice(2)).face_map() == {0: 2}
        assert Dice.scalar(3).and_(Dice(2)).face_map() == {1: 2}

    def test_zero_gated_ops(self):
        gate = Dice.from_faces({0: 1, 1: 3})
        damage = gate.conditional_apply(Dice(4))
        assert damage.get(0) == 4
        assert damage.get(4) == 3
        assert Dice.from_faces({0: 1, 5: 1}).add_non_zero(2).face_map() == {0: 1, 7: 1}

    def test_kind_propagates(self):
        save = Dice(20).dc(12)
        assert save.multiply(Dice(6)).kind == CheckKind.SAVE
        assert Dice(6).add(save).kind == CheckKind.SAVE
        attack = Dice(20).ac(12)
        assert attack.add(save).kind == CheckKind.SAVE
        assert attack.add(3).kind == CheckKind.ATTACK


class TestChecks:
    def test_dc(self):
        save = Dice(20).dc(15)
        assert save.face_map() == {0: 6, 1: 14}
        assert save.kind == CheckKind.SAVE

    def test_dc_keeps_both_faces(self):
        assert Dice.scalar(1).dc(15).face_map() == {0: 0, 1: 1}
        assert Dice.scalar(20).dc(15).face_map() == {0: 1, 1: 0}

    def test_ac_passes_the_roll_through(self):
        attack = Dice(20).ac(15)
        assert attack.get(0) == 14
        assert attack.get(1) == 0
        assert attack.get(17) == 1
        assert attack.kind == CheckKind.ATTACK

    def test_reroll_ones(self):
        d = Dice(4).reroll(1)
        assert d.face_map() == {1: 1, 2: 5, 3: 5, 4: 5}
        assert d.total() == 16

    def test_reroll_several_faces(self):
        d = Dice(6).reroll(Dice.from_faces({1: 1, 2: 1}))
        assert d.total() == 36
        assert d.get(1) == 2
        assert d.get(6) == 6 + 2

    def test_reroll_missing_face_keeps_distribution(self):
        d = Dice(4).reroll(9)
        assert d.percent() == Dice(4).percent()

    def test_combine_is_a_union(self):
        d = Dice(4).combine(Dice(6))
        assert d.face_map() == {1: 2, 2: 2, 3: 2, 4: 2, 5: 1, 6: 1}
        assert d.total() == Dice(4).total() + Dice(6).total()

    def test_combine_merges_outcome_tables(self):
        a = Dice(4)
        a.set_outcome_distribution(Outcome.CRIT, {4: 1})
        b = Dice(4)
        b.set_outcome_distribution(Outcome.CRIT, {4: 1, 3: 1})
        merged = a.combine(b)
        assert merged.get_outcome_distribution(Outcome.CRIT) == {4: 2, 3: 1}


class TestOutcomes:
    def test_hit_is_derived(self):
        d = Dice.from_faces({0: 2, 3: 2, 6: 1})
        d.set_outcome_distribution(Outcome.CRIT, {6: 1})
        assert d.hit_distribution() == {0: 0, 3: 2, 6: 0}
        assert d.get_outcome_count(Outcome.HIT, 3) == 2
        assert d.has_outcome_data("hit")
        assert d.has_outcome_data(Outcome.CRIT)
        assert not d.has_outcome_data(Outcome.PC)

    def test_setting_hit_is_rejected(self):
        with pytest.raises(DiceError):
            Dice(4).set_outcome_distribution(Outcome.HIT, {1: 1})

    def test_clear_outcome_distribution(self):
        d = Dice(4)
        d.set_outcome_distribution("crit", {4: 1})
        d.set_outcome_distribution("crit", None)
        assert d.get_outcome_distribution(Outcome.CRIT) is None

    def test_full_outcome_distribution(self):
        d = Dice(2)
        d.set_outcome_distribution(Outcome.PC, {2: 1})
        full = d.full_outcome_distribution()
        assert full[Outcome.PC] == {2: 1}
        assert full[Outcome.HIT] == {1: 1, 2: 0}

    def test_get_average(self):
        d = Dice(6)
        d.set_outcome_distribution(Outcome.CRIT, {5: 1, 6: 1})
        assert d.get_average(Outcome.CRIT) == 5.5
        assert d.get_average(Outcome.MISS_DAMAGE) == 0

    def test_overlapping_labels_clamp_and_warn(self, caplog):
        d = Dice(4)
        d.set_outcome_distribution(Outcome.CRIT, {4: 2})
        with caplog.at_level(logging.WARNING, logger="dicepmf.dice"):
            hit = d.hit_distribution()
        assert hit[4] == 0
        assert "exceed" in caplog.text


class TestToDistribution:
    def test_plain_die(self):
        pmf = Dice(6).to_distribution()
        assert pmf.mass() == pytest.approx(1)
        assert pmf.mean() == pytest.approx(3.5)
        assert pmf.outcome_probability(Outcome.HIT) == pytest.approx(1)
        assert_bins_consistent(pmf)

    def test_empty(self):
        pmf = Dice().to_distribution()
        assert len(pmf) == 0

    def test_attack_roll(self):
        pmf = Dice(20).ac(15).to_distribution()
        assert pmf.outcome_at(0, Outcome.MISS_NONE) == pytest.approx(0.7)
        assert pmf.outcome_probability(Outcome.HIT) == pytest.approx(0.3)
        assert pmf.bin_at(1) is None
        assert_bins_consistent(pmf)

    def test_dc_gate_reads_as_save(self):
        pmf = Dice(20).dc(15).to_distribution()
        assert pmf.outcome_at(1, Outcome.SAVE_FAIL) == pytest.approx(0.7)
        assert pmf.outcome_at(0, Outcome.SAVE_HALF) == pytest.approx(0.3)
        assert not pmf.has_outcome(Outcome.HIT)
        assert_bins_consistent(pmf)

    def test_save_half_folds_without_save_context(self):
        d = Dice(4)
        d.set_outcome_distribution(Outcome.SAVE_HALF, {3: 1})
        pmf = d.to_distribution()
        assert pmf.outcome_at(3, Outcome.SAVE_FAIL) == pytest.approx(0.25)
        assert pmf.outcome_at(3, Outcome.SAVE_HALF) == 0
        assert pmf.outcome_at(4, Outcome.HIT) == pytest.approx(0.25)

    def test_explicit_labels_pass_through(self):
        d = Dice.from_faces({0: 1, 2: 1, 5: 2})
        d.set_outcome_distribution(Outcome.MISS_DAMAGE, {2: 1})
        d.set_outcome_distribution(Outcome.PC, {5: 1})
        pmf = d.to_distribution()
        assert pmf.outcome_at(2, Outcome.MISS_DAMAGE) == pytest.approx(0.25)
        assert pmf.outcome_at(5, Outcome.PC) == pytest.approx(0.25)
        assert pmf.outcome_at(5, Outcome.HIT) == pytest.approx(0.25)
        assert pmf.outcome_at(0, Outcome.MISS_NONE) == pytest.approx(0.25)
        assert pmf.outcome_attribution_at(5, Outcome.PC) == pytest.approx(1.25)
        assert_bins_consistent(pmf)

    def test_precision_prunes_unless_negative(self):
        d = Dice.from_faces({1: 1, 2: 1e-14})
        assert d.to_distribution().support() == [1]
        assert d.to_distribution(-1).support() == [1, 2]

    def test_identifier_carries_over(self):
        d = Dice(4)
        d.identifier = "d4"
        assert d.to_distribution().identifier == "d4"
