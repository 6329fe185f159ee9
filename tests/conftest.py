"""Shared fixtures: common dice, distributions and the worked combat scenarios."""

import pytest

from dicepmf.cache import ConvolutionCache
from dicepmf.dice import Dice
from dicepmf.outcomes import Outcome
from dicepmf.pmf import PMF, Bin

# =============================================================================
# DISTRIBUTIONS
# =============================================================================


@pytest.fixture
def d6() -> PMF:
    return PMF.from_mapping({face: 1 for face in range(1, 7)}, identifier="d6")


@pytest.fixture
def d4() -> PMF:
    return PMF.from_mapping({face: 1 for face in range(1, 5)}, identifier="d4")


@pytest.fixture
def cache() -> ConvolutionCache:
    return ConvolutionCache(capacity=64)


@pytest.fixture
def crit_or_miss():
    """Factory for a two-bin attack: ``damage`` on a crit, else nothing."""

    def make(p_crit: float, damage: float = 10) -> PMF:
        return PMF(
            {
                0: Bin.of(1 - p_crit, {Outcome.MISS_NONE: 1 - p_crit}),
                damage: Bin.of(p_crit, {Outcome.CRIT: p_crit}),
            },
            normalized=True,
        )

    return make


# =============================================================================
# SCENARIOS
# =============================================================================


@pytest.fixture
def attack_dice() -> Dice:
    """+5 to hit against AC 15 for 1d8+3, a natural 20 doubling the dice.

    Each natural d20 roll is one equally weighted branch: 45% miss, 50% hit,
    5% crit.
    """
    attack = Dice()
    crits = Dice()
    for natural in Dice(20).keys():
        roll = Dice.scalar(natural)
        landed = roll.add(5).ac(15)
        is_crit = roll.eq(20).get(1) > 0
        damage = Dice(8).add(Dice(8)).add(3) if is_crit else Dice(8).add(3)
        branch = landed.conditional_apply(damage)
        branch = branch.scale(1 / branch.total())
        if is_crit:
            crits = crits.combine(branch)
        attack = attack.combine(branch)

    attack.set_outcome_distribution(Outcome.CRIT, crits.face_map())
    attack.identifier = "attack"
    return attack


@pytest.fixture
def eight_d6() -> Dice:
    result = Dice(6)
    for _ in range(7):
        result = result.add(Dice(6))
    return result


@pytest.fixture
def save_half_dice(eight_d6: Dice) -> Dice:
    """8d6 save for half damage where 40% of targets succeed."""
    fail = eight_d6.scale(0.6 / eight_d6.total())
    half = eight_d6.divide_round_down(2)
    half = half.scale(0.4 / half.total())

    save = fail.combine(half)
    save.set_outcome_distribution(Outcome.SAVE_HALF, half.face_map())
    save.identifier = "fireball"
    return save
