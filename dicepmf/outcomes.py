import enum
import typing

# Default pruning threshold for face conversion and mixtures.
EPS = 1e-12
# Default pruning threshold carried by distributions.
COMPUTATIONAL_EPS = 1e-40
# Floating noise below this magnitude is treated as exactly zero.
ZERO_CLAMP = 1e-15


class Outcome(enum.IntEnum):
    CRIT = 0
    HIT = 1
    MISS_NONE = 2
    MISS_DAMAGE = 3
    SAVE_HALF = 4
    SAVE_FAIL = 5
    PC = 6

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: typing.Union["Outcome", str]) -> "Outcome":
        if isinstance(value, Outcome):
            return value
        try:
            return _BY_LABEL[value]
        except KeyError:
            raise ValueError("unknown outcome kind %r" % (value,))

    def __str__(self) -> str:
        return self.label


_LABELS = {
    Outcome.CRIT: "crit",
    Outcome.HIT: "hit",
    Outcome.MISS_NONE: "missNone",
    Outcome.MISS_DAMAGE: "missDamage",
    Outcome.SAVE_HALF: "saveHalf",
    Outcome.SAVE_FAIL: "saveFail",
    Outcome.PC: "pc",
}
_BY_LABEL = {label: kind for kind, label in _LABELS.items()}
_BY_LABEL.update({kind.name.lower(): kind for kind in Outcome})

N_OUTCOMES = len(Outcome)


class CheckKind(enum.IntEnum):
    """What a face distribution represents.

    Ordered by precedence: composing values of different kinds yields the
    higher one, so a save gate stays a save gate through later arithmetic.
    """

    PLAIN = 0
    ATTACK = 1
    SAVE = 2

    @classmethod
    def dominant(cls, *kinds: "CheckKind") -> "CheckKind":
        return max(kinds, default=cls.PLAIN)


LabelVector = typing.Tuple[float, ...]

ZERO_VECTOR: LabelVector = (0.0,) * N_OUTCOMES


def clamp_zero(x: float) -> float:
    if -ZERO_CLAMP < x < ZERO_CLAMP:
        return 0.0
    return x


def make_vector(values: typing.Mapping[typing.Any, float]) -> LabelVector:
    """Build a label vector from a mapping keyed by Outcome or label string."""
    slots = [0.0] * N_OUTCOMES
    for key, value in values.items():
        slots[Outcome.parse(key)] += value
    return tuple(slots)


def vector_dict(vector: typing.Optional[LabelVector]) -> typing.Dict[Outcome, float]:
    if vector is None:
        return {}
    return {kind: vector[kind] for kind in Outcome if vector[kind] != 0}


def scaled(vector: LabelVector, factor: float) -> LabelVector:
    return tuple(x * factor for x in vector)


def summed(a: LabelVector, b: LabelVector) -> LabelVector:
    return tuple(x + y for x, y in zip(a, b))


def vector_total(vector: typing.Optional[LabelVector]) -> float:
    return 0.0 if vector is None else sum(vector)
