import logging
import math
import typing

from .errors import DiceError
from .outcomes import (
    EPS,
    N_OUTCOMES,
    ZERO_CLAMP,
    CheckKind,
    Outcome,
    clamp_zero,
)
from .pmf import PMF, Bin

logger = logging.getLogger(__name__)

FaceMap = typing.Dict[float, float]
Operand = typing.Union["Dice", float]
OutcomeKey = typing.Union[Outcome, str]

_NAN = float("nan")


def _divide(a: float, b: float) -> float:
    try:
        return a / b
    except ZeroDivisionError:
        if a == 0 or a != a:
            return _NAN
        return math.copysign(math.inf, a)


def _divide_up(a: float, b: float) -> float:
    q = _divide(a, b)
    return math.ceil(q) if math.isfinite(q) else q


def _divide_down(a: float, b: float) -> float:
    q = _divide(a, b)
    return math.floor(q) if math.isfinite(q) else q


class Dice:
    """Raw weight per face, plus the weight each outcome kind owns per face.

    Weights need not sum to one. The ``hit`` kind is never stored: it is
    whatever weight at a face no other kind claims, and never the zero face.
    """

    def __init__(self, sides: int = 0) -> None:
        self.faces: FaceMap = {}
        self.outcomes: typing.Dict[Outcome, FaceMap] = {}
        self.kind = CheckKind.PLAIN
        self.identifier: typing.Optional[str] = None
        for face in range(1, int(sides) + 1):
            self.faces[face] = 1

    @classmethod
    def scalar(cls, value: float) -> "Dice":
        result = cls()
        result.increment(value, 1)
        return result

    @classmethod
    def from_faces(cls, faces: typing.Mapping[float, float], kind: CheckKind = CheckKind.PLAIN) -> "Dice":
        result = cls()
        for face, weight in faces.items():
            result.increment(face, weight)
        result.kind = kind
        return result

    def _derive(self, faces: FaceMap, keep_outcomes: bool = True) -> "Dice":
        result = Dice()
        result.faces = faces
        result.kind = self.kind
        if keep_outcomes:
            result.outcomes = {kind: dict(table) for kind, table in self.outcomes.items()}
        return result

    def __repr__(self) -> str:
        faces = ", ".join("%s: %s" % (face, weight) for face, weight in self.faces.items())
        name = "" if self.identifier is None else "%s " % self.identifier
        return "Dice(%s{%s})" % (name, faces)

    def __len__(self) -> int:
        return len(self.faces)

    # faces

    def increment(self, face: float, weight: float) -> None:
        self.faces[face] = self.faces.get(face, 0) + weight

    def set_face(self, face: float, weight: float) -> None:
        self.faces[face] = weight

    def get(self, face: float) -> float:
        return self.faces.get(face, 0)

    def keys(self) -> typing.List[float]:
        return list(self.faces)

    def values(self) -> typing.List[float]:
        return list(self.faces.values())

    def items(self) -> typing.List[typing.Tuple[float, float]]:
        return list(self.faces.items())

    def face_map(self) -> FaceMap:
        return dict(self.faces)

    def total(self) -> float:
        return sum(self.faces.values())

    def max_face(self) -> float:
        if not self.faces:
            raise DiceError("no faces found")
        return max(self.faces)

    def min_face(self) -> float:
        if not self.faces:
            raise DiceError("no faces found")
        return min(self.faces)

    def percent(self) -> FaceMap:
        total = self.total()
        return {face: weight / total for face, weight in self.faces.items()}

    def average(self) -> float:
        total = self.total()
        if total == 0:
            return 0.0
        return sum(face * weight for face, weight in self.faces.items()) / total

    def scale(self, factor: float) -> "Dice":
        result = self._derive({face: w * factor for face, w in self.faces.items()}, False)
        result.outcomes = {
            kind: {face: w * factor for face, w in table.items()}
            for kind, table in self.outcomes.items()
        }
        return result

    def delete_face(self, face: float) -> "Dice":
        return self._derive({f: w for f, w in self.faces.items() if f != face})

    # arithmetic

    def _binary_op(
        self,
        other: Operand,
        op: typing.Callable[[float, float], float],
        seed: typing.Iterable[float] = (),
    ) -> "Dice":
        result = Dice()
        for face in seed:
            result.increment(face, 0)

        if isinstance(other, Dice):
            result.kind = CheckKind.dominant(self.kind, other.kind)
            for face1, weight1 in self.faces.items():
                for face2, weight2 in other.faces.items():
                    result.increment(op(face1, face2), weight1 * weight2)
        else:
            result.kind = self.kind
            for face, weight in self.faces.items():
                result.increment(op(face, other), weight)
        return result

    def add(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: a + b)

    def subtract(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: a - b)

    def multiply(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: a * b)

    def divide(self, other: Operand) -> "Dice":
        return self._binary_op(other, _divide)

    def divide_round_up(self, other: Operand) -> "Dice":
        return self._binary_op(other, _divide_up)

    def divide_round_down(self, other: Operand) -> "Dice":
        return self._binary_op(other, _divide_down)

    def min(self, other: Operand) -> "Dice":
        return self._binary_op(other, min)

    def max(self, other: Operand) -> "Dice":
        return self._binary_op(other, max)

    def advantage(self) -> "Dice":
        return self.max(self)

    def disadvantage(self) -> "Dice":
        return self.min(self)

    def eq(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: 1 if a == b else 0)

    def ge(self, other: Operand) -> "Dice":
        # 1 marks falling short of the target, same polarity as dc()
        return self._binary_op(other, lambda a, b: 0 if a >= b else 1)

    def and_(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: 1 if a and b else 0)

    def conditional_apply(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: 0 if a == 0 else b)

    def add_non_zero(self, other: Operand) -> "Dice":
        return self._binary_op(other, lambda a, b: a + b if a != 0 else a)

    # checks

    def dc(self, target: Operand) -> "Dice":
        """Saving throw gate: face 0 when the roll meets the target, else 1."""
        result = self._binary_op(target, lambda a, b: 0 if a >= b else 1, seed=(0, 1))
        result.kind = CheckKind.SAVE
        return result

    def ac(self, target: Operand) -> "Dice":
        """Attack gate: the roll itself when it meets the target, else 0."""
        result = self._binary_op(target, lambda a, b: a if a >= b else 0, seed=(0, 1))
        result.kind = CheckKind.dominant(result.kind, CheckKind.ATTACK)
        return result

    def reroll(self, targets: typing.Union["Dice", float, typing.Iterable[float]]) -> "Dice":
        """Reroll once whenever a target face comes up.

        Each face is a branch of the mixture: a face that is not a target is
        kept as rolled, a target face is replaced by a fresh roll of the whole
        distribution.
        """
        if isinstance(targets, Dice):
            rerolled = set(targets.faces)
        elif isinstance(targets, (int, float)):
            rerolled = {targets}
        else:
            rerolled = set(targets)

        total = self.total()
        result = Dice()
        result.kind = self.kind
        for face, weight in self.faces.items():
            if face in rerolled:
                for other_face, other_weight in self.faces.items():
                    result.increment(other_face, weight * other_weight)
            else:
                result.increment(face, weight * total)
        return result

    def combine(self, other: Operand) -> "Dice":
        """Weighted union of two face distributions.

        This is a mixture, not a sum of rolls: every face keeps its own
        weight and shared faces add up. Outcome tables are unioned the same way.
        """
        if not isinstance(other, Dice):
            other = Dice.scalar(other)

        result = self._derive(dict(self.faces))
        result.kind = CheckKind.dominant(self.kind, other.kind)
        for face, weight in other.faces.items():
            result.increment(face, weight)
        for kind, table in other.outcomes.items():
            merged = result.outcomes.setdefault(kind, {})
            for face, weight in table.items():
                merged[face] = merged.get(face, 0) + weight
        return result

    # outcome bookkeeping

    def set_outcome_distribution(self, kind: OutcomeKey, data: typing.Optional[typing.Mapping[float, float]]) -> None:
        kind = Outcome.parse(kind)
        if kind == Outcome.HIT:
            raise DiceError("hit weights are derived from the other outcome kinds")
        if data:
            self.outcomes[kind] = dict(data)
        else:
            self.outcomes.pop(kind, None)

    def get_outcome_distribution(self, kind: OutcomeKey) -> typing.Optional[FaceMap]:
        kind = Outcome.parse(kind)
        if kind == Outcome.HIT:
            return self.hit_distribution()
        table = self.outcomes.get(kind)
        return None if table is None else dict(table)

    def full_outcome_distribution(self) -> typing.Dict[Outcome, FaceMap]:
        result = {kind: dict(table) for kind, table in self.outcomes.items()}
        result[Outcome.HIT] = self.hit_distribution()
        return result

    def has_outcome_data(self, kind: OutcomeKey) -> bool:
        kind = Outcome.parse(kind)
        if kind == Outcome.HIT:
            return any(w > 0 for w in self.hit_distribution().values())
        return bool(self.outcomes.get(kind))

    def get_outcome_count(self, kind: OutcomeKey, face: float) -> float:
        kind = Outcome.parse(kind)
        if kind == Outcome.HIT:
            return self.hit_distribution().get(face, 0)
        return self.outcomes.get(kind, {}).get(face, 0)

    def get_average(self, kind: OutcomeKey) -> float:
        distribution = self.get_outcome_distribution(kind)
        if not distribution:
            return 0.0
        total = sum(distribution.values())
        if total == 0:
            return 0.0
        return sum(face * weight for face, weight in distribution.items()) / total

    def hit_distribution(self) -> FaceMap:
        result = {}
        for face, weight in self.faces.items():
            hit = weight - sum(table.get(face, 0) for table in self.outcomes.values())
            if face == 0:
                hit = 0
            if hit < 0:
                if hit < -ZERO_CLAMP * max(1.0, abs(weight)):
                    logger.warning(
                        "outcome weights exceed face weight at %s (total %s, hit %s)",
                        face,
                        weight,
                        hit,
                    )
                hit = 0
            result[face] = hit
        return result

    def to_distribution(self, precision: float = EPS) -> PMF:
        """Convert to a normalized PMF with per-outcome counts and attribution.

        A value reads as a saving throw when it came through ``dc`` or when
        some half-damage face is exactly half of a hit face. Then ``hit``
        becomes ``saveFail`` and unlabeled weight means the save succeeded
        (``saveHalf``); ``saveHalf`` at damage 0 is a successful save for no
        damage. Otherwise unlabeled weight is ``missNone``. A negative
        precision disables pruning.
        """
        identifier = self.identifier
        if identifier is None:
            logger.debug("converting unnamed dice %r", self)
            identifier = "dice"

        total = self.total()
        if total == 0:
            return PMF.empty(precision, identifier)

        tables = dict(self.outcomes)
        tables[Outcome.HIT] = self.hit_distribution()

        half = tables.get(Outcome.SAVE_HALF, {})
        shows_half = any(h * 2 > 0 and tables[Outcome.HIT].get(h * 2) for h in half)
        save_mode = self.kind == CheckKind.SAVE or shows_half

        relabel = {kind: kind for kind in Outcome}
        if save_mode:
            relabel[Outcome.HIT] = Outcome.SAVE_FAIL
        else:
            relabel[Outcome.SAVE_HALF] = Outcome.SAVE_FAIL
        residual_kind = Outcome.SAVE_HALF if save_mode else Outcome.MISS_NONE

        bins = {}
        for face, weight in self.faces.items():
            if weight <= 0:
                continue
            p = clamp_zero(weight / total)
            if not p > 0:
                continue
            if precision >= 0 and p < precision:
                continue

            count = [0.0] * N_OUTCOMES
            attr = [0.0] * N_OUTCOMES
            labeled = 0.0
            for kind in Outcome:
                w = tables.get(kind, {}).get(face, 0)
                if not w:
                    continue
                labeled += w
                c = clamp_zero(w / total)
                if c > 0:
                    count[relabel[kind]] += c
                    attr[relabel[kind]] += clamp_zero(face * w / total)

            residual = clamp_zero((weight - labeled) / total)
            if residual > 0:
                count[residual_kind] += residual
                attr[residual_kind] += clamp_zero(face * residual)

            bins[face] = Bin(p, tuple(count), tuple(attr) if any(attr) else None)

        return PMF(bins, precision, True, identifier).compact(
            precision, drop_zero=True, keep_final_bin=True
        )
