import logging
import math
import typing

from .errors import MixtureError
from .outcomes import EPS, N_OUTCOMES, Outcome
from .pmf import PMF, Bin

logger = logging.getLogger(__name__)

Label = typing.Union[Outcome, str]


def _kahan_sum(values: typing.Iterable[float]) -> float:
    total = 0.0
    c = 0.0
    for x in values:
        y = x - c
        t = total + y
        c = (t - total) - y
        total = t
    return total


class Mixture:
    """Accumulates weighted, labeled distributions into one distribution.

    Nothing is normalized until ``build_pmf``; until then the builder keeps the
    raw mass per value and per (value, label).
    """

    def __init__(self, precision: float = EPS) -> None:
        self.precision = precision if math.isfinite(precision) else EPS
        self.totals: typing.Dict[float, float] = {}
        self.label_mass: typing.Dict[float, typing.List[float]] = {}

    def __repr__(self) -> str:
        return "Mixture(values=%s, precision=%s)" % (len(self.totals), self.precision)

    def clear(self) -> "Mixture":
        self.totals.clear()
        self.label_mass.clear()
        return self

    def size(self) -> int:
        return len(self.totals)

    def has_label(self, label: Label) -> bool:
        label = Outcome.parse(label)
        return any(slots[label] > 0 for slots in self.label_mass.values())

    def add(self, label: Label, pmf: PMF, weight: float = 1) -> "Mixture":
        label = Outcome.parse(label)
        if not math.isfinite(weight) or weight <= 0:
            logger.debug("skipping %s component with weight %r", label, weight)
            return self
        if pmf.mass() <= 0:
            logger.debug("skipping %s component %s with no mass", label, pmf.identifier)
            return self

        for value, bin in pmf:
            if bin.p <= 0:
                continue
            mass = weight * bin.p
            if not math.isfinite(mass) or abs(mass) < self.precision:
                continue
            self.totals[value] = self.totals.get(value, 0.0) + mass
            slots = self.label_mass.get(value)
            if slots is None:
                slots = self.label_mass[value] = [0.0] * N_OUTCOMES
            slots[label] += mass
        return self

    def build_pmf(self, precision: typing.Optional[float] = None) -> PMF:
        eps = self.precision if precision is None else precision
        grand = _kahan_sum(self.totals.values())
        if not grand > 0:
            raise MixtureError("zero total mass")

        bins = {}
        for value, mass in self.totals.items():
            if mass <= 0 or abs(mass) < self.precision:
                continue
            count = tuple(m / grand for m in self.label_mass[value])
            bins[value] = Bin(mass / grand, count)
        return PMF(bins, eps, True, "mixture")

    def by_outcome(self) -> typing.Dict[Outcome, PMF]:
        """One independently normalized distribution per label.

        These are marginals of each label's own mass; they do not add up to
        the joint distribution ``build_pmf`` returns.
        """
        result = {}
        for label in Outcome:
            weights = {
                value: slots[label]
                for value, slots in self.label_mass.items()
                if slots[label] > 0 and abs(slots[label]) >= self.precision
            }
            if weights:
                result[label] = PMF.from_mapping(weights, self.precision, "mixture[%s]" % label)
        return result

    def weights(self) -> typing.Dict[Outcome, float]:
        raw: typing.Dict[Outcome, float] = {}
        for slots in self.label_mass.values():
            for label in Outcome:
                mass = slots[label]
                if math.isfinite(mass) and mass > 0:
                    raw[label] = raw.get(label, 0.0) + mass
        total = _kahan_sum(raw.values())
        if total > 0:
            return {label: mass / total for label, mass in raw.items()}
        return raw

    @classmethod
    def mix(
        cls,
        items: typing.Iterable[typing.Tuple[Label, PMF, float]],
        precision: float = EPS,
    ) -> PMF:
        mixture = cls(precision)
        for label, pmf, weight in items:
            mixture.add(label, pmf, weight)
        return mixture.build_pmf()
