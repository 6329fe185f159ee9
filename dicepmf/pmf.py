import itertools
import logging
import math
import typing

from .cache import ConvolutionCache
from .errors import DistributionError
from .outcomes import (
    COMPUTATIONAL_EPS,
    EPS,
    ZERO_VECTOR,
    LabelVector,
    Outcome,
    clamp_zero,
    make_vector,
    scaled,
    summed,
)

logger = logging.getLogger(__name__)

_anonymous_ids = itertools.count(1)

# Mass drift tolerated before a convolution result is rescaled.
_MASS_TOLERANCE = 1e-12


class Bin(typing.NamedTuple):
    p: float
    count: LabelVector = ZERO_VECTOR
    attr: typing.Optional[LabelVector] = None

    @classmethod
    def of(
        cls,
        p: float,
        count: typing.Optional[typing.Mapping[typing.Any, float]] = None,
        attr: typing.Optional[typing.Mapping[typing.Any, float]] = None,
    ) -> "Bin":
        return cls(
            p,
            ZERO_VECTOR if count is None else make_vector(count),
            None if attr is None else make_vector(attr),
        )

    def scaled(self, factor: float) -> "Bin":
        return Bin(
            self.p * factor,
            scaled(self.count, factor),
            None if self.attr is None else scaled(self.attr, factor),
        )

    def merged(self, other: "Bin") -> "Bin":
        if self.attr is None and other.attr is None:
            attr = None
        else:
            attr = summed(self.attr or ZERO_VECTOR, other.attr or ZERO_VECTOR)
        return Bin(self.p + other.p, summed(self.count, other.count), attr)


class _Accumulator:
    """Mutable per-damage running sums, frozen into Bins at the end."""

    def __init__(self) -> None:
        self.p: typing.Dict[float, float] = {}
        self.count: typing.Dict[float, typing.List[float]] = {}
        self.attr: typing.Dict[float, typing.List[float]] = {}

    def add(
        self,
        damage: float,
        p: float,
        count: typing.Iterable[float],
        attr: typing.Optional[typing.Iterable[float]] = None,
    ) -> None:
        if damage in self.p:
            self.p[damage] += p
            slots = self.count[damage]
            for i, x in enumerate(count):
                slots[i] += x
        else:
            self.p[damage] = p
            self.count[damage] = list(count)
        if attr is not None:
            slots = self.attr.get(damage)
            if slots is None:
                self.attr[damage] = list(attr)
            else:
                for i, x in enumerate(attr):
                    slots[i] += x

    def add_bin(self, damage: float, bin: Bin, factor: float = 1.0) -> None:
        if factor == 1.0:
            self.add(damage, bin.p, bin.count, bin.attr)
        else:
            self.add(
                damage,
                bin.p * factor,
                (x * factor for x in bin.count),
                None if bin.attr is None else (x * factor for x in bin.attr),
            )

    def bins(self) -> typing.Dict[float, Bin]:
        result = {}
        for damage, p in self.p.items():
            attr = self.attr.get(damage)
            result[damage] = Bin(
                p, tuple(self.count[damage]), None if attr is None else tuple(attr)
            )
        return result


def _round_half_up(x: float) -> int:
    return math.floor(x + 0.5)


_ROUNDING = {
    "floor": math.floor,
    "ceil": math.ceil,
    "round": _round_half_up,
}


def _fingerprint_number(x: float) -> float:
    return float("%.13g" % x)


def _check_count(n, what: str) -> None:
    if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
        raise DistributionError("%s(n): n must be a positive integer, got %r" % (what, n))


class PMF:
    """Probability mass function over damage values.

    Every bin carries its total probability plus how much of it each outcome
    kind contributed (``count``) and, optionally, how much of ``damage * p``
    each kind is responsible for (``attr``). Instances are never mutated once
    built; derived statistics are computed lazily and kept.

    A PMF is "resolved" when its mass is 1. Mixture construction passes through
    unnormalized states on purpose; call ``normalize`` before treating one as a
    probability measure.
    """

    def __init__(
        self,
        bins: typing.Optional[typing.Dict[float, Bin]] = None,
        precision: float = COMPUTATIONAL_EPS,
        normalized: bool = False,
        identifier: typing.Optional[str] = None,
    ) -> None:
        self.bins: typing.Dict[float, Bin] = {} if bins is None else bins
        self.precision = precision
        self.normalized = normalized
        self.identifier = (
            "anon#%s" % next(_anonymous_ids) if identifier is None else identifier
        )

        self._support: typing.Optional[typing.List[float]] = None
        self._mass: typing.Optional[float] = None
        self._mean: typing.Optional[float] = None
        self._variance: typing.Optional[float] = None
        self._stdev: typing.Optional[float] = None
        self._fingerprint: typing.Optional[tuple] = None
        self._with_attribution: typing.Optional["PMF"] = None

    # construction

    @classmethod
    def empty(cls, precision: float = COMPUTATIONAL_EPS, identifier: str = "empty") -> "PMF":
        return cls({}, precision, False, identifier)

    @classmethod
    def zero(cls, precision: float = COMPUTATIONAL_EPS) -> "PMF":
        """All mass at damage 0, labeled as a miss."""
        return cls(
            {0: Bin.of(1.0, {Outcome.MISS_NONE: 1.0})}, precision, True, "zero"
        )

    @classmethod
    def empty_mass(cls, precision: float = COMPUTATIONAL_EPS) -> "PMF":
        """A single bin at 0 carrying no mass."""
        return cls.zero(precision).scale_mass(0)

    @classmethod
    def delta(cls, value: float, precision: float = COMPUTATIONAL_EPS) -> "PMF":
        return cls({value: Bin(1.0)}, precision, True, "delta(%s)" % value)

    @classmethod
    def from_mapping(
        cls,
        weights: typing.Mapping[float, float],
        precision: float = COMPUTATIONAL_EPS,
        identifier: typing.Optional[str] = None,
    ) -> "PMF":
        total = sum(w for w in weights.values() if w > 0)
        if total <= 0:
            raise DistributionError("cannot build a distribution from zero total weight")
        bins = {value: Bin(w / total) for value, w in weights.items() if w > 0}
        return cls(bins, precision, True, identifier)

    # container protocol

    def __iter__(self) -> typing.Iterator[typing.Tuple[float, Bin]]:
        return iter(self.bins.items())

    def __len__(self) -> int:
        return len(self.bins)

    def items(self) -> typing.ItemsView[float, Bin]:
        return self.bins.items()

    def bin_at(self, damage: float) -> typing.Optional[Bin]:
        return self.bins.get(damage)

    def __repr__(self) -> str:
        return "PMF(%s, bins=%s, mass=%.6g)" % (self.identifier, len(self.bins), self.mass())

    # statistics

    def mass(self) -> float:
        if self._mass is None:
            self._mass = math.fsum(b.p for b in self.bins.values())
        return self._mass

    def support(self) -> typing.List[float]:
        if self._support is None:
            self._support = sorted(self.bins)
        return self._support

    def min(self) -> float:
        support = self.support()
        return support[0] if support else 0

    def max(self) -> float:
        support = self.support()
        return support[-1] if support else 0

    def mean(self) -> float:
        if self._mean is None:
            self._mean = math.fsum(d * b.p for d, b in self.bins.items())
        return self._mean

    def variance(self) -> float:
        if self._variance is None:
            mean = self.mean()
            self._variance = math.fsum(
                (d - mean) * (d - mean) * b.p for d, b in self.bins.items()
            )
        return self._variance

    def stdev(self) -> float:
        if self._stdev is None:
            self._stdev = math.sqrt(self.variance())
        return self._stdev

    def p_at(self, x: float) -> float:
        bin = self.bins.get(x)
        return 0.0 if bin is None else bin.p

    def cdf_at(self, x: float) -> float:
        """P(X <= x)."""
        return math.fsum(b.p for d, b in self.bins.items() if d <= x)

    def ccdf_at(self, x: float) -> float:
        """P(X >= x)."""
        return math.fsum(b.p for d, b in self.bins.items() if d >= x)

    def quantile(self, q: float) -> float:
        """Smallest value whose cumulative mass reaches q."""
        support = self.support()
        if not support:
            return 0
        acc = 0.0
        for x in support:
            acc += self.bins[x].p
            if acc >= q:
                return x
        return support[-1]

    def dense_support(self) -> typing.List[float]:
        """Unit steps from the smallest to the largest finite value, for charts."""
        support = [x for x in self.support() if math.isfinite(x)]
        if not support:
            return []
        lo, hi = support[0], support[-1]
        return [lo + i for i in range(int(hi - lo) + 1)]

    # outcome queries

    def outcome_at(self, damage: float, kind: typing.Union[Outcome, str]) -> float:
        bin = self.bins.get(damage)
        return 0.0 if bin is None else bin.count[Outcome.parse(kind)]

    def outcome_attribution_at(self, damage: float, kind: typing.Union[Outcome, str]) -> float:
        bin = self.bins.get(damage)
        if bin is None or bin.attr is None:
            return 0.0
        return bin.attr[Outcome.parse(kind)]

    def outcomes(self) -> typing.List[Outcome]:
        return [
            kind for kind in Outcome if any(b.count[kind] > 0 for b in self.bins.values())
        ]

    def outcome_probability(self, kind: typing.Union[Outcome, str]) -> float:
        kind = Outcome.parse(kind)
        return math.fsum(b.count[kind] for b in self.bins.values())

    def outcome_mass(self, kind: typing.Union[Outcome, str]) -> float:
        """Share of the mass attributable to ``kind``.

        Unlike ``outcome_probability`` this splits each bin's ``p`` in
        proportion to its counts, so it stays within the bin mass even after
        convolving several labeled rolls.
        """
        kind = Outcome.parse(kind)
        total = 0.0
        for bin in self.bins.values():
            labeled = sum(bin.count)
            if labeled > 0 and bin.count[kind] > 0:
                total += bin.p * bin.count[kind] / labeled
        return total

    def has_outcome(self, kind: typing.Union[Outcome, str]) -> bool:
        kind = Outcome.parse(kind)
        return any(b.count[kind] > 0 for b in self.bins.values())

    def filter_outcome(self, kind: typing.Union[Outcome, str]) -> "PMF":
        """Unnormalized marginal of the mass each bin owes to ``kind``."""
        kind = Outcome.parse(kind)
        bins = {}
        for damage, bin in self.bins.items():
            outcome_count = bin.count[kind]
            labeled = sum(bin.count)
            if outcome_count <= 0 or labeled <= 0:
                continue
            proportion = outcome_count / labeled
            count = [0.0] * len(ZERO_VECTOR)
            count[kind] = outcome_count
            attr = None
            if bin.attr is not None and bin.attr[kind] != 0:
                attr = [0.0] * len(ZERO_VECTOR)
                attr[kind] = bin.attr[kind] * proportion
                attr = tuple(attr)
            bins[damage] = Bin(bin.p * proportion, tuple(count), attr)
        return PMF(bins, self.precision, False, "filter(%s,%s)" % (self.identifier, kind))

    # transforms

    def normalize(self) -> "PMF":
        if self.normalized:
            return self
        total = self.mass()
        if total <= 0:
            raise DistributionError("cannot normalize %s: zero total mass" % self.identifier)
        bins = {d: b.scaled(1 / total) for d, b in self.bins.items()}
        return PMF(bins, self.precision, True, self.identifier)

    def compact(
        self,
        precision: typing.Optional[float] = None,
        drop_zero: bool = True,
        keep_final_bin: bool = False,
    ) -> "PMF":
        """Drop bins below precision and zero out label entries below it.

        ``drop_zero`` also drops bins whose probability clamps to zero or
        below. ``keep_final_bin`` keeps the largest damage value regardless.
        """
        eps = self.precision if precision is None else precision
        final = max(self.bins) if keep_final_bin and self.bins else None

        bins = {}
        for damage, bin in self.bins.items():
            keep = bin.p >= eps and not (drop_zero and clamp_zero(bin.p) <= 0)
            if not keep and damage != final:
                continue
            count = tuple(0.0 if abs(x) < eps else x for x in bin.count)
            attr = bin.attr
            if attr is not None:
                attr = tuple(0.0 if abs(x) < eps else x for x in attr)
                if not any(attr):
                    attr = None
            bins[damage] = Bin(bin.p, count, attr)
        return PMF(bins, eps, self.normalized, self.identifier)

    def prune_relative(self, eps_rel: float, min_bins: int = 0) -> "PMF":
        """Keep bins with p >= eps_rel * peak plus both endpoints.

        ``min_bins`` guarantees that many survivors by topping up with the
        most probable remaining bins. The result is not normalized.
        """
        if not self.bins:
            return self
        peak = max(b.p for b in self.bins.values())
        if peak == 0:
            return PMF(dict(self.bins), self.precision, False, self.identifier)

        threshold = eps_rel * peak
        survivors = {}
        for damage in (self.min(), self.max()):
            survivors[damage] = self.bins[damage]
        for damage, bin in self.bins.items():
            if bin.p >= threshold:
                survivors[damage] = bin
        if min_bins > 0 and len(survivors) < min_bins:
            for damage, bin in sorted(self.bins.items(), key=lambda item: -item[1].p):
                if len(survivors) >= min_bins:
                    break
                survivors.setdefault(damage, bin)

        bins = {}
        for damage, bin in survivors.items():
            count = tuple(x if abs(x) >= threshold else 0.0 for x in bin.count)
            attr = None
            if bin.attr is not None:
                attr = tuple(x if abs(x) >= threshold else 0.0 for x in bin.attr)
                if not any(attr):
                    attr = None
            bins[damage] = Bin(bin.p, count, attr)
        return PMF(bins, self.precision, False, "prune(%s)" % self.identifier)

    def scale_mass(self, factor: float) -> "PMF":
        if factor == 1:
            return self
        bins = {d: b.scaled(factor) for d, b in self.bins.items()}
        return PMF(bins, self.precision, False, "scale(%s,%s)" % (self.identifier, factor))

    def map_damage(self, f: typing.Callable[[float], float]) -> "PMF":
        acc = _Accumulator()
        for damage, bin in self.bins.items():
            acc.add_bin(f(damage), bin)
        return PMF(acc.bins(), self.precision, self.normalized, "map(%s)" % self.identifier)

    def scale_damage(self, factor: float, mode: str = "floor") -> "PMF":
        try:
            rounding = _ROUNDING[mode]
        except KeyError:
            raise DistributionError("unknown rounding mode %r" % (mode,))

        def scale(damage: float) -> float:
            x = damage * factor
            return rounding(x) if math.isfinite(x) else x

        return self.map_damage(scale)

    def with_attribution(self) -> "PMF":
        """This distribution with ``attr`` filled in for every labeled bin.

        Distributions produced by face conversion already carry attribution
        and come back unchanged. Other bins split ``damage * p`` across kinds
        in proportion to their counts, which also holds after convolving
        several labeled rolls. The result is cached, and asking the result
        again returns the result itself.
        """
        if self._with_attribution is not None:
            return self._with_attribution
        if self._has_full_attribution():
            result = self
        else:
            bins = {}
            for damage, bin in self.bins.items():
                labeled = sum(bin.count)
                if self._bin_has_attribution(damage, bin) or labeled <= 0:
                    bins[damage] = bin
                else:
                    share = damage * bin.p / labeled
                    bins[damage] = Bin(
                        bin.p, bin.count, tuple(share * c for c in bin.count)
                    )
            result = PMF(bins, self.precision, self.normalized, self.identifier)
            result._with_attribution = result
        self._with_attribution = result
        return result

    def combined_with_attribution(self) -> "PMF":
        return self.with_attribution()

    @staticmethod
    def _bin_has_attribution(damage: float, bin: Bin) -> bool:
        if damage == 0:
            return True
        for kind in Outcome:
            if bin.count[kind] > 0 and (bin.attr is None or bin.attr[kind] == 0):
                return False
        return True

    def _has_full_attribution(self) -> bool:
        return all(self._bin_has_attribution(d, b) for d, b in self.bins.items())

    # mixtures

    def add_scaled(self, other: "PMF", weight: float) -> "PMF":
        """Union ``weight * other`` into this distribution, unnormalized."""
        if weight == 0:
            return self
        acc = _Accumulator()
        for damage, bin in self.bins.items():
            acc.add_bin(damage, bin)
        for damage, bin in other.bins.items():
            acc.add_bin(damage, bin, weight)
        return PMF(
            acc.bins(),
            self.precision,
            False,
            "%s+scaled(%s,%s)" % (self.identifier, other.identifier, weight),
        )

    def add(self, other: "PMF") -> "PMF":
        return self.add_scaled(other, 1)

    def gate(self, p: float, fallback: typing.Optional["PMF"] = None) -> "PMF":
        return PMF.branch(self, PMF.zero() if fallback is None else fallback, p)

    @staticmethod
    def branch(success: "PMF", failure: "PMF", p: float) -> "PMF":
        """Bernoulli mixture: ``success`` with probability p, else ``failure``."""
        if not math.isfinite(p):
            p = 0.0
        p = min(max(p, 0.0), 1.0)
        if p == 0:
            return failure
        if p == 1:
            return success

        q = 1 - p
        identifier = "branch(%s*%.6f + %s*%.6f)" % (
            failure.identifier,
            q,
            success.identifier,
            p,
        )
        mixed = PMF.empty(success.precision).add_scaled(failure, q).add_scaled(success, p)
        return PMF(mixed.bins, success.precision, False, identifier)

    @staticmethod
    def with_probability(pmf: "PMF", p: float) -> "PMF":
        return PMF.branch(pmf, PMF.zero(), p)

    @staticmethod
    def exclusive(
        options: typing.Iterable[typing.Tuple["PMF", float]], eps: float = EPS
    ) -> "PMF":
        """Exactly one of the weighted options happens.

        Leftover probability goes to ``PMF.zero()``; weights summing above
        one are rejected.
        """
        items = list(options)
        total = math.fsum(weight for _, weight in items)
        if total - 1 > eps:
            raise DistributionError("exclusive: total weight %.6f exceeds 1" % total)

        result = PMF.empty(eps)
        for pmf, weight in items:
            if weight > 0:
                result = result.add_scaled(pmf, weight)
        leftover = 1 - total
        if leftover > eps:
            result = result.add_scaled(PMF.zero(), leftover)
        return result

    @staticmethod
    def mix_n(weights: typing.Iterable[typing.Tuple[float, "PMF"]]) -> "PMF":
        """N-way mixture of ``(weight, pmf)`` pairs, weights taken relatively."""
        acc: typing.Optional[PMF] = None
        total = 0.0
        for weight, pmf in weights:
            if weight <= EPS:
                continue
            if acc is None:
                acc = pmf
                total = weight
            else:
                acc = PMF.branch(pmf, acc, weight / (total + weight))
                total += weight
        return PMF.empty_mass() if acc is None else acc

    @staticmethod
    def first_success_weights(p_success: float, p_special: float, n: int) -> typing.Dict[str, float]:
        """Split "at least one success in n tries" by the type of the first success."""
        p_any = 1 - (1 - p_success) ** n
        denominator = p_success if p_success != 0 else 1
        p_specific = p_special * p_any / denominator
        p_general = (p_success - p_special) * p_any / denominator
        return {
            "p_specific_success": p_specific,
            "p_general_success": p_general,
            "p_none": 1 - p_specific - p_general,
            "p_any": p_any,
        }

    # convolution

    def fingerprint(self) -> tuple:
        """Order-canonical content key, used to memoize convolutions."""
        if self._fingerprint is None:
            fp = _fingerprint_number
            self._fingerprint = tuple(
                (
                    damage,
                    fp(bin.p),
                    tuple(fp(x) for x in bin.count),
                    () if bin.attr is None else tuple(fp(x) for x in bin.attr),
                )
                for damage, bin in sorted(self.bins.items())
            )
        return self._fingerprint

    def _resolved(self) -> "PMF":
        if self.normalized or abs(self.mass() - 1) <= _MASS_TOLERANCE:
            return self
        return self.normalize()

    def convolve(
        self,
        other: "PMF",
        precision: typing.Optional[float] = None,
        cache: typing.Optional[ConvolutionCache] = None,
        raw: bool = False,
    ) -> "PMF":
        """Distribution of the sum of two independent draws.

        Each side's outcome kinds are carried into the product separately:
        ``count[k] = count_a[k] * p_b + count_b[k] * p_a`` (likewise ``attr``),
        so the ``attr`` of every bin still sums to ``damage * p``.

        Without a precision the finer of the two operands' precisions is
        used. Unless ``raw`` is set both operands are normalized first. With a
        cache, operands are put in canonical order so ``a.convolve(b)`` and
        ``b.convolve(a)`` return the same instance.
        """
        eps = min(self.precision, other.precision) if precision is None else precision
        if not self.bins:
            return other
        if not other.bins:
            return self

        a = self if raw else self._resolved()
        b = other if raw else other._resolved()
        if b.fingerprint() < a.fingerprint():
            a, b = b, a

        key = None
        if cache is not None:
            key = ("convolve", raw, eps, a.fingerprint(), b.fingerprint())
            cached = cache.get(key)
            if cached is not None:
                logger.debug("convolution cache hit for %s, %s", a.identifier, b.identifier)
                return cached

        result = a._convolve(b, eps, raw)
        if cache is not None:
            cache.set(key, result)
        return result

    def _convolve(self, other: "PMF", eps: float, raw: bool) -> "PMF":
        acc = _Accumulator()
        for da, ba in self.bins.items():
            pa = ba.p
            for db, bb in other.bins.items():
                pb = bb.p
                count = [ca * pb + cb * pa for ca, cb in zip(ba.count, bb.count)]
                attr = None
                if ba.attr is not None or bb.attr is not None:
                    attr = [
                        xa * pb + xb * pa
                        for xa, xb in zip(ba.attr or ZERO_VECTOR, bb.attr or ZERO_VECTOR)
                    ]
                acc.add(da + db, pa * pb, count, attr)

        bins = acc.bins()
        if eps > 0:
            bins = {d: b for d, b in bins.items() if b.p >= eps}

        result = PMF(
            bins,
            eps,
            not raw,
            "%s%s%s" % (self.identifier, "*" if raw else "+", other.identifier),
        )
        expected = self.mass() * other.mass() if raw else 1.0
        got = result.mass()
        if expected != 0 and got > 0 and abs(got - expected) > _MASS_TOLERANCE:
            rescaled = result.scale_mass(expected / got)
            result = PMF(rescaled.bins, eps, not raw, result.identifier)
        return result

    def combine_raw(
        self,
        other: "PMF",
        precision: typing.Optional[float] = None,
        cache: typing.Optional[ConvolutionCache] = None,
    ) -> "PMF":
        return self.convolve(other, precision, cache, raw=True)

    @staticmethod
    def convolve_many(
        pmfs: typing.Sequence["PMF"],
        precision: float = COMPUTATIONAL_EPS,
        cache: typing.Optional[ConvolutionCache] = None,
    ) -> "PMF":
        if len(pmfs) == 0:
            return PMF.empty(precision)
        result = pmfs[0]
        for pmf in pmfs[1:]:
            result = result.convolve(pmf, precision, cache)
        return result

    def power(
        self,
        n: int,
        precision: typing.Optional[float] = None,
        cache: typing.Optional[ConvolutionCache] = None,
    ) -> "PMF":
        """This distribution convolved with itself n times.

        The result folds independent rolls into one distribution, so per-roll
        provenance ("at least one crit") cannot be read back from it; use
        ``replicate`` when that matters.
        """
        _check_count(n, "power")
        if n == 1:
            return self
        eps = self.precision if precision is None else precision

        base = self._resolved()
        key = None
        if cache is not None:
            key = ("power", n, eps, base.fingerprint())
            cached = cache.get(key)
            if cached is not None:
                return cached

        result = base
        exp = n - 1
        while exp > 0:
            if exp & 1:
                result = result.convolve(base, eps, cache)
            exp >>= 1
            if exp > 0:
                base = base.convolve(base, eps, cache)

        if cache is not None:
            cache.set(key, result)
        return result

    def replicate(self, n: int) -> typing.List["PMF"]:
        _check_count(n, "replicate")
        return [self] * n
