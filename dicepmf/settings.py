import logging
import os
import typing

import yaml

from .cache import ConvolutionCache
from .dice import Dice
from .errors import SettingsError
from .outcomes import COMPUTATIONAL_EPS, EPS
from .pmf import PMF

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = os.path.join(os.path.dirname(__file__), "settings.default.yaml")


class Settings(typing.NamedTuple):
    precision: float = EPS
    pmf_precision: float = COMPUTATIONAL_EPS
    cache_capacity: int = 1000


def _read_yaml(path: str) -> typing.Dict[str, typing.Any]:
    try:
        with open(path) as file:
            data = yaml.safe_load(file)
    except OSError as e:
        raise SettingsError("cannot read settings file %s: %s" % (path, e)) from e
    except yaml.YAMLError as e:
        raise SettingsError("invalid YAML in %s: %s" % (path, e)) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError("settings file %s must hold a mapping" % path)
    return data


def _as_float(data: typing.Dict[str, typing.Any], key: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SettingsError("%s must be a number, got %r" % (key, value))
    return float(value)


def load_settings(path: typing.Optional[str] = None) -> Settings:
    """Read the packaged defaults, overlaid with the YAML file at ``path``."""
    data = _read_yaml(DEFAULT_SETTINGS_PATH)
    if path is not None:
        logger.debug("loading settings from %s", path)
        data.update(_read_yaml(path))

    unknown = set(data) - set(Settings._fields)
    if unknown:
        raise SettingsError("unknown settings: %s" % ", ".join(sorted(unknown)))

    capacity = data["cache_capacity"]
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise SettingsError("cache_capacity must be a positive integer, got %r" % (capacity,))

    return Settings(
        precision=_as_float(data, "precision"),
        pmf_precision=_as_float(data, "pmf_precision"),
        cache_capacity=capacity,
    )


class Context:
    """Precision and convolution cache for one evaluation session.

    Passed explicitly to whatever builds distributions; there is no
    process-wide default.
    """

    def __init__(
        self,
        precision: float = EPS,
        cache: typing.Optional[ConvolutionCache] = None,
        pmf_precision: float = COMPUTATIONAL_EPS,
    ) -> None:
        self.precision = precision
        self.pmf_precision = pmf_precision
        self.cache = ConvolutionCache() if cache is None else cache

    @classmethod
    def from_settings(cls, settings: typing.Optional[Settings] = None) -> "Context":
        if settings is None:
            settings = load_settings()
        return cls(
            settings.precision,
            ConvolutionCache(settings.cache_capacity),
            settings.pmf_precision,
        )

    def __repr__(self) -> str:
        return "Context(precision=%s, cache=%r)" % (self.precision, self.cache)

    def to_distribution(self, dice: Dice) -> PMF:
        return dice.to_distribution(self.precision)

    def convolve(self, a: PMF, b: PMF, raw: bool = False) -> PMF:
        return a.convolve(b, self.pmf_precision, self.cache, raw)

    def convolve_many(self, pmfs: typing.Sequence[PMF]) -> PMF:
        return PMF.convolve_many(pmfs, self.pmf_precision, self.cache)

    def power(self, pmf: PMF, n: int) -> PMF:
        return pmf.power(n, self.pmf_precision, self.cache)

    def clear(self) -> None:
        self.cache.clear()
