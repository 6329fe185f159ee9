class DicePMFError(ValueError):
    pass


class DiceError(DicePMFError):
    pass


class DistributionError(DicePMFError):
    pass


class MixtureError(DicePMFError):
    pass


class SettingsError(DicePMFError):
    pass
