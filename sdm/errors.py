"""
Named error conditions raised by the modelling pipeline.
"""


class SDMError(ValueError):
    """Base class for species distribution model errors."""


class NoOccurrencesError(SDMError):
    """No usable presence records remain after filtering."""


class GridMismatchError(SDMError):
    """Raster layers do not share the same grid (shape and transform)."""


class BandMismatchError(SDMError):
    """Raster band names or order differ from the ones the model was fit on."""

    def __init__(self, expected: tuple[str, ...], found: tuple[str, ...]):
        self.expected = tuple(expected)
        self.found = tuple(found)
        missing = [b for b in self.expected if b not in self.found]
        extra = [b for b in self.found if b not in self.expected]
        detail = f"expected {list(self.expected)}, got {list(self.found)}"
        if missing:
            detail += f"; missing {missing}"
        if extra:
            detail += f"; unexpected {extra}"
        super().__init__(f"Band mismatch: {detail}")


class InsufficientBackgroundError(SDMError):
    """Fewer valid raster cells than requested background points."""

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} background points but only {available} valid cells are available"
        )


class MissingFeatureValuesError(SDMError):
    """Points fall outside the raster or on cells with missing values."""

    def __init__(self, n_missing: int, n_total: int):
        self.n_missing = n_missing
        self.n_total = n_total
        super().__init__(
            f"{n_missing} of {n_total} points have missing environmental values"
        )


class DegenerateFitError(SDMError):
    """Training data cannot support a logistic regression fit."""
