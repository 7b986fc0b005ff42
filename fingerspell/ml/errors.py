class FingerspellError(Exception):
    pass


class LandmarkCountError(FingerspellError, ValueError):
    pass


class VectorShapeError(FingerspellError, ValueError):
    pass


class LabelFormatError(FingerspellError, ValueError):
    pass


class NoReferenceDataError(FingerspellError, LookupError):
    """No stored reference for the requested (hand, symbol)."""


class AttemptInProgressError(FingerspellError, RuntimeError):
    """start() while counting down, sampling or cooling down."""


class PoseUnavailableError(FingerspellError, RuntimeError):
    """The hand landmarker could not be created. Permanent until retried."""


class StoreUnavailableError(FingerspellError, RuntimeError):
    pass


class AverageExistsError(FingerspellError):
    """Numbered captures are closed once a (hand, symbol) has an AVERAGE entry."""
