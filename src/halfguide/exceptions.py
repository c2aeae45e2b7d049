"""Exception types raised by the half-guide solver stack."""


class ConfigurationError(ValueError):
    """Invalid call parameters: orientation, direction, form/domain mismatch."""


class DegenerateElementError(ValueError):
    """An element with (numerically) zero measure was met during assembly."""


class ShapeMismatchError(ValueError):
    """Operator, right-hand side or spectral basis sizes do not agree."""


class ModeSelectionError(RuntimeError):
    """Fewer admissible outgoing/decaying modes than spectral basis functions."""


class BatchError(RuntimeError):
    """A Floquet sample failed inside a batch; the batch was aborted."""
