"""Exception hierarchy for Depth Studio.

Runtime-data problems (flat depth, pointer outside the map, failed rescale) are
absorbed where they occur and never surface here. The classes below cover the
failures a caller has to react to:

    DepthStudioError
    ├── CapabilityProbeFailure   backend probe failed (converted to False)
    ├── ModelLoadError           engine could not acquire the model
    ├── InferenceError           estimation failed
    │   ├── NotReadyError        no model handle at all
    │   └── ModelNotLoadedError  handle exists but is not in the loaded state
    ├── DepthMapError            programming-contract violation (also ValueError)
    │   ├── ShapeMismatchError
    │   └── InvalidDepthError
    └── UnknownModelError        catalog lookup miss (also KeyError)
"""


class DepthStudioError(Exception):
    """Base class for all Depth Studio errors."""


class CapabilityProbeFailure(DepthStudioError):
    """A compute backend probe failed."""

    def __init__(self, backend: str, reason: str):
        self.backend = backend
        self.reason = reason
        super().__init__(f"Probe for backend '{backend}' failed: {reason}")


class ModelLoadError(DepthStudioError):
    """The inference engine rejected a model acquisition."""


class InferenceError(DepthStudioError):
    """Depth estimation could not be completed."""


class NotReadyError(InferenceError):
    """Estimation was requested while no model is loaded."""

    def __init__(self, message: str = "No model loaded. Please load a model first."):
        super().__init__(message)


class ModelNotLoadedError(InferenceError):
    """Estimation was requested while the model is still loading or failed."""

    def __init__(self, message: str = "Model is not ready. Please wait for model to load."):
        super().__init__(message)


class DepthMapError(DepthStudioError, ValueError):
    """A depth map violates its construction contract."""


class ShapeMismatchError(DepthMapError):
    """Buffer length does not equal width * height."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Data size mismatch: expected {expected}, got {actual}")


class InvalidDepthError(DepthMapError):
    """Depth buffer contains non-finite values."""


class UnknownModelError(DepthStudioError, KeyError):
    """Model id is not in the catalog."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
