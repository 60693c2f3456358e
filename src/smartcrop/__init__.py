"""Content-aware crop selection for thumbnails."""

__version__ = "1.0.0"

from smartcrop.cropper import (  # noqa: E402
    Candidate,
    Configuration,
    CropCancelledError,
    CropRect,
    CropResult,
    InvalidInputError,
    NoCropFoundError,
    NumericOverflowError,
    Score,
    SmartCropError,
    smart_crop,
)

__all__ = [
    "Candidate",
    "Configuration",
    "CropCancelledError",
    "CropRect",
    "CropResult",
    "InvalidInputError",
    "NoCropFoundError",
    "NumericOverflowError",
    "Score",
    "SmartCropError",
    "__version__",
    "smart_crop",
]
