"""Per-pixel feature extraction helpers.

The feature buffer packs three uint8 channels per pixel:

  0: skin likelihood
  1: detail (edge response on luma)
  2: saturation likelihood

The scorer reads the channels in exactly this order.
"""

import numpy as np

SKIN_CHANNEL = 0
DETAIL_CHANNEL = 1
SATURATION_CHANNEL = 2

# R, G, B. Sum is ~1.31, not normalised.
LUMA_WEIGHTS = (0.0722, 0.7152, 0.5126)


def _rgb_float(rgb: np.ndarray) -> np.ndarray:
    return rgb[..., :3].astype(np.float64)


def luma(rgb: np.ndarray) -> np.ndarray:
    """Return luma on a 0–255 scale (float64, shape HxW)."""
    px = _rgb_float(rgb)
    wr, wg, wb = LUMA_WEIGHTS
    return wr * px[..., 0] + wg * px[..., 1] + wb * px[..., 2]


def saturation(rgb: np.ndarray) -> np.ndarray:
    """HSL saturation of each pixel in 0.0–1.0; gray pixels are 0."""
    px = _rgb_float(rgb) / 255.0
    maximum = px.max(axis=-1)
    minimum = px.min(axis=-1)
    d = maximum - minimum
    total = maximum + minimum
    lightness = total / 2.0

    denom = np.where(lightness > 0.5, 2.0 - total, total)
    gray = maximum == minimum
    safe_denom = np.where(gray | (denom == 0), 1.0, denom)
    return np.where(gray, 0.0, d / safe_denom)


def skin_likelihood(rgb: np.ndarray, skin_color=(0.78, 0.57, 0.44)) -> np.ndarray:
    """Return 1 - distance between the pixel's colour direction and `skin_color`.

    Black pixels have no direction; their difference vector is the negated
    reference colour.
    """
    px = _rgb_float(rgb)
    ref = np.asarray(skin_color, dtype=np.float64)
    mag = np.sqrt((px * px).sum(axis=-1))
    safe_mag = np.where(mag == 0, 1.0, mag)[..., np.newaxis]
    diff = np.where((mag == 0)[..., np.newaxis], -ref, px / safe_mag - ref)
    return 1.0 - np.sqrt((diff * diff).sum(axis=-1))


def _gated_rescale(
    value: np.ndarray,
    lightness: np.ndarray,
    threshold: float,
    brightness_min: float,
    brightness_max: float,
) -> np.ndarray:
    """Stretch (threshold, 1] onto (0, 255] where the brightness gate passes."""
    keep = (value > threshold) & (lightness >= brightness_min) & (lightness <= brightness_max)
    stretched = np.clip((value - threshold) * (255.0 / (1.0 - threshold)), 0.0, 255.0)
    return np.where(keep, stretched, 0.0).astype(np.uint8)


def detect_edge(rgb: np.ndarray) -> np.ndarray:
    """Laplacian-style detail map on luma; border pixels keep their raw luma."""
    lum = luma(rgb)
    detail = lum.copy()
    if lum.shape[0] > 2 and lum.shape[1] > 2:
        detail[1:-1, 1:-1] = (
            lum[1:-1, 1:-1] * 4.0
            - lum[1:-1, :-2]
            - lum[:-2, 1:-1]
            - lum[2:, 1:-1]
            - lum[1:-1, 2:]
        )
    return np.clip(detail, 0.0, 255.0).astype(np.uint8)


def detect_skin(
    rgb: np.ndarray,
    skin_color=(0.78, 0.57, 0.44),
    threshold: float = 0.8,
    brightness_min: float = 0.2,
    brightness_max: float = 1.0,
) -> np.ndarray:
    lightness = luma(rgb) / 255.0
    return _gated_rescale(
        skin_likelihood(rgb, skin_color), lightness, threshold, brightness_min, brightness_max
    )


def detect_saturation(
    rgb: np.ndarray,
    threshold: float = 0.4,
    brightness_min: float = 0.05,
    brightness_max: float = 0.9,
) -> np.ndarray:
    lightness = luma(rgb) / 255.0
    return _gated_rescale(saturation(rgb), lightness, threshold, brightness_min, brightness_max)


def extract_features(rgb: np.ndarray, config) -> np.ndarray:
    """Build the HxWx3 uint8 feature buffer for an RGB(A) image."""
    h, w = rgb.shape[:2]
    features = np.zeros((h, w, 3), dtype=np.uint8)
    features[..., DETAIL_CHANNEL] = detect_edge(rgb)
    features[..., SKIN_CHANNEL] = detect_skin(
        rgb,
        skin_color=config.skin_color,
        threshold=config.skin_threshold,
        brightness_min=config.skin_brightness_min,
        brightness_max=config.skin_brightness_max,
    )
    features[..., SATURATION_CHANNEL] = detect_saturation(
        rgb,
        threshold=config.saturation_threshold,
        brightness_min=config.saturation_brightness_min,
        brightness_max=config.saturation_brightness_max,
    )
    return features
