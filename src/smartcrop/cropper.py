#!/usr/bin/env python3
"""
Content-aware crop selection
=================================================

Finds the crop window of an image that keeps the most interesting content
when it has to be cut down to a target size or aspect ratio (thumbnails).

Pipeline:
  1. Plan the crop: derive crop size from the target, clamp the scale range
     so no candidate needs upscaling, compute the prescale factor
  2. Prescale the image (Lanczos) so analysis cost stays bounded
  3. Extract per-pixel features (detail, skin tone, saturation)
  4. Downsample the feature buffer for scoring
  5. Enumerate candidate windows over a scale × position grid
  6. Score every candidate against the importance field (centre bias,
     edge penalty, rule-of-thirds boost)
  7. Pick the best candidate and map it back to original coordinates

Usage:
  smartcrop photo.jpg --width 100 --height 100 --output thumb.jpg
  smartcrop photo.jpg --width 1080 --height 1440 --json crop.json --workers 4
  python -m smartcrop photo.jpg --debug-dir ./debug

Requirements:
  pip install Pillow opencv-python-headless numpy
"""

import argparse
import json
import math
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
from PIL import Image, ImageOps
from smartcrop import __version__
from smartcrop.features import DETAIL_CHANNEL, SATURATION_CHANNEL, SKIN_CHANNEL, extract_features

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TARGET_WIDTH = 100  # CLI default output width
DEFAULT_TARGET_HEIGHT = 100  # CLI default output height
MAX_DIMENSION = 2**31 - 1  # largest width/height the planner accepts
MAX_WORKERS = 32
JPEG_QUALITY = 90
STEP_ENV_VAR = "SMARTCROP_STEP"
SCORE_DOWN_SAMPLE_ENV_VAR = "SMARTCROP_SCORE_DOWN_SAMPLE"
RULE_OF_THIRDS_ENV_VAR = "SMARTCROP_RULE_OF_THIRDS"
PRESCALE_ENV_VAR = "SMARTCROP_PRESCALE"
WORKERS_ENV_VAR = "SMARTCROP_WORKERS"

DebugSink = Callable[[str, np.ndarray], None]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SmartCropError(Exception):
    """Base class for crop analysis failures."""


class InvalidInputError(SmartCropError, ValueError):
    """Image or configuration cannot be analysed."""


class NoCropFoundError(SmartCropError, RuntimeError):
    """No candidate window fits inside the image."""


class NumericOverflowError(SmartCropError, OverflowError):
    """Dimension arithmetic left the representable range."""


class CropCancelledError(SmartCropError, RuntimeError):
    """The caller's cancellation check fired during scoring."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Configuration:
    width: int = 0  # target width, 0 = unset
    height: int = 0  # target height, 0 = unset
    crop_width: int = 0  # explicit crop size when no target is given
    crop_height: int = 0
    detail_weight: float = 0.2
    skin_color: tuple[float, float, float] = (0.78, 0.57, 0.44)
    skin_bias: float = 0.01
    skin_brightness_min: float = 0.2
    skin_brightness_max: float = 1.0
    skin_threshold: float = 0.8
    skin_weight: float = 1.8
    saturation_brightness_min: float = 0.05
    saturation_brightness_max: float = 0.9
    saturation_threshold: float = 0.4
    saturation_bias: float = 0.2
    saturation_weight: float = 0.3
    # step * min_scale rounded down to a power of two works well
    score_down_sample: int = 8
    step: int = 8
    scale_step: float = 0.1
    min_scale: float = 0.9
    max_scale: float = 1.0
    edge_radius: float = 0.4
    edge_weight: float = -20.0
    outside_importance: float = -0.5
    rule_of_thirds: bool = True
    prescale: bool = True
    debug: bool = False


def validate_configuration(config: Configuration) -> None:
    """Raise InvalidInputError for tunables the pipeline cannot work with."""
    if config.width < 0 or config.height < 0:
        raise InvalidInputError(
            f"Target size must not be negative (got {config.width}x{config.height})"
        )
    if config.crop_width < 0 or config.crop_height < 0:
        raise InvalidInputError(
            f"Crop size must not be negative (got {config.crop_width}x{config.crop_height})"
        )
    if config.step < 1:
        raise InvalidInputError(f"step must be >= 1 (got {config.step})")
    if config.score_down_sample < 1:
        raise InvalidInputError(f"score_down_sample must be >= 1 (got {config.score_down_sample})")
    if round(config.scale_step * 100) < 1:
        raise InvalidInputError(f"scale_step must be >= 0.01 (got {config.scale_step})")
    if config.min_scale <= 0 or config.max_scale < config.min_scale:
        raise InvalidInputError(
            f"Scale range must satisfy 0 < min_scale <= max_scale "
            f"(got {config.min_scale}..{config.max_scale})"
        )
    if config.skin_threshold >= 1.0 or config.saturation_threshold >= 1.0:
        raise InvalidInputError("skin_threshold and saturation_threshold must be < 1.0")


# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


def _read_env_file(env_path: Path) -> dict[str, str]:
    """Parse KEY=VALUE lines (optional `export`, quotes) from a .env file."""
    values: dict[str, str] = {}
    try:
        content = env_path.read_text(encoding="utf-8")
    except OSError:
        return values

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        values[key] = value

    return values


def _resolve_env_string(var_name: str, search_dir: Optional[Path] = None) -> Optional[str]:
    """Resolve a SMARTCROP_* setting from the environment, then .env files.

    The cwd .env is checked before the one in `search_dir` (the image's folder).
    A value found in a file is copied into os.environ when the variable is absent.
    """
    env_value = (os.environ.get(var_name) or "").strip()
    if env_value:
        return env_value

    candidates = [Path.cwd() / ".env"]
    if search_dir is not None:
        candidates.append(search_dir / ".env")

    seen: set[Path] = set()
    for env_file in candidates:
        resolved = env_file.resolve()
        if resolved in seen or not env_file.exists():
            continue
        seen.add(resolved)

        values = _read_env_file(env_file)
        value = (values.get(var_name) or "").strip()
        if value:
            os.environ.setdefault(var_name, value)
            print(f"  📝 Loaded {var_name} from {env_file}")
            return value
    return None


def _resolve_env_int(var_name: str, default: int, search_dir: Optional[Path] = None) -> int:
    raw = _resolve_env_string(var_name, search_dir=search_dir)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _resolve_env_bool(var_name: str, default: bool, search_dir: Optional[Path] = None) -> bool:
    raw = (_resolve_env_string(var_name, search_dir=search_dir) or "").lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def resolve_workers(search_dir: Optional[Path] = None) -> int:
    """Resolve scoring worker count (1 = sequential)."""
    return min(MAX_WORKERS, max(1, _resolve_env_int(WORKERS_ENV_VAR, 1, search_dir=search_dir)))


def configuration_from_env(search_dir: Optional[Path] = None, **overrides) -> Configuration:
    """
    Build a Configuration from SMARTCROP_* variables (environment, then .env).
    Keyword overrides win over anything read from the environment.
    """
    defaults = Configuration()
    values: dict[str, object] = {
        "step": max(1, _resolve_env_int(STEP_ENV_VAR, defaults.step, search_dir=search_dir)),
        "score_down_sample": max(
            1,
            _resolve_env_int(
                SCORE_DOWN_SAMPLE_ENV_VAR, defaults.score_down_sample, search_dir=search_dir
            ),
        ),
        "rule_of_thirds": _resolve_env_bool(
            RULE_OF_THIRDS_ENV_VAR, defaults.rule_of_thirds, search_dir=search_dir
        ),
        "prescale": _resolve_env_bool(PRESCALE_ENV_VAR, defaults.prescale, search_dir=search_dir),
    }
    values.update(overrides)
    return replace(defaults, **values)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CropRect:
    x: int
    y: int
    width: int
    height: int

    def scaled(self, factor: float) -> "CropRect":
        """Divide every field by `factor`, flooring back to pixels."""
        return CropRect(
            x=int(math.floor(self.x / factor)),
            y=int(math.floor(self.y / factor)),
            width=int(math.floor(self.width / factor)),
            height=int(math.floor(self.height / factor)),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Score:
    detail: float = 0.0
    skin: float = 0.0
    saturation: float = 0.0
    total: float = 0.0


@dataclass
class Candidate:
    rect: CropRect
    score: Optional[Score] = None

    def to_dict(self) -> dict:
        return {
            "rect": self.rect.to_dict(),
            "score": asdict(self.score) if self.score is not None else None,
        }


@dataclass
class CropResult:
    crops: list[Candidate]
    top_crop: Candidate
    prescale: float = 1.0

    def to_dict(self) -> dict:
        return {
            "top_crop": self.top_crop.to_dict(),
            "prescale": self.prescale,
            "crops": [c.to_dict() for c in self.crops],
        }


@dataclass(frozen=True)
class CropPlan:
    """Working values derived from the image size and Configuration."""

    scale: float
    prescale: float
    min_scale: float
    max_scale: float
    crop_width: int  # in working (prescaled) pixels; 0 = square default
    crop_height: int
    work_width: int
    work_height: int


@dataclass
class ScoreGrid:
    """Downsampled feature channels (0.0–1.0) and their full-resolution sample coordinates."""

    skin: np.ndarray
    detail: np.ndarray
    saturation: np.ndarray
    xs: np.ndarray = field(repr=False)
    ys: np.ndarray = field(repr=False)

    @classmethod
    def from_features(cls, score_features: np.ndarray, down_sample: int) -> "ScoreGrid":
        h, w = score_features.shape[:2]
        px = score_features.astype(np.float64) / 255.0
        return cls(
            skin=px[..., SKIN_CHANNEL],
            detail=px[..., DETAIL_CHANNEL],
            saturation=px[..., SATURATION_CHANNEL],
            xs=(np.arange(w, dtype=np.float64) * down_sample)[np.newaxis, :],
            ys=(np.arange(h, dtype=np.float64) * down_sample)[:, np.newaxis],
        )


# ---------------------------------------------------------------------------
# Stage 1: Resolution management
# ---------------------------------------------------------------------------


def _checked_floor(value: float, what: str) -> int:
    if not math.isfinite(value) or abs(value) > MAX_DIMENSION:
        raise NumericOverflowError(f"{what} out of range: {value}")
    return int(math.floor(value))


def plan_crop(image_width: int, image_height: int, config: Configuration) -> CropPlan:
    """Derive crop size, scale range and prescale factor for an image.

    With a target size the crop is the largest window of the target's aspect
    ratio that fits the image, and min_scale is raised so that no candidate
    would need upscaling to reach the target. Prescaling shrinks the working
    image so the smallest candidate lands at roughly target resolution.
    """
    if image_width <= 0 or image_height <= 0:
        raise InvalidInputError(f"Image has no pixels ({image_width}x{image_height})")
    if config.width < 0 or config.height < 0:
        raise InvalidInputError(
            f"Target size must not be negative (got {config.width}x{config.height})"
        )
    if max(image_width, image_height, config.width, config.height) > MAX_DIMENSION:
        raise NumericOverflowError(
            f"Dimensions exceed {MAX_DIMENSION}: image {image_width}x{image_height}, "
            f"target {config.width}x{config.height}"
        )

    scale = 1.0
    prescale = 1.0
    min_scale = config.min_scale
    crop_width = config.crop_width
    crop_height = config.crop_height
    work_width = image_width
    work_height = image_height

    if config.width and config.height:
        scale = min(image_width / config.width, image_height / config.height)
        crop_width = max(1, _checked_floor(config.width * scale, "crop width"))
        crop_height = max(1, _checked_floor(config.height * scale, "crop height"))
        # image 100x100, target 95x95: scale = 100/95, so min_scale >= 0.95
        min_scale = min(config.max_scale, max(1.0 / scale, config.min_scale))

        if config.prescale:
            prescale = 1.0 / scale / min_scale
            if prescale < 1.0:
                work_width = max(1, _checked_floor(image_width * prescale, "prescaled width"))
                work_height = max(1, _checked_floor(image_height * prescale, "prescaled height"))
                crop_width = max(1, _checked_floor(crop_width * prescale, "prescaled crop width"))
                crop_height = max(
                    1, _checked_floor(crop_height * prescale, "prescaled crop height")
                )
            else:
                prescale = 1.0

    return CropPlan(
        scale=scale,
        prescale=prescale,
        min_scale=min_scale,
        max_scale=config.max_scale,
        crop_width=crop_width,
        crop_height=crop_height,
        work_width=work_width,
        work_height=work_height,
    )


def resample(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """High-quality (Lanczos) resize of an 8-bit RGB buffer."""
    img = Image.fromarray(np.ascontiguousarray(pixels[..., :3]))
    return np.array(img.resize((width, height), Image.LANCZOS))


def prescale_image(rgb: np.ndarray, plan: CropPlan) -> np.ndarray:
    """Return the working image for `plan`; the input is never modified."""
    if plan.prescale >= 1.0:
        return rgb
    return resample(rgb, plan.work_width, plan.work_height)


def rescale_result(result: CropResult, prescale: float) -> CropResult:
    """Map every rectangle of a working-space result back to original pixels."""
    crops = [Candidate(rect=c.rect.scaled(prescale), score=c.score) for c in result.crops]
    top_index = next(i for i, c in enumerate(result.crops) if c is result.top_crop)
    return CropResult(crops=crops, top_crop=crops[top_index], prescale=prescale)


# ---------------------------------------------------------------------------
# Stage 2: Importance field
# ---------------------------------------------------------------------------


def thirds(v):
    """Bump peaking at 1.0 on the thirds line (v = 1/3), 0 well away from it."""
    y = (np.mod(v - 1.0 / 3.0 + 1.0, 2.0) * 0.5 - 0.5) * 16.0
    return np.maximum(1.0 - y * y, 0.0)


def importance_field(rect: CropRect, xs, ys, config: Configuration) -> np.ndarray:
    """Evaluate the importance weight of points (xs, ys) for crop `rect`.

    `xs` and `ys` broadcast against each other, so a row vector and a column
    vector give the whole sampling grid in one call.
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    inside = (
        (xs >= rect.x)
        & (xs < rect.x + rect.width)
        & (ys >= rect.y)
        & (ys < rect.y + rect.height)
    )

    tx = (xs - rect.x) / rect.width
    ty = (ys - rect.y) / rect.height
    px = np.abs(0.5 - tx) * 2.0
    py = np.abs(0.5 - ty) * 2.0
    # distance from edge
    dx = np.maximum(px - 1.0 + config.edge_radius, 0.0)
    dy = np.maximum(py - 1.0 + config.edge_radius, 0.0)
    d = (dx * dx + dy * dy) * config.edge_weight
    s = 1.41 - np.sqrt(px * px + py * py)
    if config.rule_of_thirds:
        s = s + (np.maximum(0.0, s + d + 0.5) * 1.2) * (thirds(px) + thirds(py))

    return np.where(inside, s + d, config.outside_importance)


def importance(rect: CropRect, x: float, y: float, config: Configuration) -> float:
    return float(importance_field(rect, x, y, config))


# ---------------------------------------------------------------------------
# Stage 3: Candidate generation
# ---------------------------------------------------------------------------


def generate_scales(min_scale: float, max_scale: float, scale_step: float) -> list[float]:
    """All multiples of scale_step in [min_scale, max_scale], largest first.

    Works on whole percentages so float noise cannot add or drop a scale;
    a min_scale between two percentages rounds up, a max_scale rounds down.
    """
    range_min = math.ceil(round(min_scale * 100, 6))
    range_max = math.floor(round(max_scale * 100, 6))
    range_step = round(scale_step * 100)
    return [v / 100.0 for v in range(range_max, range_min - 1, -1) if v % range_step == 0]


def generate_candidates(
    image_width: int, image_height: int, plan: CropPlan, config: Configuration
) -> list[Candidate]:
    """Enumerate unscored windows: scale descending, then y, then x ascending.

    The order decides ties during selection, so it must not change.
    """
    min_dimension = min(image_width, image_height)
    crop_width = plan.crop_width or min_dimension
    crop_height = plan.crop_height or min_dimension

    candidates: list[Candidate] = []
    for scale in generate_scales(plan.min_scale, plan.max_scale, config.scale_step):
        scaled_width = int(crop_width * scale)
        scaled_height = int(crop_height * scale)
        if scaled_width < 1 or scaled_height < 1:
            continue
        for y in range(0, image_height, config.step):
            if int(y + crop_height * scale) > image_height:
                break
            for x in range(0, image_width, config.step):
                if int(x + crop_width * scale) > image_width:
                    break
                candidates.append(Candidate(rect=CropRect(x, y, scaled_width, scaled_height)))
    return candidates


# ---------------------------------------------------------------------------
# Stage 4: Scoring
# ---------------------------------------------------------------------------


def downsample_features(features: np.ndarray, down_sample: int) -> np.ndarray:
    h, w = features.shape[:2]
    return resample(features, math.ceil(w / down_sample), math.ceil(h / down_sample))


def score_crop(grid: ScoreGrid, rect: CropRect, config: Configuration) -> Score:
    """Sum importance-weighted features over the grid and normalise by crop area."""
    weight = importance_field(rect, grid.xs, grid.ys, config)
    detail = float((grid.detail * weight).sum())
    skin = float((grid.skin * (grid.detail + config.skin_bias) * weight).sum())
    saturation = float((grid.saturation * (grid.detail + config.saturation_bias) * weight).sum())

    total = (
        (
            detail * config.detail_weight
            + skin * config.skin_weight
            + saturation * config.saturation_weight
        )
        / rect.width
        / rect.height
    )
    return Score(detail=detail, skin=skin, saturation=saturation, total=total)


def score_candidates(
    candidates: list[Candidate],
    grid: ScoreGrid,
    config: Configuration,
    workers: int = 1,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> list[Candidate]:
    """Fill in `score` on every candidate, optionally across a thread pool.

    Each task owns a contiguous slice of the list, so no two threads touch
    the same candidate. `should_cancel` is polled before every candidate.
    """

    def score_slice(start: int, stop: int) -> None:
        for idx in range(start, stop):
            if should_cancel is not None and should_cancel():
                raise CropCancelledError(
                    f"Crop analysis cancelled after {idx} of {len(candidates)} candidates"
                )
            candidates[idx].score = score_crop(grid, candidates[idx].rect, config)

    total = len(candidates)
    if workers <= 1 or total < 2:
        score_slice(0, total)
        return candidates

    chunk = max(1, math.ceil(total / (workers * 4)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(score_slice, start, min(start + chunk, total))
            for start in range(0, total, chunk)
        ]
        for future in futures:
            future.result()
    return candidates


# ---------------------------------------------------------------------------
# Stage 5: Selection
# ---------------------------------------------------------------------------


def select_top_crop(candidates: list[Candidate]) -> Candidate:
    """First candidate (in generation order) with the strictly highest total.

    Later candidates with an equal total never replace an earlier one.
    Unscored candidates are not eligible.
    """
    top_score = -math.inf
    top_crop: Optional[Candidate] = None
    for candidate in candidates:
        if candidate.score is None:
            continue
        if candidate.score.total > top_score:
            top_crop = candidate
            top_score = candidate.score.total
    if top_crop is None:
        raise NoCropFoundError(f"No crop found among {len(candidates)} candidates")
    return top_crop


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _emit_debug(debug_sink: Optional[DebugSink], config: Configuration, name: str, pixels) -> None:
    if config.debug and debug_sink is not None:
        debug_sink(name, pixels)


def _validate_image(image: np.ndarray) -> np.ndarray:
    if not isinstance(image, np.ndarray) or image.ndim != 3 or image.shape[2] not in (3, 4):
        shape = getattr(image, "shape", None)
        raise InvalidInputError(f"Expected an HxWx3 or HxWx4 pixel array, got shape {shape}")
    if image.dtype != np.uint8:
        raise InvalidInputError(f"Expected 8-bit samples, got dtype {image.dtype}")
    h, w = image.shape[:2]
    if w == 0 or h == 0:
        raise InvalidInputError(f"Image has no pixels ({w}x{h})")
    return image


def analyse(
    rgb: np.ndarray,
    config: Configuration,
    plan: CropPlan,
    workers: int = 1,
    should_cancel: Optional[Callable[[], bool]] = None,
    debug_sink: Optional[DebugSink] = None,
) -> CropResult:
    """Run feature extraction, scoring and selection on the working image.

    Returned rectangles are in the working image's coordinates.
    """
    h, w = rgb.shape[:2]
    features = extract_features(rgb, config)
    _emit_debug(debug_sink, config, "features", features)

    score_features = downsample_features(features, config.score_down_sample)
    _emit_debug(debug_sink, config, "score_features", score_features)
    grid = ScoreGrid.from_features(score_features, config.score_down_sample)

    candidates = generate_candidates(w, h, plan, config)
    if not candidates:
        raise NoCropFoundError(
            f"No {plan.crop_width or min(w, h)}x{plan.crop_height or min(w, h)} crop at scales "
            f"{plan.min_scale:g}–{plan.max_scale:g} fits a {w}x{h} image"
        )
    if config.debug:
        print(f"Candidates: {len(candidates)} | grid={grid.detail.shape[1]}x{grid.detail.shape[0]}")

    score_candidates(candidates, grid, config, workers=workers, should_cancel=should_cancel)
    top_crop = select_top_crop(candidates)
    return CropResult(crops=candidates, top_crop=top_crop, prescale=plan.prescale)


def smart_crop(
    image: np.ndarray,
    config: Optional[Configuration] = None,
    workers: Optional[int] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    debug_sink: Optional[DebugSink] = None,
) -> CropResult:
    """Find the best crop window for `image` (HxWx3 RGB or HxWx4 RGBA, uint8).

    The result lists every scored candidate and the winner, all in the
    coordinates of the image passed in.
    """
    config = config or Configuration()
    rgb = _validate_image(image)
    validate_configuration(config)
    workers = 1 if workers is None else min(MAX_WORKERS, max(1, workers))

    h, w = rgb.shape[:2]
    plan = plan_crop(w, h, config)
    work = prescale_image(rgb, plan)
    if config.debug:
        print(
            f"Plan: image={w}x{h} | work={plan.work_width}x{plan.work_height} | "
            f"crop={plan.crop_width}x{plan.crop_height} | scale={plan.scale:.4f} | "
            f"prescale={plan.prescale:.4f} | scales={plan.min_scale:g}–{plan.max_scale:g}"
        )
    _emit_debug(debug_sink, config, "prescaled", work)

    result = analyse(
        work,
        config,
        plan,
        workers=workers,
        should_cancel=should_cancel,
        debug_sink=debug_sink,
    )
    if plan.prescale == 1.0:
        return result
    return rescale_result(result, plan.prescale)


# ---------------------------------------------------------------------------
# Image I/O helpers
# ---------------------------------------------------------------------------


def load_image(image_path: Path) -> np.ndarray:
    """Decode an image file into an HxWx4 RGBA array (EXIF orientation applied)."""
    with Image.open(image_path) as img:
        img = ImageOps.exif_transpose(img)
        return np.array(img.convert("RGBA"))


def crop_and_resize(image: np.ndarray, rect: CropRect, width: int = 0, height: int = 0) -> np.ndarray:
    """Cut `rect` out of `image` (RGB) and, when a size is given, Lanczos-resize it."""
    region = image[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width, :3]
    if width and height:
        return resample(region, width, height)
    return np.ascontiguousarray(region)


def save_image(pixels: np.ndarray, output_path: Path, quality: int = JPEG_QUALITY) -> Path:
    Image.fromarray(np.ascontiguousarray(pixels[..., :3])).save(
        output_path, quality=quality
    )
    return output_path


def directory_debug_sink(folder: Path) -> DebugSink:
    """Return a debug sink that writes each intermediate buffer as a PNG in `folder`."""
    folder.mkdir(parents=True, exist_ok=True)

    def sink(name: str, pixels: np.ndarray) -> None:
        path = folder / f"debug_{name}.png"
        bgr = cv2.cvtColor(np.ascontiguousarray(pixels[..., :3]), cv2.COLOR_RGB2BGR)
        cv2.imwrite(str(path), bgr)
        print(f"  🐞 Wrote {path}")

    return sink


# ---------------------------------------------------------------------------
# Main entry
# ---------------------------------------------------------------------------


def run_crop(
    image_path: str,
    width: int = DEFAULT_TARGET_WIDTH,
    height: int = DEFAULT_TARGET_HEIGHT,
    output_path: Optional[str] = None,
    json_path: Optional[str] = None,
    prescale: Optional[bool] = None,
    rule_of_thirds: Optional[bool] = None,
    step: Optional[int] = None,
    workers: Optional[int] = None,
    timeout: Optional[float] = None,
    debug: bool = False,
    debug_dir: Optional[str] = None,
) -> CropResult:
    """
    Analyse one image file and optionally write the crop and a JSON report.

    Args:
        image_path: Source image
        width, height: Target size; the written crop is resized to it
        output_path: Where to save the cropped image (skipped when None)
        json_path: Where to save the full result as JSON (skipped when None)
        prescale, rule_of_thirds, step: Override env/.env/default tunables
        workers: Scoring threads (default from SMARTCROP_WORKERS, else 1)
        timeout: Abort scoring after this many seconds
        debug: Print planning details
        debug_dir: Write intermediate buffers as PNGs to this folder
    """
    src = Path(image_path)
    if not src.exists():
        print(f"❌ Image not found: {src}", file=sys.stderr)
        sys.exit(1)

    overrides: dict[str, object] = {"width": width, "height": height, "debug": debug}
    if prescale is not None:
        overrides["prescale"] = prescale
    if rule_of_thirds is not None:
        overrides["rule_of_thirds"] = rule_of_thirds
    if step is not None:
        overrides["step"] = step

    debug_sink = None
    if debug_dir:
        debug_sink = directory_debug_sink(Path(debug_dir))
        overrides["debug"] = True

    config = configuration_from_env(search_dir=src.parent, **overrides)
    if workers is None:
        workers = resolve_workers(search_dir=src.parent)

    should_cancel: Optional[Callable[[], bool]] = None
    if timeout:
        deadline = time.monotonic() + timeout

        def past_deadline() -> bool:
            return time.monotonic() > deadline

        should_cancel = past_deadline

    image = load_image(src)
    start = time.perf_counter()
    try:
        result = smart_crop(
            image,
            config,
            workers=workers,
            should_cancel=should_cancel,
            debug_sink=debug_sink,
        )
    except SmartCropError as e:
        print(f"❌ {e}", file=sys.stderr)
        sys.exit(1)
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    top = result.top_crop
    print(f"✂️  {src.name}: {image.shape[1]}x{image.shape[0]} → target {width}x{height}")
    print(
        f"  ✅ Top crop: x={top.rect.x} y={top.rect.y} w={top.rect.width} h={top.rect.height} "
        f"| score={top.score.total:.6f} | candidates={len(result.crops)}"
    )
    print(f"  ⏱️  time elapsed: {elapsed_ms:.0f} ms (workers={workers})")

    if output_path:
        out = Path(output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        save_image(crop_and_resize(image, top.rect, width, height), out)
        print(f"  💾 Saved crop → {out}")

    if json_path:
        report_path = Path(json_path)
        report_path.write_text(json.dumps(result.to_dict(), indent=2), encoding="utf-8")
        print(f"  📋 JSON Report: {report_path}")

    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


class _HelpOnErrorArgumentParser(argparse.ArgumentParser):
    """Shows every smartcrop option before the error line, not just usage."""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(2, f"\n{self.prog}: error: {message}\n")


def main():
    parser = _HelpOnErrorArgumentParser(
        description="Pick the crop window that keeps the most interesting part of an image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s photo.jpg --output thumb.jpg
  %(prog)s photo.jpg --width 1080 --height 1440 --output cover.jpg --workers 4
  %(prog)s photo.jpg --width 16 --height 9 --json crop.json --no-rule-of-thirds
  %(prog)s photo.jpg --debug-dir ./debug
        """,
    )
    parser.add_argument("input", help="Path to the image to analyse")
    parser.add_argument(
        "--width",
        "-W",
        type=int,
        default=DEFAULT_TARGET_WIDTH,
        help=f"Target width (default: {DEFAULT_TARGET_WIDTH})",
    )
    parser.add_argument(
        "--height",
        "-H",
        type=int,
        default=DEFAULT_TARGET_HEIGHT,
        help=f"Target height (default: {DEFAULT_TARGET_HEIGHT})",
    )
    parser.add_argument("--output", "-o", default=None, help="Write the resized crop here")
    parser.add_argument("--json", dest="json_path", default=None, help="Write the result as JSON")
    parser.add_argument(
        "--no-prescale",
        dest="prescale",
        action="store_const",
        const=False,
        default=None,
        help="Analyse at full resolution (slower).",
    )
    parser.add_argument(
        "--no-rule-of-thirds",
        dest="rule_of_thirds",
        action="store_const",
        const=False,
        default=None,
        help="Disable the rule-of-thirds boost in the importance field.",
    )
    parser.add_argument(
        "--step", type=int, default=None, help="Candidate grid step in pixels (default: 8)"
    )
    parser.add_argument(
        "--workers",
        "-j",
        type=int,
        default=None,
        help=f"Scoring threads (default from {WORKERS_ENV_VAR} or 1)",
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Give up after this many seconds"
    )
    parser.add_argument("--debug", action="store_true", help="Print planning details.")
    parser.add_argument(
        "--debug-dir", default=None, help="Write intermediate feature maps to this folder"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args()

    run_crop(
        image_path=args.input,
        width=args.width,
        height=args.height,
        output_path=args.output,
        json_path=args.json_path,
        prescale=args.prescale,
        rule_of_thirds=args.rule_of_thirds,
        step=args.step,
        workers=args.workers,
        timeout=args.timeout,
        debug=args.debug,
        debug_dir=args.debug_dir,
    )


if __name__ == "__main__":
    main()
