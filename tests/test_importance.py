import numpy as np
import pytest

import smartcrop.cropper as cropper
from smartcrop.cropper import Configuration, CropRect


def test_thirds_peaks_on_thirds_line_and_vanishes_at_centre_and_edge() -> None:
    assert cropper.thirds(1.0 / 3.0) == pytest.approx(1.0)
    assert cropper.thirds(0.0) == pytest.approx(0.0)
    assert cropper.thirds(1.0) == pytest.approx(0.0)
    assert 0.0 < cropper.thirds(0.35) < 1.0


def test_importance_outside_rect_returns_outside_importance() -> None:
    config = Configuration(outside_importance=-0.75)
    rect = CropRect(10, 10, 50, 50)

    assert cropper.importance(rect, 5, 20, config) == -0.75
    assert cropper.importance(rect, 60, 20, config) == -0.75  # right edge is exclusive
    assert cropper.importance(rect, 20, 60, config) == -0.75


def test_importance_at_centre_is_base_score() -> None:
    rect = CropRect(0, 0, 100, 100)

    assert cropper.importance(rect, 50, 50, Configuration()) == pytest.approx(1.41)
    assert cropper.importance(rect, 50, 50, Configuration(rule_of_thirds=False)) == pytest.approx(
        1.41
    )


def test_rule_of_thirds_boosts_points_on_thirds_lines() -> None:
    rect = CropRect(0, 0, 300, 300)
    with_thirds = cropper.importance(rect, 100, 150, Configuration(rule_of_thirds=True))
    without_thirds = cropper.importance(rect, 100, 150, Configuration(rule_of_thirds=False))

    assert with_thirds > without_thirds
    # s = 1.41 - 1/3, boosted by max(0, s + 0.5) * 1.2 * thirds(1/3)
    s = 1.41 - 1.0 / 3.0
    assert with_thirds == pytest.approx(s + (s + 0.5) * 1.2, rel=1e-6)


def test_edge_band_is_penalised_below_outside_importance() -> None:
    config = Configuration()
    rect = CropRect(0, 0, 100, 100)

    corner = cropper.importance(rect, 99, 99, config)

    assert corner < config.outside_importance
    # px = py = 0.98 -> dx = dy = 0.38
    d = (0.38**2 * 2) * config.edge_weight
    assert corner == pytest.approx(1.41 - np.hypot(0.98, 0.98) + d)


def test_importance_field_matches_scalar_importance_on_grid() -> None:
    config = Configuration()
    rect = CropRect(16, 8, 64, 48)
    xs = (np.arange(12, dtype=np.float64) * 8)[np.newaxis, :]
    ys = (np.arange(9, dtype=np.float64) * 8)[:, np.newaxis]

    field = cropper.importance_field(rect, xs, ys, config)

    assert field.shape == (9, 12)
    for j in range(9):
        for i in range(12):
            assert field[j, i] == pytest.approx(cropper.importance(rect, i * 8, j * 8, config))
