"""Tests for probe camera placement and ray generation."""

import numpy as np
import pytest

from irradiance_baker.core.probe import ProbeCamera
from irradiance_baker.core.settings import (
    PROBE_FAR,
    PROBE_FOV_DEGREES,
    PROBE_NEAR,
    PROBE_NORMAL_OFFSET,
    PROBE_TARGET_SIZE,
)


def test_defaults():
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 1], [1, 0, 0], 0.0)

    assert camera.fov_degrees == PROBE_FOV_DEGREES
    assert (camera.near, camera.far) == (PROBE_NEAR, PROBE_FAR)
    assert camera.size == PROBE_TARGET_SIZE
    np.testing.assert_allclose(camera.position, [0, 0, PROBE_NORMAL_OFFSET])


@pytest.mark.parametrize("angle, expected_up", [
    (0.0, [1.0, 0.0, 0.0]),
    (np.pi / 2, [0.0, 1.0, 0.0]),
    (np.pi, [-1.0, 0.0, 0.0]),
])
def test_up_vector_rotates_about_normal(angle, expected_up):
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 2], [1, 0, 0], angle)
    np.testing.assert_allclose(camera.up, expected_up, atol=1e-9)
    np.testing.assert_allclose(camera.forward, [0, 0, 1])


def test_tangent_is_projected_into_plane():
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 1], [1, 0, 1], 0.0)
    np.testing.assert_allclose(camera.up, [1, 0, 0], atol=1e-9)


def test_degenerate_tangent_falls_back():
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 1], [0, 0, 5], 0.3)
    assert abs(np.dot(camera.up, camera.forward)) < 1e-9
    assert np.linalg.norm(camera.up) == pytest.approx(1.0)


def test_zero_normal_is_rejected():
    with pytest.raises(ValueError):
        ProbeCamera.for_surface([0, 0, 0], [0, 0, 0], [1, 0, 0], 0.0)


def test_rays_cover_the_field_of_view():
    camera = ProbeCamera.for_surface([1, 2, 3], [0, 1, 0], [1, 0, 0], 0.0, size=8)
    rays = camera.rays()

    assert rays.shape == (64, 6)
    assert rays.dtype == np.float32
    np.testing.assert_allclose(rays[:, :3], np.tile(camera.position, (64, 1)), rtol=1e-6)

    directions = rays[:, 3:].astype(np.float64)
    np.testing.assert_allclose(np.linalg.norm(directions, axis=1), 1.0, rtol=1e-6)
    cosines = directions @ camera.forward
    assert np.all(cosines > 0.0)
    # Corner pixels of a 90° frustum sit just inside 45° off-axis on each axis.
    half = np.tan(np.radians(45.0)) * (1 - 1 / 8)
    assert cosines.min() == pytest.approx(1 / np.sqrt(1 + 2 * half ** 2), rel=1e-5)


def test_first_row_is_the_top_of_the_image():
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 1], [0, 1, 0], 0.0, size=4)
    directions = camera.ray_directions()
    assert directions[0] @ camera.up > 0
    assert directions[-1] @ camera.up < 0


def test_depth_is_planar():
    camera = ProbeCamera.for_surface([0, 0, 0], [0, 0, 1], [1, 0, 0], 0.0)
    direction = np.array([[np.sqrt(0.5), 0.0, np.sqrt(0.5)]])
    assert camera.depth_of(direction, np.array([2.0]))[0] == pytest.approx(np.sqrt(2.0))
