"""
Shared fixtures for the irradiance baker test suite.

Most tests never touch the ray-casting backend: renderers, the compositor and
sessions are driven with FakeLightScene, which answers probe renders with a
constant (or scripted) colour and records every camera it was given. Tests
that need Open3D or PySide6 skip themselves with pytest.importorskip.
"""

import numpy as np
import pytest

from irradiance_baker.core.errors import DeviceFailure
from irradiance_baker.core.scene import LambertMaterial, Mesh, MeshBuffer, plane_buffer
from irradiance_baker.core.settings import TextureFilter
from irradiance_baker.core.textures import Texture


class FakeLightScene:
    """
    Stand-in for LightScene.

    `value` is either an RGB triple / scalar used for every render, a dict of
    factor name → value, or a callable(call_index, factor_name) → value.
    """

    def __init__(self, value=1.0, fail=False):
        self.value = value
        self.fail = fail
        self.calls = []
        self.released = False

    def render_probe(self, camera, factor_name=None, irradiance_map=None):
        if self.fail:
            raise DeviceFailure("Probe ray cast failed: simulated device loss")

        call_index = len(self.calls)
        self.calls.append((camera, factor_name, irradiance_map))

        value = self.value
        if callable(value):
            value = value(call_index, factor_name)
        elif isinstance(value, dict):
            value = value.get(factor_name, 0.0)

        rgb = np.broadcast_to(np.asarray(value, dtype=np.float32), (3,))
        return np.broadcast_to(rgb, (camera.size, camera.size, 3)).copy()

    def release(self):
        self.released = True


def make_triangles_buffer(count, columns, cell_texels=2, atlas_width=None, atlas_height=None):
    """
    Build `count` separate right triangles, one per uv2 grid cell.

    Triangle i occupies the lower-left half of cell (i % columns, i // columns)
    with its corners in face order (0,0), (1,0), (0,1) of the cell, so its
    local quad coordinates equal the cell-relative uv2. Positions equal uv2
    (z = 0) and all normals point along +Z.

    Returns:
        (MeshBuffer, atlas_width, atlas_height) with each cell exactly
        `cell_texels` texels wide.
    """
    rows = (count + columns - 1) // columns
    width = atlas_width or columns * cell_texels
    height = atlas_height or rows * cell_texels
    cell_u = cell_texels / width
    cell_v = cell_texels / height

    uv2 = []
    for i in range(count):
        u0 = (i % columns) * cell_u
        v0 = (i // columns) * cell_v
        uv2 += [[u0, v0], [u0 + cell_u, v0], [u0, v0 + cell_v]]

    uv2 = np.array(uv2, dtype=np.float32)
    positions = np.concatenate([uv2, np.zeros((len(uv2), 1), dtype=np.float32)], axis=1)
    normals = np.tile([0.0, 0.0, 1.0], (len(uv2), 1))
    index = np.arange(len(uv2))

    return MeshBuffer(positions, normals=normals, uv2=uv2, index=index), width, height


@pytest.fixture
def fake_scene():
    return FakeLightScene()


@pytest.fixture
def fake_scene_factory():
    return FakeLightScene


@pytest.fixture
def triangles_buffer():
    return make_triangles_buffer


@pytest.fixture
def quad_mesh():
    """A unit plane with a Lambert material covering the whole atlas."""
    return Mesh(plane_buffer(), LambertMaterial(), name="quad")


@pytest.fixture
def light_map():
    return Texture(8, 8, TextureFilter.LINEAR, name="output")
