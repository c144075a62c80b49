"""
Scene data handed to the baker by the authoring layer.

The baker does not own a scene graph. It reads a handful of plain objects:

    MeshBuffer  — indexed triangle geometry: positions, normals, uv, uv2
    Material    — diffuse shading parameters plus the light_map slot
                  (LambertMaterial / PhongMaterial / StandardMaterial are the
                  kinds that can receive a baked lightmap; BasicMaterial is
                  unlit and cannot)
    Mesh        — a MeshBuffer + Material + world matrix
    Lights      — DirectionalLight, PointLight, AmbientLight; each may be
                  assigned to a named factor (None = the base factor)

trimesh is used as the import path for real assets: MeshBuffer.from_trimesh
wraps a trimesh.Trimesh, and load_mesh_buffer reads any format trimesh reads.
"""

import uuid as _uuid
from pathlib import Path

import numpy as np
import trimesh


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class MeshBuffer:
    """
    Indexed triangle geometry with named per-vertex attributes.

    Attributes are stored as float32 arrays with one row per vertex. Any of
    normals / uv / uv2 / index may be None; the atlas mapper decides which
    are required.

    Args:
        positions: (N, 3) vertex positions in mesh-local space.
        normals:   (N, 3) vertex normals, or None.
        uv:        (N, 2) material texture coordinates, or None.
        uv2:       (N, 2) lightmap placement coordinates in [0, 1]², or None.
        index:     (F*3,) or (F, 3) triangle vertex indices, or None.
    """

    def __init__(self, positions, normals=None, uv=None, uv2=None, index=None):
        self.positions = np.asarray(positions, dtype=np.float32).reshape(-1, 3)
        self.normals = _optional_array(normals, 3, np.float32)
        self.uv = _optional_array(uv, 2, np.float32)
        self.uv2 = _optional_array(uv2, 2, np.float32)
        self.index = (None if index is None
                      else np.asarray(index, dtype=np.int64).reshape(-1))

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def face_count(self) -> int:
        """Number of triangles described by the index buffer (0 if unindexed)."""
        if self.index is None:
            return 0
        return len(self.index) // 3

    @property
    def triangles(self):
        """(F, 3) view of the index buffer."""
        if self.index is None:
            raise ValueError("Mesh buffer has no index buffer")
        return self.index[:self.face_count * 3].reshape(-1, 3)

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, uv2=None) -> "MeshBuffer":
        """
        Wrap a trimesh.Trimesh as a MeshBuffer.

        trimesh carries one UV set in mesh.visual.uv. The lightmap channel is
        taken from, in order: the `uv2` argument, a "uv2" vertex attribute on
        the mesh, and finally the regular UV set (single-UV assets that were
        unwrapped specifically for lightmapping).
        """
        uv = getattr(mesh.visual, "uv", None)
        if uv2 is None:
            uv2 = mesh.vertex_attributes.get("uv2")
        if uv2 is None:
            uv2 = uv

        return cls(
            positions=np.array(mesh.vertices, dtype=np.float32),
            normals=np.array(mesh.vertex_normals, dtype=np.float32),
            uv=None if uv is None else np.array(uv, dtype=np.float32),
            uv2=None if uv2 is None else np.array(uv2, dtype=np.float32),
            index=np.array(mesh.faces, dtype=np.int64),
        )

    def __repr__(self):
        return f"MeshBuffer({self.vertex_count} vertices, {self.face_count} faces)"


def _optional_array(values, width, dtype):
    if values is None:
        return None
    return np.asarray(values, dtype=dtype).reshape(-1, width)


def load_mesh_buffer(path, uv2=None) -> MeshBuffer:
    """
    Load a mesh file through trimesh and wrap it as a MeshBuffer.

    Multi-part files (glTF scenes, OBJ with groups) are concatenated into a
    single mesh; `process=False` keeps trimesh from merging vertices, which
    would collapse uv2 seams.
    """
    mesh = trimesh.load(str(Path(path)), force="mesh", process=False)
    return MeshBuffer.from_trimesh(mesh, uv2=uv2)


def plane_buffer(width=1.0, height=1.0, uv2_rect=(0.0, 0.0, 1.0, 1.0)) -> MeshBuffer:
    """
    Build a two-triangle plane in the XY plane facing +Z.

    Vertex layout matches the usual plane geometry convention: top-left,
    top-right, bottom-left, bottom-right, with faces (0, 2, 1) and (2, 3, 1).

    Args:
        width, height: plane size in local units, centred on the origin.
        uv2_rect:      (u_min, v_min, u_max, v_max) placement in the atlas.
    """
    hw, hh = width / 2.0, height / 2.0
    u0, v0, u1, v1 = uv2_rect

    positions = [[-hw, hh, 0.0], [hw, hh, 0.0], [-hw, -hh, 0.0], [hw, -hh, 0.0]]
    normals = [[0.0, 0.0, 1.0]] * 4
    uv = [[0.0, 1.0], [1.0, 1.0], [0.0, 0.0], [1.0, 0.0]]
    uv2 = [[u0, v1], [u1, v1], [u0, v0], [u1, v0]]
    index = [0, 2, 1, 2, 3, 1]

    return MeshBuffer(positions, normals=normals, uv=uv, uv2=uv2, index=index)


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------

class Material:
    """
    Shading parameters shared by every material kind.

    color              — diffuse albedo (RGB, linear).
    emissive           — emitted radiance colour (RGB, linear).
    emissive_intensity — multiplier on `emissive`.
    light_map          — baked irradiance texture sampled with uv2, or None.
    light_map_intensity — multiplier on the light_map sample.
    """

    def __init__(self, color=(1.0, 1.0, 1.0), emissive=(0.0, 0.0, 0.0),
                 emissive_intensity=1.0, light_map=None, light_map_intensity=1.0):
        self.color = np.asarray(color, dtype=np.float32)
        self.emissive = np.asarray(emissive, dtype=np.float32)
        self.emissive_intensity = float(emissive_intensity)
        self.light_map = light_map
        self.light_map_intensity = float(light_map_intensity)

    @property
    def emission(self):
        return self.emissive * self.emissive_intensity

    def __repr__(self):
        return f"{type(self).__name__}(color={self.color.tolist()})"


class LambertMaterial(Material):
    pass


class PhongMaterial(Material):
    pass


class StandardMaterial(Material):
    pass


class BasicMaterial(Material):
    """Unlit material: shows its colour regardless of lighting."""
    pass


# Material kinds that can receive a baked lightmap. Only the diffuse part of
# their shading is modelled by probe renders.
DIFFUSE_MATERIAL_TYPES = (LambertMaterial, PhongMaterial, StandardMaterial)


# ---------------------------------------------------------------------------
# Meshes
# ---------------------------------------------------------------------------

class Mesh:
    """
    A MeshBuffer placed in the world with a material.

    Args:
        buffer:       MeshBuffer geometry in local space.
        material:     Material instance (shared materials are allowed).
        matrix_world: (4, 4) local-to-world transform; identity by default.
        name:         label used in progress messages.
    """

    def __init__(self, buffer: MeshBuffer, material: Material | None,
                 matrix_world=None, name: str = ""):
        self.buffer = buffer
        self.material = material
        self.matrix_world = (np.eye(4, dtype=np.float64) if matrix_world is None
                             else np.asarray(matrix_world, dtype=np.float64).reshape(4, 4))
        self.name = name
        self.uuid = str(_uuid.uuid4())

    @property
    def normal_matrix(self):
        """(3, 3) inverse-transpose of the upper-left of matrix_world."""
        return np.linalg.inv(self.matrix_world[:3, :3]).T

    def to_world_points(self, points):
        """Transform (M, 3) local points to world space."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.matrix_world[:3, :3].T + self.matrix_world[:3, 3]

    def to_world_directions(self, directions):
        """Transform (M, 3) local directions to world space (no translation)."""
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        return directions @ self.matrix_world[:3, :3].T

    def to_world_normals(self, normals):
        """Transform (M, 3) local normals to world space and re-normalise."""
        normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
        world = normals @ self.normal_matrix.T
        return world / np.maximum(np.linalg.norm(world, axis=1, keepdims=True), 1e-12)

    def __repr__(self):
        return f"Mesh(name={self.name!r}, {self.buffer!r})"


# ---------------------------------------------------------------------------
# Lights
# ---------------------------------------------------------------------------

class Light:
    """
    Base light. `factor` names the compositor factor this light bakes into;
    None puts it in the base factor.
    """

    def __init__(self, color=(1.0, 1.0, 1.0), intensity=1.0, factor=None, name=""):
        self.color = np.asarray(color, dtype=np.float32)
        self.intensity = float(intensity)
        self.factor = factor
        self.name = name

    @property
    def radiance(self):
        return self.color * self.intensity


class DirectionalLight(Light):
    """Parallel light travelling along `direction` (e.g. (0, 0, -1) shines down)."""

    def __init__(self, direction=(0.0, 0.0, -1.0), cast_shadow=True, **kwargs):
        super().__init__(**kwargs)
        direction = np.asarray(direction, dtype=np.float64)
        self.direction = direction / np.linalg.norm(direction)
        self.cast_shadow = cast_shadow


class PointLight(Light):
    """
    Omnidirectional light at `position`.

    Irradiance falls off as 1 / distance**decay; decay=0 disables falloff.
    """

    def __init__(self, position=(0.0, 0.0, 0.0), decay=2.0, cast_shadow=True, **kwargs):
        super().__init__(**kwargs)
        self.position = np.asarray(position, dtype=np.float64)
        self.decay = float(decay)
        self.cast_shadow = cast_shadow


class AmbientLight(Light):
    """Constant irradiance added to every lit surface."""
    pass
