"""
The light scene — the illumination-only scene that probes look at.

Probe renders do not go through the display scene. They ray-cast a separate
LightScene holding the participating meshes (with their materials and world
transforms) and the lights. Each probe pixel is one ray; a ray that hits a
surface takes that surface's outgoing diffuse radiance, a ray that escapes
takes the background colour (black by default).

Surface radiance seen by a probe of factor F:

    emission + basic colour             (base factor only)
  + albedo × Σ direct light of F        (Lambert, shadowed by shadow rays)
  + albedo × Σ ambient light of F
  + albedo × bounce(uv2)                (the renderer's previous finished pass)

The bounce term is what turns repeated passes into multi-bounce light: the
renderer hands its last promoted buffer back in as `irradiance_map`, and
surfaces that own a lightmap re-emit the light they received last pass.

Ray casting is performed by Open3D's RaycastingScene (C++ BVH). The scene is
built lazily on the first render and kept until release() is called.
"""

import numpy as np

from irradiance_baker.core.errors import DeviceFailure
from irradiance_baker.core.scene import (
    AmbientLight,
    BasicMaterial,
    DirectionalLight,
    PointLight,
)

# Shadow ray origin offset along the surface normal, to prevent the surface
# from shadowing itself.
SHADOW_RAY_OFFSET = 1e-3


class _GeometryRecord:
    """World-space copy of one mesh as registered with the ray-casting scene."""

    def __init__(self, mesh):
        buffer = mesh.buffer
        self.mesh = mesh
        if buffer.index is not None:
            self.triangles = buffer.triangles.astype(np.int64)
        else:
            # Unindexed buffers are plain triangle lists.
            count = buffer.vertex_count - buffer.vertex_count % 3
            self.triangles = np.arange(count, dtype=np.int64).reshape(-1, 3)
        self.vertices = mesh.to_world_points(buffer.positions)
        if buffer.normals is not None:
            self.normals = mesh.to_world_normals(buffer.normals)
        else:
            self.normals = None
        self.uv2 = buffer.uv2

    def face_normals(self, primitive_ids):
        tri = self.vertices[self.triangles[primitive_ids]]
        normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        return normals / np.maximum(np.linalg.norm(normals, axis=1, keepdims=True), 1e-12)

    def interpolate_normals(self, primitive_ids, bary):
        if self.normals is None:
            return self.face_normals(primitive_ids)
        corner_normals = self.normals[self.triangles[primitive_ids]]   # (M, 3, 3)
        normals = np.einsum("mi,mid->md", bary, corner_normals)
        return normals / np.maximum(np.linalg.norm(normals, axis=1, keepdims=True), 1e-12)

    def interpolate_uv2(self, primitive_ids, bary):
        corner_uvs = self.uv2[self.triangles[primitive_ids]]           # (M, 3, 2)
        return np.einsum("mi,mid->md", bary, corner_uvs)


class LightScene:
    """
    Meshes and lights used for probe renders.

    Args:
        meshes:     iterable of Mesh.
        lights:     iterable of Light.
        background: RGB radiance of rays that escape the scene.
    """

    def __init__(self, meshes=(), lights=(), background=(0.0, 0.0, 0.0)):
        self.meshes = list(meshes)
        self.lights = list(lights)
        self.background = np.asarray(background, dtype=np.float32)
        self._scene = None
        self._records = {}

    # -- authoring ----------------------------------------------------------

    def add_mesh(self, mesh):
        self.meshes.append(mesh)
        self.release()

    def add_light(self, light):
        self.lights.append(light)

    def lights_for(self, factor_name):
        """Lights that bake into `factor_name` (None = base factor)."""
        return [light for light in self.lights if light.factor == factor_name]

    @property
    def factor_names(self) -> set[str]:
        return {light.factor for light in self.lights if light.factor is not None}

    # -- ray-casting backend ------------------------------------------------

    def _ensure_scene(self):
        """Build the Open3D ray-casting scene on first use."""
        if self._scene is not None:
            return self._scene

        # Bad mesh data is not a device failure.
        records = [_GeometryRecord(mesh) for mesh in self.meshes]
        records = [record for record in records if len(record.triangles)]

        try:
            import open3d as o3d

            scene = o3d.t.geometry.RaycastingScene()
            registered = {}
            for record in records:
                mesh_o3d = o3d.geometry.TriangleMesh()
                mesh_o3d.vertices = o3d.utility.Vector3dVector(record.vertices)
                mesh_o3d.triangles = o3d.utility.Vector3iVector(
                    record.triangles.astype(np.int32)
                )
                mesh_tensor = o3d.t.geometry.TriangleMesh.from_legacy(mesh_o3d)
                geometry_id = scene.add_triangles(mesh_tensor)
                registered[int(geometry_id)] = record
        except Exception as e:
            raise DeviceFailure(f"Failed to build the light scene: {e}") from e

        self._scene = scene
        self._records = registered
        return scene

    def _cast(self, rays):
        """Cast (M, 6) rays; returns (t_hit, geometry_ids, primitive_ids, primitive_uvs)."""
        scene = self._ensure_scene()
        try:
            import open3d as o3d

            rays_tensor = o3d.core.Tensor(np.ascontiguousarray(rays, dtype=np.float32),
                                          dtype=o3d.core.Dtype.Float32)
            result = scene.cast_rays(rays_tensor)
            t_hit = result["t_hit"].numpy().astype(np.float64)
            geometry_ids = result["geometry_ids"].numpy().astype(np.int64)
            primitive_ids = result["primitive_ids"].numpy().astype(np.int64)
            primitive_uvs = result["primitive_uvs"].numpy().astype(np.float64)
        except Exception as e:
            raise DeviceFailure(f"Probe ray cast failed: {e}") from e

        # Escaped rays report an infinite distance and an invalid geometry id.
        missed = ~np.isfinite(t_hit) | ~np.isin(geometry_ids, list(self._records))
        t_hit[missed] = np.inf
        return t_hit, geometry_ids, primitive_ids, primitive_uvs

    def release(self):
        """Drop the ray-casting scene; the next render rebuilds it."""
        self._scene = None
        self._records = {}

    # -- rendering ------------------------------------------------------------

    def render_probe(self, camera, factor_name=None, irradiance_map=None):
        """
        Render the light scene through a probe camera.

        Args:
            camera:         ProbeCamera.
            factor_name:    which factor's lights to use (None = base).
            irradiance_map: optional Texture sampled with uv2 on mapped
                            surfaces as bounce light.

        Returns:
            (size, size, 3) float32 radiance image.

        Raises:
            DeviceFailure: if the ray-casting backend fails.
        """
        size = camera.size
        pixels = np.broadcast_to(self.background, (size * size, 3)).astype(np.float32)

        if not self.meshes:
            return pixels.reshape(size, size, 3)

        rays = camera.rays()
        directions = rays[:, 3:].astype(np.float64)
        t_hit, geometry_ids, primitive_ids, primitive_uvs = self._cast(rays)

        # Clip against the probe's near/far planes.
        depth = camera.depth_of(directions, np.where(np.isfinite(t_hit), t_hit, 0.0))
        visible = np.isfinite(t_hit) & (depth >= camera.near) & (depth <= camera.far)
        # Hits outside the clip range show the background.
        if not visible.any():
            return pixels.reshape(size, size, 3)

        lights = self.lights_for(factor_name)
        for geometry_id, record in self._records.items():
            mask = visible & (geometry_ids == geometry_id)
            if not mask.any():
                continue

            hit_dirs = directions[mask]
            points = camera.position + hit_dirs * t_hit[mask][:, np.newaxis]
            prims = primitive_ids[mask]
            uvs = primitive_uvs[mask]
            bary = np.stack([1.0 - uvs[:, 0] - uvs[:, 1], uvs[:, 0], uvs[:, 1]], axis=1)

            pixels[mask] = self._shade(record, points, hit_dirs, prims, bary,
                                       lights, factor_name, irradiance_map)

        return pixels.reshape(size, size, 3)

    def _shade(self, record, points, view_dirs, prims, bary, lights, factor_name,
               irradiance_map):
        """Outgoing diffuse radiance of hit points on one mesh."""
        material = record.mesh.material
        count = len(points)
        if material is None:
            return np.zeros((count, 3), dtype=np.float32)

        # Back faces are not rendered from the lit side; they show up black.
        geometric = record.face_normals(prims)
        front = np.einsum("md,md->m", geometric, view_dirs) < 0.0

        radiance = np.zeros((count, 3), dtype=np.float64)
        is_base = factor_name is None

        if isinstance(material, BasicMaterial):
            if is_base:
                radiance[:] = material.color
            radiance[~front] = 0.0
            return radiance.astype(np.float32)

        normals = record.interpolate_normals(prims, bary)
        irradiance = np.zeros((count, 3), dtype=np.float64)

        for light in lights:
            if isinstance(light, AmbientLight):
                irradiance += light.radiance
            elif isinstance(light, DirectionalLight):
                to_light = np.broadcast_to(-light.direction, points.shape)
                ndl = np.clip(np.einsum("md,md->m", normals, to_light), 0.0, None)
                lit = ndl > 0.0
                if light.cast_shadow and lit.any():
                    lit &= ~self._occluded(points, normals, to_light, np.inf, lit)
                irradiance += (ndl * lit)[:, np.newaxis] * light.radiance
            elif isinstance(light, PointLight):
                offset = light.position - points
                distance = np.linalg.norm(offset, axis=1)
                to_light = offset / np.maximum(distance, 1e-12)[:, np.newaxis]
                ndl = np.clip(np.einsum("md,md->m", normals, to_light), 0.0, None)
                lit = ndl > 0.0
                if light.cast_shadow and lit.any():
                    lit &= ~self._occluded(points, normals, to_light, distance, lit)
                falloff = 1.0 / np.maximum(distance, 1e-6) ** light.decay
                irradiance += (ndl * falloff * lit)[:, np.newaxis] * light.radiance

        if (irradiance_map is not None and record.uv2 is not None
                and material.light_map is not None):
            bounce = irradiance_map.sample(record.interpolate_uv2(prims, bary))[:, :3]
            irradiance += bounce * material.light_map_intensity

        radiance += material.color * irradiance
        if is_base:
            radiance += material.emission

        radiance[~front] = 0.0
        return radiance.astype(np.float32)

    def _occluded(self, points, normals, to_light, max_distance, active):
        """True where a shadow ray towards the light hits geometry first."""
        origins = points + normals * SHADOW_RAY_OFFSET
        rays = np.concatenate([origins, to_light], axis=1)[active]
        t_hit = self._cast(rays)[0]

        limit = max_distance[active] if np.ndim(max_distance) else max_distance
        occluded = np.zeros(len(points), dtype=bool)
        occluded[active] = t_hit < limit
        return occluded
