"""
Progressive irradiance rendering — one texel per tick, forever.

A ProgressiveIrradianceRenderer owns one factor's AccumulationBuffer. Every
tick it:

    1. Resolves the texel under its fill cursor through the AtlasMap to
       (mesh, face, local_u, local_v).
    2. Rebuilds the texel's 3D position and normal by bilinear interpolation
       over the face's quad (see interpolate_quad below).
    3. Places a probe camera just above that point, looking along the normal,
       with its up vector rotated by a fresh random angle in the tangent plane.
    4. Renders this factor's slice of the light scene into a small square
       target and averages the pixels' RGB.
    5. Writes that estimate into the texel's slot (overwriting by default).
    6. Advances the cursor: next texel of the face, next face, and after the
       last face "promotes" the finished buffer and wraps around.

Baking never stops on its own. A finished pass becomes the renderer's
`promoted` texture — a stable snapshot of the last complete pass that is also
fed back into the light scene as bounce light — and the next pass starts
over the same texels.

Visit order is fixed: faces in ascending encoded id (item-major, face-minor),
texels within a face in row-major raster order. No occupied texel is ever
skipped. Faces that own no texel are not visited at all.

Note on convergence:
    In the default OVERWRITE mode each visit replaces the texel with a single
    new probe estimate, so noise does NOT average out over passes; the result
    is as noisy on pass 100 as on pass 2 (it only gains bounce light). The
    opt-in AVERAGE mode keeps a per-texel visit count and stores the running
    mean instead.
"""

from typing import Callable

import numpy as np

from irradiance_baker.core.probe import ProbeCamera
from irradiance_baker.core.settings import (
    AccumulationMode,
    ACCUMULATION_MODES,
    PROBE_TARGET_SIZE,
    RendererState,
    TickStatus,
)
from irradiance_baker.core.textures import AccumulationBuffer, Texture


def interpolate_quad(corners, u, v):
    """
    Bilinear interpolation over a face treated as a quad.

    The face's three vertices are the quad corners (0, 0), (1, 0) and (0, 1);
    the fourth corner (1, 1) is the parallelogram completion c10 + c01 - c00.
    For a triangle this reproduces the affine (barycentric) interpolation
    exactly; it is only an approximation of a real quad whose fourth vertex
    is not coplanar with the parallelogram.

    Args:
        corners: (3, C) values at corners (0,0), (1,0), (0,1).
        u, v:    local quad coordinates in [0, 1].

    Returns:
        (C,) interpolated value.
    """
    c00, c10, c01 = np.asarray(corners, dtype=np.float64)
    c11 = c10 + c01 - c00
    return ((1.0 - u) * (1.0 - v) * c00
            + u * (1.0 - v) * c10
            + (1.0 - u) * v * c01
            + u * v * c11)


class ProgressiveIrradianceRenderer:
    """
    Bakes one factor into one AccumulationBuffer, one texel per tick.

    Args:
        buffer:            the AccumulationBuffer this renderer owns (and is
                           the only writer of).
        light_scene:       LightScene (or any object with a compatible
                           render_probe method).
        factor_name:       the factor whose lights are rendered; None = base.
        accumulation_mode: AccumulationMode.OVERWRITE (default) or AVERAGE.
        probe_size:        probe render target side length in pixels.
        seed:              seed for the up-vector randomisation.
        on_progress:       optional callback(str) for status messages.
    """

    def __init__(self, buffer: AccumulationBuffer, light_scene, factor_name=None,
                 accumulation_mode: str = AccumulationMode.OVERWRITE,
                 probe_size: int = PROBE_TARGET_SIZE, seed=None,
                 on_progress: Callable[[str], None] | None = None):
        if accumulation_mode not in ACCUMULATION_MODES:
            raise ValueError(f"Unknown accumulation mode: {accumulation_mode}")

        self.buffer = buffer
        self.light_scene = light_scene
        self.factor_name = factor_name
        self.accumulation_mode = accumulation_mode
        self.probe_size = int(probe_size)
        self._rng = np.random.default_rng(seed)
        self._on_progress = on_progress or (lambda message: None)

        label = factor_name if factor_name is not None else "base"
        self.name = label

        # Stable copy of the last finished pass; also this factor's bounce
        # light source inside the light scene.
        self.promoted = Texture(buffer.width, buffer.height, name=f"{label}-promoted")

        self._workbench = None
        self._visit_counts = np.zeros((buffer.height, buffer.width), dtype=np.int64)
        self.passes_completed = 0
        self.texels_baked = 0

    # -- workbench binding ----------------------------------------------------

    @property
    def workbench(self):
        return self._workbench

    def set_workbench(self, workbench):
        """
        Bind a (new) Workbench.

        A workbench with a different session id restarts the bake from the
        first texel; re-binding the same session is a no-op. Buffer contents
        are left as they are until overwritten.
        """
        if workbench is not None and self._workbench is not None \
                and workbench.id == self._workbench.id:
            self._workbench = workbench
            return

        self._workbench = workbench
        self.buffer.cursor.reset()
        self._visit_counts[:] = 0
        self.passes_completed = 0

        if workbench is not None and workbench.atlas_map is not None:
            atlas_map = workbench.atlas_map
            if (atlas_map.width, atlas_map.height) != (self.buffer.width, self.buffer.height):
                raise ValueError(
                    f"Atlas map is {atlas_map.width}×{atlas_map.height} but the "
                    f"{self.name} buffer is {self.buffer.width}×{self.buffer.height}"
                )
            self._on_progress(
                f"{self.name}: baking workbench #{workbench.id} "
                f"({atlas_map.occupied_texel_count:,} texels per pass)"
            )

    @property
    def atlas_map(self):
        if self._workbench is None:
            return None
        return self._workbench.atlas_map

    @property
    def state(self) -> str:
        atlas_map = self.atlas_map
        if atlas_map is None or atlas_map.occupied_texel_count == 0:
            return RendererState.IDLE
        return RendererState.FILLING

    # -- ticking --------------------------------------------------------------

    def tick(self) -> str:
        """
        Bake exactly one texel.

        Returns:
            TickStatus.NOT_READY when there is no complete atlas to walk (no
            state is touched), TickStatus.BAKED after a normal texel, or
            TickStatus.PASS_COMPLETE when that texel finished a pass.

        Raises:
            DeviceFailure: the probe render failed. Not retried.
        """
        atlas_map = self.atlas_map
        if atlas_map is None or atlas_map.occupied_texel_count == 0:
            return TickStatus.NOT_READY

        cursor = self.buffer.cursor
        texel = atlas_map.lookup_ordered(cursor.face_slot, cursor.texel_offset)

        camera = self._probe_camera(atlas_map, texel)
        pixels = self.light_scene.render_probe(
            camera, factor_name=self.factor_name, irradiance_map=self.promoted
        )
        estimate = np.asarray(pixels, dtype=np.float64).reshape(-1, 3).mean(axis=0)

        self._write_texel(texel.x, texel.y, estimate)
        self.texels_baked += 1

        if self._advance_cursor(atlas_map):
            self._promote()
            return TickStatus.PASS_COMPLETE
        return TickStatus.BAKED

    def _probe_camera(self, atlas_map, texel) -> ProbeCamera:
        """Build the probe camera for one atlas texel."""
        item = atlas_map.items[texel.item_index]
        mesh = item.original_mesh
        buffer = item.original_buffer

        corner_ids = buffer.index[texel.face_index * 3:texel.face_index * 3 + 3]
        positions = buffer.positions[corner_ids]
        normals = buffer.normals[corner_ids]

        local_position = interpolate_quad(positions, texel.local_u, texel.local_v)
        local_normal = interpolate_quad(normals, texel.local_u, texel.local_v)
        if np.linalg.norm(local_normal) < 1e-12:
            # Opposed corner normals cancel out; fall back to the face normal.
            local_normal = np.cross(positions[1] - positions[0], positions[2] - positions[0])

        position = mesh.to_world_points(local_position)[0]
        normal = mesh.to_world_normals(local_normal)[0]
        # The face's U edge (corner 0 → corner 1) seeds the up vector.
        tangent = mesh.to_world_directions(positions[1] - positions[0])[0]

        angle = self._rng.uniform(0.0, np.pi)
        return ProbeCamera.for_surface(position, normal, tangent, angle, size=self.probe_size)

    def _write_texel(self, x, y, estimate):
        data = self.buffer.data
        if self.accumulation_mode == AccumulationMode.AVERAGE:
            self._visit_counts[y, x] += 1
            count = self._visit_counts[y, x]
            previous = data[y, x, :3].astype(np.float64) if count > 1 else 0.0
            data[y, x, :3] = previous + (estimate - previous) / count
        else:
            data[y, x, :3] = estimate
        data[y, x, 3] = 1.0
        self.buffer.texture.mark_dirty()

    def _advance_cursor(self, atlas_map) -> bool:
        """Step the cursor; True when it wrapped past the last face."""
        cursor = self.buffer.cursor
        texel_count = int(atlas_map.face_spans[cursor.face_slot, 2])

        cursor.texel_offset += 1
        if cursor.texel_offset < texel_count:
            return False

        cursor.texel_offset = 0
        cursor.face_slot += 1
        if cursor.face_slot < len(atlas_map.face_spans):
            return False

        cursor.face_slot = 0
        return True

    def _promote(self):
        """Publish the finished pass as the stable promoted texture."""
        np.copyto(self.promoted.data, self.buffer.data)
        self.promoted.mark_dirty()
        self.passes_completed += 1
        self._on_progress(
            f"{self.name}: pass {self.passes_completed} complete "
            f"({self.texels_baked:,} texels baked so far)"
        )
