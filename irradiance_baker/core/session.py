"""
Bake session — explicit wiring of one complete bake.

A bake needs several long-lived objects to agree on the same sizes, the same
output texture and the same light scene:

    WorkbenchManager  → snapshots the registered meshes and maps the atlas
    renderers         → one ProgressiveIrradianceRenderer per factor (+ base)
    Compositor        → owns the buffers the renderers write and the output
    BakeScheduler     → ticks all of the above once per frame

BakeSession builds them from a BakeSettings and connects them, so callers
only have to register meshes, call start() (or rely on the auto-start delay)
and call step_frame() from their frame loop, or hand the scheduler to a
BakeWorker thread via create_worker().

Task order inside a frame is fixed: the workbench manager first (so a new
snapshot is visible to the renderers in the same frame), then the renderers,
then the compositor last (so the output always reflects this frame's texels).
"""

from pathlib import Path
from typing import Callable

import numpy as np

from irradiance_baker.core.compositor import Compositor
from irradiance_baker.core.errors import UnknownFactor
from irradiance_baker.core.irradiance_renderer import ProgressiveIrradianceRenderer
from irradiance_baker.core.scheduler import BakeScheduler
from irradiance_baker.core.settings import BakeSettings, TextureFilter
from irradiance_baker.core.textures import Texture
from irradiance_baker.core.workbench import WorkbenchManager
from irradiance_baker.core.workspace import WorkspacePaths, create_workspace


WORKBENCH_TASK = "workbench"
COMPOSITOR_TASK = "compositor"


class BakeSession:
    """
    Owns every component of one bake.

    Args:
        settings:            BakeSettings (validated on construction).
        light_scene:         LightScene shared by all renderers. The session
                             releases it on close().
        on_progress:         optional callback(str) for status messages.
        max_ticks_per_frame: forwarded to the BakeScheduler.
        clock:               time source for the auto-start delay (tests).
    """

    def __init__(self, settings: BakeSettings, light_scene,
                 on_progress: Callable[[str], None] | None = None,
                 max_ticks_per_frame: int | None = None, clock=None):
        settings.validate()
        self.settings = settings
        self.light_scene = light_scene
        self._on_progress = on_progress or (lambda message: None)

        width = settings.lightmap_width
        height = settings.lightmap_height

        self.compositor = Compositor(width, height, settings.factors, settings.texture_filter)

        manager_kwargs = {} if clock is None else {"clock": clock}
        self.manager = WorkbenchManager(
            width, height, light_scene,
            light_map=self.compositor.output,
            auto_start_delay_ms=settings.auto_start_delay_ms,
            on_progress=self._on_progress,
            **manager_kwargs,
        )

        # Base renderer first, then one per factor in declaration order. Each
        # renderer gets its own seed stream so factors do not share angles.
        self.renderers: list[ProgressiveIrradianceRenderer] = []
        for offset, factor_name in enumerate([None, *self.compositor.factor_names]):
            seed = None if settings.seed is None else settings.seed + offset
            self.renderers.append(ProgressiveIrradianceRenderer(
                self.compositor.get_buffer(factor_name),
                light_scene,
                factor_name=factor_name,
                accumulation_mode=settings.accumulation_mode,
                probe_size=settings.probe_size,
                seed=seed,
                on_progress=self._on_progress,
            ))

        self.manager.on_ready(self._on_workbench_ready)

        self.scheduler = BakeScheduler(max_ticks_per_frame, on_progress=self._on_progress)
        self.scheduler.add(WORKBENCH_TASK, self.manager)
        for renderer in self.renderers:
            self.scheduler.add(renderer_task_name(renderer.factor_name), renderer)
        self.scheduler.add(COMPOSITOR_TASK, self.compositor)

    def _on_workbench_ready(self, workbench):
        for renderer in self.renderers:
            renderer.set_workbench(workbench)

    # -- scene registration ---------------------------------------------------

    def register_mesh(self, mesh, material=None, needs_light_map: bool = True) -> str:
        """Stage a mesh for the next start(); returns its registration key."""
        return self.manager.register(mesh, material, needs_light_map)

    def unregister_mesh(self, mesh_or_key):
        self.manager.unregister(mesh_or_key)

    def start(self):
        """Snapshot the registered meshes, map the atlas and restart baking."""
        return self.manager.start()

    @property
    def workbench(self):
        return self.manager.workbench

    # -- outputs --------------------------------------------------------------

    @property
    def output_texture(self) -> Texture:
        """The composited lightmap; the same object for the session's lifetime."""
        return self.compositor.output

    @property
    def atlas_map(self):
        workbench = self.manager.workbench
        return None if workbench is None else workbench.atlas_map

    def renderer(self, factor_name: str | None = None) -> ProgressiveIrradianceRenderer:
        for renderer in self.renderers:
            if renderer.factor_name == factor_name:
                return renderer
        raise UnknownFactor(f"Unknown compositor factor: {factor_name}")

    def set_factor_multiplier(self, factor_name: str, multiplier: float):
        self.compositor.set_multiplier(factor_name, multiplier)

    # -- driving --------------------------------------------------------------

    def step_frame(self) -> dict[str, str]:
        """Advance every task by one tick; returns task name → TickStatus."""
        return self.scheduler.frame()

    def run_passes(self, passes: int = 1, max_frames: int | None = None) -> int:
        """
        Tick frames until every renderer has finished `passes` passes.

        Useful for offline bakes. Starts the session first if no workbench
        exists yet. Returns the number of frames run.

        Raises:
            RuntimeError: `max_frames` elapsed before the passes completed.
        """
        if self.manager.workbench is None:
            self.start()

        frames = 0
        while any(renderer.passes_completed < passes for renderer in self.renderers):
            if self.scheduler.cancelled:
                break
            if self.atlas_map is None or self.atlas_map.occupied_texel_count == 0:
                self._on_progress("Nothing to bake: the atlas has no occupied texels")
                break
            if max_frames is not None and frames >= max_frames:
                raise RuntimeError(f"Bake did not finish {passes} passes in {max_frames} frames")
            self.step_frame()
            frames += 1
        return frames

    def create_worker(self, max_passes: int | None = None,
                      frame_interval_s: float = 0.0, max_frames: int | None = None):
        """Build a BakeWorker (QThread) that drives this session's scheduler."""
        # Imported here so the core stays usable without PySide6 installed.
        from irradiance_baker.core.worker import BakeWorker

        pass_tasks = [renderer_task_name(renderer.factor_name) for renderer in self.renderers]
        return BakeWorker(self.scheduler, max_passes=max_passes,
                          frame_interval_s=frame_interval_s, max_frames=max_frames,
                          pass_tasks=pass_tasks)

    def close(self):
        """Stop ticking and release the light scene's ray-casting resources."""
        self.scheduler.cancel()
        self.light_scene.release()

    # -- diagnostics ----------------------------------------------------------

    def export_diagnostics(self, workspace: WorkspacePaths | None = None,
                           base_dir: Path | None = None) -> WorkspacePaths:
        """
        Dump the atlas, every accumulation buffer and the output as PNGs.

        Args:
            workspace: existing WorkspacePaths to write into. A new timestamped
                       workspace is created under `base_dir` when omitted.
            base_dir:  parent directory for a new workspace.

        Returns:
            The WorkspacePaths that were written.
        """
        if workspace is None:
            workbench = self.manager.workbench
            workspace = create_workspace(
                base_dir, session_id=None if workbench is None else workbench.id
            )

        atlas_map = self.atlas_map
        if atlas_map is not None:
            atlas_visualisation(atlas_map).save_png(workspace.atlas, dilate=False)

        for layer in self.compositor.layers:
            texture = layer.buffer.texture
            texture.save_png(workspace.factors / f"{texture.name}.png")

        self.compositor.output.save_png(workspace.output, dilate=False)
        self._on_progress(f"Diagnostics written to {workspace.root}")
        return workspace


def renderer_task_name(factor_name: str | None) -> str:
    """Scheduler task name of the renderer for `factor_name` (None = base)."""
    return f"renderer:{factor_name if factor_name is not None else 'base'}"


def atlas_visualisation(atlas_map) -> Texture:
    """
    Colour every occupied atlas texel by its face id.

    Each face gets a random but stable colour, modulated by the texel's local
    (u, v) so the corner orientation inside every face stays visible.
    Unmapped texels stay black with alpha 0.
    """
    data = atlas_map.data
    ids = data[:, :, 2].astype(np.int64)

    rng = np.random.default_rng(0)
    palette = rng.uniform(0.3, 1.0, size=(int(ids.max()) + 1, 3)).astype(np.float32)
    palette[0] = 0.0

    shade = 0.6 + 0.4 * (data[:, :, 0] + data[:, :, 1])[:, :, np.newaxis] * 0.5

    texture = Texture(atlas_map.width, atlas_map.height, TextureFilter.NEAREST, name="atlas-ids")
    texture.data[:, :, :3] = palette[ids] * shade
    texture.data[:, :, 3] = data[:, :, 3]
    texture.mark_dirty()
    return texture
