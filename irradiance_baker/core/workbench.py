"""
Workbench snapshots — the frozen inputs of one bake session.

The authoring layer registers and unregisters meshes at any time. Baking,
however, needs a stable view: the atlas is built once for a fixed set of
items, and renderers walk that atlas for as long as the session lasts.

    SceneItem         — one registered mesh + material + needs_light_map flag
    Workbench         — immutable snapshot {id, items, light_scene, atlas_map}
    WorkbenchManager  — the staging registry; start() freezes it into a new
                        Workbench, maps the atlas and announces readiness

A new start() never mutates the previous Workbench; it produces a new one
with the next session id. If atlas mapping fails, the previous Workbench (and
everything downstream of it) stays in place.
"""

import dataclasses
import time
from dataclasses import dataclass
from typing import Callable

from irradiance_baker.core.atlas_mapper import AtlasMapper
from irradiance_baker.core.errors import MaterialConflict
from irradiance_baker.core.settings import TickStatus


@dataclass(frozen=True)
class SceneItem:
    """A participating mesh, the material that shades it, and whether it is baked."""
    mesh: object
    material: object
    needs_light_map: bool = True


@dataclass(frozen=True)
class Workbench:
    """
    Immutable snapshot of one bake session.

    id          — monotonically increasing session id
    items       — tuple of SceneItem, in registration order
    light_scene — the LightScene probes render
    atlas_map   — AtlasMap once mapped, None before
    """
    id: int
    items: tuple
    light_scene: object
    atlas_map: object = None

    def with_atlas_map(self, atlas_map) -> "Workbench":
        return dataclasses.replace(self, atlas_map=atlas_map)


class WorkbenchManager:
    """
    Staging registry of scene items and producer of Workbench snapshots.

    Args:
        width, height:       lightmap size in texels.
        light_scene:         the LightScene shared by every session.
        light_map:           output lightmap texture bound to mapped materials.
        auto_start_delay_ms: if set, tick() takes the first snapshot once this
                             much time has passed since construction.
        on_progress:         optional callback(str) for status messages.
        clock:               monotonic time source in seconds (injectable for
                             tests).
    """

    def __init__(self, width: int, height: int, light_scene, light_map,
                 auto_start_delay_ms: int | None = None,
                 on_progress: Callable[[str], None] | None = None,
                 clock: Callable[[], float] = time.monotonic):
        self.width = int(width)
        self.height = int(height)
        self.light_scene = light_scene
        self.light_map = light_map
        self.auto_start_delay_ms = auto_start_delay_ms

        self._on_progress = on_progress or (lambda message: None)
        self._clock = clock
        self._created_at = clock()
        self._auto_start_pending = auto_start_delay_ms is not None

        self._staging: dict[str, SceneItem] = {}
        self._ready_callbacks: list[Callable] = []
        self._last_session_id = 0
        self._workbench: Workbench | None = None

    # -- registry -------------------------------------------------------------

    def register(self, mesh, material=None, needs_light_map: bool = True) -> str:
        """
        Stage a mesh for the next snapshot and return its registration key.

        `material` defaults to the mesh's own material. Passing any other
        material raises MaterialConflict: probes shade the mesh through
        `mesh.material`, so the bound lightmap has to live there. Registering
        the same mesh again replaces its entry but keeps its position in the
        order.
        """
        if material is None:
            material = mesh.material
        elif material is not mesh.material:
            raise MaterialConflict(
                f"Mesh '{mesh.name or mesh.uuid}' must be registered with its own material"
            )
        self._staging[mesh.uuid] = SceneItem(mesh, material, needs_light_map)
        return mesh.uuid

    def unregister(self, mesh_or_key):
        key = getattr(mesh_or_key, "uuid", mesh_or_key)
        self._staging.pop(key, None)

    @property
    def staged_items(self) -> list[SceneItem]:
        return list(self._staging.values())

    # -- readiness ------------------------------------------------------------

    def on_ready(self, callback: Callable[[Workbench], None]):
        """Call `callback(workbench)` every time atlas mapping completes."""
        self._ready_callbacks.append(callback)

    @property
    def workbench(self) -> Workbench | None:
        """The latest complete Workbench, or None before the first success."""
        return self._workbench

    # -- sessions -------------------------------------------------------------

    def start(self) -> Workbench:
        """
        Freeze the staged items into a new Workbench and map its atlas.

        Raises:
            UnsupportedGeometry, MaterialConflict, CapacityExceeded: mapping
            failed; the previously complete Workbench stays current. The
            failed session id is still consumed.
        """
        self._auto_start_pending = False
        self._last_session_id += 1

        snapshot = Workbench(
            id=self._last_session_id,
            items=tuple(self._staging.values()),
            light_scene=self.light_scene,
        )
        self._on_progress(
            f"Workbench #{snapshot.id}: mapping {len(snapshot.items)} items "
            f"into a {self.width}×{self.height} atlas..."
        )

        mapper = AtlasMapper(self.width, self.height, snapshot.items, self.light_map,
                             on_progress=self._on_progress)
        atlas_map = mapper.run()

        workbench = snapshot.with_atlas_map(atlas_map)
        self._workbench = workbench

        for callback in list(self._ready_callbacks):
            callback(workbench)
        return workbench

    def tick(self) -> str:
        """Take the auto-start snapshot once its delay has elapsed."""
        if not self._auto_start_pending:
            return TickStatus.IDLE

        elapsed_ms = (self._clock() - self._created_at) * 1000.0
        if elapsed_ms < self.auto_start_delay_ms:
            return TickStatus.IDLE

        self.start()
        return TickStatus.STARTED
