"""
Atlas mapping — turns a scene's uv2 layout into a texel → surface lookup.

For every texel of the lightmap, the AtlasMap records which mesh face covers
it and where inside that face the texel centre lands:

    data[y, x] = (local_u, local_v, encoded_face_id, coverage)

    encoded_face_id == 0  → texel not covered by any face
    encoded_face_id  > 0  → encoded_face_id - 1 == item_index * MAX_ITEM_FACES
                                                   + face_index

local_u / local_v are the texel centre's coordinates in the face's own frame:
the face's first vertex is (0, 0), the second (1, 0) and the third (0, 1).
The progressive renderer uses them to rebuild the 3D position and normal of
the texel without storing any 3D data in the atlas.

Technique — payload rasterization:
    Indexed meshes share vertices between faces, so a per-vertex attribute
    cannot carry a per-face id. Each item is first un-indexed into a payload
    where every face owns its three vertices; each payload vertex carries its
    uv2 and a "face position" (corner_x, corner_y, encoded_id). Normals stay
    in the original buffer; the renderer reads them from there.
    The payload faces are then scan-converted in uv2 space into a float raster
    the size of the lightmap. The scan conversion is only used as a coverage
    and ownership test — nothing is shaded.

Overlap policy:
    Faces are rasterized in item order, then face order. When two faces
    cover the same texel centre, the one submitted last wins. Packing uv2
    islands without overlap is the caller's job and is not checked here.
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np

from irradiance_baker.core.errors import (
    CapacityExceeded,
    MaterialConflict,
    UnsupportedGeometry,
)
from irradiance_baker.core.scene import DIFFUSE_MATERIAL_TYPES
from irradiance_baker.core.settings import TextureFilter
from irradiance_baker.core.textures import Texture


# Fixed id range reserved per item for encoding item + face into one float.
MAX_ITEM_FACES = 1000

# Barycentric inside-test tolerance. A small negative value lets texel centres
# that sit exactly on a shared edge be claimed (by the later face), so no
# hairline gaps appear between adjacent faces.
BARY_EPSILON = -1e-5

# Per-vertex corner coordinates of a payload face, by vertex slot 0, 1, 2.
FACE_CORNERS = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]], dtype=np.float32)


def encode_face_id(item_index: int, face_index: int) -> int:
    """Combine an item index and a face index into a 1-based texel id."""
    return item_index * MAX_ITEM_FACES + face_index + 1


def decode_face_id(encoded_id: int) -> tuple[int, int]:
    """
    Split a non-zero texel id back into (item_index, face_index).

    Raises:
        ValueError: for id 0 (the "unmapped" marker) or negative ids.
    """
    encoded_id = int(encoded_id)
    if encoded_id <= 0:
        raise ValueError(f"Face id {encoded_id} does not name a face")
    return (encoded_id - 1) // MAX_ITEM_FACES, (encoded_id - 1) % MAX_ITEM_FACES


@dataclass(frozen=True)
class AtlasMapItem:
    """One mapped mesh: its face count and the original mesh/buffer handles."""
    face_count: int
    original_mesh: object
    original_buffer: object


@dataclass(frozen=True)
class TexelLookup:
    """Everything the renderer needs to know about one occupied texel."""
    x: int
    y: int
    item_index: int
    face_index: int
    local_u: float
    local_v: float


class AtlasMap:
    """
    Immutable result of atlas mapping.

    Besides the raw raster, the map precomputes the face-major texel order the
    progressive renderer walks: occupied texels grouped by encoded id
    (ascending — item-major, face-minor), row-major within a face.

    Attributes:
        width, height: raster size in texels.
        items:         tuple of AtlasMapItem in item-index order.
        data:          (height, width, 4) float32 read-only raster.
        texture:       Texture wrapping `data` (nearest filter).
        texel_order:   (K,) flat texel indices (y * width + x) in visit order.
        face_spans:    (S, 3) int64 rows of (encoded_id, start, count) into
                       texel_order, one row per face that owns ≥ 1 texel.
    """

    def __init__(self, width: int, height: int, items, data):
        self.width = int(width)
        self.height = int(height)
        self.items = tuple(items)

        # Wrap the raster in a texture for diagnostics, then freeze the array.
        self.texture = Texture(self.width, self.height, TextureFilter.NEAREST, name="atlas")
        self.texture.data[...] = data
        self.texture.mark_dirty()
        self.texture.data.flags.writeable = False
        self.data = self.texture.data

        # Face-major visit order. A stable sort on the id keeps the row-major
        # raster order within each face.
        flat_ids = self.data[:, :, 2].reshape(-1).astype(np.int64)
        occupied = np.flatnonzero(flat_ids)
        order = occupied[np.argsort(flat_ids[occupied], kind="stable")]
        ids_in_order = flat_ids[order]
        unique_ids, starts, counts = np.unique(
            ids_in_order, return_index=True, return_counts=True
        )

        self.texel_order = order
        self.face_spans = np.stack([unique_ids, starts, counts], axis=1).astype(np.int64)
        self.texel_order.flags.writeable = False
        self.face_spans.flags.writeable = False

    @property
    def occupied_texel_count(self) -> int:
        return len(self.texel_order)

    @property
    def face_ids(self) -> set[int]:
        """Distinct non-zero encoded ids present in the raster."""
        return {int(face_id) for face_id in self.face_spans[:, 0]}

    @property
    def coverage_mask(self):
        """(height, width) bool mask of occupied texels."""
        return self.data[:, :, 2] > 0

    def lookup(self, x: int, y: int) -> TexelLookup | None:
        """Resolve texel (x, y); None when the texel is unmapped."""
        u, v, encoded_id, _ = self.data[y, x]
        if encoded_id <= 0:
            return None
        item_index, face_index = decode_face_id(int(round(float(encoded_id))))
        return TexelLookup(int(x), int(y), item_index, face_index, float(u), float(v))

    def lookup_ordered(self, face_slot: int, texel_offset: int) -> TexelLookup:
        """Resolve the texel at (face_slot, texel_offset) of the visit order."""
        _, start, count = self.face_spans[face_slot]
        if not 0 <= texel_offset < count:
            raise IndexError(f"Texel offset {texel_offset} outside face of {count} texels")
        flat = int(self.texel_order[start + texel_offset])
        y, x = divmod(flat, self.width)
        return self.lookup(x, y)

    def __repr__(self):
        return (f"AtlasMap({self.width}×{self.height}, {len(self.items)} items, "
                f"{len(self.face_spans)} faces, {self.occupied_texel_count} texels)")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _validate_item(item, light_map):
    """
    Check one scene item before anything is rasterized or bound.

    Raises:
        UnsupportedGeometry: missing index buffer, normals or uv2.
        CapacityExceeded:    more than MAX_ITEM_FACES faces.
        MaterialConflict:    unsupported material kind, or a foreign light map.
    """
    mesh = item.mesh
    buffer = mesh.buffer
    label = mesh.name or mesh.uuid

    if buffer.index is None:
        raise UnsupportedGeometry(f"Mesh '{label}' has no index buffer")
    if len(buffer.index) % 3 != 0:
        raise UnsupportedGeometry(
            f"Mesh '{label}' index buffer length {len(buffer.index)} is not a "
            "multiple of 3"
        )
    if buffer.normals is None or len(buffer.normals) != buffer.vertex_count:
        raise UnsupportedGeometry(f"Mesh '{label}' has no usable normal attribute")
    if buffer.uv2 is None or len(buffer.uv2) != buffer.vertex_count:
        raise UnsupportedGeometry(f"Mesh '{label}' has no usable uv2 attribute")
    if buffer.face_count and (buffer.index.min() < 0
                              or buffer.index.max() >= buffer.vertex_count):
        raise UnsupportedGeometry(f"Mesh '{label}' index buffer points past its vertices")

    if buffer.face_count > MAX_ITEM_FACES:
        raise CapacityExceeded(
            f"Mesh '{label}' has {buffer.face_count:,} faces; at most "
            f"{MAX_ITEM_FACES:,} faces per item fit in the atlas id range"
        )

    material = item.material
    if material is None or not isinstance(material, DIFFUSE_MATERIAL_TYPES):
        raise MaterialConflict(
            f"Mesh '{label}': only single Lambert/Phong/Standard materials are supported"
        )
    if material.light_map is not None and material.light_map is not light_map:
        raise MaterialConflict(
            f"Mesh '{label}' already has a different light map bound; do not set "
            "light maps manually on baked meshes"
        )


# ---------------------------------------------------------------------------
# Payload construction and rasterization
# ---------------------------------------------------------------------------

def _build_payload(buffer, item_index):
    """
    Un-index one item's triangles into per-face vertex arrays.

    Returns:
        dict with
            "uv2":       (F*3, 2) float32 — lightmap placement per face-vertex
            "face_pos":  (F*3, 3) float32 — (corner_x, corner_y, encoded_id)
    """
    index = buffer.index
    face_count = buffer.face_count
    face_vertex_count = face_count * 3

    face_pos = np.zeros((face_vertex_count, 3), dtype=np.float32)
    face_pos[:, :2] = np.tile(FACE_CORNERS, (face_count, 1))
    face_ids = np.arange(face_count, dtype=np.int64)
    face_pos[:, 2] = np.repeat(item_index * MAX_ITEM_FACES + face_ids + 1, 3)

    return {
        "uv2": buffer.uv2[index[:face_vertex_count]],
        "face_pos": face_pos,
    }


def _rasterize_payload(raster, uv2, face_pos):
    """
    Scan-convert payload faces into the atlas raster in submission order.

    For each face in uv2 space:
    1. Compute its texel-space bounding box.
    2. Evaluate barycentric weights at every texel centre in the box at once.
    3. Inside texels receive the interpolated corner coordinates, the face's
       encoded id and coverage 1, overwriting whatever was there.

    Args:
        raster:   (H, W, 4) float32 array, written in place.
        uv2:      (F*3, 2) payload uv2 coordinates in [0, 1]².
        face_pos: (F*3, 3) payload (corner_x, corner_y, encoded_id).

    Returns:
        Number of faces that covered at least one texel centre.
    """
    height, width = raster.shape[:2]

    # Texel space: texel (x, y) spans [x, x+1] × [y, y+1], centre at +0.5.
    # Row y grows with v, the orientation of a GL render target read-back.
    px = uv2[:, 0].astype(np.float64) * width
    py = uv2[:, 1].astype(np.float64) * height

    covered_faces = 0
    for base in range(0, len(uv2), 3):
        i0, i1, i2 = base, base + 1, base + 2
        x0, y0 = px[i0], py[i0]
        x1, y1 = px[i1], py[i1]
        x2, y2 = px[i2], py[i2]

        # Bounding box of texel centres that might be inside, clamped to the raster.
        xmin = max(0, int(np.floor(min(x0, x1, x2) - 0.5)))
        xmax = min(width - 1, int(np.ceil(max(x0, x1, x2) - 0.5)))
        ymin = max(0, int(np.floor(min(y0, y1, y2) - 0.5)))
        ymax = min(height - 1, int(np.ceil(max(y0, y1, y2) - 0.5)))
        if xmin > xmax or ymin > ymax:
            continue

        denom = (y1 - y2) * (x0 - x2) + (x2 - x1) * (y0 - y2)
        if abs(denom) < 1e-12:
            continue  # Degenerate / zero-area face in uv2 space

        xs = np.arange(xmin, xmax + 1, dtype=np.float64) + 0.5
        ys = np.arange(ymin, ymax + 1, dtype=np.float64) + 0.5
        xx, yy = np.meshgrid(xs, ys)

        w0 = ((y1 - y2) * (xx - x2) + (x2 - x1) * (yy - y2)) / denom
        w1 = ((y2 - y0) * (xx - x2) + (x0 - x2) * (yy - y2)) / denom
        w2 = 1.0 - w0 - w1

        inside = (w0 >= BARY_EPSILON) & (w1 >= BARY_EPSILON) & (w2 >= BARY_EPSILON)
        if not inside.any():
            continue

        iy, ix = np.where(inside)
        w0_i = w0[iy, ix][:, np.newaxis]
        w1_i = w1[iy, ix][:, np.newaxis]
        w2_i = w2[iy, ix][:, np.newaxis]
        corners = w0_i * face_pos[i0, :2] + w1_i * face_pos[i1, :2] + w2_i * face_pos[i2, :2]

        rows = ymin + iy
        cols = xmin + ix
        raster[rows, cols, :2] = np.clip(corners, 0.0, 1.0)
        # The id is constant across the face, so write it exactly rather
        # than interpolating it.
        raster[rows, cols, 2] = face_pos[i0, 2]
        raster[rows, cols, 3] = 1.0
        covered_faces += 1

    return covered_faces


# ---------------------------------------------------------------------------
# Mapper
# ---------------------------------------------------------------------------

class AtlasMapper:
    """
    One-shot builder of an AtlasMap for a frozen list of scene items.

    Args:
        width, height: lightmap size in texels.
        items:         ordered SceneItems; those with needs_light_map=False are
                       skipped (they still light the scene, they just do not
                       receive a lightmap).
        light_map:     the output lightmap texture bound to every mapped
                       material once mapping succeeds.
        on_progress:   optional callback(str) for status messages.
    """

    def __init__(self, width: int, height: int, items, light_map,
                 on_progress: Callable[[str], None] | None = None):
        self.width = int(width)
        self.height = int(height)
        self.items = [item for item in items if item.needs_light_map]
        self.light_map = light_map
        self._on_progress = on_progress or (lambda message: None)
        self._atlas_map = None

    @property
    def is_complete(self) -> bool:
        return self._atlas_map is not None

    @property
    def atlas_map(self) -> AtlasMap | None:
        return self._atlas_map

    def run(self) -> AtlasMap:
        """
        Validate, rasterize and bind — or return the map built earlier.

        Raises:
            UnsupportedGeometry, CapacityExceeded, MaterialConflict: on the
            first invalid item. Nothing is rasterized or bound in that case.
        """
        if self._atlas_map is not None:
            return self._atlas_map

        # Validate everything before any side effect so a bad item cannot
        # leave materials half-bound.
        for item in self.items:
            _validate_item(item, self.light_map)

        raster = np.zeros((self.height, self.width, 4), dtype=np.float32)
        map_items = []
        total_faces = 0
        covered_faces = 0

        for item_index, item in enumerate(self.items):
            buffer = item.mesh.buffer
            payload = _build_payload(buffer, item_index)
            covered_faces += _rasterize_payload(raster, payload["uv2"], payload["face_pos"])
            total_faces += buffer.face_count
            map_items.append(AtlasMapItem(
                face_count=buffer.face_count,
                original_mesh=item.mesh,
                original_buffer=buffer,
            ))

        atlas_map = AtlasMap(self.width, self.height, map_items, raster)

        # Finally, attach the lightmap to every mapped material.
        for item in self.items:
            item.material.light_map = self.light_map

        owning_faces = len(atlas_map.face_spans)
        self._on_progress(
            f"Atlas mapped: {len(map_items)} items, {total_faces:,} faces "
            f"({covered_faces:,} rasterized, {owning_faces:,} owning texels), "
            f"{atlas_map.occupied_texel_count:,} of {self.width * self.height:,} "
            "texels covered"
        )
        if owning_faces < total_faces:
            self._on_progress(
                f"Warning: {total_faces - owning_faces:,} faces own no texel "
                "and will not be baked. Consider a larger lightmap, bigger uv2 "
                "islands or removing overlaps."
            )

        self._atlas_map = atlas_map
        return atlas_map
