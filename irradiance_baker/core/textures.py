"""
In-process texture resources.

Every raster the bake produces — the atlas map, the per-factor accumulation
buffers, the promoted bounce maps and the composited output — is a Texture:
an (H, W, 4) float32 RGBA array plus a filter mode and a version counter.

Orientation convention:
    Row 0 of `data` is the BOTTOM of the texture (v = 0), matching how a GL
    render target is read back. A texel (x, y) covers the uv square
    [x/W, (x+1)/W] × [y/H, (y+1)/H] and its centre sits at
    ((x + 0.5) / W, (y + 0.5) / H). Image files have their origin at the top,
    so to_image() flips rows on the way out.

Identity convention:
    Consumers bind a Texture object once and observe content changes in place.
    Producers therefore never replace `data`; they write into it and call
    mark_dirty(), which bumps `version` (the "needs update" flag a renderer
    would poll before re-uploading).
"""

from dataclasses import dataclass

import numpy as np
from PIL import Image

from irradiance_baker.core.settings import TextureFilter, TEXTURE_FILTERS


# Texture dilation radius in pixels for exported images. Lightmaps are sampled
# with bilinear filtering, so texels just outside a uv2 island bleed into the
# island's border. Dilation fills that border zone with the nearest island
# value, which removes the dark seams at island edges.
DILATION_PIXELS = 4


class Texture:
    """
    Float RGBA texture with a stable identity.

    Args:
        width, height:  size in texels.
        texture_filter: TextureFilter.NEAREST or TextureFilter.LINEAR.
        name:           label used in progress messages and exported file names.
    """

    def __init__(self, width: int, height: int,
                 texture_filter: str = TextureFilter.NEAREST, name: str = "texture"):
        if texture_filter not in TEXTURE_FILTERS:
            raise ValueError(f"Unknown texture filter: {texture_filter}")
        self.width = int(width)
        self.height = int(height)
        self.texture_filter = texture_filter
        self.name = name
        self.data = np.zeros((self.height, self.width, 4), dtype=np.float32)
        self.version = 0

    def mark_dirty(self):
        """Flag the contents as changed since the last upload/read."""
        self.version += 1

    def sample(self, uvs):
        """
        Sample the texture at (M, 2) uv coordinates with clamp-to-edge wrapping.

        Nearest filtering returns the texel whose square contains the uv.
        Linear filtering blends the four texels around the uv using texel
        centres as sample points (GL bilinear semantics).

        Returns:
            (M, 4) float32 RGBA values.
        """
        uvs = np.asarray(uvs, dtype=np.float32).reshape(-1, 2)
        if len(uvs) == 0:
            return np.zeros((0, 4), dtype=np.float32)

        # Continuous texel coordinates: texel centres land on integer + 0.5.
        tx = uvs[:, 0] * self.width
        ty = uvs[:, 1] * self.height

        if self.texture_filter == TextureFilter.NEAREST:
            ix = np.clip(np.floor(tx).astype(np.int64), 0, self.width - 1)
            iy = np.clip(np.floor(ty).astype(np.int64), 0, self.height - 1)
            return self.data[iy, ix].copy()

        # Bilinear: shift so texel centres are integral, then blend neighbours.
        fx = tx - 0.5
        fy = ty - 0.5
        x0 = np.floor(fx)
        y0 = np.floor(fy)
        wx = (fx - x0)[:, np.newaxis]
        wy = (fy - y0)[:, np.newaxis]

        x0i = np.clip(x0.astype(np.int64), 0, self.width - 1)
        y0i = np.clip(y0.astype(np.int64), 0, self.height - 1)
        x1i = np.clip(x0.astype(np.int64) + 1, 0, self.width - 1)
        y1i = np.clip(y0.astype(np.int64) + 1, 0, self.height - 1)

        top = self.data[y0i, x0i] * (1.0 - wx) + self.data[y0i, x1i] * wx
        bottom = self.data[y1i, x0i] * (1.0 - wx) + self.data[y1i, x1i] * wx
        return (top * (1.0 - wy) + bottom * wy).astype(np.float32)

    def to_image(self, dilate: bool = True, scale: float = 1.0) -> Image.Image:
        """
        Convert the RGB channels to an 8-bit PIL image in image orientation.

        The alpha channel is used as the coverage mask: texels with alpha > 0
        count as "filled" for dilation purposes.

        Args:
            dilate: expand covered regions by DILATION_PIXELS before export.
            scale:  multiplier applied before clamping to [0, 1] (useful for
                    HDR irradiance values and for id visualisations).
        """
        rgb = self.data[:, :, :3] * scale
        filled_mask = self.data[:, :, 3] > 0

        if dilate and filled_mask.any() and not filled_mask.all():
            rgb = dilate_texture(rgb, filled_mask)

        # Row 0 is v = 0 (bottom); image row 0 is the top.
        rgb = rgb[::-1]
        img_uint8 = (np.clip(rgb, 0.0, 1.0) * 255).astype(np.uint8)
        return Image.fromarray(np.ascontiguousarray(img_uint8), "RGB")

    def save_png(self, path, dilate: bool = True, scale: float = 1.0):
        """Write the texture to `path` as an RGB PNG and return the path."""
        self.to_image(dilate=dilate, scale=scale).save(str(path))
        return path

    def __repr__(self):
        return (f"Texture(name={self.name!r}, {self.width}×{self.height}, "
                f"filter={self.texture_filter}, version={self.version})")


def dilate_texture(img_data, filled_mask, iterations=DILATION_PIXELS):
    """
    Expand filled regions outward by `iterations` pixels.

    Every unfilled pixel within `iterations` pixels of a filled one copies the
    value of its nearest filled neighbour; pixels further away keep their value.
    Uses scipy's Euclidean distance transform for a single vectorised pass.

    Args:
        img_data:    (H, W, C) or (H, W) array.
        filled_mask: (H, W) bool array, True where data is valid.
        iterations:  dilation radius in pixels.

    Returns:
        Dilated copy of img_data.
    """
    from scipy.ndimage import distance_transform_edt

    result = np.array(img_data, copy=True)

    # distance_transform_edt(~filled_mask) gives each unfilled pixel its
    # distance to the nearest filled pixel, and (with return_indices=True)
    # the row/col of that nearest pixel.
    dist, nearest_indices = distance_transform_edt(~filled_mask, return_indices=True)

    dilation_mask = (dist > 0) & (dist <= iterations)
    if dilation_mask.any():
        nearest_r = nearest_indices[0][dilation_mask]
        nearest_c = nearest_indices[1][dilation_mask]
        result[dilation_mask] = img_data[nearest_r, nearest_c]

    return result


# ---------------------------------------------------------------------------
# Accumulation buffers
# ---------------------------------------------------------------------------

@dataclass
class FillCursor:
    """
    Position of a progressive renderer inside the atlas.

    face_slot    — index into the AtlasMap's face-major list of occupied faces.
    texel_offset — index of the next texel within that face's texel run.
    """
    face_slot: int = 0
    texel_offset: int = 0

    def reset(self):
        self.face_slot = 0
        self.texel_offset = 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.face_slot, self.texel_offset)


class AccumulationBuffer:
    """
    Per-factor irradiance buffer.

    Written by exactly one ProgressiveIrradianceRenderer (one texel per tick),
    read by the Compositor every frame. The buffer's texture always uses
    nearest filtering because it is an intermediate compositing input.

    Args:
        width, height: size in texels (same as the lightmap).
        name:          factor name, or None for the base buffer.
    """

    def __init__(self, width: int, height: int, name: str | None = None):
        self.name = name
        label = name if name is not None else "base"
        self.texture = Texture(width, height, TextureFilter.NEAREST, name=label)
        self.cursor = FillCursor()

    @property
    def width(self) -> int:
        return self.texture.width

    @property
    def height(self) -> int:
        return self.texture.height

    @property
    def data(self):
        """(H, W, 4) float32 RGBA array backing the buffer's texture."""
        return self.texture.data

    def fill(self, rgb):
        """Set every texel to a constant colour (alpha 1) and mark dirty."""
        self.texture.data[:, :, :3] = np.asarray(rgb, dtype=np.float32)
        self.texture.data[:, :, 3] = 1.0
        self.texture.mark_dirty()

    def __repr__(self):
        return (f"AccumulationBuffer(name={self.name!r}, {self.width}×{self.height}, "
                f"cursor={self.cursor.as_tuple()})")
