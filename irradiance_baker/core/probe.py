"""
Probe camera placement and ray generation.

A probe is a square perspective camera sitting just above a surface point and
looking straight out along the surface normal. Rendering the light scene
through it and averaging the pixels gives a one-sample estimate of the light
arriving at that point from the hemisphere above it.

The camera's up vector is the face's U edge rotated about the normal by a
random angle that changes on every visit, so the square footprint of the
probe does not line up with the same features on every pass or on
neighbouring texels.
"""

from dataclasses import dataclass

import numpy as np

from irradiance_baker.core.settings import (
    PROBE_FAR,
    PROBE_FOV_DEGREES,
    PROBE_NEAR,
    PROBE_NORMAL_OFFSET,
    PROBE_TARGET_SIZE,
)


def _normalize(vector):
    vector = np.asarray(vector, dtype=np.float64)
    length = np.linalg.norm(vector)
    if length < 1e-12:
        raise ValueError("Cannot normalise a zero-length vector")
    return vector / length


def _fallback_tangent(normal):
    """Any unit vector perpendicular to `normal`."""
    if abs(normal[2]) < 0.99:
        ref = np.array([0.0, 0.0, 1.0])
    else:
        ref = np.array([1.0, 0.0, 0.0])
    return _normalize(np.cross(ref, normal))


@dataclass
class ProbeCamera:
    """
    Square perspective camera used for one probe render.

    position — world-space eye point
    forward  — unit view direction (the surface normal)
    up       — unit up vector, perpendicular to forward
    """
    position: np.ndarray
    forward: np.ndarray
    up: np.ndarray
    fov_degrees: float = PROBE_FOV_DEGREES
    near: float = PROBE_NEAR
    far: float = PROBE_FAR
    size: int = PROBE_TARGET_SIZE

    @classmethod
    def for_surface(cls, position, normal, tangent, angle,
                    offset=PROBE_NORMAL_OFFSET, size=PROBE_TARGET_SIZE) -> "ProbeCamera":
        """
        Place a probe above a surface point.

        Args:
            position: world-space surface point.
            normal:   world-space surface normal (need not be unit length).
            tangent:  a direction in (or near) the tangent plane, typically the
                      face's U edge; it is projected onto the plane first.
            angle:    rotation of the up vector about the normal, in radians.
            offset:   distance the eye is lifted along the normal.
            size:     render target side length in pixels.
        """
        normal = _normalize(normal)

        # Gram-Schmidt: drop whatever part of the tangent leans out of the plane.
        tangent = np.asarray(tangent, dtype=np.float64)
        tangent = tangent - np.dot(tangent, normal) * normal
        if np.linalg.norm(tangent) < 1e-8:
            tangent = _fallback_tangent(normal)
        else:
            tangent = _normalize(tangent)

        # Rotate within the tangent frame: (tangent, bitangent) spans the plane.
        bitangent = np.cross(normal, tangent)
        up = np.cos(angle) * tangent + np.sin(angle) * bitangent

        return cls(
            position=np.asarray(position, dtype=np.float64) + normal * offset,
            forward=normal,
            up=_normalize(up),
            size=int(size),
        )

    @property
    def right(self):
        return np.cross(self.forward, self.up)

    def ray_directions(self):
        """
        Unit ray directions through every pixel centre.

        Returns:
            (size * size, 3) float64 array, rows ordered top-to-bottom,
            left-to-right.
        """
        half = np.tan(np.radians(self.fov_degrees) / 2.0)
        centres = (np.arange(self.size, dtype=np.float64) + 0.5) / self.size * 2.0 - 1.0
        sx, sy = np.meshgrid(centres * half, -centres * half)

        dirs = (self.forward[np.newaxis, :]
                + sx.reshape(-1, 1) * self.right[np.newaxis, :]
                + sy.reshape(-1, 1) * self.up[np.newaxis, :])
        return dirs / np.linalg.norm(dirs, axis=1, keepdims=True)

    def rays(self):
        """
        Rays for the ray-casting backend.

        Returns:
            (size * size, 6) float32 array of (origin xyz, direction xyz).
        """
        dirs = self.ray_directions()
        origins = np.broadcast_to(self.position, dirs.shape)
        return np.concatenate([origins, dirs], axis=1).astype(np.float32)

    def depth_of(self, directions, distances):
        """
        Planar view depth of hits at `distances` along `directions`.

        Perspective clipping is against planes perpendicular to the view
        direction, not spheres around the eye.
        """
        return np.asarray(distances) * (np.asarray(directions) @ self.forward)
