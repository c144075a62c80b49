"""
Error taxonomy for the bake pipeline.

Validation errors (UnsupportedGeometry, MaterialConflict, CapacityExceeded)
are raised synchronously while the atlas is being built and point at an
authoring defect — they are never retried. DeviceFailure wraps a failure of
the ray-casting backend during a probe render and is fatal for the bake.

The transient "atlas not ready yet" condition is NOT an exception: renderer
ticks report it as TickStatus.NOT_READY (see settings.py).
"""


class BakeError(Exception):
    """
    Base class for every error raised by the bake pipeline.

    Callers that drive a bake (the scheduler loop, the Qt worker) catch this
    type and forward the message to whoever started the bake.
    """
    pass


class UnsupportedGeometry(BakeError):
    """A mesh buffer lacks an index buffer, a normal attribute or a uv2 attribute."""
    pass


class MaterialConflict(BakeError):
    """
    A mesh material cannot receive the baked lightmap.

    Either the material is not one of the supported diffuse kinds
    (Lambert / Phong / Standard), or its light_map slot is already bound to
    some other texture.
    """
    pass


class CapacityExceeded(BakeError):
    """A mesh has more faces than fit in its MAX_ITEM_FACES id range."""
    pass


class DeviceFailure(BakeError):
    """The probe render or its read-back failed. Fatal, never retried."""
    pass


class UnknownFactor(BakeError, KeyError):
    """A compositor factor name was requested that was never declared."""

    def __str__(self):
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class ConfigurationError(BakeError, ValueError):
    """BakeSettings holds a value outside its recognised range."""
    pass
