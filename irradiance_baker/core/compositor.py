"""
Compositing of factor buffers into the final lightmap.

The compositor owns every accumulation buffer of a bake — one base buffer and
one per named factor — and a single output texture. Each tick it rebuilds the
output from scratch:

    output.rgb = Σ_layers  layer.buffer.rgb × layer.multiplier
    output.a   = 1

The base layer's multiplier is fixed at 1. Factor multipliers can be changed
at any time; the new value shows up on the next tick, with no smoothing.

The output Texture object is created once and written in place, so materials
can bind it as their light map before the first texel is ever baked.
"""

from dataclasses import dataclass

import numpy as np

from irradiance_baker.core.errors import UnknownFactor
from irradiance_baker.core.settings import TextureFilter, TickStatus
from irradiance_baker.core.textures import AccumulationBuffer, Texture


@dataclass
class CompositorLayer:
    """One additive compositing input: a buffer and its intensity multiplier."""
    name: str | None
    buffer: AccumulationBuffer
    multiplier: float = 1.0


class Compositor:
    """
    Blends the base and factor buffers into one output texture.

    Args:
        width, height:  lightmap size in texels.
        factors:        factor name → initial multiplier. The set of names is
                        fixed for the compositor's lifetime.
        texture_filter: filter mode of the output texture.
    """

    def __init__(self, width: int, height: int, factors: dict[str, float] | None = None,
                 texture_filter: str = TextureFilter.LINEAR):
        self.width = int(width)
        self.height = int(height)

        self.base_layer = CompositorLayer(None, AccumulationBuffer(width, height), 1.0)
        self._factor_layers = {
            name: CompositorLayer(name, AccumulationBuffer(width, height, name=name),
                                  float(multiplier))
            for name, multiplier in (factors or {}).items()
        }

        self.output = Texture(width, height, texture_filter, name="output")
        self._scratch = np.zeros((self.height, self.width, 3), dtype=np.float32)

    @property
    def factor_names(self) -> list[str]:
        return list(self._factor_layers)

    @property
    def layers(self) -> list[CompositorLayer]:
        """Base layer first, then factor layers in declaration order."""
        return [self.base_layer, *self._factor_layers.values()]

    def _factor_layer(self, factor_name) -> CompositorLayer:
        layer = self._factor_layers.get(factor_name)
        if layer is None:
            raise UnknownFactor(f"Unknown compositor factor: {factor_name}")
        return layer

    def get_buffer(self, factor_name: str | None = None) -> AccumulationBuffer:
        """The accumulation buffer for `factor_name` (None = base)."""
        if factor_name is None:
            return self.base_layer.buffer
        return self._factor_layer(factor_name).buffer

    def get_multiplier(self, factor_name: str) -> float:
        return self._factor_layer(factor_name).multiplier

    def set_multiplier(self, factor_name: str, multiplier: float):
        """Change a factor's intensity; takes effect on the next tick."""
        self._factor_layer(factor_name).multiplier = float(multiplier)

    def tick(self) -> str:
        """Recomposite the output texture from the current buffer contents."""
        accumulated = self._scratch
        accumulated.fill(0.0)

        for layer in self.layers:
            accumulated += layer.buffer.data[:, :, :3] * np.float32(layer.multiplier)

        output = self.output.data
        output[:, :, :3] = accumulated
        output[:, :, 3] = 1.0
        self.output.mark_dirty()
        return TickStatus.COMPOSITED
