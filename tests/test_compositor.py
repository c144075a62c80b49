"""Tests for additive compositing of factor buffers."""

import numpy as np
import pytest

from irradiance_baker.core.compositor import Compositor
from irradiance_baker.core.errors import UnknownFactor
from irradiance_baker.core.settings import TextureFilter, TickStatus


def test_base_plus_black_factor_is_exact():
    """Base (1,1,1) + factor (0,0,0) × 2 composites to exactly (1,1,1)."""
    compositor = Compositor(4, 4, {"sun": 2.0})
    compositor.get_buffer().fill((1.0, 1.0, 1.0))
    compositor.get_buffer("sun").fill((0.0, 0.0, 0.0))

    assert compositor.tick() == TickStatus.COMPOSITED

    output = compositor.output.data
    assert np.array_equal(output[:, :, :3], np.ones((4, 4, 3), dtype=np.float32))
    assert np.all(output[:, :, 3] == 1.0)


def test_layers_are_scaled_and_summed():
    compositor = Compositor(2, 2, {"sun": 2.0, "lamp": 0.5})
    compositor.get_buffer().fill((0.1, 0.2, 0.3))
    compositor.get_buffer("sun").fill((0.25, 0.0, 0.0))
    compositor.get_buffer("lamp").fill((0.0, 0.0, 1.0))

    compositor.tick()

    np.testing.assert_allclose(compositor.output.data[0, 0, :3], [0.6, 0.2, 0.8], rtol=1e-6)


def test_multiplier_change_applies_on_next_tick():
    compositor = Compositor(2, 2, {"sun": 1.0})
    compositor.get_buffer("sun").fill((1.0, 1.0, 1.0))
    compositor.tick()
    np.testing.assert_allclose(compositor.output.data[:, :, :3], 1.0)

    compositor.set_multiplier("sun", 3.0)
    # Not applied until the compositor ticks again.
    np.testing.assert_allclose(compositor.output.data[:, :, :3], 1.0)

    compositor.tick()
    np.testing.assert_allclose(compositor.output.data[:, :, :3], 3.0)
    assert compositor.get_multiplier("sun") == 3.0


def test_output_identity_is_stable():
    compositor = Compositor(2, 2, {"sun": 1.0})
    output = compositor.output
    data = output.data

    compositor.tick()
    compositor.tick()

    assert compositor.output is output
    assert compositor.output.data is data
    assert output.version == 2


def test_empty_factor_set_composites_base_only():
    compositor = Compositor(2, 2)
    compositor.get_buffer().fill((0.5, 0.5, 0.5))
    compositor.tick()

    assert compositor.factor_names == []
    assert len(compositor.layers) == 1
    np.testing.assert_allclose(compositor.output.data[:, :, :3], 0.5)


def test_unknown_factor_raises():
    compositor = Compositor(2, 2, {"sun": 1.0})

    with pytest.raises(UnknownFactor):
        compositor.get_buffer("moon")
    with pytest.raises(UnknownFactor):
        compositor.set_multiplier("moon", 2.0)
    # Also catchable as a KeyError.
    with pytest.raises(KeyError):
        compositor.get_multiplier("moon")


def test_filter_modes():
    compositor = Compositor(2, 2, texture_filter=TextureFilter.NEAREST)
    assert compositor.output.texture_filter == TextureFilter.NEAREST
    assert Compositor(2, 2).output.texture_filter == TextureFilter.LINEAR
    # Intermediate buffers always sample with nearest filtering.
    assert compositor.get_buffer().texture.texture_filter == TextureFilter.NEAREST


def test_layer_order_is_base_then_declaration_order():
    compositor = Compositor(2, 2, {"sun": 1.0, "lamp": 1.0})
    assert [layer.name for layer in compositor.layers] == [None, "sun", "lamp"]
