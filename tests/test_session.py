"""End-to-end tests of a BakeSession driven with a fake light scene."""

import numpy as np
import pytest
from PIL import Image

from irradiance_baker.core.errors import ConfigurationError, MaterialConflict, UnknownFactor
from irradiance_baker.core.scene import BasicMaterial, LambertMaterial, Mesh, plane_buffer
from irradiance_baker.core.session import (
    COMPOSITOR_TASK,
    WORKBENCH_TASK,
    BakeSession,
    atlas_visualisation,
    renderer_task_name,
)
from irradiance_baker.core.settings import BakeSettings, TickStatus


@pytest.fixture
def settings():
    return BakeSettings(lightmap_width=8, lightmap_height=8, factors={"sun": 2.0},
                        probe_size=2, seed=1)


@pytest.fixture
def scene(fake_scene_factory):
    return fake_scene_factory(value={None: 0.25, "sun": 0.5})


@pytest.fixture
def half_quad():
    """A plane mapped onto the left half of the atlas."""
    return Mesh(plane_buffer(uv2_rect=(0.0, 0.0, 0.5, 1.0)), LambertMaterial(), name="half")


def test_task_order(settings, scene):
    session = BakeSession(settings, scene)
    assert session.scheduler.task_names == [
        WORKBENCH_TASK, renderer_task_name(None), renderer_task_name("sun"), COMPOSITOR_TASK,
    ]
    assert renderer_task_name(None) == "renderer:base"


def test_frames_before_start_are_not_ready(settings, scene):
    session = BakeSession(settings, scene)
    statuses = session.step_frame()

    assert statuses[renderer_task_name(None)] == TickStatus.NOT_READY
    assert statuses[COMPOSITOR_TASK] == TickStatus.COMPOSITED
    assert not session.output_texture.data[:, :, :3].any()
    assert scene.calls == []


def test_one_pass_composites_all_factors(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    output = session.output_texture

    frames = session.run_passes(1)

    atlas_map = session.atlas_map
    assert frames == atlas_map.occupied_texel_count
    assert half_quad.material.light_map is output
    assert session.output_texture is output

    covered = atlas_map.coverage_mask
    np.testing.assert_allclose(output.data[covered, :3], 0.25 + 0.5 * 2.0)
    np.testing.assert_allclose(output.data[~covered, :3], 0.0)
    assert np.all(output.data[:, :, 3] == 1.0)
    assert all(renderer.passes_completed == 1 for renderer in session.renderers)


def test_multiplier_changes_show_next_frame(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    session.run_passes(1)

    session.set_factor_multiplier("sun", 0.0)
    session.step_frame()

    covered = session.atlas_map.coverage_mask
    np.testing.assert_allclose(session.output_texture.data[covered, :3], 0.25)
    with pytest.raises(UnknownFactor):
        session.set_factor_multiplier("moon", 1.0)


def test_renderer_lookup(settings, scene):
    session = BakeSession(settings, scene)
    assert session.renderer().factor_name is None
    assert session.renderer("sun").buffer is session.compositor.get_buffer("sun")
    with pytest.raises(UnknownFactor):
        session.renderer("moon")


def test_restart_resets_renderers(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    session.start()
    for _ in range(3):
        session.step_frame()

    other = Mesh(plane_buffer(uv2_rect=(0.5, 0.0, 1.0, 1.0)), LambertMaterial())
    session.register_mesh(other)
    workbench = session.start()

    assert workbench.id == 2
    for renderer in session.renderers:
        assert renderer.workbench is workbench
        assert renderer.buffer.cursor.as_tuple() == (0, 0)
    assert session.atlas_map.coverage_mask.all()


def test_failed_restart_keeps_baking_previous_session(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    first = session.start()
    session.step_frame()

    session.register_mesh(Mesh(plane_buffer(), BasicMaterial()))
    with pytest.raises(MaterialConflict):
        session.start()

    assert session.workbench is first
    assert session.renderer().workbench is first
    assert session.renderer().buffer.cursor.as_tuple() != (0, 0)


def test_auto_start(scene, half_quad):
    now = [0.0]
    settings = BakeSettings(lightmap_width=8, lightmap_height=8, auto_start_delay_ms=50,
                            probe_size=2)
    session = BakeSession(settings, scene, clock=lambda: now[0])
    session.register_mesh(half_quad)

    assert session.step_frame()[WORKBENCH_TASK] == TickStatus.IDLE
    now[0] = 0.1
    statuses = session.step_frame()

    # The snapshot taken this frame is baked in the same frame.
    assert statuses[WORKBENCH_TASK] == TickStatus.STARTED
    assert statuses[renderer_task_name(None)] == TickStatus.BAKED


def test_invalid_settings_rejected(scene):
    with pytest.raises(ConfigurationError):
        BakeSession(BakeSettings(lightmap_width=0), scene)


def test_close_cancels_and_releases(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    session.start()

    session.close()

    assert scene.released
    assert session.step_frame() == {}
    assert session.run_passes(1) == 0


def test_empty_atlas_run_returns_immediately(settings, scene):
    messages = []
    session = BakeSession(settings, scene, on_progress=messages.append)
    assert session.run_passes(1) == 0
    assert any("Nothing to bake" in message for message in messages)


def test_run_passes_frame_limit(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    with pytest.raises(RuntimeError):
        session.run_passes(1, max_frames=3)


def test_export_diagnostics(settings, scene, half_quad, tmp_path):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    session.run_passes(1)

    workspace = session.export_diagnostics(base_dir=tmp_path)

    assert workspace.root.parent == tmp_path
    assert workspace.root.name.endswith("_wb1")
    for path in (workspace.atlas, workspace.output,
                 workspace.factors / "base.png", workspace.factors / "sun.png"):
        assert path.exists()
        with Image.open(path) as image:
            assert image.size == (8, 8)


def test_atlas_visualisation_marks_coverage(settings, scene, half_quad):
    session = BakeSession(settings, scene)
    session.register_mesh(half_quad)
    session.start()

    texture = atlas_visualisation(session.atlas_map)

    covered = session.atlas_map.coverage_mask
    assert np.all(texture.data[covered, 3] == 1.0)
    assert np.all(texture.data[covered, :3] > 0.0)
    assert not texture.data[~covered].any()
