"""
Bake configuration — constants, status codes and presets.

This module gathers every tunable of the bake in one place so neither the
renderer nor the compositor hard-codes sizes or names:

    TickStatus        — what a single cooperative tick did
    RendererState     — coarse state of a progressive renderer
    AccumulationMode  — how repeated probe results for a texel are combined
    TextureFilter     — sampling filter of a texture resource
    QUALITY_PRESETS   — lightmap resolution per quality tier
    BakeSettings      — the recognised configuration surface of one bake

Status and mode values are plain string constants grouped in classes (rather
than enums) so they compare directly against strings in callbacks and logs.
"""

from dataclasses import dataclass, field

from irradiance_baker.core.errors import ConfigurationError


class TickStatus:
    """
    String constants returned by every tick() in the pipeline.

    NOT_READY     — nothing to do yet (atlas not mapped); no state was touched.
    IDLE          — the task ran but had no work this tick (e.g. waiting for
                    the auto-start delay to elapse).
    BAKED         — one texel was rendered and written.
    PASS_COMPLETE — one texel was written and it finished a full pass over the
                    atlas; the buffer was promoted and the cursor wrapped.
    STARTED       — a new Workbench snapshot was taken and mapped.
    COMPOSITED    — the compositor refreshed its output texture.
    """
    NOT_READY = "not_ready"
    IDLE = "idle"
    BAKED = "baked"
    PASS_COMPLETE = "pass_complete"
    STARTED = "started"
    COMPOSITED = "composited"


class RendererState:
    """Coarse state of a ProgressiveIrradianceRenderer."""
    IDLE = "idle"
    FILLING = "filling"


class AccumulationMode:
    """
    How a renderer combines repeated visits to the same texel.

    OVERWRITE is the baseline: every visit replaces the texel with the newest
    single-probe estimate, so per-texel noise does not converge over passes.
    AVERAGE keeps a per-texel visit count and stores the running mean.
    """
    OVERWRITE = "overwrite"
    AVERAGE = "average"


ACCUMULATION_MODES = (AccumulationMode.OVERWRITE, AccumulationMode.AVERAGE)


class TextureFilter:
    """Sampling filter of a Texture (mirrors GL nearest / linear filtering)."""
    NEAREST = "nearest"
    LINEAR = "linear"


TEXTURE_FILTERS = (TextureFilter.NEAREST, TextureFilter.LINEAR)


# ---------------------------------------------------------------------------
# Probe constants
# ---------------------------------------------------------------------------

# Side length of the square offscreen target each probe is rendered into.
# 32×32 = 1024 rays per texel keeps every tick cheap enough to run once per
# display frame.
PROBE_TARGET_SIZE = 32

# A full near-180° field of view works poorly with a planar projection
# (samples bunch up at the edges), so the probe uses 90°.
PROBE_FOV_DEGREES = 90.0
PROBE_NEAR = 0.05
PROBE_FAR = 10.0

# The probe starts slightly above the surface along its normal so that the
# surface it sits on does not shadow itself.
PROBE_NORMAL_OFFSET = 1e-3


# ---------------------------------------------------------------------------
# Lightmap presets
# ---------------------------------------------------------------------------

DEFAULT_LIGHTMAP_SIZE = 128

# Lightmap resolution per quality tier. Every extra texel is one more probe
# render per pass, so pass time grows with the square of the size:
#   Preview  (64×64)   → ~4K probes per pass, converges in seconds
#   Standard (128×128) → ~16K probes per pass (this default)
#   High     (256×256) → ~65K probes per pass, for final bakes only
QUALITY_PRESETS = {
    "Preview (64×64)": 64,
    "Standard (128×128)": 128,
    "High (256×256)": 256,
}


@dataclass
class BakeSettings:
    """
    Recognised configuration options of one bake.

    lightmap_width / lightmap_height — lightmap size in texels.
    factors             — factor name → intensity multiplier. Each factor gets
                          its own renderer and accumulation buffer; lights are
                          assigned to a factor through their `factor` field.
    texture_filter      — filter of the composited output texture.
    auto_start_delay_ms — optional delay before the first Workbench snapshot
                          is taken automatically (None = manual start only).
    accumulation_mode   — see AccumulationMode.
    probe_size          — probe render target side length in pixels.
    seed                — seed for the probe up-vector randomisation
                          (None = nondeterministic).
    """
    lightmap_width: int = DEFAULT_LIGHTMAP_SIZE
    lightmap_height: int = DEFAULT_LIGHTMAP_SIZE
    factors: dict[str, float] = field(default_factory=dict)
    texture_filter: str = TextureFilter.LINEAR
    auto_start_delay_ms: int | None = None
    accumulation_mode: str = AccumulationMode.OVERWRITE
    probe_size: int = PROBE_TARGET_SIZE
    seed: int | None = None

    @classmethod
    def from_preset(cls, preset: str, **overrides) -> "BakeSettings":
        """
        Build settings for one of the QUALITY_PRESETS labels.

        Unknown labels fall back to DEFAULT_LIGHTMAP_SIZE, the same way the
        preset lookup treats an unrecognised tier elsewhere in the app.
        """
        size = QUALITY_PRESETS.get(preset, DEFAULT_LIGHTMAP_SIZE)
        settings = cls(lightmap_width=size, lightmap_height=size, **overrides)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError if any option is outside its range."""
        if self.lightmap_width <= 0 or self.lightmap_height <= 0:
            raise ConfigurationError(
                f"Lightmap size must be positive, got "
                f"{self.lightmap_width}×{self.lightmap_height}"
            )
        if self.probe_size <= 0:
            raise ConfigurationError(f"Probe size must be positive, got {self.probe_size}")
        if self.texture_filter not in TEXTURE_FILTERS:
            raise ConfigurationError(
                f"Unknown texture filter '{self.texture_filter}'. "
                f"Expected one of: {', '.join(TEXTURE_FILTERS)}"
            )
        if self.accumulation_mode not in ACCUMULATION_MODES:
            raise ConfigurationError(
                f"Unknown accumulation mode '{self.accumulation_mode}'. "
                f"Expected one of: {', '.join(ACCUMULATION_MODES)}"
            )
        if self.auto_start_delay_ms is not None and self.auto_start_delay_ms < 0:
            raise ConfigurationError("Auto-start delay cannot be negative")
        for name in self.factors:
            if not name:
                raise ConfigurationError("Factor names must be non-empty strings")
            if name == "base":
                raise ConfigurationError("'base' names the base buffer and cannot be a factor")
