"""
Irradiance Baker — progressive static lightmap baking.

This is the top-level package for the Irradiance Baker library. Given meshes
that carry a secondary UV channel (uv2) reserved for lightmap placement, it
bakes a texture where each texel holds an estimate of the incident diffuse
light at the matching surface point.

The work is split across three core components that live in core/:
    atlas_mapper          — uv2 layout → texel-to-surface lookup (AtlasMap)
    irradiance_renderer   — one hemisphere probe per texel per tick
    compositor            — blends per-factor buffers into one output texture

The version string below is the single source of truth for the package's
version number, referenced by pyproject.toml.
"""

__version__ = "0.1.0"
