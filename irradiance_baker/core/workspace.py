"""
Diagnostics directory manager.

Bakes happen in memory; nothing needs to touch the disk. When something looks
wrong, though, the intermediate rasters are the first thing to inspect: the
atlas map (which texel belongs to which face), each factor's accumulation
buffer and the composited output. This module creates a place to dump them.

Workspaces are timestamped and stored under ~/IrradianceBaker/diagnostics/
by default. Each workspace contains:
    atlas.png    — atlas coverage, coloured by face id
    factors/     — one PNG per accumulation buffer (base.png, <factor>.png)
    output.png   — the composited lightmap
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path


@dataclass
class WorkspacePaths:
    """
    Typed container for all paths within a diagnostics workspace.

    Every export references these named attributes instead of building paths
    with string concatenation.
    """
    root: Path      # Top-level workspace directory
    atlas: Path     # Atlas map visualisation (PNG file path)
    factors: Path   # Per-buffer PNGs directory
    output: Path    # Composited lightmap (PNG file path)


def create_workspace(base_dir: Path | None = None, session_id: int | None = None) -> WorkspacePaths:
    """
    Create a fresh, timestamped workspace with all required subdirectories.

    Args:
        base_dir:   Parent directory for workspaces. Defaults to
                    ~/IrradianceBaker/diagnostics/ if not specified.
        session_id: Optional Workbench id appended to the directory name.

    Returns:
        WorkspacePaths with all directories created on disk.

    The timestamp format (YYYYMMDD_HHMMSS) keeps workspaces sorted
    chronologically and human-readable in a file browser.
    """
    if base_dir is None:
        base_dir = Path.home() / "IrradianceBaker" / "diagnostics"

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = f"_wb{session_id}" if session_id is not None else ""
    root = Path(base_dir) / f"bake_{timestamp}{suffix}"

    paths = WorkspacePaths(
        root=root,
        atlas=root / "atlas.png",
        factors=root / "factors",
        output=root / "output.png",
    )

    # parents=True creates base_dir on first use; exist_ok=True tolerates two
    # exports within the same second.
    paths.factors.mkdir(parents=True, exist_ok=True)

    return paths
