"""
Off-screen model render process.

Run as ``python -m rodin_worker.render_child MODEL_REF``. Talks JSON lines:

    stdout  {"event": "load"}                       model is ready
    stdin   {"command": "capture", "path": ..., "format": "png"}
    stdout  {"event": "captured", "path": ...}
    stdout  {"event": "error", "stage": "load"|"capture", "message": ...}

Drawing uses matplotlib with the Agg backend so it works headless, with
no GPU and no display.
"""

from __future__ import annotations

import io
import json
import os
import sys
from pathlib import Path
from urllib.parse import unquote, urlparse

import numpy as np
import requests
import trimesh

IMAGE_SIZE_PX = 512
DPI = 100
# Matches the viewer defaults: camera-orbit="-30deg 75deg", i.e. 15 deg above the horizon.
CAMERA_AZIM_DEG = -30.0
CAMERA_ELEV_DEG = 90.0 - 75.0
MAX_FACES = 20000
BASE_COLOR = np.array([0.72, 0.72, 0.74])
LIGHT_DIR = np.array([0.4, -0.5, 0.75])


def load_model(model_ref: str) -> trimesh.Trimesh:
    """Load a mesh from a local path, ``file://`` URL or http(s) URL."""
    parsed = urlparse(model_ref)
    if parsed.scheme in ("http", "https"):
        resp = requests.get(model_ref, timeout=60)
        resp.raise_for_status()
        file_type = os.path.splitext(parsed.path)[1].lstrip(".") or "glb"
        loaded = trimesh.load(io.BytesIO(resp.content), file_type=file_type, force="mesh")
    else:
        path = unquote(parsed.path) if parsed.scheme == "file" else model_ref
        loaded = trimesh.load(path, force="mesh")

    if not isinstance(loaded, trimesh.Trimesh) or len(loaded.faces) == 0:
        raise ValueError(f"No renderable geometry in {model_ref}")
    return loaded


def _shaded_colors(mesh: trimesh.Trimesh, face_ids: np.ndarray) -> np.ndarray:
    light = LIGHT_DIR / np.linalg.norm(LIGHT_DIR)
    normals = mesh.face_normals[face_ids]
    intensity = np.clip(np.abs(normals @ light), 0.0, 1.0) * 0.7 + 0.3
    rgb = np.clip(BASE_COLOR[None, :] * intensity[:, None], 0.0, 1.0)
    return np.hstack([rgb, np.ones((len(rgb), 1))])


def capture(mesh: trimesh.Trimesh, output_path: str, image_format: str) -> str:
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    from mpl_toolkits.mplot3d.art3d import Poly3DCollection

    face_ids = np.arange(len(mesh.faces))
    if len(face_ids) > MAX_FACES:
        face_ids = face_ids[:: int(np.ceil(len(face_ids) / MAX_FACES))]

    # glTF is Y-up; matplotlib's 3D axes are Z-up.
    v = mesh.vertices[:, [0, 2, 1]]
    size_in = IMAGE_SIZE_PX / DPI
    fig = plt.figure(figsize=(size_in, size_in), dpi=DPI)
    ax = fig.add_subplot(111, projection="3d")
    ax.add_collection3d(Poly3DCollection(
        v[mesh.faces[face_ids]],
        facecolors=_shaded_colors(mesh, face_ids),
        edgecolors="none",
        linewidths=0.0,
    ))

    mins, maxs = v.min(axis=0), v.max(axis=0)
    center = (mins + maxs) * 0.5
    radius = max(float(np.max(maxs - mins)) * 0.55, 1e-6)
    ax.set_xlim(center[0] - radius, center[0] + radius)
    ax.set_ylim(center[1] - radius, center[1] + radius)
    ax.set_zlim(center[2] - radius, center[2] + radius)
    ax.view_init(elev=CAMERA_ELEV_DEG, azim=CAMERA_AZIM_DEG)
    ax.set_axis_off()
    fig.subplots_adjust(left=0, right=1, bottom=0, top=1)

    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(str(out), format=image_format, dpi=DPI)
    plt.close(fig)
    return str(out.resolve())


def _emit(**payload) -> None:
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def main(argv=None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1:
        _emit(event="error", stage="load", message="usage: render_child MODEL_REF")
        return 2

    try:
        mesh = load_model(args[0])
    except Exception as exc:
        _emit(event="error", stage="load", message=f"Model failed to load: {exc}")
        return 1
    _emit(event="load", faces=int(len(mesh.faces)))

    for line in sys.stdin:
        try:
            command = json.loads(line)
        except json.JSONDecodeError:
            continue
        if command.get("command") != "capture":
            continue
        try:
            path = capture(mesh, command["path"], command.get("format", "png"))
        except Exception as exc:
            _emit(event="error", stage="capture", message=f"Capture failed: {exc}")
            return 1
        _emit(event="captured", path=path)
        return 0
    return 1


if __name__ == "__main__":
    sys.exit(main())
