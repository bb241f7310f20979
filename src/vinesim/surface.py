"""Anchoring surface: the closest-triangle query the growth rules rely on."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

import numpy as np
import trimesh

from .errors import SurfaceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Triangle:
    a: np.ndarray
    b: np.ndarray
    c: np.ndarray


class SurfaceQuery(Protocol):
    def closest_triangle(self, point: np.ndarray) -> Triangle:
        ...


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    return np.divide(
        numerator,
        denominator,
        out=np.zeros_like(numerator),
        where=denominator != 0.0,
    )


def _dot(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.einsum("ij,ij->i", u, v)


def closest_points_on_triangles(
    point: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray
) -> np.ndarray:
    """Vectorised closest point from ``point`` to each triangle ``(a[i], b[i], c[i])``.

    Regions are resolved in the same priority order as
    :func:`vinesim.mathutils.closest_point_on_triangle`; lower-priority
    regions are written first so that higher-priority ones overwrite them.
    """

    ab = b - a
    ac = c - a
    ap = point - a
    bp = point - b
    cp = point - c
    d1, d2 = _dot(ab, ap), _dot(ac, ap)
    d3, d4 = _dot(ab, bp), _dot(ac, bp)
    d5, d6 = _dot(ab, cp), _dot(ac, cp)
    va = d3 * d6 - d5 * d4
    vb = d5 * d2 - d1 * d6
    vc = d1 * d4 - d3 * d2

    total = va + vb + vc
    v = _safe_divide(vb, total)
    w = _safe_divide(vc, total)
    result = a + ab * v[:, None] + ac * w[:, None]
    result = np.where((total == 0.0)[:, None], a, result)

    bc_weight = _safe_divide(d4 - d3, (d4 - d3) + (d5 - d6))
    on_bc = (va <= 0.0) & ((d4 - d3) >= 0.0) & ((d5 - d6) >= 0.0)
    result = np.where(on_bc[:, None], b + (c - b) * bc_weight[:, None], result)

    ac_weight = _safe_divide(d2, d2 - d6)
    on_ac = (vb <= 0.0) & (d2 >= 0.0) & (d6 <= 0.0)
    result = np.where(on_ac[:, None], a + ac * ac_weight[:, None], result)

    at_c = (d6 >= 0.0) & (d5 <= d6)
    result = np.where(at_c[:, None], c, result)

    ab_weight = _safe_divide(d1, d1 - d3)
    on_ab = (vc <= 0.0) & (d1 >= 0.0) & (d3 <= 0.0)
    result = np.where(on_ab[:, None], a + ab * ab_weight[:, None], result)

    at_b = (d3 >= 0.0) & (d4 <= d3)
    result = np.where(at_b[:, None], b, result)

    at_a = (d1 <= 0.0) & (d2 <= 0.0)
    result = np.where(at_a[:, None], a, result)
    return result


class MeshSurface:
    """Closest-triangle queries over a triangle mesh."""

    def __init__(self, mesh: trimesh.Trimesh):
        triangles = np.asarray(mesh.triangles, dtype=np.float64)
        if triangles.ndim != 3 or len(triangles) == 0:
            raise SurfaceError("surface mesh has no triangles")
        if not np.all(np.isfinite(triangles)):
            raise SurfaceError("surface mesh has non-finite vertices")
        self.mesh = mesh
        self._a = triangles[:, 0, :]
        self._b = triangles[:, 1, :]
        self._c = triangles[:, 2, :]
        logger.info("Surface ready with %d triangles", len(triangles))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MeshSurface":
        try:
            mesh = trimesh.load(str(path), force="mesh")
        except (OSError, ValueError) as exc:
            raise SurfaceError(f"cannot load surface mesh {path}: {exc}") from exc
        return cls(mesh)

    @property
    def triangle_count(self) -> int:
        return len(self._a)

    def closest_triangle(self, point: np.ndarray) -> Triangle:
        target = np.asarray(point, dtype=np.float64)
        closest = closest_points_on_triangles(target, self._a, self._b, self._c)
        distances = np.einsum("ij,ij->i", closest - target, closest - target)
        index = int(np.argmin(distances))
        return Triangle(self._a[index].copy(), self._b[index].copy(), self._c[index].copy())


def ground_plane(size: float = 50.0, height: float = 0.0) -> MeshSurface:
    """Square ground quad of side ``size`` at ``y = height``, facing world-up."""

    half = size / 2.0
    vertices = np.array(
        [
            [-half, height, -half],
            [-half, height, half],
            [half, height, half],
            [half, height, -half],
        ]
    )
    faces = np.array([[0, 1, 2], [0, 2, 3]])
    return MeshSurface(trimesh.Trimesh(vertices=vertices, faces=faces, process=False))
