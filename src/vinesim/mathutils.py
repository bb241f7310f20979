"""Vector, quaternion and 3x3 matrix helpers.

Vectors are float arrays of shape (3,), quaternions are ``(w, x, y, z)``
arrays and matrices are (3, 3) arrays.
"""

from __future__ import annotations

import numpy as np

EPSILON = 1e-4

WORLD_UP = np.array([0.0, 1.0, 0.0])
WORLD_X = np.array([1.0, 0.0, 0.0])
LOCAL_FORWARD = np.array([0.0, 0.0, 1.0])


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> np.ndarray:
    return np.array([x, y, z], dtype=np.float64)


def as_vec3(value) -> np.ndarray:
    return np.asarray(value, dtype=np.float64).reshape(3).copy()


def normalize(vector: np.ndarray) -> np.ndarray:
    """Return a unit vector, or the zero vector when ``vector`` has no length."""

    length = float(np.linalg.norm(vector))
    if length < 1e-12:
        return np.zeros(3)
    return vector / length


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def angle_between(a: np.ndarray, b: np.ndarray) -> float:
    a_unit = normalize(a)
    b_unit = normalize(b)
    return float(np.arccos(clamp(float(np.dot(a_unit, b_unit)), -1.0, 1.0)))


def is_finite(value: np.ndarray | None) -> bool:
    return value is None or bool(np.all(np.isfinite(value)))


def mat3_add(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.asarray(a, dtype=np.float64) + np.asarray(b, dtype=np.float64)


def quat_identity() -> np.ndarray:
    return np.array([1.0, 0.0, 0.0, 0.0])


def quat_normalize(q: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(q))
    if norm < 1e-12:
        return quat_identity()
    return q / norm


def quat_conjugate(q: np.ndarray) -> np.ndarray:
    return np.array([q[0], -q[1], -q[2], -q[3]])


def quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Hamilton product ``a * b`` (apply ``b`` first, then ``a``)."""

    aw, ax, ay, az = a
    bw, bx, by, bz = b
    return np.array(
        [
            aw * bw - ax * bx - ay * by - az * bz,
            aw * bx + ax * bw + ay * bz - az * by,
            aw * by - ax * bz + ay * bw + az * bx,
            aw * bz + ax * by - ay * bx + az * bw,
        ]
    )


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    unit = normalize(axis)
    if not unit.any():
        return quat_identity()
    half = angle / 2.0
    return np.concatenate(([np.cos(half)], unit * np.sin(half)))


def quat_to_matrix(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def quat_rotate(q: np.ndarray, vector: np.ndarray) -> np.ndarray:
    return quat_to_matrix(q) @ vector


def quat_from_matrix(m: np.ndarray) -> np.ndarray:
    """Unit quaternion of a proper rotation matrix (Shepperd's method)."""

    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        s = 2.0 * np.sqrt(trace + 1.0)
        q = [0.25 * s, (m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s]
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
        q = [(m[2, 1] - m[1, 2]) / s, 0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s]
    elif m[1, 1] > m[2, 2]:
        s = 2.0 * np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
        q = [(m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s]
    else:
        s = 2.0 * np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        q = [(m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s]
    return quat_normalize(np.array(q, dtype=np.float64))


def quat_nlerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    """Normalized lerp from ``a`` towards ``b`` along the shorter arc."""

    if float(np.dot(a, b)) < 0.0:
        b = -b
    return quat_normalize(a + (b - a) * t)


def polar_decomposition(matrix: np.ndarray) -> np.ndarray:
    """Nearest pure rotation to ``matrix``, computed as ``U @ Vt`` from its SVD.

    The singular values are discarded. When ``U @ Vt`` is a reflection the
    column of ``U`` paired with the smallest singular value is flipped.
    """

    u, _, vt = np.linalg.svd(np.asarray(matrix, dtype=np.float64))
    rotation = u @ vt
    if np.linalg.det(rotation) < 0.0:
        u[:, -1] *= -1.0
        rotation = u @ vt
    return rotation


def triangle_normal(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    return normalize(np.cross(b - a, c - a))


def smooth_lerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    s = t * t * (3.0 - 2.0 * t)
    return a + (b - a) * s


def project_onto_plane(vector: np.ndarray, normal: np.ndarray) -> np.ndarray:
    return vector - normal * float(np.dot(vector, normal))


def any_perpendicular(direction: np.ndarray) -> np.ndarray:
    perpendicular = np.cross(direction, WORLD_UP)
    if np.dot(perpendicular, perpendicular) < EPSILON:
        perpendicular = np.cross(direction, WORLD_X)
    return normalize(perpendicular)


def random_perpendicular(direction: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Random unit vector perpendicular to ``direction``."""

    if not normalize(direction).any():
        raise ValueError("direction must be non-zero")
    while True:
        candidate = normalize(rng.uniform(-1.0, 1.0, size=3))
        perpendicular = np.cross(direction, candidate)
        if np.dot(perpendicular, perpendicular) >= EPSILON:
            return normalize(perpendicular)


def closest_point_on_triangle(
    point: np.ndarray, a: np.ndarray, b: np.ndarray, c: np.ndarray
) -> np.ndarray:
    """Closest point to ``point`` on triangle ``abc`` (Voronoi region test)."""

    ab = b - a
    ac = c - a
    ap = point - a
    d1 = float(np.dot(ab, ap))
    d2 = float(np.dot(ac, ap))
    if d1 <= 0.0 and d2 <= 0.0:
        return a.copy()

    bp = point - b
    d3 = float(np.dot(ab, bp))
    d4 = float(np.dot(ac, bp))
    if d3 >= 0.0 and d4 <= d3:
        return b.copy()

    vc = d1 * d4 - d3 * d2
    if vc <= 0.0 and d1 >= 0.0 and d3 <= 0.0:
        denominator = d1 - d3
        v = d1 / denominator if denominator != 0.0 else 0.0
        return a + ab * v

    cp = point - c
    d5 = float(np.dot(ab, cp))
    d6 = float(np.dot(ac, cp))
    if d6 >= 0.0 and d5 <= d6:
        return c.copy()

    vb = d5 * d2 - d1 * d6
    if vb <= 0.0 and d2 >= 0.0 and d6 <= 0.0:
        denominator = d2 - d6
        w = d2 / denominator if denominator != 0.0 else 0.0
        return a + ac * w

    va = d3 * d6 - d5 * d4
    if va <= 0.0 and (d4 - d3) >= 0.0 and (d5 - d6) >= 0.0:
        denominator = (d4 - d3) + (d5 - d6)
        w = (d4 - d3) / denominator if denominator != 0.0 else 0.0
        return b + (c - b) * w

    total = va + vb + vc
    if total == 0.0:
        # zero-area triangle
        return a.copy()
    v = vb / total
    w = vc / total
    return a + ab * v + ac * w


def quat_between(source: np.ndarray, target: np.ndarray) -> np.ndarray:
    """Shortest rotation taking direction ``source`` onto direction ``target``."""

    a = normalize(source)
    b = normalize(target)
    cosine = float(np.dot(a, b))
    if cosine < -1.0 + 1e-9:
        return quat_from_axis_angle(any_perpendicular(a), np.pi)
    return quat_normalize(np.concatenate(([1.0 + cosine], np.cross(a, b))))
