"""
Homography estimation.

Fits the 3x3 projective transform from camera pixels to board millimetres
using the Direct Linear Transform, with an optional RANSAC wrapper for
correspondence sets that contain outliers (mis-clicked or mis-detected
calibration points).

All matrices are float64 numpy arrays of shape (3, 3), row-major, mapping
[x, y, 1] in pixel space to homogeneous board coordinates.
"""
import logging
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from dartscore.core.types import Correspondence, to_point

logger = logging.getLogger("dartscore.homography")

# Below this the system is treated as rank deficient (relative to the largest singular value)
RANK_TOLERANCE = 1e-10
# Largest acceptable condition number of the normalised homography
MAX_CONDITION = 1e10
COLLINEAR_TOLERANCE = 1e-8


class GeometryError(ValueError):
    """Calibration geometry cannot produce a usable homography."""


class DegenerateGeometryError(GeometryError):
    """Too few, collinear or otherwise degenerate correspondences."""


class RansacResult(NamedTuple):
    homography: Optional[np.ndarray]
    inliers: List[bool]
    error_px: Optional[float]


def as_homography(H) -> np.ndarray:
    """Coerce a 3x3 nested sequence or 9-element row-major sequence to an array."""
    arr = np.asarray(H, dtype=np.float64)
    if arr.shape == (9,):
        arr = arr.reshape(3, 3)
    if arr.shape != (3, 3):
        raise GeometryError(f"Homography must be 3x3, got shape {arr.shape}")
    return arr


def normalize_homography(H: np.ndarray) -> np.ndarray:
    """Scale so H[2, 2] == 1 when it is not (close to) zero."""
    H = as_homography(H)
    if abs(H[2, 2]) > 1e-12:
        return H / H[2, 2]
    return H.copy()


def matmul3(a, b) -> np.ndarray:
    return as_homography(a) @ as_homography(b)


def invert_homography(H) -> np.ndarray:
    """Inverse transform. Raises GeometryError for a singular matrix."""
    H = as_homography(H)
    if not np.all(np.isfinite(H)):
        raise GeometryError("Homography contains non-finite values")
    scale = float(np.abs(H).max())
    if scale == 0.0 or abs(np.linalg.det(H / scale)) < 1e-12:
        raise GeometryError("Singular homography")
    return np.linalg.inv(H)


def rotate_homography(H, angle_radians: float) -> np.ndarray:
    """Rotate the board-side output of H counter-clockwise by angle_radians."""
    c = np.cos(angle_radians)
    s = np.sin(angle_radians)
    R = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
    return R @ as_homography(H)


def translate_homography(H, tx: float, ty: float) -> np.ndarray:
    """Translate the board-side output of H by (tx, ty)."""
    T = np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])
    return T @ as_homography(H)


def project_points(H, points: np.ndarray) -> np.ndarray:
    """
    Apply H to an (n, 2) array of points.

    Rows whose homogeneous denominator vanishes come back as NaN.
    """
    H = as_homography(H)
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    homog = np.column_stack([pts, np.ones(len(pts))]) @ H.T
    w = homog[:, 2]
    out = np.full((len(pts), 2), np.nan)
    ok = np.abs(w) >= 1e-10
    out[ok] = homog[ok, :2] / w[ok, None]
    return out


def _split(correspondences: Iterable) -> Tuple[np.ndarray, np.ndarray]:
    pairs = [Correspondence(to_point(p), to_point(b)) for p, b in correspondences]
    if not pairs:
        return np.empty((0, 2)), np.empty((0, 2))
    src = np.array([p.pixel for p in pairs], dtype=np.float64)
    dst = np.array([p.board for p in pairs], dtype=np.float64)
    return src, dst


def _normalize_points(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Hartley normalisation: centroid to origin, mean distance sqrt(2)."""
    centroid = points.mean(axis=0)
    centred = points - centroid
    mean_dist = np.sqrt((centred ** 2).sum(axis=1)).mean()
    if mean_dist < 1e-12:
        raise DegenerateGeometryError("All correspondence points coincide")
    s = np.sqrt(2.0) / mean_dist
    T = np.array([
        [s, 0.0, -s * centroid[0]],
        [0.0, s, -s * centroid[1]],
        [0.0, 0.0, 1.0]
    ])
    return T, centred * s


def _has_collinear_triple(points: np.ndarray) -> bool:
    n = len(points)
    for i in range(n):
        for j in range(i + 1, n):
            for k in range(j + 1, n):
                a = points[j] - points[i]
                b = points[k] - points[i]
                if abs(a[0] * b[1] - a[1] * b[0]) < COLLINEAR_TOLERANCE:
                    return True
    return False


def _all_collinear(points: np.ndarray) -> bool:
    sv = np.linalg.svd(points - points.mean(axis=0), compute_uv=False)
    return sv[0] < 1e-12 or sv[1] / sv[0] < COLLINEAR_TOLERANCE


def compute_homography_dlt(correspondences: Sequence) -> np.ndarray:
    """
    Fit the pixel -> board homography by Direct Linear Transform.

    Args:
        correspondences: Iterable of (pixel_point, board_point) pairs; at least 4

    Returns:
        3x3 homography normalised so H[2, 2] == 1

    Raises:
        DegenerateGeometryError: fewer than 4 points, collinear points,
            rank-deficient system or singular result
    """
    src, dst = _split(correspondences)
    n = len(src)
    if n < 4:
        raise DegenerateGeometryError(f"Need at least 4 correspondences, got {n}")
    if not (np.all(np.isfinite(src)) and np.all(np.isfinite(dst))):
        raise DegenerateGeometryError("Correspondences contain non-finite coordinates")

    T_src, src_n = _normalize_points(src)
    T_dst, dst_n = _normalize_points(dst)

    if _all_collinear(src_n) or _all_collinear(dst_n):
        raise DegenerateGeometryError("Correspondence points are collinear")
    # A minimal set has no redundancy: any collinear triple leaves H undetermined
    if n == 4 and (_has_collinear_triple(src_n) or _has_collinear_triple(dst_n)):
        raise DegenerateGeometryError("Three of the four correspondence points are collinear")

    A = np.zeros((2 * n, 9), dtype=np.float64)
    for i, ((x, y), (u, v)) in enumerate(zip(src_n, dst_n)):
        A[2 * i] = [-x, -y, -1.0, 0.0, 0.0, 0.0, u * x, u * y, u]
        A[2 * i + 1] = [0.0, 0.0, 0.0, -x, -y, -1.0, v * x, v * y, v]

    _u, s, vt = np.linalg.svd(A, full_matrices=True)
    if s[7] <= RANK_TOLERANCE * s[0]:
        raise DegenerateGeometryError("Correspondence system is rank deficient")

    Hn = vt[-1].reshape(3, 3)
    if not np.all(np.isfinite(Hn)) or np.linalg.cond(Hn) > MAX_CONDITION:
        raise DegenerateGeometryError("Fitted homography is singular")

    H = np.linalg.inv(T_dst) @ Hn @ T_src
    return normalize_homography(H)


def reprojection_errors(correspondences: Sequence, H) -> np.ndarray:
    """Per-correspondence pixel distance between measured and reprojected points."""
    src, dst = _split(correspondences)
    if len(src) == 0:
        return np.empty(0)
    projected = project_points(invert_homography(H), dst)
    errors = np.sqrt(((projected - src) ** 2).sum(axis=1))
    return np.where(np.isfinite(errors), errors, np.inf)


def rms_error(correspondences: Sequence, H) -> float:
    """
    Root-mean-square calibration error in pixels.

    Each board point is mapped back into the image through inv(H) and
    compared with the pixel point that was measured for it.
    """
    errors = reprojection_errors(correspondences, H)
    if len(errors) == 0:
        return 0.0
    return float(np.sqrt(np.mean(errors ** 2)))


def board_rms_error(correspondences: Sequence, H) -> float:
    """Root-mean-square calibration error in board millimetres."""
    src, dst = _split(correspondences)
    if len(src) == 0:
        return 0.0
    projected = project_points(H, src)
    errors = ((projected - dst) ** 2).sum(axis=1)
    if not np.all(np.isfinite(errors)):
        return float("inf")
    return float(np.sqrt(np.mean(errors)))


def ransac_homography(
    correspondences: Sequence,
    threshold_px: float = 8.0,
    max_iter: int = 500,
    min_inliers: int = 4,
    rng: Optional[np.random.Generator] = None
) -> RansacResult:
    """
    Robust homography fit.

    Repeatedly fits minimal 4-point samples, counts correspondences that
    reproject within threshold_px, refits on the inliers and keeps the model
    with the most inliers (lowest error breaks ties).

    Returns:
        RansacResult; homography is None when no sample reached min_inliers
    """
    pairs = [Correspondence(to_point(p), to_point(b)) for p, b in correspondences]
    n = len(pairs)
    if n < 4:
        raise DegenerateGeometryError(f"Need at least 4 correspondences, got {n}")
    rng = rng if rng is not None else np.random.default_rng()

    best_H = None
    best_inliers = [False] * n
    best_count = 0
    best_error = float("inf")

    for _ in range(max_iter):
        sample = [pairs[i] for i in rng.choice(n, size=4, replace=False)]
        try:
            H_try = compute_homography_dlt(sample)
            errors = reprojection_errors(pairs, H_try)
        except GeometryError:
            continue

        inliers = [bool(e <= threshold_px) for e in errors]
        count = sum(inliers)
        if count < min_inliers:
            continue

        inlier_pairs = [p for p, keep in zip(pairs, inliers) if keep]
        try:
            H_refined = compute_homography_dlt(inlier_pairs)
            err = rms_error(inlier_pairs, H_refined)
        except GeometryError:
            continue

        if count > best_count or (count == best_count and err < best_error):
            best_H = H_refined
            best_inliers = inliers
            best_count = count
            best_error = err
            if count == n:
                break

    if best_H is None:
        logger.warning(f"[RANSAC] No consensus among {n} correspondences (threshold={threshold_px}px)")
        return RansacResult(homography=None, inliers=[False] * n, error_px=None)

    logger.debug(f"[RANSAC] {best_count}/{n} inliers, rms={best_error:.3f}px")
    return RansacResult(homography=best_H, inliers=best_inliers, error_px=best_error)
