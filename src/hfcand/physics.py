"""Physics/math helpers for trajectory transport, vertexing and observables."""

from __future__ import annotations

import math
from typing import Iterable, Sequence

Vector3 = tuple[float, float, float]
Matrix3x3 = tuple[tuple[float, float, float], tuple[float, float, float], tuple[float, float, float]]
PackedCov3 = tuple[float, float, float, float, float, float]

# GeV / (kG * cm)
B2C = 0.299792458e-3

_SMALL_OMEGA = 1e-12


class CovarianceConsistencyError(ArithmeticError):
    """Raised when a projected covariance comes out negative beyond rounding."""


def sym_index(i: int, j: int) -> int:
    """Index of element `(i, j)` in a lower-triangular packed symmetric matrix."""
    if i < j:
        i, j = j, i
    return i * (i + 1) // 2 + j


def unpack_sym(packed: Sequence[float], n: int) -> list[list[float]]:
    """Expand a packed symmetric matrix into a full `n x n` nested list."""
    if len(packed) != n * (n + 1) // 2:
        raise ValueError(f"Packed symmetric matrix of size {n} needs {n * (n + 1) // 2} elements.")
    return [[float(packed[sym_index(i, j)]) for j in range(n)] for i in range(n)]


def pack_sym(mat: Sequence[Sequence[float]]) -> tuple[float, ...]:
    """Pack the lower triangle of a square matrix, symmetrizing off-diagonals."""
    n = len(mat)
    out: list[float] = []
    for i in range(n):
        for j in range(i + 1):
            out.append(0.5 * (mat[i][j] + mat[j][i]))
    return tuple(out)


def similarity(jac: Sequence[Sequence[float]], cov: Sequence[Sequence[float]]) -> list[list[float]]:
    """Return `J C J^T` for a rectangular Jacobian and a square covariance."""
    rows = len(jac)
    n = len(cov)
    jc = [[sum(jac[i][k] * cov[k][j] for k in range(n)) for j in range(n)] for i in range(rows)]
    return [[sum(jc[i][k] * jac[j][k] for k in range(n)) for j in range(rows)] for i in range(rows)]


def dot3(a: Sequence[float], b: Sequence[float]) -> float:
    """3D dot product."""
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def norm3(a: Sequence[float]) -> float:
    """Euclidean norm of a 3D vector."""
    return math.sqrt(dot3(a, a))


def sub3(a: Sequence[float], b: Sequence[float]) -> Vector3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def cross3(a: Sequence[float], b: Sequence[float]) -> Vector3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def mat_vec3(m: Sequence[Sequence[float]], v: Sequence[float]) -> Vector3:
    return (dot3(m[0], v), dot3(m[1], v), dot3(m[2], v))


def transverse_projector(direction: Sequence[float]) -> list[list[float]]:
    """Projector `I - u u^T` onto the plane orthogonal to a unit direction."""
    return [
        [(1.0 if i == j else 0.0) - direction[i] * direction[j] for j in range(3)]
        for i in range(3)
    ]


def det_3x3(a: Sequence[Sequence[float]]) -> float:
    return (
        a[0][0] * (a[1][1] * a[2][2] - a[1][2] * a[2][1])
        - a[0][1] * (a[1][0] * a[2][2] - a[1][2] * a[2][0])
        + a[0][2] * (a[1][0] * a[2][1] - a[1][1] * a[2][0])
    )


def is_singular_3x3(a: Sequence[Sequence[float]], rel_tol: float = 1e-12) -> bool:
    """Scale-aware singularity test based on the determinant over the trace."""
    scale = (abs(a[0][0]) + abs(a[1][1]) + abs(a[2][2])) / 3.0
    if scale <= 0.0:
        return True
    return abs(det_3x3(a)) <= rel_tol * scale * scale * scale


def solve_3x3(a: Sequence[Sequence[float]], b: Sequence[float]) -> Vector3 | None:
    """Solve 3x3 linear system by Gaussian elimination with pivoting."""
    m = [list(row) + [rhs] for row, rhs in zip(a, b, strict=True)]
    n = 3
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(m[r][col]))
        if abs(m[pivot][col]) < 1e-300:
            return None
        if pivot != col:
            m[col], m[pivot] = m[pivot], m[col]
        p = m[col][col]
        for j in range(col, n + 1):
            m[col][j] /= p
        for r in range(n):
            if r == col:
                continue
            factor = m[r][col]
            for j in range(col, n + 1):
                m[r][j] -= factor * m[col][j]
    return m[0][3], m[1][3], m[2][3]


def invert_3x3(a: Sequence[Sequence[float]]) -> Matrix3x3 | None:
    """Invert 3x3 matrix by Gaussian elimination. Return `None` if singular."""
    if is_singular_3x3(a):
        return None
    m = [list(row) + [1.0 if i == j else 0.0 for j in range(3)] for i, row in enumerate(a)]
    n = 3
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(m[r][col]))
        if pivot != col:
            m[col], m[pivot] = m[pivot], m[col]
        p = m[col][col]
        for j in range(col, 2 * n):
            m[col][j] /= p
        for r in range(n):
            if r == col:
                continue
            factor = m[r][col]
            for j in range(col, 2 * n):
                m[r][j] -= factor * m[col][j]
    return (
        (m[0][3], m[0][4], m[0][5]),
        (m[1][3], m[1][4], m[1][5]),
        (m[2][3], m[2][4], m[2][5]),
    )


def curvature_rate(charge: int, p: float, bz: float) -> float:
    """Turning rate (rad/cm of 3D path) of a charged trajectory in a z field."""
    if charge == 0 or bz == 0.0 or p <= 0.0:
        return 0.0
    return -charge * B2C * bz / p


def helix_point(
    origin: Sequence[float],
    direction: Sequence[float],
    omega: float,
    length: float,
) -> Vector3:
    """Position after a 3D path `length` along a helix with axis along z."""
    ux, uy, uz = direction
    phase = omega * length
    if abs(phase) < _SMALL_OMEGA:
        s = length
        c = 0.5 * omega * length * length
    else:
        s = math.sin(phase) / omega
        c = (1.0 - math.cos(phase)) / omega
    return (
        origin[0] + ux * s - uy * c,
        origin[1] + uy * s + ux * c,
        origin[2] + uz * length,
    )


def helix_direction(direction: Sequence[float], omega: float, length: float) -> Vector3:
    """Unit tangent after a 3D path `length`; only the transverse part rotates."""
    ux, uy, uz = direction
    phase = omega * length
    cp = math.cos(phase)
    sp = math.sin(phase)
    return (ux * cp - uy * sp, uy * cp + ux * sp, uz)


def lines_pca(
    points: Sequence[Sequence[float]],
    directions: Sequence[Sequence[float]],
    weights: Sequence[Sequence[Sequence[float]]] | None = None,
) -> tuple[Vector3, float, list[list[float]]] | None:
    """Point minimizing the weighted squared distance to a set of 3D lines.

    Each line `i` passes through `points[i]` with unit direction
    `directions[i]`. Without explicit weights the transverse projector of
    each line is used, i.e. plain distance-of-closest-approach. Returns
    `(vertex, chi2, summed_weight)` or `None` when the system is singular
    (all lines parallel).
    """
    if weights is None:
        weights = [transverse_projector(u) for u in directions]
    ata = [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]
    atb = [0.0, 0.0, 0.0]
    for point, w in zip(points, weights, strict=True):
        wp = mat_vec3(w, point)
        for i in range(3):
            atb[i] += wp[i]
            for j in range(3):
                ata[i][j] += w[i][j]
    if is_singular_3x3(ata):
        return None
    vertex = solve_3x3(ata, atb)
    if vertex is None:
        return None
    chi2 = 0.0
    for point, w in zip(points, weights, strict=True):
        r = sub3(point, vertex)
        chi2 += dot3(r, mat_vec3(w, r))
    return vertex, chi2, ata


def momentum_energy(momentum: Sequence[float], mass: float) -> float:
    return math.sqrt(dot3(momentum, momentum) + mass * mass)


def invariant_mass(momenta: Iterable[Sequence[float]], masses: Iterable[float]) -> float:
    """Invariant mass of a set of momenta with assigned masses."""
    px = py = pz = e = 0.0
    for momentum, mass in zip(momenta, masses, strict=True):
        px += momentum[0]
        py += momentum[1]
        pz += momentum[2]
        e += momentum_energy(momentum, mass)
    m2 = e * e - (px * px + py * py + pz * pz)
    return m2**0.5 if m2 >= 0.0 else -((-m2) ** 0.5)


def rapidity(momentum: Sequence[float], mass: float) -> float:
    energy = momentum_energy(momentum, mass)
    pz = momentum[2]
    if energy <= abs(pz):
        return math.copysign(1e9, pz)
    return 0.5 * math.log((energy + pz) / (energy - pz))


def pseudorapidity(momentum: Sequence[float]) -> float:
    p = norm3(momentum)
    pz = momentum[2]
    if p == abs(pz):
        return 1e9 if pz >= 0 else -1e9
    return 0.5 * math.log((p + pz) / (p - pz))


def cos_pointing_angle(
    pv: Sequence[float], sv: Sequence[float], momentum: Sequence[float], transverse: bool = False
) -> float:
    """Cosine of the angle between the flight line and the candidate momentum."""
    flight = sub3(sv, pv)
    mom = tuple(momentum)
    if transverse:
        flight = (flight[0], flight[1], 0.0)
        mom = (mom[0], mom[1], 0.0)
    denom = norm3(flight) * norm3(mom)
    if denom <= 0.0:
        return 1.0
    return dot3(flight, mom) / denom


def point_direction(origin: Sequence[float], target: Sequence[float]) -> tuple[float, float]:
    """Return `(phi, theta)` of the line from `origin` to `target`.

    `theta` is the elevation above the transverse plane.
    """
    dx, dy, dz = sub3(target, origin)
    phi = math.atan2(dy, dx)
    theta = math.atan2(dz, math.sqrt(dx * dx + dy * dy))
    return phi, theta


def rotated_variance(cov: Sequence[float], phi: float, theta: float) -> float:
    """Project a packed 3x3 covariance onto the direction `(phi, theta)`.

    Small negative values from rounding are clipped to zero; anything beyond
    rounding means the covariance was not positive semi-definite and raises
    `CovarianceConsistencyError`.
    """
    cp = math.cos(phi)
    sp = math.sin(phi)
    ct = math.cos(theta)
    st = math.sin(theta)
    var = (
        cov[0] * cp * cp * ct * ct
        + cov[1] * 2.0 * cp * sp * ct * ct
        + cov[2] * sp * sp * ct * ct
        + cov[3] * 2.0 * cp * ct * st
        + cov[4] * 2.0 * sp * ct * st
        + cov[5] * st * st
    )
    if var >= 0.0:
        return var
    scale = abs(cov[0]) + abs(cov[2]) + abs(cov[5])
    if -var <= 1e-12 * scale:
        return 0.0
    raise CovarianceConsistencyError(
        f"Negative projected variance {var:.6g} at phi={phi:.6g}, theta={theta:.6g}."
    )


def decay_length_errors(
    pv: Sequence[float],
    pv_cov: Sequence[float],
    sv: Sequence[float],
    sv_cov: Sequence[float],
) -> tuple[float, float]:
    """Uncertainties of the 3D and transverse decay lengths.

    Both vertex covariances are projected onto the line joining the primary
    and secondary vertices and summed.
    """
    phi, theta = point_direction(pv, sv)
    var = rotated_variance(pv_cov, phi, theta) + rotated_variance(sv_cov, phi, theta)
    var_xy = rotated_variance(pv_cov, phi, 0.0) + rotated_variance(sv_cov, phi, 0.0)
    return math.sqrt(var), math.sqrt(var_xy)


def invert_2x2(
    mat: Sequence[Sequence[float]],
) -> tuple[tuple[float, float], tuple[float, float]] | None:
    """Invert a 2x2 matrix. Return `None` if singular."""
    a, b = mat[0]
    c, d = mat[1]
    det = a * d - b * c
    scale = abs(a) + abs(d)
    if scale <= 0.0 or abs(det) <= 1e-12 * scale * scale:
        return None
    inv_det = 1.0 / det
    return ((d * inv_det, -b * inv_det), (-c * inv_det, a * inv_det))


def orthonormal_basis(direction: Sequence[float]) -> tuple[Vector3, Vector3]:
    """Two unit vectors spanning the plane orthogonal to a unit direction."""
    helper = (1.0, 0.0, 0.0) if abs(direction[0]) < 0.9 else (0.0, 1.0, 0.0)
    e1 = cross3(direction, helper)
    n1 = norm3(e1)
    e1 = (e1[0] / n1, e1[1] / n1, e1[2] / n1)
    e2 = cross3(direction, e1)
    return e1, e2


def residual_weight(
    direction: Sequence[float], cov: Sequence[Sequence[float]]
) -> list[list[float]] | None:
    """Weight matrix of the residual orthogonal to a trajectory tangent.

    The position covariance is projected onto the plane orthogonal to
    `direction`, inverted there, and embedded back in 3D. Returns `None`
    when the projected covariance is singular.
    """
    if dot3(direction, direction) <= 0.0:
        inv = invert_3x3(cov)
        return None if inv is None else [list(row) for row in inv]
    basis = orthonormal_basis(direction)
    proj = [[dot3(ea, mat_vec3(cov, eb)) for eb in basis] for ea in basis]
    inv2 = invert_2x2(proj)
    if inv2 is None:
        return None
    return [
        [
            sum(basis[a][i] * inv2[a][b] * basis[b][j] for a in range(2) for b in range(2))
            for j in range(3)
        ]
        for i in range(3)
    ]
