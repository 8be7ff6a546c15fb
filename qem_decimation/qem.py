"""
Quadric Error Metrics (QEM) Implementation
==========================================

Error quadrics for surface simplification: a quadric accumulates squared
distances to a set of planes and can be evaluated at, or minimized over,
3D positions.

Based on: "Surface Simplification Using Quadric Error Metrics"
by Michael Garland and Paul S. Heckbert (SIGGRAPH 1997)
"""

import numpy as np
from typing import Sequence
import warnings


# Systems with a larger condition number are treated as singular
MAX_CONDITION_NUMBER = 1e10


class SingularQuadricError(np.linalg.LinAlgError):
    """Raised when a quadric has no well-posed minimizing position."""


def compute_face_normal(v0: np.ndarray, v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    """
    Compute the unit normal of a triangle.

    Args:
        v0, v1, v2: Triangle vertices as 3D points

    Returns:
        Unit normal, or the zero vector for a degenerate triangle
    """
    normal = np.cross(v1 - v0, v2 - v0)
    norm_length = np.linalg.norm(normal)

    if norm_length < 1e-12:
        return np.zeros(3)

    return normal / norm_length


class ErrorQuadric:
    """
    Quadratic error functional Q(p) = p^T A p + 2 b^T p + c.

    The fundamental quadric of a plane ax + by + cz + d = 0 is the outer
    product of [a, b, c, d] with itself. Only the 10 independent entries of
    that symmetric 4x4 matrix are stored:

        [a  b  c  d]
        [   e  f  g]
        [      h  i]
        [         j]

    Quadrics of several planes are combined by addition; the zero quadric
    is the identity.
    """

    def __init__(self, a: float = 0.0, b: float = 0.0, c: float = 0.0, d: float = 0.0):
        """
        Build the quadric of the plane ax + by + cz + d = 0.

        With no arguments this is the zero quadric.
        """
        self.coefficients = np.array([
            a * a, a * b, a * c, a * d,
                   b * b, b * c, b * d,
                          c * c, c * d,
                                 d * d,
        ], dtype=np.float64)

    @classmethod
    def from_plane(cls, plane: Sequence[float]) -> "ErrorQuadric":
        """Build the quadric of plane coefficients [a, b, c, d]."""
        a, b, c, d = plane
        return cls(a, b, c, d)

    @classmethod
    def from_normal_point(cls, normal: Sequence[float],
                          point: Sequence[float]) -> "ErrorQuadric":
        """
        Build the quadric of the plane with the given normal through a point.

        Args:
            normal: Plane normal (expected to be unit length)
            point: Any point on the plane

        Returns:
            Fundamental quadric of the plane
        """
        normal = np.asarray(normal, dtype=np.float64)
        d = -np.dot(normal, np.asarray(point, dtype=np.float64))
        return cls(normal[0], normal[1], normal[2], d)

    @classmethod
    def from_coefficients(cls, coefficients: Sequence[float]) -> "ErrorQuadric":
        quadric = cls()
        quadric.coefficients = np.array(coefficients, dtype=np.float64)
        return quadric

    def copy(self) -> "ErrorQuadric":
        return ErrorQuadric.from_coefficients(self.coefficients)

    def __iadd__(self, other: "ErrorQuadric") -> "ErrorQuadric":
        self.coefficients += other.coefficients
        return self

    def __add__(self, other: "ErrorQuadric") -> "ErrorQuadric":
        return ErrorQuadric.from_coefficients(self.coefficients + other.coefficients)

    def __mul__(self, weight: float) -> "ErrorQuadric":
        return ErrorQuadric.from_coefficients(self.coefficients * weight)

    __rmul__ = __mul__

    def __call__(self, p: Sequence[float]) -> float:
        return self.evaluate(p)

    def __repr__(self):
        return f"ErrorQuadric({np.array2string(self.coefficients, precision=4)})"

    def evaluate(self, p: Sequence[float]) -> float:
        """
        Evaluate the quadric at a position.

        error = v^T * Q * v where v is [x, y, z, 1]

        The result is a sum of squared plane distances, but rounding can
        push it marginally below zero. It is not clamped.

        Args:
            p: 3D position

        Returns:
            Quadric error value
        """
        a, b, c, d, e, f, g, h, i, j = self.coefficients
        x, y, z = float(p[0]), float(p[1]), float(p[2])
        return float(a * x * x + 2.0 * b * x * y + 2.0 * c * x * z + 2.0 * d * x
                     + e * y * y + 2.0 * f * y * z + 2.0 * g * y
                     + h * z * z + 2.0 * i * z
                     + j)

    def matrix(self) -> np.ndarray:
        """Return the equivalent symmetric 4x4 matrix."""
        a, b, c, d, e, f, g, h, i, j = self.coefficients
        return np.array([
            [a, b, c, d],
            [b, e, f, g],
            [c, f, h, i],
            [d, g, i, j],
        ])

    def minimizer(self) -> np.ndarray:
        """
        Find the position that minimizes the quadric error.

        Solves A x = -b for the 3x3 quadratic block A and the linear part b.

        Returns:
            Minimizing 3D position

        Raises:
            SingularQuadricError: If A is singular or ill-conditioned,
                e.g. when fewer than three independent planes contributed.
        """
        a, b, c, d, e, f, g, h, i, _ = self.coefficients
        A = np.array([
            [a, b, c],
            [b, e, f],
            [c, f, h],
        ])
        rhs = -np.array([d, g, i])

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            cond = np.linalg.cond(A)

        if not np.isfinite(cond) or cond >= MAX_CONDITION_NUMBER:
            raise SingularQuadricError(
                f"quadric system is singular (condition number {cond:.3g})"
            )

        try:
            return np.linalg.solve(A, rhs)
        except np.linalg.LinAlgError as e:
            raise SingularQuadricError(str(e)) from e

