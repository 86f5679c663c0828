"""Dense vector/matrix kernel used by every density evaluation.

All helpers take and return ``torch.Tensor``. Vectors are 1-D ``(d,)`` and
matrices 2-D ``(d, d)``; nothing here is batched because the bulk pipeline
works one record at a time.
"""

from __future__ import annotations

from typing import Optional

import torch

from ._errors import DimensionMismatchError, SingularCovarianceError


# ---------------------------
# Shape checks
# ---------------------------

def check_vector(v: torch.Tensor, d: int, what: str = "vector") -> None:
    if v.dim() != 1 or v.shape[0] != d:
        raise DimensionMismatchError(f"{what} must have shape ({d},), got {tuple(v.shape)}")


def check_square(m: torch.Tensor, d: int, what: str = "matrix") -> None:
    if m.dim() != 2 or m.shape != (d, d):
        raise DimensionMismatchError(f"{what} must have shape ({d}, {d}), got {tuple(m.shape)}")


# ---------------------------
# Elementary operations
# ---------------------------

def transpose(v: torch.Tensor) -> torch.Tensor:
    """Row view of a column vector (or plain transpose of a matrix)."""
    if v.dim() == 1:
        return v.unsqueeze(0)
    return v.transpose(-1, -2)


def outer_product(v: torch.Tensor) -> torch.Tensor:
    """v @ v^T for a 1-D vector, shape (d, d)."""
    return torch.outer(v, v)


def add(a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
    if a.shape != b.shape:
        raise DimensionMismatchError(f"cannot add shapes {tuple(a.shape)} and {tuple(b.shape)}")
    return a + b


def scale(a: torch.Tensor, factor: float) -> torch.Tensor:
    return a * factor


def add_reg_diag(cov: torch.Tensor, reg_covar: float) -> torch.Tensor:
    """Add reg_covar to the diagonal of a (d, d) matrix."""
    if reg_covar == 0.0:
        return cov
    d = cov.shape[0]
    return cov + reg_covar * torch.eye(d, device=cov.device, dtype=cov.dtype)


# ---------------------------
# Inverse / determinant
# ---------------------------

def determinant(m: torch.Tensor, component_id: Optional[int] = None) -> torch.Tensor:
    """Determinant of a square matrix; zero or non-finite is an error."""
    det = torch.linalg.det(m)
    if not torch.isfinite(det) or det == 0:
        raise SingularCovarianceError(
            f"covariance of component {component_id} has determinant {float(det)!r}",
            component_id=component_id,
        )
    return det


def inverse(m: torch.Tensor, component_id: Optional[int] = None) -> torch.Tensor:
    """Matrix inverse via torch.linalg.inv_ex, raising instead of returning inf/nan."""
    if not torch.isfinite(m).all():
        raise SingularCovarianceError(
            f"covariance of component {component_id} contains NaN/Inf",
            component_id=component_id,
        )
    inv, info = torch.linalg.inv_ex(m)
    if int(info) != 0 or not torch.isfinite(inv).all():
        raise SingularCovarianceError(
            f"covariance of component {component_id} is singular",
            component_id=component_id,
        )
    return inv


def cholesky(m: torch.Tensor, component_id: Optional[int] = None) -> torch.Tensor:
    """Lower Cholesky factor; fails unless the matrix is positive definite."""
    if not torch.isfinite(m).all():
        raise SingularCovarianceError(
            f"covariance of component {component_id} contains NaN/Inf",
            component_id=component_id,
        )
    L, info = torch.linalg.cholesky_ex(m)
    if int(info) != 0:
        raise SingularCovarianceError(
            f"covariance of component {component_id} is not positive definite",
            component_id=component_id,
        )
    return L


def mahalanobis(diff: torch.Tensor, inv_cov: torch.Tensor) -> torch.Tensor:
    """(x-mu)^T Sigma^-1 (x-mu) as a 0-d tensor."""
    return transpose(diff).matmul(inv_cov).matmul(diff).squeeze(0)
