import torch
from linear_operator import settings

from linalg_errors import DimensionMismatchError, SingularPivotError
from linalg_utils import adjoint, flatten_blocks, has_accelerated_path


FORWARD_SUBSTITUTION = 1
BACKWARD_SUBSTITUTION = 2


def _substitute(T, B, substitution):
    """
    Forward (lower T) or backward (upper T) substitution, one row at a
    time, using only elementwise products and sums so that it works for
    every dtype torch can add and multiply.
    """
    n = T.shape[0]
    X = B.clone()
    row_sequence = reversed(range(n)) if substitution == BACKWARD_SUBSTITUTION else range(n)
    for row in row_sequence:
        if substitution == BACKWARD_SUBSTITUTION:
            acc = (T[row, row + 1:].unsqueeze(-1) * X[row + 1:]).sum(dim=0)
        else:
            acc = (T[row, :row].unsqueeze(-1) * X[:row]).sum(dim=0)
        X[row] = (X[row] - acc) / T[row, row]
    return X


def solve_triangular(T, B, upper):
    """
    Solve T @ X = B for a dense triangular T.

    Args:
        T (torch.Tensor): n × n triangular matrix (only the upper or lower
                          triangle is read)
        B (torch.Tensor): n-vector or n × k right hand side
        upper (bool)    : whether T is upper triangular
    """
    n = T.shape[0]
    if B.shape[0] != n:
        raise DimensionMismatchError('right hand side has {} rows but the triangular matrix has size {}'
                                     .format(B.shape[0], n))
    zero_ids = torch.nonzero(T.diagonal() == 0)
    if zero_ids.numel() > 0:
        raise SingularPivotError(zero_ids[0].item() + 1)

    dtype = torch.promote_types(T.dtype, B.dtype)
    T = T.to(dtype)
    vector = (B.dim() == 1)
    B = B.to(dtype).unsqueeze(-1) if vector else B.to(dtype)

    if settings.verbose_linalg.on():
        settings.verbose_linalg.logger.debug(
            'Running triangular solve of size {} with {} right hand sides.'.format(n, B.shape[1]))
    if has_accelerated_path(T):
        X = torch.linalg.solve_triangular(T, B, upper=upper)
    else:
        substitution = BACKWARD_SUBSTITUTION if upper else FORWARD_SUBSTITUTION
        X = _substitute(T, B, substitution)
    return X[:, 0] if vector else X


def inv_triangular(T, upper):
    I = torch.eye(T.shape[0], dtype=T.dtype, device=T.device)
    return solve_triangular(T, I, upper)


class TriangularMatrix:
    """
    Read-only view of one triangle of a square matrix. The wrapped data is
    never copied; entries outside the triangle are treated as zero.

    Works for plain n × n matrices and for n × n matrices of b × b blocks
    (shape [n, n, b, b]), where the triangle is taken block-wise.
    """
    upper = None

    def __init__(self, data):
        assert data.dim() in (2, 4), 'data must be a matrix or a matrix of blocks'
        self._data = data

    @property
    def data(self):
        return self._data

    @property
    def shape(self):
        return tuple(self._data.shape)

    @property
    def dtype(self):
        return self._data.dtype

    @property
    def is_blocked(self):
        return self._data.dim() == 4

    def to_dense(self):
        """
        Materialize the triangle, zeros elsewhere. Block matrices are
        returned in block shape [n, n, b, b].
        """
        if not self.is_blocked:
            return torch.triu(self._data) if self.upper else torch.tril(self._data)
        n = self._data.shape[0]
        mask = torch.ones(n, n, dtype=torch.bool, device=self._data.device)
        mask = torch.triu(mask) if self.upper else torch.tril(mask)
        return torch.where(mask[:, :, None, None], self._data, torch.zeros_like(self._data))

    def flatten(self):
        """
        Dense triangular matrix of scalars. For block matrices this is the
        nb × nb matrix the blocks tile.
        """
        dense = self.to_dense()
        return flatten_blocks(dense) if self.is_blocked else dense

    def diagonal(self):
        return self._data.diagonal() if not self.is_blocked else self.flatten().diagonal()

    def adjoint(self):
        other = LowerTriangular if self.upper else UpperTriangular
        return other(adjoint(self._data))

    @property
    def mH(self):
        return self.adjoint()

    def solve(self, B):
        return solve_triangular(self.flatten(), B, self.upper)

    def inverse(self):
        return inv_triangular(self.flatten(), self.upper)

    def __getitem__(self, idx):
        return self.to_dense()[idx]

    def __matmul__(self, other):
        if isinstance(other, TriangularMatrix):
            other = other.flatten()
        return self.flatten() @ other

    def __rmatmul__(self, other):
        return other @ self.flatten()

    def __repr__(self):
        return '{}(\n{}\n)'.format(self.__class__.__name__, self.to_dense())


class UpperTriangular(TriangularMatrix):
    upper = True


class LowerTriangular(TriangularMatrix):
    upper = False
