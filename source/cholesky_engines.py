import logging

import torch

from linalg_errors import checksquare
from linalg_utils import chol_scalar, has_accelerated_path, hermitian_completion, real_part
from triangular import inv_triangular

logger = logging.getLogger(__name__)


class ScalarElements:
    """
    Element operations for plain matrices. The diagonal is reduced to its
    real part, as the matrix is assumed Hermitian.
    """
    name = 'scalar'

    @staticmethod
    def diag_value(a):
        return real_part(a)

    @staticmethod
    def gram_upper(col):
        return col.abs().pow(2).sum(dim=0)

    @staticmethod
    def gram_lower(row):
        return row.abs().pow(2).sum(dim=0)

    @staticmethod
    def cross_upper(col, M):
        # Σ_i conj(col[i]) * M[i, :]
        return (col.conj().unsqueeze(-1) * M).sum(dim=0)

    @staticmethod
    def cross_lower(M, row):
        # Σ_j M[:, j] * conj(row[j])
        return (M * row.conj()).sum(dim=1)

    @staticmethod
    def pivot(x, upper):
        return chol_scalar(x)

    @staticmethod
    def divide_upper(root, rest):
        return rest / root.conj()

    @staticmethod
    def divide_lower(rest, root):
        return rest / root.conj()


class BlockElements:
    """
    Element operations for n × n matrices of b × b blocks (shape
    [n, n, b, b]). Products are matrix products, the adjoint of an element
    is its conjugate transpose and the square root of a pivot block is its
    own Cholesky factor.
    """
    name = 'block'

    @staticmethod
    def diag_value(a):
        return a

    @staticmethod
    def gram_upper(col):
        return (col.mH @ col).sum(dim=0)

    @staticmethod
    def gram_lower(row):
        return (row @ row.mH).sum(dim=0)

    @staticmethod
    def cross_upper(col, M):
        return (col.mH.unsqueeze(1) @ M).sum(dim=0)

    @staticmethod
    def cross_lower(M, row):
        return (M @ row.mH.unsqueeze(0)).sum(dim=1)

    @staticmethod
    def pivot(x, upper):
        block = x.clone()
        info = chol_(block, upper)
        root = torch.triu(block) if upper else torch.tril(block)
        return root, info != 0

    @staticmethod
    def divide_upper(root, rest):
        return inv_triangular(root.mH, upper=False) @ rest

    @staticmethod
    def divide_lower(rest, root):
        return rest @ inv_triangular(root.mH, upper=True)


SCALAR_ELEMENTS = ScalarElements()
BLOCK_ELEMENTS = BlockElements()


def element_ops(A):
    return BLOCK_ELEMENTS if A.dim() == 4 else SCALAR_ELEMENTS


def chol_generic_(A, upper):
    """
    Unblocked Cholesky factorization in place, reading and writing only the
    upper (or lower) triangle of A. Returns info: 0 on success, otherwise
    the 1-based index of the first pivot that is not positive. On failure
    the rest of the triangle holds partial results.
    """
    n = checksquare(A)
    ops = element_ops(A)
    for k in range(n):
        if upper:
            Akk = ops.diag_value(A[k, k]) - ops.gram_upper(A[:k, k])
        else:
            Akk = ops.diag_value(A[k, k]) - ops.gram_lower(A[k, :k])
        A[k, k] = Akk
        root, failed = ops.pivot(Akk, upper)
        if failed:
            return k + 1
        A[k, k] = root
        if k + 1 == n:
            break
        if upper:
            rest = A[k, k + 1:] - ops.cross_upper(A[:k, k], A[:k, k + 1:])
            A[k, k + 1:] = ops.divide_upper(root, rest)
        else:
            rest = A[k + 1:, k] - ops.cross_lower(A[k + 1:, :k], A[k, :k])
            A[k + 1:, k] = ops.divide_lower(rest, root)
    return 0


def chol_accelerated_(A, upper):
    factor, info = torch.linalg.cholesky_ex(hermitian_completion(A, upper), upper=upper)
    A.copy_(factor)
    return int(info)


def chol_(A, upper):
    """
    Factorize A in place and return info, choosing the strategy from the
    element type of A.
    """
    if has_accelerated_path(A):
        logger.debug('accelerated Cholesky for %s matrix of size %d', A.dtype, A.shape[0])
        return chol_accelerated_(A, upper)
    logger.debug('generic Cholesky for %s matrix of %s elements', A.dtype, element_ops(A).name)
    return chol_generic_(A, upper)


def swap_rowcols_(A, upper, j, q):
    """
    Symmetric swap of rows/columns j < q of a Hermitian matrix of which only
    the upper (or lower) triangle is stored, without touching the other
    triangle. Entries that cross the diagonal under the permutation are
    conjugated. Applying the swap twice restores A.
    """
    if j == q:
        return
    assert j < q
    A[j, j], A[q, q] = A[q, q].clone(), A[j, j].clone()
    if upper:
        # initial vertical segments
        A[:j, [j, q]] = A[:j, [q, j]]
        # intermediate segments
        head = torch.conj_physical(A[j, j + 1:q])
        A[j, j + 1:q] = torch.conj_physical(A[j + 1:q, q])
        A[j + 1:q, q] = head
        # corner
        A[j, q] = torch.conj_physical(A[j, q])
        # final horizontal segments
        A[[j, q], q + 1:] = A[[q, j], q + 1:]
    else:
        # initial horizontal segments
        A[[j, q], :j] = A[[q, j], :j]
        # intermediate segments
        head = torch.conj_physical(A[j + 1:q, j])
        A[j + 1:q, j] = torch.conj_physical(A[q, j + 1:q])
        A[q, j + 1:q] = head
        # corner
        A[q, j] = torch.conj_physical(A[q, j])
        # final vertical segments
        A[q + 1:, [j, q]] = A[q + 1:, [q, j]]


def cholpivoted_(A, upper, tol):
    """
    Rank revealing Cholesky factorization with diagonal pivoting, in place.

    At step k the remaining index with the largest Schur complement
    diagonal is swapped to position k. The diagonal of the Schur
    complement is kept as real(diag(A)) - dots, where dots accumulates
    |R[i, j]|² of the rows finalized so far, so each pivot search is O(n).

    Args:
        A (torch.Tensor): n × n matrix, only the upper (or lower) triangle is read
        upper (bool)    : which triangle holds the matrix and receives the factor
        tol (float)     : stop once the largest remaining pivot is <= tol;
                          negative selects n * eps * max(real(diag(A)))

    Returns (piv, rank, info): info is 1 when the sweep stopped before
    reaching n, 0 otherwise.
    """
    n = checksquare(A)
    assert A.dim() == 2, 'pivoted Cholesky requires scalar matrix elements'
    ops = SCALAR_ELEMENTS
    real_dtype = real_part(A.diagonal()).dtype
    piv = torch.arange(n, device=A.device)
    if n == 0:
        return piv, 0, 0
    dots = torch.zeros(n, dtype=real_dtype, device=A.device)

    Amax = real_part(A.diagonal()).max()
    stop = torch.finfo(real_dtype).eps * n * Amax.abs() if tol < 0 else tol

    for k in range(n):
        if k > 0:
            finalized = A[k - 1, k:] if upper else A[k:, k - 1]
            dots[k:] += finalized.abs().pow(2)
        temp = real_part(A.diagonal()[k:]) - dots[k:]
        Akk, q = torch.max(temp, dim=0)
        if Akk <= stop:
            logger.debug('pivoted Cholesky stopped at rank %d of %d (stop threshold %g)', k, n, float(stop))
            return piv, k, 1
        q = k + q.item()
        swap_rowcols_(A, upper, k, q)
        dots[[k, q]] = dots[[q, k]]
        piv[[k, q]] = piv[[q, k]]

        root, _ = ops.pivot(Akk.to(A.dtype), upper)
        A[k, k] = root
        if k + 1 == n:
            break
        if upper:
            rest = A[k, k + 1:] - ops.cross_upper(A[:k, k], A[:k, k + 1:])
            A[k, k + 1:] = ops.divide_upper(root, rest)
        else:
            rest = A[k + 1:, k] - ops.cross_lower(A[k + 1:, :k], A[k, :k])
            A[k + 1:, k] = ops.divide_lower(rest, root)
    return piv, n, 0
