import torch
from linear_operator import settings

from cholesky import Cholesky
from linalg_errors import DimensionMismatchError, InvalidDowndateError, checkpositivedefinite
from linalg_utils import givens


def _check_updatable(C, v):
    if not isinstance(C, Cholesky):
        raise TypeError('rank one updates require an unpivoted Cholesky factorization, got {}'
                        .format(type(C).__name__))
    assert C.factors.dim() == 2, 'rank one updates require scalar matrix elements'
    checkpositivedefinite(C.info)
    if v.dim() not in (1, 2) or v.shape[0] != C.size(0):
        raise DimensionMismatchError('updating vector must fit size of factorization')
    if v.dtype != C.dtype:
        raise TypeError('updating vector has dtype {} but the factorization has dtype {}'.format(v.dtype, C.dtype))
    if settings.verbose_linalg.on():
        settings.verbose_linalg.logger.debug(
            'Running rank {} Cholesky modification of size {}.'.format(1 if v.dim() == 1 else v.shape[1], C.size(0)))


def _givens_sweep_(A, v, upper):
    n = v.shape[0]
    if upper:
        v.conj_physical_()
    for i in range(n):
        # rotation that zeros v[i] against the diagonal
        c, s, r = givens(A[i, i], v[i])
        A[i, i] = r
        if i + 1 == n:
            break
        Ai = A[i, i + 1:].clone() if upper else A[i + 1:, i].clone()
        vi = v[i + 1:]
        if upper:
            A[i, i + 1:] = c * Ai + s * vi
        else:
            A[i + 1:, i] = c * Ai + s * vi
        v[i + 1:] = -s.conj() * Ai + c * vi


def _hyperbolic_sweep_(A, v, upper):
    n = v.shape[0]
    if upper:
        v.conj_physical_()
    for i in range(n):
        Aii = A[i, i].clone()
        s = (v[i] / Aii).conj()
        s2 = s.abs().pow(2)
        if s2 >= 1:
            raise InvalidDowndateError(i + 1)
        c = torch.sqrt(1 - s2)
        A[i, i] = c * Aii
        if i + 1 == n:
            break
        vi = v[i + 1:]
        Ai = ((A[i, i + 1:] if upper else A[i + 1:, i]) - s * vi) / c
        if upper:
            A[i, i + 1:] = Ai
        else:
            A[i + 1:, i] = Ai
        v[i + 1:] = -s.conj() * Ai + c * vi


def lowrank_update_(C, v):
    """
    Update C in place so that it factorizes A + v v' where A is the matrix
    factorized by C. Uses n Givens rotations, O(n²) in total.

    The vector v is destroyed during the computation. A matrix V of
    k columns is applied column by column (rank k update).

    Args:
        C (Cholesky)    : factorization of A
        v (torch.Tensor): n-vector or n × k matrix, same dtype as C
    """
    _check_updatable(C, v)
    columns = [v] if v.dim() == 1 else [v[:, col] for col in range(v.shape[1])]
    for w in columns:
        _givens_sweep_(C.factors, w, C.uplo == 'U')
    return C


def lowrank_downdate_(C, v):
    """
    Downdate C in place so that it factorizes A - v v'. Uses hyperbolic
    rotations, O(n²) in total. Raises InvalidDowndateError when A - v v'
    is not positive definite, in which case C is left partially modified.
    v is destroyed.
    """
    _check_updatable(C, v)
    columns = [v] if v.dim() == 1 else [v[:, col] for col in range(v.shape[1])]
    for w in columns:
        _hyperbolic_sweep_(C.factors, w, C.uplo == 'U')
    return C


def lowrank_update(C, v):
    """
    Non-destructive lowrank_update_: C and v are left untouched.
    """
    return lowrank_update_(C.copy(), v.to(C.dtype, copy=True))


def lowrank_downdate(C, v):
    """
    Non-destructive lowrank_downdate_: C and v are left untouched.
    """
    return lowrank_downdate_(C.copy(), v.to(C.dtype, copy=True))
