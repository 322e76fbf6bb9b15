import logging
import numbers

import numpy as np
import torch
from linear_operator import settings

import linalg_settings
from cholesky_engines import chol_, cholpivoted_
from linalg_errors import (DimensionMismatchError, RankDeficientError,
                           checkpositivedefinite, checksquare)
from linalg_utils import (adjoint, chol_scalar, hermitian_completion, invperm, is_hermitian,
                          real_part, symmetrize)
from triangular import LowerTriangular, UpperTriangular, inv_triangular, solve_triangular

logger = logging.getLogger(__name__)


HALF_DTYPES = (torch.float16, torch.bfloat16)


class Hermitian:
    """
    A square matrix flagged as Hermitian (real symmetric for real dtypes).
    Only the triangle named by uplo is ever read.
    """
    def __init__(self, data, uplo='U'):
        assert uplo in ['U', 'L'], 'uplo {} not supported, only \'U\' and \'L\' supported'.format(uplo)
        checksquare(data)
        self.data = data
        self.uplo = uplo

    def to_dense(self):
        return hermitian_completion(self.data, self.uplo == 'U')


def choltype(dtype):
    """
    Working dtype of the copying factorizations: half precision is computed
    in float32, integers and bools in the default floating dtype.
    """
    if dtype in HALF_DTYPES:
        return torch.float32
    if dtype.is_floating_point or dtype.is_complex:
        return dtype
    return torch.get_default_dtype()


def cholcopy(A):
    if isinstance(A, Hermitian):
        return Hermitian(cholcopy(A.data), A.uplo)
    return A.resolve_conj().to(dtype=choltype(A.dtype), copy=True)


class Factorization:
    """
    Base class of the Cholesky factorizations. factors holds the triangular
    factor in its uplo triangle; the other triangle is not referenced.

    Class attributes:
    - factors (torch.Tensor): n × n (or n × n × b × b for block matrices)
    - uplo (str)            : 'U' if A = U' U is stored, 'L' if A = L L'
    - info (int)            : 0 on success
    """
    def __init__(self, factors, uplo, info):
        assert uplo in ['U', 'L'], 'uplo {} not supported, only \'U\' and \'L\' supported'.format(uplo)
        assert factors.dim() in (2, 4), 'factors must be a matrix or a matrix of blocks'
        self.factors = factors
        self.uplo = uplo
        self.info = int(info)

    @property
    def U(self):
        return UpperTriangular(self.factors if self.uplo == 'U' else adjoint(self.factors))

    @property
    def L(self):
        return LowerTriangular(self.factors if self.uplo == 'L' else adjoint(self.factors))

    @property
    def UL(self):
        return UpperTriangular(self.factors) if self.uplo == 'U' else LowerTriangular(self.factors)

    def __iter__(self):
        yield self.L
        yield self.U

    @property
    def dtype(self):
        return self.factors.dtype

    @property
    def shape(self):
        n = self.factors.shape[0]
        if self.factors.dim() == 4:
            n *= self.factors.shape[2]
        return (n, n)

    def size(self, dim=None):
        return self.shape if dim is None else self.shape[dim]

    def issuccess(self):
        return self.info == 0

    def isposdef(self):
        return self.info == 0

    def _triangle(self):
        # dense triangular factor of scalars and whether it is upper
        return self.UL.flatten(), self.uplo == 'U'

    def _ldiv(self, B):
        T, upper = self._triangle()
        if upper:
            return solve_triangular(T, solve_triangular(T.mH, B, upper=False), upper=True)
        return solve_triangular(T.mH, solve_triangular(T, B, upper=False), upper=True)

    def _inverse(self):
        T, upper = self._triangle()
        Rinv = inv_triangular(T, upper)
        X = Rinv @ Rinv.mH if upper else Rinv.mH @ Rinv
        return symmetrize(X)

    def _check_rhs(self, B):
        n = self.size(0)
        if B.dim() not in (1, 2) or B.shape[0] != n:
            raise DimensionMismatchError('right hand side of shape {} does not match factorization of size {}'
                                         .format(tuple(B.shape), n))

    def _logdet_factor(self):
        diag = real_part(self._triangle()[0].diagonal())
        dd = torch.log(diag).sum()
        return dd + dd

    def _det_factor(self):
        return real_part(self._triangle()[0].diagonal()).pow(2).prod()

    def logabsdet(self):
        return self.logdet(), torch.ones((), dtype=self.dtype)

    def rdiv(self, B):
        """
        B A⁻¹ for an m × n matrix B.
        """
        if B.dim() != 2 or B.shape[1] != self.size(0):
            raise DimensionMismatchError('left hand side of shape {} does not match factorization of size {}'
                                         .format(tuple(B.shape), self.size(0)))
        return self.solve(B.mH).mH


class Cholesky(Factorization):
    """
    Cholesky factorization A = U' U = L L' of a Hermitian positive
    definite matrix. Returned by cholesky and cholesky_.

    Iterating produces the components L and U.
    """
    def copy(self):
        return Cholesky(self.factors.clone(), self.uplo, self.info)

    def to(self, dtype):
        return Cholesky(self.factors.to(dtype), self.uplo, self.info)

    def _require_success(self):
        checkpositivedefinite(self.info)

    def to_dense(self):
        """
        Reconstruct A from the factor.
        """
        U = self.U.flatten()
        return U.mH @ U

    def diag(self, k=0):
        """
        k-th diagonal of A, computed from the factor without forming A.
        """
        assert self.factors.dim() == 2, 'diag requires scalar matrix elements'
        n = self.size(0)
        a = abs(k)
        if a > n:
            raise DimensionMismatchError('diagonal {} is out of range for a matrix of size {}'.format(k, n))
        U = self.U.to_dense()
        z = (U[:, :n - a].conj() * U[:, a:]).sum(dim=0)
        if k < 0:
            z = z.conj()
        return z

    def det(self):
        self._require_success()
        return self._det_factor()

    def logdet(self):
        self._require_success()
        return self._logdet_factor()

    def solve(self, B):
        """
        Solve A X = B with two triangular solves, O(n²) per right hand side.
        """
        self._require_success()
        self._check_rhs(B)
        return self._ldiv(B)

    def inv(self):
        self._require_success()
        return self._inverse()

    def __eq__(self, other):
        if not isinstance(other, Cholesky) or self.uplo != other.uplo:
            return False
        return torch.equal(self.UL.to_dense(), other.UL.to_dense())

    def __repr__(self):
        if not self.issuccess():
            return 'Failed factorization of type Cholesky (info = {})'.format(self.info)
        return 'Cholesky(dtype={}, size={})\n{} factor:\n{}'.format(
            self.dtype, self.size(0), self.uplo, self.UL.to_dense())


class CholeskyPivoted(Factorization):
    """
    Pivoted Cholesky factorization of a Hermitian positive semi-definite
    matrix: A[piv][:, piv] = Ur' Ur = Lr Lr' with Ur = U[:rank] and
    Lr = L[:, :rank]. Returned by cholesky_pivoted and cholesky_pivoted_.

    Class attributes:
    - piv (torch.Tensor): 0-based permutation
    - rank (int)        : number of pivots accepted
    - tol (float)       : tolerance passed in (negative means automatic)
    - info (int)        : 0 if rank == n, 1 if the sweep stopped early,
                          -1 if the input was not Hermitian
    """
    def __init__(self, factors, uplo, piv, rank, tol, info):
        super().__init__(factors, uplo, info)
        self.piv = piv
        self.rank = int(rank)
        self.tol = tol

    @property
    def p(self):
        return self.piv

    @property
    def P(self):
        n = self.size(0)
        P = torch.zeros(n, n, dtype=self.dtype, device=self.factors.device)
        P[self.piv, torch.arange(n, device=self.factors.device)] = 1
        return P

    def copy(self):
        return CholeskyPivoted(self.factors.clone(), self.uplo, self.piv.clone(), self.rank, self.tol, self.info)

    def to(self, dtype):
        return CholeskyPivoted(self.factors.to(dtype), self.uplo, self.piv, self.rank, self.tol, self.info)

    def check_full_rank(self):
        if self.rank < self.size(0):
            raise RankDeficientError(self.rank)

    def _require_success(self):
        if self.info == -1:
            checkpositivedefinite(self.info)
        self.check_full_rank()

    def to_dense(self):
        ip = invperm(self.piv)
        U = self.U.to_dense()[:self.rank][:, ip]
        return U.mH @ U

    def det(self):
        if self.rank < self.size(0):
            return torch.zeros((), dtype=real_part(self.factors.diagonal()).dtype)
        return self._det_factor()

    def logdet(self):
        if self.rank < self.size(0):
            return torch.tensor(-np.inf, dtype=real_part(self.factors.diagonal()).dtype)
        return self._logdet_factor()

    def solve(self, B):
        """
        Solve A X = B: rows of B are permuted by piv before the triangular
        solves and by the inverse permutation after them.
        """
        self._require_success()
        self._check_rhs(B)
        X = self._ldiv(B[self.piv])
        out = torch.empty_like(X)
        out[self.piv] = X
        return out

    def inv(self):
        self._require_success()
        ip = invperm(self.piv)
        return self._inverse()[ip][:, ip]

    def __eq__(self, other):
        if not isinstance(other, CholeskyPivoted) or self.uplo != other.uplo:
            return False
        if not torch.equal(self.piv, other.piv):
            return False
        return torch.equal(self.UL.to_dense(), other.UL.to_dense())

    def __repr__(self):
        factor = self.U if self.uplo == 'U' else self.L
        return 'CholeskyPivoted(dtype={}, size={})\n{} factor with rank {}:\n{}\npermutation:\n{}'.format(
            self.dtype, self.size(0), self.uplo, self.rank, factor.to_dense(), self.piv)


def _resolve_check(check):
    return linalg_settings.check_factorization.on() if check is None else check


def _check_inplace_dtype(A):
    if not (A.is_floating_point() or A.is_complex()):
        raise TypeError('in-place Cholesky requires a floating point or complex matrix, got {}'.format(A.dtype))


def _as_hermitian(A, uplo):
    """
    Returns (Hermitian, None) or (None, A) when a plain matrix is not
    exactly Hermitian.
    """
    if isinstance(A, Hermitian):
        return A, None
    if uplo is not None:
        return Hermitian(A, uplo), None
    checksquare(A)
    if not is_hermitian(A):
        return None, A
    return Hermitian(A, 'U'), None


def cholesky_(A, uplo=None, check=None):
    """
    Cholesky factorization that overwrites A with the factor.

    Args:
        A (torch.Tensor or Hermitian): Hermitian positive definite matrix
        uplo (str)  : 'U' or 'L', the triangle of a plain tensor to trust;
                      if None a plain tensor must be exactly Hermitian
        check (bool): raise NotPositiveDefiniteError on failure
                      (default: linalg_settings.check_factorization)
    """
    check = _resolve_check(check)
    H, nonhermitian = _as_hermitian(A, uplo)
    if H is None:
        logger.debug('matrix is not Hermitian, returning info = -1')
        if check:
            checkpositivedefinite(-1)
        return Cholesky(nonhermitian, 'U', -1)
    _check_inplace_dtype(H.data)
    if settings.verbose_linalg.on():
        settings.verbose_linalg.logger.debug(
            'Running Cholesky on a matrix of size {} ({}).'.format(tuple(H.data.shape), H.uplo))
    info = chol_(H.data, H.uplo == 'U')
    if info != 0:
        logger.debug('Cholesky factorization failed at pivot %d', info)
    if check:
        checkpositivedefinite(info)
    return Cholesky(H.data, H.uplo, info)


def _cholesky_number(x, uplo, check):
    x = torch.as_tensor(x)
    x = x.to(choltype(x.dtype))
    root, failed = chol_scalar(x)
    if check and failed:
        checkpositivedefinite(1)
    return Cholesky(root.reshape(1, 1), uplo, int(failed))


def _cholesky_pivoted_number(x, uplo, tol, check):
    x = torch.as_tensor(x)
    x = x.to(choltype(x.dtype))
    root, failed = chol_scalar(x)
    # a pivot at or below the tolerance leaves rank 0
    failed = failed or not bool(real_part(x) > tol)
    piv = torch.zeros(1, dtype=torch.long, device=x.device)
    C = CholeskyPivoted(root.reshape(1, 1), uplo, piv, 1 - int(failed), tol, int(failed))
    if check:
        C.check_full_rank()
    return C


def cholesky(A, uplo=None, check=None):
    """
    Cholesky factorization of a copy of A. See cholesky_ for the arguments.
    Also accepts numbers, 0-d tensors and NumPy arrays; a Cholesky
    object is returned as is.
    """
    if isinstance(A, Cholesky):
        return A
    check = _resolve_check(check)
    if isinstance(A, (numbers.Number, np.generic)) or (torch.is_tensor(A) and A.dim() == 0):
        return _cholesky_number(A, uplo or 'U', check)
    if isinstance(A, np.ndarray):
        A = torch.as_tensor(A)
    dtype = A.data.dtype if isinstance(A, Hermitian) else A.dtype
    C = cholesky_(cholcopy(A), uplo, check)
    if dtype in HALF_DTYPES:
        return C.to(dtype)
    return C


def cholesky_pivoted_(A, uplo=None, tol=None, check=None):
    """
    Pivoted (rank revealing) Cholesky factorization that overwrites A.

    Args:
        A (torch.Tensor or Hermitian): Hermitian positive semi-definite matrix
        uplo (str)  : 'U' or 'L', see cholesky_
        tol (float) : rank tolerance, negative for n * eps * max(diag(A))
                      (default: linalg_settings.pivot_tolerance)
        check (bool): raise RankDeficientError if rank < n
    """
    check = _resolve_check(check)
    if tol is None:
        tol = linalg_settings.pivot_tolerance.value()
    H, nonhermitian = _as_hermitian(A, uplo)
    if H is None:
        if check:
            checkpositivedefinite(-1)
        empty = torch.empty(0, dtype=torch.long, device=nonhermitian.device)
        return CholeskyPivoted(nonhermitian, 'U', empty, 0, tol, -1)
    if H.data.dim() != 2:
        raise TypeError('pivoted Cholesky requires a matrix of scalars, got shape {}'.format(tuple(H.data.shape)))
    _check_inplace_dtype(H.data)
    if settings.verbose_linalg.on():
        settings.verbose_linalg.logger.debug(
            'Running pivoted Cholesky on a matrix of size {} ({}).'.format(tuple(H.data.shape), H.uplo))
    piv, rank, info = cholpivoted_(H.data, H.uplo == 'U', tol)
    C = CholeskyPivoted(H.data, H.uplo, piv, rank, tol, info)
    if check:
        C.check_full_rank()
    return C


def cholesky_pivoted(A, uplo=None, tol=None, check=None):
    """
    Pivoted Cholesky factorization of a copy of A. See cholesky_pivoted_.
    """
    if isinstance(A, CholeskyPivoted):
        return A
    check = _resolve_check(check)
    if tol is None:
        tol = linalg_settings.pivot_tolerance.value()
    if isinstance(A, (numbers.Number, np.generic)) or (torch.is_tensor(A) and A.dim() == 0):
        return _cholesky_pivoted_number(A, uplo or 'U', tol, check)
    if isinstance(A, np.ndarray):
        A = torch.as_tensor(A)
    dtype = A.data.dtype if isinstance(A, Hermitian) else A.dtype
    C = cholesky_pivoted_(cholcopy(A), uplo, tol, check)
    if dtype in HALF_DTYPES:
        return C.to(dtype)
    return C


def det(C):
    return C.det()


def logdet(C):
    return C.logdet()


def logabsdet(C):
    return C.logabsdet()


def inv(C):
    return C.inv()


def solve(C, B):
    return C.solve(B)


def rdiv(B, C):
    return C.rdiv(B)
