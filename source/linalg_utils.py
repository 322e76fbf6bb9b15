import torch
from linear_operator import settings

import linalg_settings


ACCELERATED_DTYPES = (torch.float32, torch.float64, torch.complex64, torch.complex128)


def jitter(A, eps=None):
    if eps is None:
        # keyed by the real dtype, complex matrices use the float/double value
        eps = settings.cholesky_jitter.value(A.real.dtype if A.is_complex() else A.dtype)
    return A + eps * torch.eye(A.shape[0], dtype=A.dtype, device=A.device)


def has_accelerated_path(A):
    """
    True when torch.linalg kernels can handle A directly, i.e. a plain
    matrix with a LAPACK/cuSOLVER element type.
    """
    return A.dim() == 2 and A.dtype in ACCELERATED_DTYPES and linalg_settings.use_accelerated.on()


def real_part(x):
    return x.real if x.is_complex() else x


def adjoint(A):
    """
    Conjugate transpose without copying. For an n × n matrix of b × b
    blocks, the block positions are transposed and every block is
    conjugate transposed.
    """
    if A.dim() == 4:
        return A.transpose(0, 1).mH
    return A.mH


def is_hermitian(A):
    return torch.equal(A.resolve_conj(), adjoint(A).resolve_conj())


def hermitian_completion(A, upper):
    """
    Full Hermitian matrix built from the upper (or lower) triangle of A.
    The diagonal is reduced to its real part.
    """
    T = torch.triu(A, diagonal=1) if upper else torch.tril(A, diagonal=-1)
    D = torch.diag_embed(real_part(A.diagonal()))
    return (T + T.mH + D).to(A.dtype)


def symmetrize(A):
    return 0.5 * (A + A.mH)


def flatten_blocks(A):
    """
    n × n matrix of b × b blocks (shape [n, n, b, b]) -> nb × nb matrix.
    """
    n, _, b, _ = A.shape
    return A.permute(0, 2, 1, 3).reshape(n * b, n * b)


def chol_scalar(x):
    """
    Square root of a reduced Cholesky pivot x (0-d tensor).

    Returns (root, failed) where root = sqrt(|Re x|) in the dtype of x.
    failed is True when Re x is zero or when x is not real-positive
    (negative, or with a nonzero imaginary part). Never raises.
    """
    rx = real_part(x)
    if rx == 0:
        return torch.zeros_like(x), True
    root = rx.abs().sqrt().to(x.dtype)
    return root, bool(rx != x.abs())


def givens(f, g):
    """
    Rotation (c, s, r) such that

        [   c      s ] [f]   [r]
        [-conj(s)  c ] [g] = [0]

    with c real. r = sign(f) * hypot(|f|, |g|), so r is real and
    non-negative whenever f is (the case for Cholesky diagonals).
    """
    absf = f.abs()
    absg = g.abs()
    if absg == 0:
        return torch.ones_like(absf), torch.zeros_like(g), f
    if absf == 0:
        return torch.zeros_like(absf), g.conj() / absg, absg.to(f.dtype)
    r = torch.hypot(absf, absg)
    phase = f / absf
    c = absf / r
    s = phase * g.conj() / r
    return c, s, phase * r


def invperm(piv):
    return torch.argsort(piv)


def howI(A):
    return torch.max(torch.abs(A - torch.eye(A.shape[0], dtype=A.dtype, device=A.device))).item()
