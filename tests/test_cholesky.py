import numpy as np
import torch
import unittest

import os
import sys
sys.path.append(os.path.join(os.path.dirname(os.path.abspath(__file__)), '../source'))
import linalg_settings
from linear_operator import settings
from linear_operator.settings import _feature_flag, _value_context
from cholesky import Cholesky, Hermitian, cholesky, cholesky_
from linalg_errors import DimensionMismatchError, NotPositiveDefiniteError
from linalg_utils import jitter, symmetrize


A3 = [[4, 12, -16], [12, 37, -43], [-16, -43, 98]]
U3 = [[2, 6, -8], [0, 1, 5], [0, 0, 3]]


def random_posdef(n, dtype=torch.float64, generator=None):
    X = torch.randn(n, n, dtype=dtype, generator=generator)
    return symmetrize(jitter(X.mH @ X, eps=n))


class TestCholesky(unittest.TestCase):

    def test_known_factor(self):
        A = torch.tensor(A3, dtype=torch.float64)
        C = cholesky(A)
        assert C.issuccess() and C.uplo == 'U'
        assert torch.allclose(C.U.to_dense(), torch.tensor(U3, dtype=torch.float64))
        assert torch.allclose(C.L.to_dense(), torch.tensor(U3, dtype=torch.float64).T)

        # integer input is promoted to the default dtype
        C = cholesky(torch.tensor(A3))
        assert C.dtype == torch.get_default_dtype()
        assert torch.allclose(C.U.to_dense(), torch.tensor(U3, dtype=C.dtype))
        assert torch.allclose(C.det(), torch.tensor(36.0, dtype=C.dtype))

    def test_round_trip(self):
        print('Testing Cholesky round trips ...')
        g = torch.Generator().manual_seed(0)
        for dtype in [torch.float32, torch.float64, torch.complex64, torch.complex128]:
            tol = 1e-4 if dtype in [torch.float32, torch.complex64] else 1e-10
            for n in [1, 2, 7, 20]:
                A = random_posdef(n, dtype=dtype, generator=g)
                for uplo in ['U', 'L']:
                    C = cholesky(Hermitian(A, uplo))
                    assert C.uplo == uplo and C.info == 0
                    U = C.U.to_dense()
                    L = C.L.to_dense()
                    assert torch.max(torch.abs(U.mH @ U - A)) <= tol * n
                    assert torch.max(torch.abs(L @ L.mH - A)) <= tol * n
                    assert torch.all(C.U.diagonal().real > 0)
                    assert torch.max(torch.abs(C.to_dense() - A)) <= tol * n
        print('Cholesky round trips work as expected')

    def test_reads_one_triangle(self):
        A = random_posdef(5)
        garbage = torch.randn(5, 5, dtype=torch.float64)

        Au = torch.triu(A) + torch.tril(garbage, diagonal=-1)
        Cu = cholesky(Au, uplo='U')
        assert torch.allclose(Cu.to_dense(), A)

        Al = torch.tril(A) + torch.triu(garbage, diagonal=1)
        Cl = cholesky(Hermitian(Al, 'L'))
        assert Cl.uplo == 'L'
        assert torch.allclose(Cl.to_dense(), A)
        assert torch.allclose(Cl.U.to_dense(), Cu.U.to_dense())

        # the wrapper completes the stored triangle
        assert torch.equal(Hermitian(Au, 'U').to_dense(), A)
        assert torch.equal(Hermitian(Al, 'L').to_dense(), A)

    def test_failure(self):
        A = torch.tensor([[1.0, 2.0], [2.0, 1.0]], dtype=torch.float64)
        with self.assertRaises(NotPositiveDefiniteError) as cm:
            cholesky(A)
        assert cm.exception.info == 2

        for accelerated in [True, False]:
            with linalg_settings.use_accelerated(accelerated):
                C = cholesky(A, check=False)
            assert C.info == 2
            assert not C.issuccess() and not C.isposdef()
            assert 'Failed factorization of type Cholesky (info = 2)' in repr(C)
            with self.assertRaises(NotPositiveDefiniteError):
                C.det()
            with self.assertRaises(NotPositiveDefiniteError):
                C.solve(torch.ones(2, dtype=torch.float64))

        with linalg_settings.check_factorization(False):
            C = cholesky(A)
        assert C.info == 2

        # negative definite in the last pivot only
        A = torch.tensor(A3, dtype=torch.float64)
        A[2, 2] = 80.0
        assert cholesky(A, check=False).info == 3

    def test_not_hermitian(self):
        A = torch.tensor([[2.0, 1.0], [0.0, 2.0]], dtype=torch.float64)
        C = cholesky(A, check=False)
        assert C.info == -1
        with self.assertRaises(NotPositiveDefiniteError) as cm:
            cholesky(A)
        assert cm.exception.info == -1
        assert 'not Hermitian' in str(cm.exception)

        # with an explicit triangle the matrix is taken as Hermitian
        assert cholesky(A, uplo='U').info == 0

        with self.assertRaises(DimensionMismatchError):
            cholesky(torch.ones(2, 3, dtype=torch.float64))

    def test_generic_matches_accelerated(self):
        g = torch.Generator().manual_seed(1)
        for dtype in [torch.float64, torch.complex128]:
            A = random_posdef(9, dtype=dtype, generator=g)
            for uplo in ['U', 'L']:
                C_fast = cholesky(A, uplo=uplo)
                with linalg_settings.use_accelerated(False):
                    C_slow = cholesky(A, uplo=uplo)
                assert torch.allclose(C_fast.UL.to_dense(), C_slow.UL.to_dense())
        assert linalg_settings.use_accelerated.on()

    def test_inplace(self):
        A0 = random_posdef(6)
        A = A0.clone()
        C = cholesky_(A)
        assert C.factors is A
        assert torch.allclose(torch.triu(A), torch.linalg.cholesky(A0, upper=True))

        A = A0.clone()
        C = cholesky_(Hermitian(A, 'L'))
        assert C.factors is A
        assert torch.allclose(torch.tril(A), torch.linalg.cholesky(A0))

        with self.assertRaises(TypeError):
            cholesky_(torch.tensor(A3))

    def test_half_precision(self):
        A = torch.tensor(A3, dtype=torch.float16)
        C = cholesky(A)
        assert C.dtype == torch.float16
        assert torch.equal(C.U.to_dense(), torch.tensor(U3, dtype=torch.float16))

        # in place half precision takes the generic path
        B = A.clone()
        C = cholesky_(B)
        assert C.factors is B
        assert torch.equal(C.U.to_dense(), torch.tensor(U3, dtype=torch.float16))

        C = cholesky(torch.tensor(A3, dtype=torch.bfloat16))
        assert C.dtype == torch.bfloat16

    def test_block_elements(self):
        print('Testing Cholesky of block matrices ...')
        g = torch.Generator().manual_seed(2)
        for dtype in [torch.float64, torch.complex128]:
            M = random_posdef(6, dtype=dtype, generator=g)
            B = M.reshape(3, 2, 3, 2).permute(0, 2, 1, 3).contiguous()
            for uplo in ['U', 'L']:
                C = cholesky(B, uplo=uplo)
                assert C.info == 0
                assert C.shape == (6, 6) and C.size(0) == 6
                assert C.factors.shape == (3, 3, 2, 2)
                assert torch.allclose(C.U.flatten(), torch.linalg.cholesky(M, upper=True))
                assert torch.allclose(C.to_dense(), M)
                b = torch.randn(6, dtype=dtype, generator=g)
                assert torch.allclose(C.solve(b), torch.linalg.solve(M, b))
            # exactly Hermitian blocks need no explicit triangle
            assert cholesky(B).info == 0

        # indefinite second pivot block
        M = torch.diag(torch.tensor([1.0, 1.0, 1.0, -1.0], dtype=torch.float64))
        B = M.reshape(2, 2, 2, 2).permute(0, 2, 1, 3).contiguous()
        C = cholesky(B, check=False)
        assert C.info == 2 and not C.issuccess()
        with self.assertRaises(NotPositiveDefiniteError):
            cholesky(B)
        print('Block Cholesky works as expected')

    def test_numbers(self):
        C = cholesky(4.0)
        assert isinstance(C, Cholesky)
        assert C.shape == (1, 1)
        assert C.U.to_dense().item() == 2.0

        C = cholesky(np.float64(9.0))
        assert C.dtype == torch.float64
        assert C.U.to_dense().item() == 3.0

        C = cholesky(torch.tensor(16.0))
        assert C.U.to_dense().item() == 4.0

        assert cholesky(-1.0, check=False).info == 1
        with self.assertRaises(NotPositiveDefiniteError):
            cholesky(-1.0)

    def test_numpy_input(self):
        A = np.array(A3, dtype=np.float64)
        C = cholesky(A)
        assert C.dtype == torch.float64
        assert torch.allclose(C.U.to_dense(), torch.tensor(U3, dtype=torch.float64))
        assert cholesky(C) is C

    def test_accessors(self):
        A = random_posdef(4, dtype=torch.complex128)
        C = cholesky(A)
        L, U = C
        assert torch.equal(L.to_dense().resolve_conj(), U.to_dense().mH.resolve_conj())
        assert torch.equal(C.U.mH.to_dense().resolve_conj(), C.L.to_dense().resolve_conj())
        assert torch.allclose(L @ U, A)

        # views over the same storage
        assert C.UL.data.data_ptr() == C.factors.data_ptr()
        assert C.L.data.data_ptr() == C.factors.data_ptr()

        D = C.copy()
        assert D == C
        assert D.factors.data_ptr() != C.factors.data_ptr()
        D.factors[0, 0] += 1
        assert not D == C
        assert not C == cholesky(A, uplo='L')

        C32 = C.to(torch.complex64)
        assert C32.dtype == torch.complex64 and C32.uplo == C.uplo

        assert 'Cholesky(dtype=torch.complex128, size=4)' in repr(C)

    def test_diag(self):
        A = random_posdef(4, dtype=torch.complex128)
        for uplo in ['U', 'L']:
            C = cholesky(A, uplo=uplo)
            for k in range(-3, 4):
                assert torch.allclose(C.diag(k), torch.diagonal(A, offset=k))
            assert C.diag(4).numel() == 0
            with self.assertRaises(DimensionMismatchError):
                C.diag(5)
            with self.assertRaises(DimensionMismatchError):
                C.diag(-5)

    def test_settings(self):
        assert linalg_settings.check_factorization.on()
        with linalg_settings.check_factorization(False):
            assert linalg_settings.check_factorization.off()
            with linalg_settings.check_factorization(True):
                assert linalg_settings.check_factorization.on()
            assert linalg_settings.check_factorization.off()
        assert linalg_settings.check_factorization.is_default()

        A = torch.tensor(A3, dtype=torch.float64)
        with self.assertLogs(settings.verbose_linalg.logger, level='DEBUG') as cm:
            with settings.verbose_linalg():
                cholesky(A)
        assert any('Running Cholesky' in line for line in cm.output)

        # the verbose logger is shared, importing this package adds no handlers to it
        assert len(settings.verbose_linalg.logger.handlers) == 1
        assert issubclass(linalg_settings.check_factorization, _feature_flag)
        assert issubclass(linalg_settings.pivot_tolerance, _value_context)

    def test_logging(self):
        A = torch.tensor([[1.0, 2.0], [2.0, 1.0]], dtype=torch.float64)
        with self.assertLogs('cholesky', level='DEBUG') as cm:
            cholesky(A, check=False)
        assert any('failed at pivot 2' in line for line in cm.output)

        with self.assertLogs('cholesky_engines', level='DEBUG') as cm:
            with linalg_settings.use_accelerated(False):
                cholesky(torch.tensor(A3, dtype=torch.float64))
        assert any('generic Cholesky' in line for line in cm.output)


if __name__ == '__main__':
    unittest.main()
