import torch


class NotPositiveDefiniteError(torch.linalg.LinAlgError):
    """
    Raised when a Cholesky pivot is not real-positive. info is the 1-based
    order of the failing leading minor, or -1 when the input matrix was
    not Hermitian in the first place.
    """
    def __init__(self, info):
        self.info = info
        if info == -1:
            msg = 'matrix is not Hermitian; Cholesky factorization failed.'
        else:
            msg = 'matrix is not positive definite; Cholesky factorization failed at pivot {}.'.format(info)
        super().__init__(msg)


class InvalidDowndateError(NotPositiveDefiniteError):
    """
    Raised when a downdate would leave an indefinite matrix behind.
    """
    def __init__(self, step):
        super().__init__(step)
        self.args = ('downdate makes the matrix indefinite at step {}.'.format(step),)


class RankDeficientError(torch.linalg.LinAlgError):
    def __init__(self, rank):
        self.rank = rank
        super().__init__('matrix is rank deficient with rank {}.'.format(rank))


class SingularPivotError(torch.linalg.LinAlgError):
    def __init__(self, index):
        self.index = index
        super().__init__('triangular matrix is singular: zero on the diagonal at position {}.'.format(index))


class DimensionMismatchError(ValueError):
    pass


def checkpositivedefinite(info):
    if info != 0:
        raise NotPositiveDefiniteError(info)


def checksquare(A):
    """
    Returns n for an n × n matrix (or an n × n matrix of b × b blocks).
    """
    if A.dim() not in (2, 4) or A.shape[0] != A.shape[1] or (A.dim() == 4 and A.shape[2] != A.shape[3]):
        raise DimensionMismatchError('matrix is not square: dimensions are {}'.format(tuple(A.shape)))
    return A.shape[0]
