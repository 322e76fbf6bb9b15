from linear_operator.settings import _feature_flag, _value_context


class check_factorization(_feature_flag):
    """
    Whether factorizations raise on failure when the caller does not pass
    check explicitly. When off, the returned object carries info/rank and
    the caller inspects it.
    """
    _default = True


class use_accelerated(_feature_flag):
    """
    Whether float32/float64/complex64/complex128 matrices are handed to
    torch.linalg kernels. Off forces the element-by-element algorithms.
    """
    _default = True


class pivot_tolerance(_value_context):
    """
    Stopping tolerance of the pivoted factorization. Negative values
    select n * eps * max(diag(A)).
    """
    _global_value = -1.0
