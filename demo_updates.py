import logging
import time

import torch
import numpy as np
import matplotlib.pyplot as plt

import os
import sys
sys.path.append(os.path.join(os.path.dirname(os.path.abspath(__file__)), 'source'))
from cholesky import cholesky
from cholesky_updates import lowrank_downdate, lowrank_update
from linalg_utils import jitter, symmetrize

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger('demo_updates')


def random_posdef(n):
    X = torch.rand(n, n, dtype=torch.float64)
    return symmetrize(jitter(X.T @ X, eps=1.0))


sizes = [50, 100, 200, 400, 800]
t_refactor = []
t_update = []
errors = []

for n in sizes:
    A = random_posdef(n)
    v = torch.rand(n, dtype=torch.float64)
    C = cholesky(A)

    start = time.perf_counter()
    C_ref = cholesky(A + torch.outer(v, v))
    t_refactor.append(time.perf_counter() - start)

    start = time.perf_counter()
    C_new = lowrank_update(C, v)
    t_update.append(time.perf_counter() - start)

    err = torch.max(torch.abs(C_new.U.to_dense() - C_ref.U.to_dense())).item()
    back = torch.max(torch.abs(lowrank_downdate(C_new, v).to_dense() - A)).item()
    errors.append(err)
    logger.info('n = %d: refactor %.2e s, update %.2e s, factor error %.1e, downdate error %.1e',
                n, t_refactor[-1], t_update[-1], err, back)

plt.loglog(sizes, t_refactor, 'ko-', label='cholesky(A + v v\')')
plt.loglog(sizes, t_update, 'r^--', label='lowrank_update(C, v)')
plt.loglog(sizes, t_update[-1] * (np.array(sizes) / sizes[-1]) ** 2, ':', color='gray', label=r'$O(n^2)$')

plt.ylabel('time (s)')
plt.xlabel(r'$n$')

plt.legend(frameon=False)
plt.show()
