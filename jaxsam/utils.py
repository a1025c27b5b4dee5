import contextlib
import time
from typing import Generator

import numpy as onp
import termcolor

from . import hints


@contextlib.contextmanager
def stopwatch(label: str = "unlabeled block") -> Generator[None, None, None]:
    """Context manager for measuring runtime."""
    start_time = time.time()
    print("\n========")
    print(f"Running ({label})")
    yield
    print(f"{termcolor.colored(str(time.time() - start_time), attrs=['bold'])} seconds")
    print("========")


def sqrtinf_to_string(sqrtinf: hints.Array) -> str:
    """Encode an upper-triangular square matrix as `{r00,r01,...,r0n,r11,...}`."""
    sqrtinf = onp.asarray(sqrtinf)
    assert (
        len(sqrtinf.shape) == 2 and sqrtinf.shape[0] == sqrtinf.shape[1]
    ), "Square root information matrix must be square!"
    rows, cols = onp.triu_indices(sqrtinf.shape[0])
    return "{" + ",".join(f"{value:g}" for value in sqrtinf[rows, cols]) + "}"


def sqrtinf_from_covariance(covariance: hints.Array) -> onp.ndarray:
    """Upper-triangular `R` such that `R.T @ R` is the inverse of `covariance`."""
    covariance = onp.asarray(covariance, dtype=onp.float64)
    assert (
        len(covariance.shape) == 2 and covariance.shape[0] == covariance.shape[1]
    ), "Covariance must be a square matrix!"
    return onp.linalg.cholesky(onp.linalg.inv(covariance)).T
