from jax import numpy as jnp

from .. import hints


def standard_rad(angle: hints.Scalar) -> jnp.ndarray:
    """Wrap an angle (or array of angles) into the half-open interval (-pi, pi].

    Works on traced values, so it can be used inside residual functions.
    """
    return jnp.pi - jnp.mod(jnp.pi - angle, 2.0 * jnp.pi)
