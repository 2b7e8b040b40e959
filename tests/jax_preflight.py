from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np


def assert_cpu_backend() -> None:
    """Fail fast when the IBS kernels would not run on the CPU backend."""
    backend = jax.default_backend()
    assert backend == "cpu", f"IBS tests expect the 'cpu' JAX backend, got '{backend}'."
    # one co-call product, the same shape of work identity.match_counts does
    called = jnp.asarray(np.array([[1.0, 0.0], [1.0, 1.0]], dtype=np.float32))
    cocall = np.asarray(called @ called.T)
    assert cocall.tolist() == [[1.0, 1.0], [1.0, 2.0]], "JAX matmul returned unexpected co-call counts"
