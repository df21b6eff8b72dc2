"""Vector similarity helpers (numpy)."""

import numpy as np


def cosine_similarities(query: list[float], vectors: list[list[float]]) -> np.ndarray:
    """
    Cosine similarity of *query* against each row of *vectors*.

    Zero-norm vectors score 0.0 rather than NaN.

    Returns:
        1-D array of similarities in [-1, 1], aligned with *vectors*
    """
    if not vectors:
        return np.zeros(0, dtype=np.float64)

    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(vectors, dtype=np.float64)

    q_norm = np.linalg.norm(q)
    m_norms = np.linalg.norm(m, axis=1)
    denom = m_norms * q_norm

    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, (m @ q) / denom, 0.0)
    return np.clip(sims, -1.0, 1.0)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    return float(cosine_similarities(a, [b])[0])
