import math


def _cosine(a: list[float], b: list[float]) -> float | None:
    """Cosine similarity, or None when it is undefined for the inputs."""
    if not a or not b or len(a) != len(b):
        return None
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na <= 0.0 or nb <= 0.0:
        return None
    return float(dot / (math.sqrt(na) * math.sqrt(nb)))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    cos = _cosine(a, b)
    return 0.0 if cos is None else cos


def match_score(a: list[float], b: list[float]) -> int:
    """
    Cosine similarity rescaled to a 0-100 match percentage.

    Degenerate vectors (empty, zero, mismatched dimensions) score 0.
    """
    cos = _cosine(a, b)
    if cos is None:
        return 0
    # Clamp float noise (e.g. 1.0000000002) before rescaling.
    cos = max(-1.0, min(1.0, cos))
    return max(0, min(100, int(round(50.0 * (cos + 1.0)))))
