"""向量运算 -- 纯函数，无外部依赖

余弦相似度、归一化、两两相似度矩阵、top-k 最近邻。
"""

import math
from collections.abc import Sequence

from .exceptions import InvalidArgumentError
from .models.responses import SimilarityMatch

Vector = Sequence[float]


def _magnitude(vector: Vector) -> float:
    return math.sqrt(math.fsum(x * x for x in vector))


def cosine_similarity(a: Vector, b: Vector) -> float:
    """计算两个向量的余弦相似度，取值 [-1, 1]

    任一向量模长为 0 时返回 0.0。

    Raises:
        InvalidArgumentError: 维度不一致
    """
    if len(a) != len(b):
        raise InvalidArgumentError("Vectors must have the same dimensions", field="vector")

    magnitude_a = _magnitude(a)
    magnitude_b = _magnitude(b)
    if magnitude_a == 0.0 or magnitude_b == 0.0:
        return 0.0

    dot = math.fsum(x * y for x, y in zip(a, b, strict=True))
    # 浮点误差可能使结果略超出 [-1, 1]
    return max(-1.0, min(1.0, dot / (magnitude_a * magnitude_b)))


def normalize(vector: Vector) -> list[float]:
    """归一化为单位向量；零向量原样返回"""
    magnitude = _magnitude(vector)
    if magnitude == 0.0:
        return list(vector)
    return [x / magnitude for x in vector]


def pairwise_similarities(vectors: Sequence[Vector]) -> list[list[float]]:
    """N x N 相似度矩阵：对称，对角线恒为 1.0"""
    count = len(vectors)
    matrix = [[0.0] * count for _ in range(count)]
    for i in range(count):
        matrix[i][i] = 1.0
        for j in range(i + 1, count):
            similarity = cosine_similarity(vectors[i], vectors[j])
            matrix[i][j] = similarity
            matrix[j][i] = similarity
    return matrix


def find_most_similar(
    query: Vector,
    candidates: Sequence[Vector],
    top_k: int = 5,
) -> list[SimilarityMatch]:
    """按余弦相似度降序返回最多 top_k 个候选

    每条结果携带候选在输入中的原始下标；相似度相同时保持输入顺序。
    候选为空时返回空列表。
    """
    if top_k < 1:
        raise InvalidArgumentError("top_k must be a positive integer", field="top_k")
    if not candidates:
        return []

    matches = [
        SimilarityMatch(index=index, similarity=cosine_similarity(query, candidate))
        for index, candidate in enumerate(candidates)
    ]
    matches.sort(key=lambda match: match.similarity, reverse=True)
    return matches[:top_k]
