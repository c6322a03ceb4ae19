"""
タイトル類似度の計算

判定は安いものから順に行い、最初に当てはまった規則のスコアを返す:
完全一致(100) → 空白正規化後の一致(95) → 包含(短い方/長い方 * 90) → レーベンシュタイン距離
"""

import re

_WHITESPACE = re.compile(r"\s+")

EXACT_MATCH_SCORE = 100.0
WHITESPACE_MATCH_SCORE = 95.0
CONTAINMENT_WEIGHT = 90.0


def normalize_title(title: str) -> str:
    """比較・照合用にタイトルを正規化する（前後の空白除去と小文字化）"""
    return (title or "").strip().lower()


def levenshtein_distance(s1: str, s2: str) -> int:
    """2つの文字列の編集距離を返す。メモリは短い方の長さ分だけ使う"""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            if c1 == c2:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def calculate_similarity(str1: str, str2: str) -> float:
    """
    2つのタイトルの類似度を 0〜100 で返す

    Args:
        str1: 比較するタイトル
        str2: 比較するタイトル

    Returns:
        類似度（100が最も類似）。空文字同士は100
    """
    s1 = normalize_title(str1)
    s2 = normalize_title(str2)

    if s1 == s2:
        return EXACT_MATCH_SCORE

    if _WHITESPACE.sub(" ", s1) == _WHITESPACE.sub(" ", s2):
        return WHITESPACE_MATCH_SCORE

    if s1 in s2 or s2 in s1:
        shorter, longer = sorted((s1, s2), key=len)
        return len(shorter) * CONTAINMENT_WEIGHT / len(longer)

    distance = levenshtein_distance(s1, s2)
    max_length = max(len(s1), len(s2))
    if max_length == 0:
        return EXACT_MATCH_SCORE
    return (max_length - distance) * 100.0 / max_length
