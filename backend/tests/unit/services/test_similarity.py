import pytest

from app.services.similarity import calculate_similarity, levenshtein_distance, normalize_title


def test_normalize_title():
    assert normalize_title("  Login Test ") == "login test"
    assert normalize_title(None) == ""


@pytest.mark.parametrize("s1, s2, expected", [
    ("kitten", "sitting", 3),
    ("", "abc", 3),
    ("abc", "", 3),
    ("flaw", "lawn", 2),
    ("same", "same", 0),
])
def test_levenshtein_distance(s1, s2, expected):
    """編集距離の計算をテスト"""
    assert levenshtein_distance(s1, s2) == expected


def test_exact_match_ignores_case_and_outer_whitespace():
    assert calculate_similarity("Login Test", "  login test ") == 100.0


def test_empty_titles_are_identical():
    assert calculate_similarity("", "") == 100.0
    assert calculate_similarity("   ", "") == 100.0


def test_inner_whitespace_difference_scores_95():
    """内部の空白の違いだけなら95になることをテスト"""
    assert calculate_similarity("Login  test", "login test") == 95.0
    assert calculate_similarity("login\ttest", "login test") == 95.0


def test_containment_score():
    """一方が他方を含む場合は長さの比に90を掛けた値になることをテスト"""
    assert calculate_similarity("login", "login test") == 45.0
    assert calculate_similarity("login test", "login") == 45.0
    assert calculate_similarity("", "abc") == 0.0


def test_levenshtein_score():
    """編集距離に基づくスコアをテスト"""
    assert calculate_similarity("abcde", "abcdx") == 80.0
    assert calculate_similarity("User can log in", "User can log out") == pytest.approx(
        (16 - levenshtein_distance("user can log in", "user can log out")) * 100 / 16
    )


@pytest.mark.parametrize("s1, s2", [
    ("Checkout as guest", "Checkout as member"),
    ("abc", "xyz"),
    ("Reset password", "reset  password"),
    ("Search", "Search results"),
])
def test_similarity_is_symmetric_and_bounded(s1, s2):
    """類似度が対称で0〜100に収まることをテスト"""
    score = calculate_similarity(s1, s2)
    assert score == calculate_similarity(s2, s1)
    assert 0.0 <= score <= 100.0


def test_completely_different_titles():
    assert calculate_similarity("abc", "xyz") == 0.0
