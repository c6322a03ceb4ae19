"""
サービス層のモジュール
"""
from .csv_parser import parse_test_cases_csv, build_template_csv, export_test_cases_csv
from .similarity import calculate_similarity, levenshtein_distance, normalize_title
from .duplicates import find_duplicate_groups, field_differences, collect_repository_test_cases
from .merge import MergeEngine, merge_fields, fold_group
from .suite_tree import SuiteIndex, SuiteReorderEngine, build_suite_tree, plan_move, intent_from_pointer
from .importer import BulkImportReconciler
from .bulk_ops import bulk_move_test_cases, bulk_delete_test_cases
from .store import (
    TestCaseRepositoryService, CredentialStore,
    HttpTestCaseService, SQLTestCaseService, StoreFactory
)

__all__ = [
    # CSV関連
    "parse_test_cases_csv", "build_template_csv", "export_test_cases_csv",

    # 重複検出・マージ関連
    "calculate_similarity", "levenshtein_distance", "normalize_title",
    "find_duplicate_groups", "field_differences", "collect_repository_test_cases",
    "MergeEngine", "merge_fields", "fold_group",

    # スイートツリー関連
    "SuiteIndex", "SuiteReorderEngine", "build_suite_tree", "plan_move", "intent_from_pointer",

    # インポート・一括操作
    "BulkImportReconciler",
    "bulk_move_test_cases", "bulk_delete_test_cases",

    # リポジトリサービス
    "TestCaseRepositoryService", "CredentialStore",
    "HttpTestCaseService", "SQLTestCaseService", "StoreFactory",
]
