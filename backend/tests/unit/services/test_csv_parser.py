import json
import pytest

from app.exceptions import CSVImportException, HeaderNotFoundError, RequiredColumnMissingError
from app.schemas.test_case import FreeTextPreconditions, TestCaseData, TestCaseRecord
from app.services.csv_parser import (
    TEMPLATE_HEADERS,
    build_template_csv,
    decode_csv_bytes,
    detect_delimiter,
    export_test_cases_csv,
    find_header_index,
    iter_logical_rows,
    parse_test_cases_csv,
    split_fields,
)

LOGIN_CSV = 'title;description;priority;automated\n"Login works";"User logs in";high;yes\n'


def test_parse_basic_semicolon_row():
    """セミコロン区切りの基本的な行を解析できることをテスト"""
    rows = parse_test_cases_csv(LOGIN_CSV)

    assert len(rows) == 1
    row = rows[0]
    assert row.title == "Login works"
    assert row.description == "User logs in"
    assert row.priority == 3
    assert row.automated is True
    assert row.regression is False
    assert row.severity == "Moderate"
    assert row.data is None


def test_parse_template_roundtrip():
    """テンプレートCSVを解析すると例の2行が得られることをテスト"""
    rows = parse_test_cases_csv(build_template_csv())

    assert [r.title for r in rows] == ["Example Test Case 1", "Example Test Case 2"]
    first = rows[0]
    assert first.labels == "smoke,regression"
    assert first.priority == 3
    assert first.automated is True
    assert first.regression is True
    assert first.epic_link == "EPIC-123"
    assert first.linked_issue == "JIRA-456"
    assert first.release_version == "v1.0.0"
    assert first.severity == "Critical"
    assert json.loads(first.platform) == ["web", "android"]
    assert first.data.preconditions == FreeTextPreconditions(text="User is logged in")
    assert first.data.bdd_scenarios.startswith("Given I am on the homepage\nWhen")

    second = rows[1]
    assert second.priority == 2
    assert second.automated is False
    assert second.epic_link is None
    assert second.platform == '["ios"]'


def test_header_without_title_raises_required_column_error():
    """title 列のないヘッダーは必須列エラーになることをテスト"""
    with pytest.raises(RequiredColumnMissingError):
        parse_test_cases_csv("name;description\nFoo;Bar")


def test_missing_header_row():
    """ヘッダー行が見つからない場合のエラーをテスト"""
    with pytest.raises(HeaderNotFoundError) as exc_info:
        parse_test_cases_csv("foo;bar\n1;2\n")
    assert isinstance(exc_info.value, CSVImportException)
    assert exc_info.value.message == "Could not find CSV header row"


def test_header_with_title_like_column_only():
    """title を含むだけの別名の列しかない場合は必須列エラーになることをテスト"""
    with pytest.raises(RequiredColumnMissingError) as exc_info:
        parse_test_cases_csv("title_old;description\nFoo;Bar\n")
    assert exc_info.value.message == "Title column not found in CSV"


def test_header_preceded_by_junk_lines():
    """ヘッダーより前の行は読み飛ばされることをテスト"""
    text = "Exported from tracker\n\ntitle;description\nCase A;Desc\n"
    assert find_header_index(text.split("\n")) == 2
    rows = parse_test_cases_csv(text)
    assert [r.title for r in rows] == ["Case A"]


def test_tab_delimited():
    """ヘッダーにタブがあればTSVとして扱うことをテスト"""
    text = "title\tdescription\tlabel\nCase;with;semis\tDesc\ta;b\n"
    assert detect_delimiter(text.split("\n")[0]) == "\t"

    rows = parse_test_cases_csv(text)
    assert rows[0].title == "Case;with;semis"
    assert rows[0].labels == "a,b"


def test_quoted_field_with_embedded_newline_and_delimiter():
    """クォート内の改行・区切り文字・二重引用符を扱えることをテスト"""
    text = (
        "title;description;scenario\n"
        '"Checkout; guest";"Says ""hi""";"Given a cart\nWhen I pay\nThen done"\n'
        "Second;Plain;\n"
    )
    rows = parse_test_cases_csv(text)

    assert len(rows) == 2
    assert rows[0].title == "Checkout; guest"
    assert rows[0].description == 'Says "hi"'
    assert rows[0].data.bdd_scenarios == "Given a cart\nWhen I pay\nThen done"
    assert rows[1].title == "Second"
    assert rows[1].data is None


def test_blank_lines_inside_quotes_are_kept():
    """クォート内の空行は保持され、クォート外の空行は読み飛ばされることをテスト"""
    lines = ['"a', "", 'b";x', "", "c;y"]
    assert list(iter_logical_rows(lines)) == ['"a\n\nb";x', "c;y"]


def test_split_fields_unquoted():
    assert split_fields("a; b ;c", ";") == ["a", " b ", "c"]
    assert split_fields('"x;y";z', ";") == ["x;y", "z"]


def test_rows_without_title_are_skipped():
    """タイトルが空の行はスキップされることをテスト"""
    rows = parse_test_cases_csv("title;description\n;orphan description\nReal;desc\n  ;x\n")
    assert [r.title for r in rows] == ["Real"]


def test_priority_tokens():
    """優先度トークンの対応をテスト（未知の値と critical は medium に落ちる）"""
    text = "title;description;priority\nA;;LOW\nB;;Medium\nC;;high\nD;;critical\nE;;urgent\nF;;\n"
    rows = parse_test_cases_csv(text)
    assert [r.priority for r in rows] == [1, 2, 3, 2, 2, 2]


def test_boolean_columns_only_accept_yes():
    rows = parse_test_cases_csv("title;description;automated;regression\nA;;YES;true\nB;;no;Yes\n")
    assert (rows[0].automated, rows[0].regression) == (True, False)
    assert (rows[1].automated, rows[1].regression) == (False, True)


def test_platform_parsing():
    """platform 列がカンマ・セミコロンで分割され小文字のJSON配列になることをテスト"""
    text = 'title;description;platform\nA;;"Web; Android"\nB;;IOS,,mweb\nC;;\n'
    rows = parse_test_cases_csv(text)
    assert rows[0].platform == '["web","android"]'
    assert rows[1].platform == '["ios","mweb"]'
    assert rows[2].platform is None


def test_labels_semicolons_become_commas():
    rows = parse_test_cases_csv('title;description;label\nA;;"smoke;ui"\n')
    assert rows[0].labels == "smoke,ui"


def test_bom_and_crlf_are_stripped():
    """BOMとCRLF改行を扱えることをテスト"""
    text = "\ufefftitle;description\r\nCase;Desc\r\n"
    rows = parse_test_cases_csv(text)
    assert rows[0].title == "Case"
    assert rows[0].description == "Desc"


def test_quoted_and_mixed_case_headers():
    rows = parse_test_cases_csv('"Title";"Description";"Fix_Version"\nCase;Desc;2.0\n')
    assert rows[0].release_version == "2.0"


def test_duplicate_header_first_occurrence_wins():
    rows = parse_test_cases_csv("title;description;title\nFirst;d;Second\n")
    assert rows[0].title == "First"


def test_short_rows_leave_missing_columns_empty():
    rows = parse_test_cases_csv("title;description;epic_link;severity\nOnly title\n")
    assert rows[0].description is None
    assert rows[0].epic_link is None
    assert rows[0].severity == "Moderate"


def test_preconditions_only_creates_data_blob():
    rows = parse_test_cases_csv("title;description;precondition\nA;;Logged in\n")
    assert rows[0].data == TestCaseData(preconditions=FreeTextPreconditions(text="Logged in"))
    assert rows[0].to_payload()["data"] == {"preconditions": "Logged in", "preconditionsMode": "free_text"}


def test_template_headers():
    """テンプレートのヘッダー行をテスト"""
    first_line = build_template_csv().split("\n")[0]
    assert first_line.split(";") == TEMPLATE_HEADERS


def test_export_can_be_reimported():
    """エクスポートしたCSVをそのまま再インポートできることをテスト"""
    records = [
        TestCaseRecord(
            id="tc-1",
            title="Login; with SSO",
            description='Click "Sign in"',
            automated=True,
            priority=4,
            labels="auth,smoke",
            platform='["web","ios"]',
            release_version="2.1",
            severity="Major",
            data={"preconditions": "Account exists", "bddScenarios": "Given x\nThen y"},
        ),
        TestCaseRecord(id="tc-2", title="Logout", priority=1),
    ]

    text = export_test_cases_csv(records)
    rows = parse_test_cases_csv(text)

    assert [r.title for r in rows] == ["Login; with SSO", "Logout"]
    assert rows[0].description == 'Click "Sign in"'
    assert rows[0].automated is True
    # critical は取り込み時に medium へ落ちる
    assert rows[0].priority == 2
    assert rows[0].labels == "auth,smoke"
    assert json.loads(rows[0].platform) == ["web", "ios"]
    assert rows[0].data.preconditions_text == "Account exists"
    assert rows[0].data.bdd_scenarios == "Given x\nThen y"
    assert rows[1].priority == 1


def test_decode_csv_bytes_strips_bom():
    assert decode_csv_bytes("\ufefftitle;description\n".encode("utf-8")) == "title;description\n"


def test_decode_csv_bytes_rejects_other_encodings():
    """UTF-8 以外のファイルはインポートエラーに変換されることをテスト"""
    with pytest.raises(CSVImportException) as exc_info:
        decode_csv_bytes("Été".encode("latin-1"))
    assert exc_info.value.message == "File must be UTF-8 encoded"
    assert exc_info.value.details["exception_type"] == "UnicodeDecodeError"
