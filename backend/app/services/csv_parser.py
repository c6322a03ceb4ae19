"""
テストケースCSV/TSVの解析・生成モジュール

インポート用のCSV方言は次の通り:
- 区切り文字はヘッダー行にタブが含まれればタブ、そうでなければセミコロン
- ヘッダー行は "title" と "description" の両方を含む最初の行
- ダブルクォートで囲まれたフィールドは改行・区切り文字を含められ、"" はリテラルの "
- label 列ではセミコロンをカンマへ置換し、platform 列は [;,] で分割する
"""

import csv
import io
import json
import re
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from app.exceptions import CSVImportException, HeaderNotFoundError, RequiredColumnMissingError, convert_exception
from app.logging_config import logger
from app.schemas.test_case import (
    FreeTextPreconditions,
    ParsedRow,
    Priority,
    TestCaseData,
    TestCaseRecord,
)

TEMPLATE_HEADERS = [
    "title",
    "description",
    "label",
    "automated",
    "priority",
    "precondition",
    "scenario",
    "regression",
    "epic_link",
    "link_issue",
    "platform",
    "fix_version",
    "severity",
]

TEMPLATE_EXAMPLE_ROWS = [
    [
        "Example Test Case 1",
        "This is a sample test case description",
        "smoke,regression",
        "yes",
        "high",
        "User is logged in",
        "Given I am on the homepage\nWhen I click the login button\nThen I should see the login form",
        "yes",
        "EPIC-123",
        "JIRA-456",
        "web,android",
        "v1.0.0",
        "Critical",
    ],
    [
        "Example Test Case 2",
        "Another example test case",
        "integration",
        "no",
        "medium",
        "System is configured",
        "Given the system is ready\nWhen I perform an action\nThen the result should be correct",
        "yes",
        "",
        "",
        "ios",
        "v1.1.0",
        "Moderate",
    ],
]

DEFAULT_DELIMITER = ";"
DEFAULT_SEVERITY = "Moderate"

PRIORITY_TOKENS: Dict[str, int] = {
    "low": Priority.LOW.value,
    "medium": Priority.MEDIUM.value,
    "high": Priority.HIGH.value,
}

_PLATFORM_SPLIT = re.compile(r"[;,]")


def find_header_index(lines: Sequence[str]) -> int:
    """title と description を両方含む最初の行の位置を返す"""
    for index, line in enumerate(lines):
        lowered = line.lower()
        if "title" in lowered and "description" in lowered:
            return index
    raise HeaderNotFoundError()


def detect_delimiter(header_line: str) -> str:
    return "\t" if "\t" in header_line else DEFAULT_DELIMITER


def split_fields(line: str, delimiter: str) -> List[str]:
    """
    1論理行をフィールドに分割する

    クォート内の区切り文字は通常の文字として扱い、クォート内の "" はリテラルの " になる。

    Args:
        line: 論理行（クォート内の改行を含みうる）
        delimiter: 区切り文字

    Returns:
        フィールドのリスト（トリム前）
    """
    values: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append("".join(current))
            current = []
        else:
            current.append(char)
        i += 1
    values.append("".join(current))
    return values


def iter_logical_rows(lines: Sequence[str]) -> Iterator[str]:
    """
    物理行を論理行にまとめる

    バッファ中の " の数が奇数の間（クォートが閉じていない間）は次の物理行を改行付きで連結する。
    クォート外の空行は読み飛ばす。
    """
    i = 0
    while i < len(lines):
        buffer = lines[i]
        i += 1
        if not buffer.strip():
            continue
        while buffer.count('"') % 2 != 0 and i < len(lines):
            buffer += "\n" + lines[i]
            i += 1
        yield buffer


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _parse_priority(token: Optional[str], row_number: int) -> int:
    if not token:
        return Priority.MEDIUM.value
    token = token.lower()
    if token in PRIORITY_TOKENS:
        return PRIORITY_TOKENS[token]
    if token == Priority.CRITICAL.name.lower():
        # critical はインポート時の対応表に含めない（既定値に落とす）
        logger.warning(f"Row {row_number}: priority 'critical' is not importable, using default medium")
    return Priority.MEDIUM.value


def _parse_platform(cell: Optional[str]) -> Optional[str]:
    if not cell:
        return None
    tokens = [p.strip().lower() for p in _PLATFORM_SPLIT.split(cell)]
    tokens = [p for p in tokens if p]
    if not tokens:
        return None
    return json.dumps(tokens, separators=(",", ":"))


class _RowMapper:
    """ヘッダー名から列位置を引いて ParsedRow を組み立てる"""

    def __init__(self, headers: List[str]):
        self.columns = {name: index for index, name in reversed(list(enumerate(headers)))}
        if "title" not in self.columns:
            raise RequiredColumnMissingError()

    def cell(self, values: List[str], name: str) -> Optional[str]:
        index = self.columns.get(name)
        if index is None or index >= len(values):
            return None
        return values[index]

    def to_row(self, values: List[str], row_number: int) -> Optional[ParsedRow]:
        title = _optional(self.cell(values, "title"))
        if not title:
            return None

        labels = _optional(self.cell(values, "label"))
        if labels:
            labels = labels.replace(";", ",")

        preconditions = _optional(self.cell(values, "precondition"))
        scenario = _optional(self.cell(values, "scenario"))
        data = None
        if preconditions or scenario:
            data = TestCaseData(
                preconditions=FreeTextPreconditions(text=preconditions) if preconditions else None,
                bdd_scenarios=scenario,
            )

        return ParsedRow(
            title=title,
            description=_optional(self.cell(values, "description")),
            labels=labels,
            automated=(self.cell(values, "automated") or "").lower() == "yes",
            priority=_parse_priority(self.cell(values, "priority"), row_number),
            severity=_optional(self.cell(values, "severity")) or DEFAULT_SEVERITY,
            regression=(self.cell(values, "regression") or "").lower() == "yes",
            epic_link=_optional(self.cell(values, "epic_link")),
            linked_issue=_optional(self.cell(values, "link_issue")),
            release_version=_optional(self.cell(values, "fix_version")),
            platform=_parse_platform(_optional(self.cell(values, "platform"))),
            data=data,
        )


@convert_exception(CSVImportException, "File must be UTF-8 encoded")
def decode_csv_bytes(contents: bytes) -> str:
    """アップロードされたファイルの内容を文字列にする（BOM は取り除く）"""
    return contents.decode("utf-8-sig")


def parse_test_cases_csv(text: str) -> List[ParsedRow]:
    """
    CSV/TSVテキストを ParsedRow のリストに変換する

    Args:
        text: ファイルの内容

    Returns:
        解析されたテストケース行。タイトルが空の行は読み飛ばす

    Raises:
        HeaderNotFoundError: ヘッダー行が見つからない
        RequiredColumnMissingError: ヘッダーに title 列がない
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    lines = [line.rstrip("\r") for line in text.split("\n")]

    header_index = find_header_index(lines)
    header_line = lines[header_index]
    delimiter = detect_delimiter(header_line)
    headers = [h.strip().strip('"').strip().lower() for h in header_line.split(delimiter)]
    mapper = _RowMapper(headers)

    rows: List[ParsedRow] = []
    skipped = 0
    for row_number, logical in enumerate(iter_logical_rows(lines[header_index + 1:]), start=1):
        values = [v.strip() for v in split_fields(logical, delimiter)]
        row = mapper.to_row(values, row_number)
        if row is None:
            skipped += 1
            continue
        rows.append(row)

    delimiter_name = "tab" if delimiter == "\t" else "semicolon"
    logger.info(f"Parsed {len(rows)} test case rows ({delimiter_name}-delimited, {skipped} skipped without title)")
    return rows


def _write_rows(rows: Iterable[Sequence[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=DEFAULT_DELIMITER, lineterminator="\n", quoting=csv.QUOTE_MINIMAL)
    writer.writerow(TEMPLATE_HEADERS)
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def build_template_csv() -> str:
    """インポート用テンプレートCSV（ヘッダーと2件の例）を生成する"""
    return _write_rows(TEMPLATE_EXAMPLE_ROWS)


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def record_to_csv_row(record: TestCaseRecord) -> List[str]:
    """既存のテストケースをインポート方言の1行に変換する"""
    try:
        priority = Priority(record.priority).name.lower()
    except ValueError:
        priority = Priority.MEDIUM.name.lower()

    data = record.data
    return [
        record.title,
        record.description or "",
        record.labels or "",
        _yes_no(record.automated),
        priority,
        (data.preconditions_text if data else None) or "",
        (data.bdd_scenarios if data else None) or "",
        _yes_no(record.regression),
        record.epic_link or "",
        record.linked_issue or "",
        ",".join(record.platform_list()),
        record.release_version or "",
        record.severity or "",
    ]


def export_test_cases_csv(records: Iterable[TestCaseRecord]) -> str:
    """
    テストケースをインポートと同じ方言のCSVとして書き出す

    Args:
        records: 出力するテストケース

    Returns:
        セミコロン区切りのCSVテキスト
    """
    return _write_rows(record_to_csv_row(record) for record in records)
