"""
QaHub REST API をバックエンドとするテストケースリポジトリサービス

レスポンスは {"data": {...}} で包まれ、失敗時は {"error": {"code", "message", "details"}} が返る。
401 を受け取った場合は保持しているトークンを破棄し、AuthenticationException を送出する。
"""

from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.exceptions import AuthenticationException, RemoteServiceException
from app.logging_config import logger
from app.schemas.suite import SuiteRecord, SuiteUpdate
from app.schemas.test_case import TestCaseFields, TestCasePage, TestCaseRecord, TestCaseUpdate
from app.services.store.base import TestCaseRepositoryService
from app.utils.retry import async_retry

SUITE_LIST_LIMIT = 1000


class CredentialStore:
    """APIトークンの保持場所。認証エラー時に clear() される"""

    def __init__(self, token: Optional[str] = None):
        self._token = token or None

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None

    def __bool__(self) -> bool:
        return self._token is not None


def _error_details(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    # バリデーションエラーは [{"path": [...], "message": ...}] の配列で返る
    return {"validation": raw}


class HttpTestCaseService(TestCaseRepositoryService):
    """httpx.AsyncClient で QaHub API を呼び出す実装"""

    def __init__(
        self,
        project_id: str,
        repository_id: str,
        base_url: Optional[str] = None,
        credentials: Optional[CredentialStore] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.project_id = str(project_id)
        self.repository_id = str(repository_id)
        self.credentials = credentials if credentials is not None else CredentialStore(settings.QAHUB_API_TOKEN)
        root = (base_url or settings.api_base_url).rstrip("/")
        self.base_url = f"{root}/projects/{self.project_id}/repositories/{self.repository_id}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.TIMEOUT_HTTP_REQUEST,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @async_retry(retry_key="API_CALL", retry_exceptions=[httpx.TransportError])
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.credentials.token:
            headers["Authorization"] = f"Bearer {self.credentials.token}"
        return await self._client.request(method, path, headers=headers, **kwargs)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        """
        APIを呼び出してエンベロープを外した data を返す

        Raises:
            AuthenticationException: 401 の場合（トークンは破棄済み）
            RemoteServiceException: その他のエラーステータスの場合
        """
        response = await self._send(method, path, **kwargs)

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 401:
            self.credentials.clear()
            logger.warning(f"Unauthorized response from {method} {path}, credentials cleared")
            error = body.get("error") or {}
            raise AuthenticationException(details=_error_details(error.get("details")))

        if response.is_error:
            error = body.get("error") or {}
            message = error.get("message") or f"Request failed with status {response.status_code}"
            logger.error(f"{method} {path} failed with status {response.status_code}: {message}")
            raise RemoteServiceException(
                response.status_code,
                message,
                details=_error_details(error.get("details")),
            )

        data = body.get("data")
        return data if isinstance(data, dict) else {}

    async def list_test_cases(self, suite_id: str, page: int = 1, limit: int = 20) -> TestCasePage:
        data = await self._request(
            "GET",
            f"/suites/{suite_id}/test-cases",
            params={
                "page": page,
                "limit": limit,
                "sortBy": "order",
                "sortOrder": "asc",
                "includeDeleted": "false",
            },
        )
        test_cases = [TestCaseRecord.model_validate(tc) for tc in data.get("testCases") or []]
        pagination = data.get("pagination") or {}
        total = pagination.get("total", len(test_cases))
        return TestCasePage(
            test_cases=test_cases,
            page=pagination.get("page", page),
            limit=pagination.get("limit", limit),
            total=total,
            total_pages=pagination.get("totalPages", 1),
        )

    async def get_test_case(self, suite_id: str, test_case_id: str) -> TestCaseRecord:
        data = await self._request("GET", f"/suites/{suite_id}/test-cases/{test_case_id}")
        if not data.get("testCase"):
            raise RemoteServiceException(404, "Test case not found")
        return TestCaseRecord.model_validate(data["testCase"])

    async def create_test_case(self, suite_id: str, payload: TestCaseFields) -> TestCaseRecord:
        data = await self._request("POST", f"/suites/{suite_id}/test-cases", json=payload.to_payload())
        return TestCaseRecord.model_validate(data.get("testCase") or {"id": "", **payload.to_payload()})

    async def update_test_case(self, suite_id: str, test_case_id: str, update: TestCaseUpdate) -> TestCaseRecord:
        data = await self._request(
            "PATCH",
            f"/suites/{suite_id}/test-cases/{test_case_id}",
            json=update.to_payload(),
        )
        if data.get("testCase"):
            return TestCaseRecord.model_validate(data["testCase"])
        return TestCaseRecord.model_validate({"id": test_case_id, "title": update.title or "", **update.to_payload()})

    async def delete_test_case(self, suite_id: str, test_case_id: str) -> None:
        await self._request("DELETE", f"/suites/{suite_id}/test-cases/{test_case_id}")

    async def move_test_case(self, test_case_id: str, target_suite_id: str) -> TestCaseRecord:
        data = await self._request(
            "POST",
            f"/test-cases/{test_case_id}/move",
            json={"targetSuiteId": target_suite_id},
        )
        return TestCaseRecord.model_validate(
            data.get("testCase") or {"id": test_case_id, "title": "", "suiteId": target_suite_id}
        )

    async def list_suites(self) -> List[SuiteRecord]:
        data = await self._request(
            "GET",
            "/suites",
            params={"page": 1, "limit": SUITE_LIST_LIMIT, "sortBy": "order", "sortOrder": "asc"},
        )
        return [SuiteRecord.model_validate(s) for s in data.get("suites") or []]

    async def get_suite(self, suite_id: str) -> Optional[SuiteRecord]:
        try:
            data = await self._request("GET", f"/suites/{suite_id}")
        except AuthenticationException:
            raise
        except RemoteServiceException as e:
            if e.status_code == 404:
                return None
            raise
        suite = data.get("suite")
        return SuiteRecord.model_validate(suite) if suite else None

    async def create_suite(self, title: str, parent_id: Optional[str] = None) -> SuiteRecord:
        data = await self._request("POST", "/suites", json={"title": title, "parentId": parent_id})
        if not data.get("suite"):
            raise RemoteServiceException(500, "Suite was not returned by the service")
        return SuiteRecord.model_validate(data["suite"])

    async def delete_suite(self, suite_id: str) -> None:
        await self._request("DELETE", f"/suites/{suite_id}")

    async def update_suite(self, suite_id: str, update: SuiteUpdate) -> SuiteRecord:
        data = await self._request("PATCH", f"/suites/{suite_id}", json=update.to_payload())
        if data.get("suite"):
            return SuiteRecord.model_validate(data["suite"])
        return SuiteRecord.model_validate({"id": suite_id, "title": update.title or "", **update.to_payload()})
