import httpx
import logging
from typing import Dict, Any, List, Optional

from app.config import settings, GLIDE_MAX_MUTATIONS_PER_CALL
from app.connectors.base import (
    BaseRecordConnector,
    ConnectionTestResult,
    FailedBatch,
    GlideColumn,
    GlidePage,
    GlideTable,
    WriteResult,
)
from app.connectors.exceptions import (
    GlideApiError,
    GlideAuthError,
    GlideNetworkError,
    GlideRateLimitError,
)
from app.constants.glide import ROW_ID_FIELD

log = logging.getLogger(__name__)


def _infer_type(value: Any) -> str:
    # bool first: bool is a subclass of int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def _first_result(data: Any) -> Dict[str, Any]:
    """queryTables answers with one result per query; we always send one."""
    if isinstance(data, list):
        data = data[0] if data else {}
    if not isinstance(data, dict):
        raise GlideApiError(f"Unexpected Glide response shape: {type(data).__name__}")
    return data


class GlideConnector(BaseRecordConnector):
    """
    Client for the Glide tables API.

    Reads go through queryTables (paged via the 'next'/'startAt' token), writes
    through mutateTables in batches capped at the API's per-call mutation limit.
    """

    QUERY_PATH = "/api/function/queryTables"
    MUTATE_PATH = "/api/function/mutateTables"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.app_id = self.config["app_id"]
        self.api_key = self.config["api_key"]  # Already decrypted by get_connector_instance
        self.base_url = str(self.config.get("base_url") or settings.glide_api_base_url).rstrip("/")

        batch_size = int(self.config.get("write_batch_size") or settings.glide_write_batch_size)
        self.write_batch_size = max(1, min(batch_size, GLIDE_MAX_MUTATIONS_PER_CALL))

        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "timeout": httpx.Timeout(self.config.get("timeout") or settings.glide_timeout_seconds),
        }
        if self.config.get("transport") is not None:
            client_kwargs["transport"] = self.config["transport"]
        self.client = httpx.AsyncClient(**client_kwargs)
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        log.debug(f"Glide connector initialized for app {self.app_id} at {self.base_url}")

    async def _request(self, path: str, payload: Dict[str, Any]) -> Any:
        """POST to the Glide API, translating failures into GlideApiError subclasses."""
        try:
            log.trace(f"Glide API POST {self.base_url}{path} payload={payload}")
            response = await self.client.post(path, json=payload, headers=self.headers)
            log.trace(f"Glide API response: {response.status_code}")
            response.raise_for_status()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text
            log.error(f"Glide API HTTP {status} for {path}: {body}")

            if status in (401, 403):
                raise GlideAuthError(
                    f"Glide authentication failed (HTTP {status}): check the API key and app ID",
                    status_code=status,
                    body=body,
                ) from e
            if status == 429:
                raise GlideRateLimitError(f"Glide rate limit exceeded: {body}", body=body) from e
            raise GlideApiError(f"Glide API HTTP {status}: {body}", status_code=status, body=body) from e

        except httpx.TimeoutException as e:
            log.error(f"Glide API request to {path} timed out: {e}")
            raise GlideNetworkError(f"Glide API request timed out: {e}", timeout=True) from e

        except httpx.RequestError as e:
            log.error(f"Glide API request error for {path}: {e}")
            raise GlideNetworkError(f"Glide API request error: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise GlideApiError(
                "Glide API returned a non-JSON response",
                status_code=response.status_code,
                body=response.text,
            ) from e

    async def _query(self, queries: List[Dict[str, Any]]) -> Any:
        return await self._request(self.QUERY_PATH, {"appID": self.app_id, "queries": queries})

    async def test_connection(self, table_name: Optional[str] = None) -> ConnectionTestResult:
        query: Dict[str, Any] = {"limit": 1}
        if table_name:
            query["tableName"] = table_name
        try:
            await self._query([query])
        except GlideApiError as e:
            log.warning(f"Glide connection test failed for app {self.app_id}: {e}")
            return ConnectionTestResult(success=False, message=str(e), status_code=e.status_code)
        return ConnectionTestResult(success=True, message="Connection successful")

    async def list_tables(self) -> List[GlideTable]:
        result = _first_result(await self._query([{"listTables": True}]))
        tables = []
        for table in result.get("tables") or []:
            table_id = table.get("id") or table.get("name")
            if not table_id:
                continue
            tables.append(GlideTable(
                id=str(table_id),
                display_name=str(table.get("name") or table.get("display_name") or table_id),
            ))
        log.debug(f"Glide app {self.app_id} has {len(tables)} tables")
        return tables

    async def get_table_columns(self, table_id: str) -> List[GlideColumn]:
        result = _first_result(await self._query([{"tableName": table_id, "limit": 1}]))

        declared = result.get("columns")
        if declared:
            return [
                GlideColumn(
                    id=str(col.get("id") or col.get("name")),
                    name=str(col.get("name") or col.get("id")),
                    type=str(col.get("type") or "string"),
                )
                for col in declared
                if col.get("id") or col.get("name")
            ]

        rows = result.get("rows") or []
        if not rows or not isinstance(rows[0], dict):
            log.info(f"Glide table {table_id} has no rows to infer columns from")
            return []

        sample = rows[0]
        columns = []
        for key, value in sample.items():
            name = "Row ID" if key == ROW_ID_FIELD else key
            columns.append(GlideColumn(id=key, name=name, type=_infer_type(value)))
        return columns

    async def fetch_page(self, table_id: str, continuation_token: Optional[str] = None) -> GlidePage:
        query: Dict[str, Any] = {"tableName": table_id, "utc": True}
        if continuation_token:
            query["startAt"] = continuation_token

        result = _first_result(await self._query([query]))
        rows = result.get("rows") or []
        if not isinstance(rows, list):
            raise GlideApiError(f"Unexpected rows payload for table {table_id}: {type(rows).__name__}")

        page = GlidePage(rows=rows, next=result.get("next") or None)
        log.debug(f"Fetched {len(page.rows)} rows from Glide table {table_id} (more={page.next is not None})")
        return page

    @staticmethod
    def _mutation(table_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        values = {k: v for k, v in row.items() if k != ROW_ID_FIELD}
        row_id = row.get(ROW_ID_FIELD)
        if row_id:
            return {"kind": "set-columns-in-row", "tableName": table_id, "rowID": row_id, "columnValues": values}
        return {"kind": "add-row-to-table", "tableName": table_id, "columnValues": values}

    @staticmethod
    def _returned_row_ids(batch: List[Dict[str, Any]], data: Any) -> List[Optional[str]]:
        results = data if isinstance(data, list) else []
        row_ids: List[Optional[str]] = []
        for i, row in enumerate(batch):
            row_id = row.get(ROW_ID_FIELD)
            if not row_id and i < len(results) and isinstance(results[i], dict):
                row_id = results[i].get("rowID")
            row_ids.append(str(row_id) if row_id else None)
        return row_ids

    async def write_rows(self, table_id: str, rows: List[Dict[str, Any]]) -> WriteResult:
        result = WriteResult()
        size = self.write_batch_size

        for index, start in enumerate(range(0, len(rows), size)):
            batch = rows[start:start + size]
            mutations = [self._mutation(table_id, row) for row in batch]
            result.batches_attempted += 1
            try:
                data = await self._request(self.MUTATE_PATH, {"appID": self.app_id, "mutations": mutations})
            except GlideApiError as e:
                log.warning(f"Glide write batch {index} ({len(batch)} rows) to {table_id} failed: {e}")
                result.failed_batches.append(FailedBatch(
                    index=index,
                    offset=start,
                    rows=batch,
                    error=str(e),
                    status_code=e.status_code,
                    error_type=e.error_type.value,
                    retryable=e.retryable,
                ))
                result.row_ids.extend([None] * len(batch))
                continue

            result.batches_succeeded += 1
            result.written_rows += len(batch)
            result.row_ids.extend(self._returned_row_ids(batch, data))

        log.info(
            f"Glide write to {table_id}: {result.written_rows}/{len(rows)} rows in "
            f"{result.batches_succeeded}/{result.batches_attempted} batches"
        )
        return result

    async def close(self) -> None:
        await self.client.aclose()
