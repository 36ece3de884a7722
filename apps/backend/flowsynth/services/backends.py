from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Optional, Protocol

import httpx

from flowsynth.agent.generate import GenerationReport
from flowsynth.schemas.records import FlowEdge, FlowNode
from flowsynth.services.errors import PersistenceError, ServiceError, UpstreamError
from flowsynth.services.flows import FlowGraph, FlowService, OperationResult

logger = logging.getLogger(__name__)

_KIND_BY_STATUS = {400: "input", 404: "not_found", 422: "shape", 502: "upstream", 503: "persistence"}


class FlowBackend(Protocol):
    """Async operations the Graph Edit Session needs from the server side."""

    async def load_graph(self, flow_id: str) -> OperationResult[FlowGraph]: ...

    async def save_position(self, node_id: str, x: float, y: float) -> OperationResult[FlowNode]: ...

    async def create_edge(self, flow_id: str, source_id: str, target_id: str) -> OperationResult[FlowEdge]: ...

    async def delete_edge(self, edge_id: str) -> OperationResult[bool]: ...

    async def generate_flow(self, flow_id: str) -> OperationResult[GenerationReport]: ...


class LocalFlowBackend:
    """Runs FlowService calls in worker threads so the event loop never blocks on I/O."""

    def __init__(self, service: FlowService) -> None:
        self.service = service

    async def load_graph(self, flow_id: str) -> OperationResult[FlowGraph]:
        return await asyncio.to_thread(self.service.load_graph, flow_id)

    async def save_position(self, node_id: str, x: float, y: float) -> OperationResult[FlowNode]:
        return await asyncio.to_thread(self.service.save_position, node_id, x, y)

    async def create_edge(self, flow_id: str, source_id: str, target_id: str) -> OperationResult[FlowEdge]:
        return await asyncio.to_thread(self.service.create_edge, flow_id, source_id, target_id)

    async def delete_edge(self, edge_id: str) -> OperationResult[bool]:
        return await asyncio.to_thread(self.service.delete_edge, edge_id)

    async def generate_flow(self, flow_id: str) -> OperationResult[GenerationReport]:
        return await asyncio.to_thread(self.service.generate_flow, flow_id)


def _api_url() -> str:
    url = os.getenv("FLOWSYNTH_API_URL")
    if not url:
        raise RuntimeError("FLOWSYNTH_API_URL not configured")
    return url.rstrip("/")


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {response.status_code}"


class HttpFlowBackend:
    """FlowBackend over the HTTP API, for sessions running outside the server process."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url or _api_url(), timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        transport_error: type[ServiceError] = PersistenceError,
    ) -> OperationResult[Any]:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            return OperationResult.failure(transport_error(f"request failed: {exc}"))
        if response.is_success:
            return OperationResult.success(response.json())
        code = response.status_code
        return OperationResult(
            error=_error_detail(response),
            error_kind=_KIND_BY_STATUS.get(code, "internal"),
            status_code=code,
        )

    async def load_graph(self, flow_id: str) -> OperationResult[FlowGraph]:
        result = await self._request("GET", f"/flows/{flow_id}/graph")
        if not result.ok:
            return result
        body = result.value
        return OperationResult.success(
            FlowGraph(
                flow_id=body["flow_id"],
                nodes=[FlowNode.model_validate(n) for n in body.get("nodes", [])],
                edges=[FlowEdge.model_validate(e) for e in body.get("edges", [])],
            )
        )

    async def save_position(self, node_id: str, x: float, y: float) -> OperationResult[FlowNode]:
        result = await self._request("PATCH", f"/nodes/{node_id}/position", json={"x": x, "y": y})
        return OperationResult.success(FlowNode.model_validate(result.value)) if result.ok else result

    async def create_edge(self, flow_id: str, source_id: str, target_id: str) -> OperationResult[FlowEdge]:
        result = await self._request(
            "POST",
            f"/flows/{flow_id}/edges",
            json={"source_node_id": source_id, "target_node_id": target_id},
        )
        return OperationResult.success(FlowEdge.model_validate(result.value)) if result.ok else result

    async def delete_edge(self, edge_id: str) -> OperationResult[bool]:
        result = await self._request("DELETE", f"/edges/{edge_id}")
        return OperationResult.success(bool(result.value.get("deleted"))) if result.ok else result

    async def generate_flow(self, flow_id: str) -> OperationResult[GenerationReport]:
        result = await self._request("POST", f"/flows/{flow_id}/generate", transport_error=UpstreamError)
        if not result.ok:
            return result
        body = result.value
        return OperationResult.success(
            GenerationReport(
                requested_nodes=int(body["requested_nodes"]),
                inserted_nodes=int(body["inserted_nodes"]),
                inserted_edges=int(body["inserted_edges"]),
                dropped_edges=int(body["dropped_edges"]),
            )
        )
