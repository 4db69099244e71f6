import threading
from typing import Any, Dict, List, Optional

import pytest
from elastic_transport import ApiResponseMeta, HttpHeaders, NodeConfig
from elasticsearch import ApiError

OK_BULK = {"took": 1, "errors": False, "items": []}


def make_meta(status: int) -> ApiResponseMeta:
    return ApiResponseMeta(
        status=status,
        http_version="1.1",
        headers=HttpHeaders(),
        duration=0.0,
        node=NodeConfig("http", "localhost", 9200),
    )


def make_api_error(status: int, body: Any, cls: type = ApiError) -> ApiError:
    return cls(f"HTTP {status}", meta=make_meta(status), body=body)


class FakeIndices:
    def __init__(self, client: "FakeClient") -> None:
        self.client = client
        self.exists_result = False
        self.replicas = "1"
        self.failures: Dict[str, BaseException] = {}

    def _call(self, name: str, **kwargs: Any) -> None:
        self.client.calls.append((name, kwargs))
        if name in self.failures:
            raise self.failures[name]

    def exists(self, index: str) -> bool:
        self._call("exists", index=index)
        return self.exists_result

    def create(self, index: str, **kwargs: Any) -> Dict[str, Any]:
        self._call("create", index=index, **kwargs)
        return {"acknowledged": True}

    def delete(self, index: str) -> Dict[str, Any]:
        self._call("delete", index=index)
        return {"acknowledged": True}

    def put_mapping(self, index: str, body: Dict[str, Any]) -> Dict[str, Any]:
        self._call("put_mapping", index=index, body=body)
        return {"acknowledged": True}

    def get_settings(self, index: str) -> Dict[str, Any]:
        self._call("get_settings", index=index)
        return {index: {"settings": {"index": {"number_of_replicas": self.replicas, "refresh_interval": "1s"}}}}

    def put_settings(self, index: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        self._call("put_settings", index=index, settings=settings)
        return {"acknowledged": True}

    def flush(self, index: str) -> Dict[str, Any]:
        self._call("flush", index=index)
        return {"_shards": {"failed": 0}}


class FakeClient:
    """Stands in for elasticsearch.Elasticsearch, recording every call."""

    def __init__(self, server: str = "http://localhost:9200", responses: Optional[List[Any]] = None) -> None:
        self.server = server
        self.indices = FakeIndices(self)
        self.calls: List[Any] = []
        self.bulk_bodies: List[str] = []
        self.bulk_params: List[Dict[str, Any]] = []
        self.bulk_methods: List[str] = []
        self.option_calls: List[Dict[str, Any]] = []
        self.responses = list(responses or [])
        self.lock = threading.Lock()

    def options(self, **kwargs: Any) -> "FakeClient":
        self.option_calls.append(kwargs)
        return self

    def bulk_request(self, method: str, body: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        with self.lock:
            self.bulk_methods.append(method)
            self.bulk_bodies.append(body)
            self.bulk_params.append(params or {})
            response = self.responses.pop(0) if self.responses else OK_BULK
        if isinstance(response, BaseException):
            raise response
        return response

    def perform_request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if path == "/_bulk":
            return self.bulk_request(method, kwargs.get("body"), kwargs.get("params"))
        self.calls.append(("perform_request", {"method": method, "path": path, **kwargs}))
        return {"acknowledged": True}


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def client_factory(fake_client: FakeClient):
    def factory(server, options):
        fake_client.server = server
        return fake_client

    return factory
