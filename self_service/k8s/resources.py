"""
Resource Capability Interface

Every component that talks to the cluster (applier, CRD manager, waiter)
is written once against ``ResourceApi``: list, get, watch, create, patch
(including the status subresource) and delete for one kind, optionally
bound to a namespace. The production adapter wraps ``kubernetes.dynamic``;
tests plug in an in-memory implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
import asyncio
import logging

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from ..errors import AlreadyExistsError, ConflictError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceInfo:
    """Discovery entry for one kind: where it lives and what it is called."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def api_prefix(self) -> str:
        # Core kinds live under /api, everything else under /apis/{group}
        if self.group:
            return f"/apis/{self.group}/{self.version}"
        return f"/api/{self.version}"

    def path(self, name: str, namespace: Optional[str] = None) -> str:
        """Build the REST path of a single object of this kind."""
        if self.namespaced:
            return f"{self.api_prefix}/namespaces/{namespace}/{self.plural}/{name}"
        return f"{self.api_prefix}/{self.plural}/{name}"


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass(frozen=True)
class WatchEvent:
    """One event of a watch stream. ERROR events carry a Status object."""

    type: WatchEventType
    object: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> Optional[str]:
        return (self.object.get("metadata") or {}).get("name")

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "WatchEvent":
        """Convert an event dict as produced by ``kubernetes.watch``."""
        obj = raw.get("raw_object")
        if obj is None:
            obj = raw.get("object")
            if hasattr(obj, "to_dict"):
                obj = obj.to_dict()
        return cls(type=WatchEventType(raw["type"]), object=obj or {})

    @classmethod
    def error(cls, status: Optional[int], message: str) -> "WatchEvent":
        return cls(
            type=WatchEventType.ERROR,
            object={"kind": "Status", "status": "Failure", "code": status, "message": message},
        )


@dataclass
class ResourceList:
    items: List[Dict[str, Any]]
    resource_version: str


class ResourceApi(ABC):
    """
    List/get/watch/create/patch/delete for one kind.

    Objects are plain dicts in API (camelCase) form. Writes raise
    AlreadyExistsError / ConflictError on 409 and TransportError on any
    other failure. ``get`` returns None and ``delete`` returns False when the
    object does not exist.
    """

    info: ResourceInfo
    namespace: Optional[str]

    @property
    def kind(self) -> str:
        return self.info.kind

    def describe(self, name: str) -> str:
        """Human readable identifier used in log messages."""
        if self.namespace:
            return f"{self.info.kind} {self.namespace}/{name}"
        return f"{self.info.kind} {name}"

    @abstractmethod
    async def list(self, field_selector: Optional[str] = None) -> ResourceList:
        pass

    @abstractmethod
    async def get(self, name: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def watch(
        self,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[int] = None
    ) -> AsyncIterator[WatchEvent]:
        pass

    @abstractmethod
    async def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def patch(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def patch_status(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch the status subresource."""
        pass

    @abstractmethod
    async def delete(self, name: str) -> bool:
        pass


def translate_api_exception(e: ApiException, action: str) -> Exception:
    """Map an ApiException onto the operator's error taxonomy."""
    if e.status == 409:
        reason = (e.reason or "")
        body = e.body if isinstance(e.body, str) else ""
        if action == "create" or "AlreadyExists" in reason or "AlreadyExists" in body:
            return AlreadyExistsError(f"{action} failed: {e.reason}")
        return ConflictError(f"{action} failed: {e.reason}")
    return TransportError(f"{action} failed with status {e.status}: {e.reason}", status=e.status, reason=e.reason)


class DynamicResourceApi(ResourceApi):
    """
    ResourceApi backed by ``kubernetes.dynamic.DynamicClient``.

    The kubernetes client is synchronous, so every call runs through
    asyncio.to_thread. Watch streams are pulled one event per thread hop.
    """

    def __init__(
        self,
        dynamic_client,
        resource,
        info: ResourceInfo,
        namespace: Optional[str] = None,
        request_timeout: Optional[int] = None
    ):
        self._client = dynamic_client
        self._resource = resource
        self.info = info
        self.namespace = namespace if info.namespaced else None
        self._request_timeout = request_timeout

    async def _call(self, action: str, method, resource=None, **kwargs):
        if self._request_timeout:
            kwargs["_request_timeout"] = self._request_timeout
        try:
            result = await asyncio.to_thread(method, resource or self._resource, **kwargs)
        except ApiException as e:
            raise translate_api_exception(e, action) from e
        except (HTTPError, OSError) as e:
            raise TransportError(f"{action} failed: {e}") from e
        return result.to_dict() if hasattr(result, "to_dict") else result

    async def list(self, field_selector: Optional[str] = None) -> ResourceList:
        data = await self._call(
            "list",
            self._client.get,
            namespace=self.namespace,
            field_selector=field_selector
        )
        metadata = data.get("metadata") or {}
        return ResourceList(items=data.get("items") or [], resource_version=metadata.get("resourceVersion", ""))

    async def get(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._call("get", self._client.get, name=name, namespace=self.namespace)
        except TransportError as e:
            if e.status == 404:
                return None
            raise

    async def watch(
        self,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout_seconds: Optional[int] = None
    ) -> AsyncIterator[WatchEvent]:
        watcher = watch.Watch()
        stream = self._client.watch(
            self._resource,
            namespace=self.namespace,
            field_selector=field_selector,
            resource_version=resource_version,
            timeout=timeout_seconds,
            watcher=watcher
        )
        try:
            while True:
                try:
                    raw = await asyncio.to_thread(next, stream, None)
                except ApiException as e:
                    if e.status == 410:
                        # Expired resourceVersion: report it and end the stream so the caller re-lists
                        yield WatchEvent.error(e.status, e.reason or "Gone")
                        return
                    raise translate_api_exception(e, "watch") from e
                except (HTTPError, OSError) as e:
                    raise TransportError(f"watch failed: {e}") from e
                if raw is None:
                    return
                yield WatchEvent.from_raw(raw)
        finally:
            watcher.stop()

    async def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("create", self._client.create, body=body, namespace=self.namespace)

    async def patch(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "patch",
            self._client.patch,
            body=body,
            name=name,
            namespace=self.namespace,
            content_type="application/merge-patch+json"
        )

    async def patch_status(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call(
            "patch status",
            self._client.patch,
            resource=self._resource.subresources["status"],
            body=body,
            name=name,
            namespace=self.namespace,
            content_type="application/merge-patch+json"
        )

    async def delete(self, name: str) -> bool:
        try:
            await self._call("delete", self._client.delete, name=name, namespace=self.namespace)
        except TransportError as e:
            if e.status == 404:
                return False
            raise
        return True
