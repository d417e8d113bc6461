"""Kubernetes watch and reconciliation loop for the pod reconciler."""

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    wait_exponential,
)
from urllib3.exceptions import HTTPError

from .cluster import ClusterConnection
from .config import Settings
from .models import SET_NAME_LABEL_KEY, ReconcileRequest
from .pod_controller import PodReconciler

logger = logging.getLogger(__name__)


def _should_restart_watch(error: BaseException) -> bool:
    # 410 Gone means the resource version expired, a fresh list fixes it
    if isinstance(error, ApiException):
        return error.status == 410 or (error.status or 0) >= 500
    return isinstance(error, HTTPError)


def _status_error(event: dict) -> ApiException:
    status = event.get("raw_object") or event.get("object")
    if not isinstance(status, dict):
        status = {}
    return ApiException(status=status.get("code"), reason=status.get("message"))


def owner_pod_request(obj: Any) -> Optional[ReconcileRequest]:
    """Map a statefulset to a request for its controlling pod, if any."""
    for reference in obj.metadata.owner_references or []:
        if reference.controller and reference.kind == "Pod":
            return ReconcileRequest(name=reference.name, namespace=obj.metadata.namespace)
    return None


def pod_request(obj: Any) -> Optional[ReconcileRequest]:
    """Map a pod to a request for itself."""
    return ReconcileRequest(name=obj.metadata.name, namespace=obj.metadata.namespace)


class ResourceWatcher:
    """Watches pods and worker statefulsets belonging to LeaderWorkerSets."""

    def __init__(self, cluster: ClusterConnection, settings: Settings):
        """
        Initialize resource watcher.

        Args:
            cluster: Cluster connection
            settings: Controller settings
        """
        self.cluster = cluster
        self.settings = settings
        self.core_v1 = cluster.core_v1
        self.apps_v1 = cluster.apps_v1
        self._watches: list[k8s_watch.Watch] = []
        self._stopped = False

    def _list_func(self, resource_type: str) -> Callable[..., Any]:
        namespaced = self.settings.namespace is not None
        if resource_type == "pod":
            if namespaced:
                return self.core_v1.list_namespaced_pod
            return self.core_v1.list_pod_for_all_namespaces
        if resource_type == "statefulset":
            if namespaced:
                return self.apps_v1.list_namespaced_stateful_set
            return self.apps_v1.list_stateful_set_for_all_namespaces
        raise ValueError(f"Unsupported resource type: {resource_type}")

    def _retry_stopped(self, retry_state: Any) -> bool:
        return self._stopped

    def _dispatch(self, resource_type: str, handler: Callable[[str, Any], None], event: dict) -> None:
        try:
            handler(event["type"], event["object"])
        except Exception as e:
            logger.error(f"Error in {resource_type} watch event handler: {e}", exc_info=True)

    def watch(
        self,
        resource_type: str,
        handler: Callable[[str, Any], None],
    ) -> None:
        """
        Stream events of a resource type until stopped.

        Only objects carrying the LeaderWorkerSet name label are watched.
        Expired or broken streams are restarted with exponential backoff.
        Handler errors are logged and do not end the stream.

        Args:
            resource_type: Type of resource (pod, statefulset)
            handler: Callback taking the event type and the object

        Raises:
            ApiException: If the stream fails with a status that cannot be retried
        """
        list_func = self._list_func(resource_type)
        kwargs: dict[str, Any] = {
            "label_selector": SET_NAME_LABEL_KEY,
            "timeout_seconds": self.settings.watch_timeout_seconds,
        }
        if self.settings.namespace is not None:
            kwargs["namespace"] = self.settings.namespace

        @retry(
            retry=retry_if_exception(_should_restart_watch),
            stop=self._retry_stopped,
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.watch_min_backoff_seconds,
                max=self.settings.watch_max_backoff_seconds,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        def stream() -> None:
            while not self._stopped:
                w = k8s_watch.Watch()
                self._watches.append(w)
                try:
                    for event in w.stream(list_func, **kwargs):
                        # ERROR events carry a Status instead of an object
                        if event["type"] == "ERROR":
                            raise _status_error(event)
                        self._dispatch(resource_type, handler, event)
                finally:
                    self._watches.remove(w)

        logger.info(f"Starting watch on {resource_type}s with selector {SET_NAME_LABEL_KEY}")
        stream()

    def stop(self) -> None:
        """Stop all active watches."""
        self._stopped = True
        for w in list(self._watches):
            w.stop()


class WorkQueue:
    """
    Rate-limited work queue with per-key deduplication.

    A key is held at most once in the queue and handed to at most one worker
    at a time. A key added while it is being processed is queued again once
    the worker calls done().
    """

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0):
        """
        Initialize work queue.

        Args:
            base_delay: First failure backoff (seconds)
            max_delay: Backoff ceiling (seconds)
        """
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._queue: asyncio.Queue[ReconcileRequest] = asyncio.Queue()
        self._dirty: set[ReconcileRequest] = set()
        self._processing: set[ReconcileRequest] = set()
        self._failures: dict[ReconcileRequest, int] = {}
        self._timers: set[asyncio.TimerHandle] = set()

    def add(self, item: ReconcileRequest) -> None:
        """Queue item unless it is already waiting."""
        if item in self._dirty:
            return
        self._dirty.add(item)
        if item not in self._processing:
            self._queue.put_nowait(item)

    def add_after(self, item: ReconcileRequest, delay: float) -> None:
        """Queue item after delay seconds."""
        if delay <= 0:
            self.add(item)
            return
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            self.add(item)

        handle = loop.call_later(delay, fire)
        self._timers.add(handle)

    def add_rate_limited(self, item: ReconcileRequest) -> None:
        """Queue item after its exponential failure backoff."""
        failures = self._failures.get(item, 0)
        self._failures[item] = failures + 1
        self.add_after(item, self.backoff(failures))

    def backoff(self, failures: int) -> float:
        """Delay before the next attempt after failures consecutive failures."""
        return min(self.base_delay * (2**failures), self.max_delay)

    def forget(self, item: ReconcileRequest) -> None:
        """Reset the failure backoff of item."""
        self._failures.pop(item, None)

    def num_requeues(self, item: ReconcileRequest) -> int:
        return self._failures.get(item, 0)

    async def get(self) -> ReconcileRequest:
        """Wait for the next item and mark it as processing."""
        item = await self._queue.get()
        self._dirty.discard(item)
        self._processing.add(item)
        return item

    def done(self, item: ReconcileRequest) -> None:
        """Mark item as processed, re-queueing it if it was added meanwhile."""
        self._processing.discard(item)
        if item in self._dirty:
            self._queue.put_nowait(item)

    def __len__(self) -> int:
        return self._queue.qsize()

    def shutdown(self) -> None:
        """Cancel pending delayed additions."""
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()


class PodController:
    """
    Drives the pod reconciler from watch events.

    Pods and owned statefulsets are watched in daemon threads. Requests are
    deduplicated per pod and drained by a bounded pool of workers. A watch
    that stops for good is recorded in failure.
    """

    def __init__(
        self,
        cluster: ClusterConnection,
        settings: Settings,
        reconciler: Optional[PodReconciler] = None,
    ):
        """
        Initialize pod controller.

        Args:
            cluster: Cluster connection
            settings: Controller settings
            reconciler: Pod reconciler, built from cluster when omitted
        """
        self.cluster = cluster
        self.settings = settings
        self.reconciler = reconciler or PodReconciler(cluster, settings)
        self.watcher = ResourceWatcher(cluster, settings)
        self.queue = WorkQueue(
            base_delay=settings.requeue_base_delay_seconds,
            max_delay=settings.requeue_max_delay_seconds,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._threads: list[threading.Thread] = []
        # Set when a watch stops for good, the process should then exit
        self.failure: Optional[BaseException] = None

    def _enqueue_from_thread(self, request: Optional[ReconcileRequest]) -> None:
        if request is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self.queue.add, request)

    def handle_pod_event(self, event_type: str, pod: Any) -> None:
        """Queue the pod of a watch event."""
        logger.debug(f"Received {event_type} event for pod {pod.metadata.namespace}/{pod.metadata.name}")
        self._enqueue_from_thread(pod_request(pod))

    def handle_statefulset_event(self, event_type: str, statefulset: Any) -> None:
        """Queue the leader pod owning the statefulset of a watch event."""
        self._enqueue_from_thread(owner_pod_request(statefulset))

    async def process_next(self) -> None:
        """Reconcile one queued request."""
        request = await self.queue.get()
        try:
            result = await asyncio.to_thread(self.reconciler.reconcile, request)
        except Exception as e:
            logger.error(f"Error reconciling pod {request.key}: {e}", exc_info=True)
            self.queue.add_rate_limited(request)
        else:
            self.queue.forget(request)
            if result.requeue_after:
                self.queue.add_after(request, result.requeue_after)
            elif result.requeue:
                self.queue.add_rate_limited(request)
        finally:
            self.queue.done(request)

    async def _worker(self) -> None:
        while self._running:
            try:
                await self.process_next()
            except asyncio.CancelledError:
                break

    def _run_watch(self, resource_type: str, handler: Callable[[str, Any], None]) -> None:
        try:
            self.watcher.watch(resource_type, handler)
        except Exception as e:
            if not self._running:
                logger.debug(f"Watch on {resource_type}s ended during shutdown: {e}")
                return
            logger.error(f"Watch on {resource_type}s stopped: {e}", exc_info=True)
            self.failure = e

    async def start(self) -> None:
        """Start watches and workers."""
        if self._running:
            logger.warning("Pod controller already running")
            return

        self._running = True
        self._loop = asyncio.get_running_loop()

        logger.info(
            f"Starting pod controller with {self.settings.max_concurrent_reconciles} workers "
            f"in namespace {self.settings.namespace or '<all>'}"
        )
        watches = (
            ("pod", self.handle_pod_event),
            ("statefulset", self.handle_statefulset_event),
        )
        for resource_type, handler in watches:
            # Daemon threads: a watch blocked on a read must not hold up process exit
            thread = threading.Thread(
                target=self._run_watch,
                args=(resource_type, handler),
                name=f"{resource_type}-watcher",
                daemon=True,
            )
            thread.start()
            self._threads.append(thread)

        for _ in range(self.settings.max_concurrent_reconciles):
            self._tasks.append(asyncio.create_task(self._worker()))

    async def stop(self) -> None:
        """Stop the controller."""
        logger.info("Stopping pod controller")
        self._running = False
        self.watcher.stop()
        self.queue.shutdown()

        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._threads.clear()
