"""Process-wide collaborators shared by the API and the scheduler."""
from erp_sync.consumers.event_processor import EventProcessor
from erp_sync.erp.client import ErpClient, HttpErpClient
from erp_sync.queue.circuit_breaker import CircuitBreaker
from erp_sync.queue.manager import QueueManager
from erp_sync.queue.worker import QueueWorker

_queue = None
_breaker = None
_client = None
_processor = None


def get_queue_manager() -> QueueManager:
    global _queue
    if _queue is None:
        _queue = QueueManager()
    return _queue


def get_circuit_breaker() -> CircuitBreaker:
    global _breaker
    if _breaker is None:
        _breaker = CircuitBreaker("erp")
    return _breaker


def get_erp_client() -> ErpClient:
    global _client
    if _client is None:
        _client = HttpErpClient()
    return _client


def get_event_processor() -> EventProcessor:
    global _processor
    if _processor is None:
        _processor = EventProcessor(get_erp_client(), get_circuit_breaker(), get_queue_manager())
    return _processor


def get_queue_worker() -> QueueWorker:
    return QueueWorker(get_queue_manager(), get_event_processor())


async def close_runtime() -> None:
    global _client, _processor
    if _client is not None:
        await _client.close()
    _client = None
    _processor = None
