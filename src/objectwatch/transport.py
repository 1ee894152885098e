"""
Request/response transport for offloaded engine work.

Wire contract:
    request:  {'id': str, 'type': 'serialize' | 'diff' | 'analyze', 'data': Any, 'options': dict}
    response: {'id': str, 'type': '<op>Result', 'result': Any}
           or {'id': str, 'type': 'error', 'error': {'message': str, 'stack': str}}

The transport takes a structural copy of `data` when a request is posted, so
the engine works on a snapshot: later mutations of the live graph are never
observed and results can never write back into it. Engine exceptions, copy
failures and a broken pool are all answered with an `error` response.

Each request carries a correlation id; responses are routed to the future (and
optional callback) registered for that id.
"""

import copy
import logging
import traceback
import uuid
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Dict, Optional

from objectwatch.config import ObserverConfig, get_default_config
from objectwatch.engine import analyze, diff, render_tree

logger = logging.getLogger(__name__)

RESPONSE_TYPES = {
    'serialize': 'serializeResult',
    'diff': 'diffResult',
    'analyze': 'analyzeResult',
}

# Alternate request names accepted by handle_message()
REQUEST_ALIASES = {
    'renderTree': 'serialize',
    'detectChanges': 'diff',
    'processLargeObject': 'analyze',
}

ResponseCallback = Callable[[Dict[str, Any]], None]


class EngineError(RuntimeError):
    """An engine request was answered with an error response."""

    def __init__(self, message: str, stack: Optional[str] = None):
        super().__init__(message)
        self.stack = stack


class TransportTerminatedError(RuntimeError):
    """A request was posted after the transport was terminated."""


def normalize_request_type(request_type: str) -> str:
    return REQUEST_ALIASES.get(request_type, request_type)


def error_response(request_id: Optional[str], error: BaseException) -> Dict[str, Any]:
    stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
    return {
        'id': request_id,
        'type': 'error',
        'error': {'message': str(error) or type(error).__name__, 'stack': stack},
    }


def structured_clone(data: Any) -> Any:
    """Deep copy with proxies replaced by copies of their targets."""
    return copy.deepcopy(data)


def handle_message(message: Dict[str, Any], config: Optional[ObserverConfig] = None) -> Dict[str, Any]:
    """Engine-side dispatcher: run one request, always return a response envelope.

    Runs on the worker. Never raises; every exception becomes an error response.

    Args:
        message: Request envelope
        config: Config shipped by the caller (worker threads/processes have no default of their own)
    """
    request_id = message.get('id')
    request_type = normalize_request_type(message.get('type', ''))
    data = message.get('data')
    options = message.get('options') or {}
    config = config or ObserverConfig()

    try:
        if request_type == 'serialize':
            if options.get('batch'):
                result = [render_tree(obj, config) for obj in data]
            else:
                result = render_tree(data, config)
        elif request_type == 'diff':
            result = diff(data['old_tree'], data['new_tree'], data.get('path', ''))
        elif request_type == 'analyze':
            result = analyze(data, config)
        else:
            logger.warning(f"Unknown engine request type: {message.get('type')!r}")
            raise ValueError(f"Unknown request type: {message.get('type')!r}")
    except Exception as e:
        return error_response(request_id, e)

    return {'id': request_id, 'type': RESPONSE_TYPES[request_type], 'result': result}


class EngineTransport:
    """Asynchronous request/response channel to an engine executor.

    The executor is created lazily: ThreadPoolExecutor when config.use_threading
    is true (default), ProcessPoolExecutor otherwise.

    Args:
        config: Config used to pick the executor and shipped with every request
        executor: Pre-built executor (the transport then owns its shutdown)
        dispatch: Hook running response delivery on the owner's side
                  (e.g. loop.call_soon_threadsafe); delivery is direct if omitted
    """

    def __init__(
        self,
        config: Optional[ObserverConfig] = None,
        executor: Optional[Executor] = None,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        self.config = config or get_default_config()
        self._executor = executor
        self._dispatch = dispatch
        self._pending: Dict[str, Future] = {}
        self._terminated = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _get_executor(self) -> Executor:
        if self._executor is None:
            if self.config.use_threading:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.config.max_workers,
                    thread_name_prefix='objectwatch-engine',
                )
            else:
                self._executor = ProcessPoolExecutor(max_workers=self.config.max_workers)
            logger.info(
                f"Started engine executor: {type(self._executor).__name__}"
                f"(max_workers={self.config.max_workers})"
            )
        return self._executor

    def post(
        self,
        request_type: str,
        data: Any,
        callback: Optional[ResponseCallback] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Future:
        """Ship a request to the engine.

        Args:
            request_type: 'serialize', 'diff', 'analyze' (or an alias)
            data: Request payload; copied before this call returns
            callback: Called with the response envelope
            options: Request options (e.g. {'batch': True} for serialize)

        Returns:
            Future resolving to the response envelope

        Raises:
            TransportTerminatedError: If terminate() was called
        """
        if self._terminated:
            raise TransportTerminatedError("Engine transport has been terminated")

        request_id = str(uuid.uuid4())
        response_future: Future = Future()

        try:
            message = {
                'id': request_id,
                'type': request_type,
                'data': structured_clone(data),
                'options': dict(options or {}),
            }
        except Exception as e:
            logger.error(f"Could not copy {request_type!r} request payload: {e}")
            self._deliver(response_future, error_response(request_id, e), callback)
            return response_future

        self._pending[request_id] = response_future
        try:
            engine_future = self._get_executor().submit(handle_message, message, self.config)
        except RuntimeError as e:
            # Executor already shut down or broken
            self._pending.pop(request_id, None)
            self._deliver(response_future, error_response(request_id, e), callback)
            return response_future

        engine_future.add_done_callback(partial(self._route, request_id, callback))
        logger.debug(f"Posted {request_type!r} request {request_id[:8]}")
        return response_future

    def request(self, request_type: str, data: Any, timeout: Optional[float] = None,
                options: Optional[Dict[str, Any]] = None) -> Any:
        """Post a request and block for its result.

        Raises:
            EngineError: If the engine answered with an error response
        """
        response = self.post(request_type, data, options=options).result(timeout=timeout)
        if response['type'] == 'error':
            raise EngineError(response['error']['message'], response['error'].get('stack'))
        return response['result']

    def serialize(self, obj: Any, callback: Optional[ResponseCallback] = None) -> Future:
        return self.post('serialize', obj, callback)

    def diff(self, old_tree: Any, new_tree: Any, callback: Optional[ResponseCallback] = None) -> Future:
        return self.post('diff', {'old_tree': old_tree, 'new_tree': new_tree}, callback)

    def analyze(self, obj: Any, callback: Optional[ResponseCallback] = None) -> Future:
        return self.post('analyze', obj, callback)

    def terminate(self) -> None:
        """Stop the executor. In-flight requests are cancelled and never call back."""
        if self._terminated:
            return
        self._terminated = True
        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            future.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info(f"Terminated engine transport ({len(pending)} request(s) cancelled)")

    def _route(self, request_id: str, callback: Optional[ResponseCallback], engine_future: Future) -> None:
        response_future = self._pending.pop(request_id, None)
        if response_future is None or self._terminated or engine_future.cancelled():
            return

        error = engine_future.exception()
        if error is not None:
            # Pickling failures and broken pools surface here
            logger.error(f"Engine request {request_id[:8]} failed: {error}")
            response = error_response(request_id, error)
        else:
            response = engine_future.result()

        if self._dispatch is not None:
            self._dispatch(partial(self._deliver, response_future, response, callback))
        else:
            self._deliver(response_future, response, callback)

    def _deliver(self, response_future: Future, response: Dict[str, Any],
                 callback: Optional[ResponseCallback]) -> None:
        if self._terminated:
            response_future.cancel()
            return
        if not response_future.done():
            response_future.set_result(response)
        if callback is None:
            return
        try:
            callback(response)
        except Exception as e:
            logger.warning(f"Error in engine response callback: {e}")
