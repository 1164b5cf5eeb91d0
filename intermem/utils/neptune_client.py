"""
Gremlin graph database client (Amazon Neptune or Gremlin Server) with AWS SigV4 authentication.

A single NeptuneClient is the process-wide connection factory. The remote
connection opens on the first session unless requested up front. Every logical
operation acquires its own scoped session through session() or execute() and
releases it on every exit path.
"""

import threading
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import GraphTraversalSource

from ..models.errors import BackendError, ValidationError
from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class NeptuneError(BackendError):
    """Custom exception for Neptune errors."""
    pass


def _operation_name(func: Callable, args: tuple) -> str:
    if args and callable(args[0]):
        return getattr(args[0], '__name__', func.__name__)
    return func.__name__


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        operation = _operation_name(func, args)
        try:
            return func(self, *args, **kwargs)
        except (ValidationError, NeptuneError):
            raise
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower():
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except ValidationError:
                    raise
                except Exception as retry_e:
                    logger.error(f'Error in {operation}: {retry_e}')
                    raise NeptuneError(f'Failed to {operation}: {retry_e}')
            else:
                logger.error(f'Error in {operation}: {e}')
                raise NeptuneError(f'Failed to {operation}: {e}')

    return wrapper


class NeptuneClient:
    """Gremlin client using the Python driver, optionally signed with AWS credentials."""

    def __init__(self, config: NeptuneConfig, connect: bool = True):
        """
        Initialize the graph connection factory.

        Args:
            config: NeptuneConfig instance with connection parameters
            connect: Open the remote connection immediately instead of on first use
        """
        self.config = config
        self.connection = None
        self.g: Optional[GraphTraversalSource] = None
        self._lock = threading.Lock()
        if connect:
            self.open()

    @property
    def connection_string(self) -> str:
        scheme = 'wss' if self.config.use_ssl else 'ws'
        return f'{scheme}://{self.config.endpoint}:{self.config.port}/gremlin'

    def _signed_headers(self) -> dict:
        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        request = AWSRequest(method='GET', url=self.connection_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)
        return dict(request.headers.items())

    def _connect(self):
        """Establish connection to the graph endpoint."""
        try:
            headers = self._signed_headers() if self.config.iam_auth else None
            self.connection = DriverRemoteConnection(self.connection_string,
                                                     'g',
                                                     headers=headers,
                                                     transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))
        except NeptuneError:
            raise
        except Exception as e:
            raise NeptuneError(f'Failed to connect to {self.connection_string}: {e}')

        try:
            self.g = traversal().with_remote(self.connection)
        except AttributeError:
            self.g = traversal().withRemote(self.connection)

    def open(self) -> GraphTraversalSource:
        """Open the remote connection if it is not open yet."""
        with self._lock:
            if self.g is None:
                self._connect()
                logger.info(f'Connected to graph at {self.connection_string}')
            return self.g

    def close(self):
        """Close the graph connection."""
        if self.connection is not None:
            self.connection.close()
            self.connection = None
            self.g = None
            logger.info('Closed graph connection')

    @contextmanager
    def session(self, transactional: bool = False) -> Iterator[GraphTraversalSource]:
        """
        Acquire a traversal source scoped to one logical operation.

        Args:
            transactional: Run inside a backend transaction that commits on success
                and rolls back on any failure

        Yields:
            Traversal source bound to the session
        """
        g = self.g if self.g is not None else self.open()

        if not transactional:
            logger.debug('Acquired graph session')
            try:
                yield g
            finally:
                logger.debug('Released graph session')
            return

        tx = g.tx()
        gtx = tx.begin()
        logger.debug('Opened graph transaction')
        try:
            yield gtx
        except BaseException:
            if tx.is_open():
                tx.rollback()
                logger.debug('Rolled back graph transaction')
            raise
        else:
            tx.commit()
            logger.debug('Committed graph transaction')

    @retry_on_connection_error
    def execute(self, query: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Run one query function inside its own session.

        Args:
            query: Callable taking a traversal source followed by query arguments

        Returns:
            Whatever the query function returns
        """
        with self.session() as g:
            return query(g, *args, **kwargs)

    @retry_on_connection_error
    def execute_atomic(self, unit: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a unit of work inside a single backend transaction."""
        with self.session(transactional=True) as gtx:
            return unit(gtx, *args, **kwargs)

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the graph service.

        Returns:
            True if service is healthy
        """
        with self.session() as g:
            g.V().limit(1).count().next()
        return True
