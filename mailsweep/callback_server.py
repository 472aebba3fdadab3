"""
OAuth Callback Listener - loopback HTTP endpoint that receives the authorization code

The listener lives for exactly one authorization attempt: it binds the
redirect port, serves GET /callback on a background thread, hands the code
to the waiting caller through a PendingAuthorization and is shut down when
the caller leaves the `with` block.
"""

import socket
import threading
import time
import logging
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from mailsweep.errors import AuthError, AuthErrorKind


logger = logging.getLogger(__name__)

STARTUP_TIMEOUT = 10.0
SHUTDOWN_TIMEOUT = 5.0


class PendingAuthorization:
    """Single-slot rendezvous between the callback handler and the waiting caller"""

    def __init__(self):
        self._future: Future = Future()
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._future.done()

    def resolve(self, code: str) -> bool:
        """Store the authorization code, returns False if the slot was already filled"""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(code)
            return True

    def reject(self, reason: str) -> bool:
        """Record a callback that carried no code, returns False if the slot was already filled"""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(AuthError(AuthErrorKind.NO_CODE_IN_CALLBACK, reason))
            return True

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the callback arrives. Raises AuthError on a code-less callback or timeout."""
        try:
            return self._future.result(timeout=timeout)
        except FutureTimeoutError:
            raise AuthError(
                AuthErrorKind.TIMEOUT,
                f"No authorization callback received within {timeout:g}s"
            ) from None


def build_callback_app(pending: PendingAuthorization, path: str = '/callback') -> FastAPI:
    """FastAPI app with the single redirect endpoint"""
    app = FastAPI(title="mailsweep OAuth callback", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(path, response_class=PlainTextResponse)
    def oauth_callback(code: Optional[str] = None, error: Optional[str] = None):
        """Handle the OAuth2 redirect from Google"""
        if not code:
            reason = f"no code in callback (error: {error})" if error else "no code in callback"
            if not pending.reject(reason):
                return PlainTextResponse("Authorization already completed.\n", status_code=409)
            logger.warning(f"OAuth callback rejected: {reason}")
            return PlainTextResponse("No authorization code provided.\n", status_code=400)

        if not pending.resolve(code):
            return PlainTextResponse("Authorization already completed.\n", status_code=409)

        logger.info("Received OAuth authorization code")
        return PlainTextResponse("Authorization successful. You can close this window.\n")

    return app


class CallbackListener:
    """Serves the callback app on a background thread for one authorization attempt"""

    # Held while a listener is running; one PendingAuthorization per process at a time
    _active = threading.Lock()

    def __init__(self, host: str = 'localhost', port: int = 8080, path: str = '/callback'):
        self.host = host
        self.port = port
        self.path = path
        self.pending: Optional[PendingAuthorization] = None

        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._holds_slot = False

    def __enter__(self) -> 'CallbackListener':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    @property
    def bound_port(self) -> Optional[int]:
        """Actual port, useful when bound to port 0"""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # === Lifecycle ===

    def start(self) -> PendingAuthorization:
        if not CallbackListener._active.acquire(blocking=False):
            raise AuthError(AuthErrorKind.LISTENER_FAILED, "Another authorization is already in progress")
        self._holds_slot = True

        try:
            self._socket = self._bind()
            self.pending = PendingAuthorization()

            config = uvicorn.Config(
                build_callback_app(self.pending, self.path),
                log_level='warning',
                lifespan='off',
            )
            self._server = uvicorn.Server(config)
            self._thread = threading.Thread(
                target=self._server.run,
                kwargs={'sockets': [self._socket]},
                name='oauth-callback',
                daemon=True,
            )
            self._thread.start()
            self._wait_until_started()
        except BaseException:
            self.stop()
            raise

        logger.debug(f"OAuth callback listener running on {self.host}:{self.bound_port}{self.path}")
        return self.pending

    def stop(self) -> None:
        """Shut the server down and release the port. Safe to call more than once."""
        try:
            if self._server is not None:
                self._server.should_exit = True
            if self._thread is not None:
                self._thread.join(timeout=SHUTDOWN_TIMEOUT)
                if self._thread.is_alive():
                    logger.warning("OAuth callback listener did not stop within timeout")
        finally:
            if self._socket is not None:
                self._socket.close()
            self._socket = None
            self._server = None
            self._thread = None
            self.pending = None
            if self._holds_slot:
                self._holds_slot = False
                CallbackListener._active.release()

    # === Internals ===

    def _bind(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as error:
            sock.close()
            raise AuthError(
                AuthErrorKind.LISTENER_FAILED,
                f"Could not listen on {self.host}:{self.port}: {error}"
            ) from error
        return sock

    def _wait_until_started(self) -> None:
        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not self._server.started:
            if not self._thread.is_alive():
                raise AuthError(AuthErrorKind.LISTENER_FAILED, "OAuth callback listener exited during startup")
            if time.monotonic() > deadline:
                raise AuthError(AuthErrorKind.LISTENER_FAILED, "OAuth callback listener did not start in time")
            time.sleep(0.01)
