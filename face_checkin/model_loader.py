from __future__ import annotations

from enum import Enum
from threading import Event, Lock
from typing import Callable, Generic, Optional, TypeVar

from .exceptions import FaceEngineError
from .logger import setup_logger

T = TypeVar("T")


class LoadState(str, Enum):
    NOT_LOADED = "not_loaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelLoader(Generic[T]):
    """Single-flight lazy construction of an expensive model.

    The first caller builds the model; callers arriving while it is loading
    wait for that same load. After a failure the next call starts a new load.
    """

    def __init__(self, factory: Callable[[], T], name: str = "face-models"):
        self._factory = factory
        self.name = name
        self._lock = Lock()
        self._done: Optional[Event] = None
        self._state = LoadState.NOT_LOADED
        self._model: Optional[T] = None
        self._error: Optional[BaseException] = None
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def state(self) -> LoadState:
        with self._lock:
            return self._state

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    def load(self, timeout: Optional[float] = None) -> T:
        with self._lock:
            if self._state is LoadState.READY:
                return self._model  # type: ignore[return-value]
            if self._state is LoadState.LOADING:
                done = self._done
                owner = False
            else:
                self._state = LoadState.LOADING
                self._error = None
                self._done = done = Event()
                owner = True

        if owner:
            return self._run_factory(done)

        if not done.wait(timeout):
            raise FaceEngineError(f"Timed out waiting for {self.name} to load.")
        with self._lock:
            if self._state is LoadState.READY:
                return self._model  # type: ignore[return-value]
            raise FaceEngineError(f"Failed to load {self.name}: {self._error}")

    def _run_factory(self, done: Event) -> T:
        self.logger.info("Loading %s", self.name)
        try:
            model = self._factory()
        except Exception as exc:
            with self._lock:
                self._state = LoadState.FAILED
                self._error = exc
            done.set()
            self.logger.error("Failed to load %s: %s", self.name, exc)
            if isinstance(exc, FaceEngineError):
                raise
            raise FaceEngineError(f"Failed to load {self.name}: {exc}") from exc

        with self._lock:
            self._model = model
            self._state = LoadState.READY
        done.set()
        self.logger.info("%s ready", self.name)
        return model


def _build_face_engine():
    from .face_engine import FaceEngine

    return FaceEngine()


_face_engine_loader: ModelLoader = ModelLoader(_build_face_engine, name="face engine")


def get_face_engine(timeout: Optional[float] = None):
    return _face_engine_loader.load(timeout=timeout)


def face_engine_state() -> LoadState:
    return _face_engine_loader.state
