"""Geometry kernel registry and once-per-process initialization."""

import logging
import threading

from . import manifold_engine as manifold
from .geometry import Geometry, MeshData
from .manifold_engine import KernelError
from ..dsl.errors import error_kernel_init

logger = logging.getLogger(__name__)

ENGINE_REGISTRY = {'manifold': manifold}

_init_lock = threading.Lock()
_initialized_engines: set = set()


def get_engine(name: str):
    return ENGINE_REGISTRY.get(name)


def ensure_initialized(name: str = 'manifold'):
    """Initialize kernel `name` exactly once; returns the engine module.

    Safe to call from any number of threads. Raises KernelInitError when
    the engine is unknown or its initialization fails; a failed attempt
    is retried on the next call.
    """
    engine = get_engine(name)
    if engine is None:
        raise error_kernel_init(
            f"unknown kernel '{name}' (available: {', '.join(sorted(ENGINE_REGISTRY))})")
    if name in _initialized_engines:
        return engine
    with _init_lock:
        if name not in _initialized_engines:
            try:
                engine.initialize()
            except Exception as exc:
                logger.error("kernel '%s' failed to initialize: %s", name, exc)
                raise error_kernel_init(str(exc)) from exc
            _initialized_engines.add(name)
            logger.info("kernel '%s' initialized", name)
    return engine


__all__ = ['ENGINE_REGISTRY', 'get_engine', 'ensure_initialized',
           'Geometry', 'MeshData', 'KernelError']
