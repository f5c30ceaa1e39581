# utils/monitor.py

import functools
import logging
import threading
import time
import traceback
import tracemalloc
from typing import Optional

import psutil

from morphometrics.errors import ComputationTimeout

logger = logging.getLogger("PipelineMonitor")


def estimate_size(obj):
    if hasattr(obj, "memory_usage"):
        return obj.memory_usage(deep=True).sum() / 1024**2
    if hasattr(obj, "nbytes"):
        return obj.nbytes / 1024**2
    return None


def log_resource_usage(step_id: str):
    cpu = psutil.cpu_percent(interval=None)
    mem = psutil.virtual_memory().percent
    logger.debug(f"[{step_id}] CPU: {cpu:.1f}% | RAM: {mem:.1f}%")


def run_with_timeout(func, seconds: Optional[float], *args, step: str = None, **kwargs):
    """
    Run ``func(*args, **kwargs)`` with a hard wall-clock budget.

    The call executes in a daemon thread; when the budget is exceeded
    ``ComputationTimeout`` is raised, the thread is abandoned and whatever it
    eventually returns is discarded. A daemon thread never holds up
    interpreter exit.
    """
    if seconds is None:
        return func(*args, **kwargs)

    outcome = {}

    def target():
        try:
            outcome["value"] = func(*args, **kwargs)
        except BaseException as e:
            outcome["error"] = e

    step_id = step or func.__name__
    worker = threading.Thread(target=target, name=f"monitor-{step_id}", daemon=True)
    worker.start()
    worker.join(seconds)
    if worker.is_alive():
        raise ComputationTimeout(step_id, seconds)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def monitor(name: str = None,
            log_result: bool = False,
            track_memory: bool = False,
            timeout: Optional[float] = None,
            enabled: bool = True):
    """
    Decorator for logging, time / memory tracking and an optional time budget.

    ``timeout`` may also be overridden per call with a ``_timeout=`` keyword.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            budget = kwargs.pop("_timeout", timeout)
            if not enabled:
                return func(*args, **kwargs)

            step_id = name or func.__name__
            start_time = time.time()
            logger.info(f"[{step_id}] STARTED")

            if track_memory:
                tracemalloc.start()
            try:
                result = run_with_timeout(func, budget, *args, step=step_id, **kwargs)
            except Exception as e:
                duration = time.time() - start_time
                logger.error(f"[{step_id}] FAILED in {duration:.2f}s: {e}")
                logger.debug(traceback.format_exc())
                raise
            finally:
                if track_memory:
                    _, peak = tracemalloc.get_traced_memory()
                    tracemalloc.stop()
                    logger.info(f"[{step_id}] Peak memory: {peak / 1024 / 1024:.2f} MB")

            duration = time.time() - start_time
            logger.info(f"[{step_id}] SUCCESS in {duration:.2f}s")
            if log_result:
                logger.info(f"[{step_id}] Result type: {type(result).__name__}")
                if hasattr(result, "shape"):
                    logger.info(f"[{step_id}] Result shape: {result.shape}")
                size = estimate_size(result)
                if size is not None:
                    logger.info(f"[{step_id}] Result size: {size:.2f} MB")
            log_resource_usage(step_id)
            return result

        return wrapper
    return decorator
