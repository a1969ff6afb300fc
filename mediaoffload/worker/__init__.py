from mediaoffload.worker.pipeline import (
    build_controller,
    build_delete_service,
    build_stall_monitor,
    build_storage,
    run_stall_check,
    run_worker_loop,
    run_worker_once,
)

__all__ = [
    "build_controller",
    "build_delete_service",
    "build_stall_monitor",
    "build_storage",
    "run_stall_check",
    "run_worker_loop",
    "run_worker_once",
]
