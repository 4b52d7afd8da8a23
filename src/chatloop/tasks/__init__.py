"""Singleton accessor for detached background work."""

from chatloop.tasks.detached import DetachedTasks

_detached_tasks: DetachedTasks | None = None


def get_detached_tasks() -> DetachedTasks:
    global _detached_tasks
    if _detached_tasks is None or _detached_tasks.closed:
        _detached_tasks = DetachedTasks()
    return _detached_tasks


__all__ = ["DetachedTasks", "get_detached_tasks"]
