from shodan.controllers.factory import Controller, ControllerBuilder, EventRecorder, SyncContext, WorkQueue, new_controller

__all__ = [
    "Controller",
    "ControllerBuilder",
    "EventRecorder",
    "SyncContext",
    "WorkQueue",
    "new_controller",
]
