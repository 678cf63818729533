"""Services for probing, evaluation, batch execution, scheduling and alerting."""
from .probes import ProbeService
from .evaluator import HealthEvaluator
from .batch_runner import BatchRunner
from .scheduler import SchedulerService
from .alert_manager import AlertManager
from .notifier import NotifierService

__all__ = ["ProbeService", "HealthEvaluator", "BatchRunner", "SchedulerService", "AlertManager", "NotifierService"]
