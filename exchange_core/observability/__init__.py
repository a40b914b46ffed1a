from exchange_core.observability import telemetry
from exchange_core.observability.metrics import install_metrics, uninstall_metrics
from exchange_core.observability.telemetry import CONTRACT_VERSION, attach, detach, emit

__all__ = [
    'telemetry',
    'install_metrics',
    'uninstall_metrics',
    'CONTRACT_VERSION',
    'attach',
    'detach',
    'emit',
]
