from .cost import calculate_cost
from .metrics import extract_usage
from .tracing import configure_tracing, get_run_config

__all__ = [
    "calculate_cost",
    "configure_tracing",
    "extract_usage",
    "get_run_config",
]
