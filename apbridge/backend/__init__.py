"""Backend package for the Archipelago token bridge."""

from .classifier import MessageClassifier
from .config import BackendSettings, BridgeConfig, RewardRule, create_config_source, load_settings
from .hints import HintPurchaseCoordinator
from .pipeline import RewardPipeline
from .rewards import BatchDepositScheduler, RewardMapper
from .runtime import BridgeRuntime, create_runtime
from .session import SessionManager

__all__ = [
    "BackendSettings",
    "BatchDepositScheduler",
    "BridgeConfig",
    "BridgeRuntime",
    "create_config_source",
    "create_runtime",
    "HintPurchaseCoordinator",
    "load_settings",
    "MessageClassifier",
    "RewardMapper",
    "RewardPipeline",
    "RewardRule",
    "SessionManager",
]
