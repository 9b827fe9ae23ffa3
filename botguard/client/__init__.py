from botguard.client.batcher import (AsyncioScheduler, CollectorConfig, EventBatcher,
                                     ThreadingScheduler)
from botguard.client.collector import BotTagger
from botguard.client.extractors import compute_linearity
from botguard.client.transport import BeaconTransport

__all__ = [
    "AsyncioScheduler",
    "BeaconTransport",
    "BotTagger",
    "CollectorConfig",
    "EventBatcher",
    "ThreadingScheduler",
    "compute_linearity",
]
