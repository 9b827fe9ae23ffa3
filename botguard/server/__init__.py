from botguard.server.app import create_app
from botguard.server.blacklist import BlacklistStore
from botguard.server.classifier import SuspicionClassifier

__all__ = ["BlacklistStore", "SuspicionClassifier", "create_app"]
