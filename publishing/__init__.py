from publishing.base import PublishOutcome, Publisher
from publishing.google_workspace import GoogleWorkspacePublisher

__all__ = ["Publisher", "PublishOutcome", "GoogleWorkspacePublisher"]
