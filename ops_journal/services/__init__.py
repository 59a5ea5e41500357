"""Business logic services for Ops Journal."""

from .audit import AuditService, AuditSink, QueuedAuditSink
from .errors import (
    ConflictError,
    ForbiddenError,
    JournalError,
    NotFoundError,
    ValidationError,
)
from .feeds import FeedFilter, FeedPage, FeedService
from .notification_service import (
    LoggingMailSender,
    MailSender,
    OutboxWorker,
    SmtpConfig,
    SmtpMailSender,
    build_mail_sender,
    render_notification,
)
from .permissions import Actor, VisibilityResolution, resolve_visibility
from .records import CreateRecordInput, EditRecordInput, RecordService, record_snapshot
from .secrets import scan_for_secrets, scan_record_for_secrets
from .subscriptions import SubscriptionMatcher, SubscriptionService
from .tree_mutator import NodeChanges, TreeMutator, slugify
from .tree_store import TreeStore

__all__ = [
    # Errors
    "JournalError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ForbiddenError",
    # Tree
    "Actor",
    "VisibilityResolution",
    "resolve_visibility",
    "TreeStore",
    "TreeMutator",
    "NodeChanges",
    "slugify",
    # Records
    "RecordService",
    "CreateRecordInput",
    "EditRecordInput",
    "record_snapshot",
    "scan_for_secrets",
    "scan_record_for_secrets",
    "FeedService",
    "FeedFilter",
    "FeedPage",
    # Subscriptions & delivery
    "SubscriptionMatcher",
    "SubscriptionService",
    "MailSender",
    "SmtpMailSender",
    "SmtpConfig",
    "LoggingMailSender",
    "build_mail_sender",
    "render_notification",
    "OutboxWorker",
    # Audit
    "AuditSink",
    "QueuedAuditSink",
    "AuditService",
]
