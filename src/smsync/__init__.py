"""smsync - SMS/MMS conversation sync, paging and send engine."""

from .blocks import BlockRegistry, normalize
from .cache import ConversationCache
from .client import MessagingClient
from .config import SmsyncConfig, find_root, load_config, save_config
from .errors import (
    DeliveryFailed,
    MalformedRecord,
    PartExtractionFailed,
    SmsyncError,
    SourceUnavailable,
)
from .jobs import JobHandle, JobRunner, JobState, Policy
from .merge import Conversation, MergeEngine, MergeResult, merge
from .metadata import MetadataStore, PinMetadata
from .paging import Invalid, LoadError, MessagePagingSource, Page, PagingSourceFactory
from .provider import Change, MessageProvider, ProviderWatcher, SqliteProvider
from .rows import DeliveryState, Direction, Message, MessageRow, SourceKind
from .scheduled import ScheduledMessage, ScheduledMessageRunner, ScheduledMessageStore, ScheduledStatus
from .send import Sender
from .sync import SYNC_JOB, SyncScheduler
from .transport import ConfirmationSlot, HttpGatewayTransport, LoopbackTransport, split_segments

__version__ = "0.1.0"
