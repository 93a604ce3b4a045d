"""JSON-file stores: permissions, query log, popular questions, feedback."""

from planqa.stores.feedback import FeedbackStore
from planqa.stores.permissions import PermissionStore, PermissionStoreUnavailable
from planqa.stores.query_log import QueryLogger, hash_sql

__all__ = ["FeedbackStore", "PermissionStore", "PermissionStoreUnavailable", "QueryLogger", "hash_sql"]
