"""Public interface for the ``ledger_engine`` package.

Re-exports the unit-of-work API, the error hierarchy, and the view types
callers receive. There is no runtime logic here, only symbol re-exports.
"""

from .api import (
    add_comment,
    create_invitation,
    create_ledger,
    delete_comment,
    delete_transaction,
    edit_comment,
    get_transaction,
    list_comments,
    list_pending_invitations_for_email,
    list_transactions,
    post_transaction,
    register_user,
    reorder,
    respond_to_invitation,
    revoke_invitation,
    update_transaction,
)
from .errors import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    LedgerError,
    NotFoundError,
    PersistenceError,
    ScopeMismatchError,
    ValidationError,
)
from .models import (
    CommentView,
    InvitationView,
    LedgerView,
    SplitInput,
    TransactionPage,
    TransactionView,
)
from .notifier import EmailNotifier

__all__ = [
    # API
    "register_user",
    "create_ledger",
    "post_transaction",
    "update_transaction",
    "delete_transaction",
    "get_transaction",
    "list_transactions",
    "add_comment",
    "edit_comment",
    "delete_comment",
    "list_comments",
    "create_invitation",
    "respond_to_invitation",
    "revoke_invitation",
    "list_pending_invitations_for_email",
    "reorder",
    # Errors
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "ScopeMismatchError",
    "ConflictError",
    "ForbiddenError",
    "ExpiredError",
    "PersistenceError",
    # Models / types
    "SplitInput",
    "TransactionView",
    "TransactionPage",
    "CommentView",
    "InvitationView",
    "LedgerView",
    "EmailNotifier",
]
