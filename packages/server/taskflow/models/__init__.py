# SQLModel definitions, imported here to ensure metadata is populated for create_all.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .user import User  # noqa: F401
from .department import Department  # noqa: F401
from .task import Task  # noqa: F401
from .assignment import Assignment  # noqa: F401
from .notification import Notification  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
