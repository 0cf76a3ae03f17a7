# Import models here so Alembic can discover them via metadata
from .base import Base  # noqa: F401
from .entity import Entity  # noqa: F401
from .profile import Profile, UserRole  # noqa: F401
from .application import Application  # noqa: F401
from .document import Document  # noqa: F401
from .history import ApplicationStatusHistory, DocumentReviewHistory  # noqa: F401
from .decision import MeetingDeliberation, PresidentDecision  # noqa: F401
