"""
Call Notifier Interface
User-facing notices (toasts) raised by call orchestration
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List

logger = logging.getLogger(__name__)


@dataclass
class CallNotice:
    """A short, human-readable notice"""
    title: str
    description: str
    variant: str = "default"  # default | destructive
    created_at: datetime = field(default_factory=datetime.utcnow)


class CallNotifier(ABC):
    """Surface notices to the person driving an orchestrator"""

    @abstractmethod
    def notify(self, title: str, description: str, variant: str = "default") -> None:
        pass


class LoggingNotifier(CallNotifier):
    """Writes notices to the log (agent and worker use)."""

    def notify(self, title: str, description: str, variant: str = "default") -> None:
        if variant == "destructive":
            logger.warning(f"{title}: {description}")
        else:
            logger.info(f"{title}: {description}")


class RecordingNotifier(CallNotifier):
    """Keeps notices in memory so callers can read them back."""

    def __init__(self):
        self.notices: List[CallNotice] = []

    def notify(self, title: str, description: str, variant: str = "default") -> None:
        self.notices.append(CallNotice(title=title, description=description, variant=variant))

    @property
    def titles(self) -> List[str]:
        return [n.title for n in self.notices]

    def clear(self) -> None:
        self.notices.clear()
