"""Conversation reference models."""

from dataclasses import dataclass
from typing import Union

from ..config import DIRECT_HISTORY_LIMIT, SUBMISSION_HISTORY_LIMIT, TEAM_HISTORY_LIMIT


@dataclass(frozen=True)
class TeamChatRef:
    """Team-wide chat: internal messages with no submission scope."""

    team_id: str

    @property
    def channel_name(self) -> str:
        return f"team-{self.team_id}-messages"

    @property
    def history_limit(self) -> int:
        return TEAM_HISTORY_LIMIT


@dataclass(frozen=True)
class SubmissionThreadRef:
    """Discussion thread attached to one submission."""

    team_id: str
    submission_id: str

    @property
    def channel_name(self) -> str:
        return f"submission-{self.submission_id}-messages"

    @property
    def history_limit(self) -> int:
        return SUBMISSION_HISTORY_LIMIT


@dataclass(frozen=True)
class DirectConversationRef:
    """1:1 conversation between the viewer and a peer in the same team."""

    team_id: str
    viewer_id: str
    peer_id: str

    @property
    def channel_name(self) -> str:
        return f"dm-{self.team_id}-{self.viewer_id}-{self.peer_id}"

    @property
    def history_limit(self) -> int:
        return DIRECT_HISTORY_LIMIT


ConversationRef = Union[TeamChatRef, SubmissionThreadRef, DirectConversationRef]
