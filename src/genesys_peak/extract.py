"""Extraction of externally-facing voice call intervals from conversation records.

Classification of trunk-facing legs from analytics data is a heuristic:
vendor records are ambiguous, so the participant guard is pluggable.
"""

import logging
import re
from typing import Callable, Optional

from pydantic import ValidationError

from genesys_peak.models import Conversation, Interval, Participant, Session, parse_timestamp

logger = logging.getLogger(__name__)

TELEPHONE_PREFIX = "tel:"

_EXTERNAL_PATTERN = re.compile(r"customer|external", re.IGNORECASE)

ParticipantPredicate = Callable[[Participant, Session], bool]


def is_telephone_address(address: Optional[str]) -> bool:
    return bool(address) and address.strip().lower().startswith(TELEPHONE_PREFIX)


def is_external_participant(participant: Participant, session: Session) -> bool:
    """Default guard: the participant's purpose or type reads customer/external."""
    for value in (participant.purpose, participant.participant_type):
        if value and _EXTERNAL_PATTERN.search(value):
            return True
    return False


def accept_any_participant(participant: Participant, session: Session) -> bool:
    return True


class IntervalExtractor:
    """Turns conversation records into call-leg intervals.

    Per participant and session:
      1. only voice sessions
      2. origin (ani) and destination (dnis) must both be tel: addresses
      3. the participant predicate must accept the leg (skipped in loose mode)
      4. a non-telephone secondary destination (sessionDnis) marks the leg internal
      5. non-wrapup segments define the interval envelope
    """

    def __init__(self, predicate: ParticipantPredicate | None = None, loose: bool = False):
        if loose:
            self.predicate = accept_any_participant
        else:
            self.predicate = predicate or is_external_participant
        self.loose = loose

    def extract(self, record: dict | Conversation) -> list[Interval]:
        """Extract intervals from one raw record.

        Malformed participants, sessions and segments are dropped by the
        record models; a record that fails validation as a whole yields nothing.
        """
        if isinstance(record, Conversation):
            conversation = record
        else:
            try:
                conversation = Conversation.model_validate(record)
            except ValidationError as e:
                logger.warning("Skipping malformed conversation record: %s", e.errors()[0].get("msg"))
                return []

        intervals = []
        for participant in conversation.participants:
            for session in participant.sessions:
                interval = self._extract_session(conversation, participant, session)
                if interval is not None:
                    intervals.append(interval)
        return intervals

    def extract_all(self, records) -> list[Interval]:
        intervals = []
        for record in records:
            intervals.extend(self.extract(record))
        return intervals

    def _is_trunk_leg(self, participant: Participant, session: Session) -> bool:
        if (session.media_type or "").lower() != "voice":
            return False
        if not (is_telephone_address(session.ani) and is_telephone_address(session.dnis)):
            return False
        if not self.predicate(participant, session):
            return False
        if session.session_dnis and not is_telephone_address(session.session_dnis):
            return False
        return True

    def _extract_session(
        self,
        conversation: Conversation,
        participant: Participant,
        session: Session,
    ) -> Optional[Interval]:
        if not self._is_trunk_leg(participant, session):
            return None

        if not participant.participant_id or not session.session_id:
            logger.warning(
                "Skipping session without ids in conversation %s", conversation.conversation_id
            )
            return None

        spans = []
        for segment in session.segments:
            if (segment.segment_type or "").strip().lower() == "wrapup":
                continue
            start = parse_timestamp(segment.segment_start)
            end = parse_timestamp(segment.segment_end)
            if start is None or end is None:
                logger.debug(
                    "Skipping segment with missing or unparsable times in %s/%s",
                    conversation.conversation_id, session.session_id,
                )
                continue
            spans.append((start, end))

        if not spans:
            return None

        spans.sort()
        start = spans[0][0]
        end = max(span_end for _, span_end in spans)
        if end <= start:
            logger.warning(
                "Discarding empty interval for %s/%s/%s",
                conversation.conversation_id, participant.participant_id, session.session_id,
            )
            return None

        return Interval(
            conversation_id=conversation.conversation_id,
            participant_id=participant.participant_id,
            session_id=session.session_id,
            start=start,
            end=end,
            ani=session.ani,
            dnis=session.dnis,
            division_ids=list(conversation.division_ids),
        )
