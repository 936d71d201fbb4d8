from __future__ import annotations

from typing import List, Sequence

from chat.models import Turn


def next_sequence_no(turns: Sequence[Turn]) -> int:
    return turns[-1].sequence_no + 1 if turns else 1


def assemble(session_turns: Sequence[Turn], new_message: str) -> List[Turn]:
    """Return the turns to submit: the session history, then the new user message.

    History is passed through whole; windowing happens when memory is read.
    """
    submission = list(session_turns)
    submission.append(
        Turn(role="user", text=new_message, sequence_no=next_sequence_no(session_turns))
    )
    return submission
