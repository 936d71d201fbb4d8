from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Turn(BaseModel):
    """One message of a conversation, positioned by ``sequence_no``."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"] = Field(..., description="'user' or 'assistant'")
    text: str
    sequence_no: int = Field(..., ge=1)


class ChatRequest(BaseModel):
    message: str = Field("", description="User's latest message")
    client_transaction_id: Optional[str] = Field(
        None,
        description="Id of the pending-response element on the page, echoed back untouched",
    )


class Fragment(BaseModel):
    """A named piece of the response body that patches one DOM region.

    ``template`` and ``context`` are handed to the renderer as-is. Out-of-band
    fragments are swapped by id wherever they live on the page; the primary
    fragment goes to the request's own target.
    """

    name: str
    template: str
    context: Dict[str, Any] = Field(default_factory=dict)
    oob: bool = False


class FragmentSet(BaseModel):
    fragments: List[Fragment] = Field(default_factory=list)

    def names(self) -> List[str]:
        return [f.name for f in self.fragments]

    def get(self, name: str) -> Optional[Fragment]:
        for fragment in self.fragments:
            if fragment.name == name:
                return fragment
        return None
