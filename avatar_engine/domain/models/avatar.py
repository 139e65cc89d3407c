"""Avatar selection and persona models.

An avatar selects which intent, flow and prompt definitions are active.
Selection is an explicit tagged union rather than something inferred from
the shape of an id:

    StandardAvatar(avatar_type="networker")
    CustomAvatar(avatar_id="acme-recruiter", avatar_type="networker")

A custom avatar layers its own intents/flows over the standard set of its
base type.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class StandardAvatar(BaseModel):
    """One of the built-in avatar types."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["standard"] = "standard"
    avatar_type: str = Field(description="Avatar type, e.g. 'networker' or 'trainer'")

    @property
    def key(self) -> str:
        return f"standard:{self.avatar_type}"


class CustomAvatar(BaseModel):
    """A user-built avatar extending a standard type."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["custom"] = "custom"
    avatar_id: str
    avatar_type: str = Field(description="Standard type the custom set extends")

    @property
    def key(self) -> str:
        return f"custom:{self.avatar_id}"


AvatarSelector = Annotated[
    Union[StandardAvatar, CustomAvatar], Field(discriminator="kind")
]


class CompanyProfile(BaseModel):
    """Business the avatar represents."""

    name: str = "our company"
    industry: str = ""
    mission: str = ""
    offerings: List[str] = Field(default_factory=list)
    specializations: List[str] = Field(default_factory=list)


class AvatarPersona(BaseModel):
    """Persona fields substituted into prompts."""

    first_name: str = "Alex"
    last_name: str = ""
    tone: str = "friendly and professional"
    company: CompanyProfile = Field(default_factory=CompanyProfile)
    suggested_topics: List[str] = Field(default_factory=list)


class CounterpartProfile(BaseModel):
    """What is known about the user's side of the conversation."""

    name: str = "your company"
    industry: str = "your industry"
    needs: str = "business growth"
    strategic_goals: Optional[str] = None
