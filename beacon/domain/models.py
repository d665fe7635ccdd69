from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict

# Home pages have no id in the URL; zero would read as "missing" in keys
HOME_RESOURCE_ID = 1


class ResourceType(str, Enum):
    MOVIE = "movie"
    LIST = "list"
    HOME = "home"


class UpdateKind(str, Enum):
    MAX = "max"
    AVG = "avg"


class Beacon(BaseModel):
    """Timing report cut out of a single access-log line."""

    model_config = ConfigDict(frozen=True)

    url: str
    response_time: str
    client_timestamp: str


class ClassifiedHit(BaseModel):
    """A beacon attributed to one resource, with a decimal response time."""

    model_config = ConfigDict(frozen=True)

    resource_type: ResourceType
    resource_id: int
    url: str
    response_time: Decimal
    client_timestamp: str


class UpdateRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: UpdateKind
    hit: ClassifiedHit
