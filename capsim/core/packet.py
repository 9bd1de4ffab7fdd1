from dataclasses import dataclass, field
from typing import List, Optional

from capsim.core.codec import MessagePattern


@dataclass
class InboundMessage:
    sender: str
    name: str
    fields: List[str]
    pattern: MessagePattern
    timestamp: float
    host: Optional[str] = None           # origin host when the transport knows it
    raw: str = field(default="", repr=False)


@dataclass(frozen=True)
class NodeIdentity:
    name: str
    bus: str
    debug: bool = False   # True selects the local (non-forwarded) message variants
