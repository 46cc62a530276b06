"""Messages delivered to the explorer and commands it asks the runtime to run.

Both are immutable values. Messages flow into `Explorer.handle`; commands flow
out of it and are executed off the control loop, each producing at most one
message in return.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from diskdive.deleter import DeleteProgress
from diskdive.models import CacheEntry, DeleteOutcome, ScanResult
from diskdive.scanner import ScanProgress


# =============================================================================
# Messages
# =============================================================================


@dataclass(frozen=True)
class KeyPress:
    key: str


@dataclass(frozen=True)
class Resize:
    width: int
    height: int


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class ScanFinished:
    path: str
    result: Optional[ScanResult] = None
    error: Optional[str] = None
    mod_time: Optional[float] = None
    from_cache: bool = False
    generation: int = 0


@dataclass(frozen=True)
class OverviewSizeMeasured:
    path: str
    index: int
    size: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class DeleteFinished:
    outcome: DeleteOutcome
    paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class OpenFinished:
    errors: tuple[str, ...] = ()
    reveal: bool = False


Message = Union[
    KeyPress, Resize, Tick, ScanFinished, OverviewSizeMeasured, DeleteFinished, OpenFinished
]


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class ScanCommand:
    path: str
    progress: ScanProgress = field(default_factory=ScanProgress, compare=False)
    generation: int = 0


@dataclass(frozen=True)
class OverviewProbeCommand:
    path: str
    index: int
    progress: ScanProgress = field(default_factory=ScanProgress, compare=False)


@dataclass(frozen=True)
class DeleteCommand:
    paths: tuple[str, ...]
    progress: DeleteProgress = field(default_factory=DeleteProgress, compare=False)


@dataclass(frozen=True)
class OpenCommand:
    paths: tuple[str, ...]
    reveal: bool = False


@dataclass(frozen=True)
class SaveScanCommand:
    path: str
    entry: CacheEntry


@dataclass(frozen=True)
class SaveOverviewSizeCommand:
    path: str
    size: int


@dataclass(frozen=True)
class TickCommand:
    pass


@dataclass(frozen=True)
class QuitCommand:
    pass


Command = Union[
    ScanCommand,
    OverviewProbeCommand,
    DeleteCommand,
    OpenCommand,
    SaveScanCommand,
    SaveOverviewSizeCommand,
    TickCommand,
    QuitCommand,
]
