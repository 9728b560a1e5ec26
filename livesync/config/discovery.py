from pathlib import Path
from typing import List, Optional
from ..util.types import Result

CONFIG_DIR = ".livesync"

class ConfigDiscovery:
    def __init__(self, start_cwd: str, home: Optional[Path] = None) -> None:
        self.start_cwd = Path(start_cwd).resolve()
        self.home = home if home is not None else Path.home()

    def discover_stack(self) -> Result[List[str]]:
        """Return ordered list of .livesync dirs from CWD→parents→home (highest→lowest priority)."""
        try:
            stack: List[str] = []

            current = self.start_cwd
            while True:
                candidate = current / CONFIG_DIR
                if candidate.is_dir():
                    stack.append(str(candidate))
                if current == current.parent:
                    break
                current = current.parent

            home_dir = self.home / CONFIG_DIR
            if home_dir.is_dir() and str(home_dir) not in stack:
                stack.append(str(home_dir))

            return Result.success(stack)
        except Exception as e:
            return Result.failure("discovery.failed", str(e))
