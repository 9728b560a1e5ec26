import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from .schema import ClientCfg
from .discovery import ConfigDiscovery
from .merge import ConfigMerger
from ..util.types import Result
from ..util.logging import log

CONFIG_FILE = "client.yaml"

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, return empty dict if file doesn't exist."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data

def load_config(start_cwd: str = ".", overrides: Optional[Dict[str, Any]] = None,
                home: Optional[Path] = None) -> Result[ClientCfg]:
    """Load and merge client.yaml from the .livesync stack, then apply overrides."""
    try:
        stack_result = ConfigDiscovery(start_cwd, home=home).discover_stack()
        if not stack_result.ok:
            return Result(ok=False, error=stack_result.error)

        layers: List[Dict[str, Any]] = []
        if overrides:
            layers.append(overrides)
        for root in stack_result.value:
            layers.append(load_yaml(Path(root) / CONFIG_FILE))

        merged = ConfigMerger().merge_dicts(layers)
        cfg = ClientCfg(**merged)
        log("DEBUG", "config", "loaded", layers=stack_result.value)
        return Result.success(cfg)
    except ValidationError as e:
        return Result.failure("config.invalid", str(e))
    except Exception as e:
        return Result.failure("config.load_failed", str(e))
