import copy
from typing import Dict, Any, List

class ConfigMerger:
    def merge_dicts(self, dicts: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Deep merge dictionaries; earlier entries have higher priority."""
        result: Dict[str, Any] = {}
        for d in reversed(dicts):
            if d:
                self._deep_merge(result, copy.deepcopy(d))
        return result

    def _deep_merge(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value
