"""
Engine configuration — the four cache paths plus the frontend options.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from halfacts.errors import ConfigurationError

DEFAULT_SUCC_RET_FILE = "succ-ret.yaml"
DEFAULT_API_FILE = "api.yaml"
DEFAULT_LOOP_FILE = "loops.yaml"
DEFAULT_PERIPH_STRUCT_FILE = "periph-struct.yaml"

DEFAULT_LOCK_TIMEOUT = 90.0


@dataclass
class EngineConfig:
    succ_ret_file: Optional[str] = None
    api_file: Optional[str] = None
    loop_file: Optional[str] = None
    periph_struct_file: Optional[str] = None
    include_dirs: List[str] = field(default_factory=list)
    system_include_dirs: List[str] = field(default_factory=list)
    defines: List[str] = field(default_factory=list)       # NAME or NAME=VALUE
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    # Command-line spelling of each required path, in check order
    _REQUIRED = (
        ("succ_ret_file", "-out-file-succ-ret"),
        ("api_file", "-out-file-api"),
        ("loop_file", "-out-file-loops"),
        ("periph_struct_file", "-out-file-periph-struct"),
    )

    @classmethod
    def in_directory(cls, directory: str, **kwargs) -> "EngineConfig":
        """Config with the default cache file names inside ``directory``."""
        return cls(
            succ_ret_file=os.path.join(directory, DEFAULT_SUCC_RET_FILE),
            api_file=os.path.join(directory, DEFAULT_API_FILE),
            loop_file=os.path.join(directory, DEFAULT_LOOP_FILE),
            periph_struct_file=os.path.join(directory, DEFAULT_PERIPH_STRUCT_FILE),
            **kwargs,
        )

    def validate(self):
        for attr, option in self._REQUIRED:
            if not getattr(self, attr):
                raise ConfigurationError(option)
        if self.lock_timeout <= 0:
            raise ConfigurationError("lock_timeout", "lock_timeout must be positive")

    def parsed_defines(self) -> Dict[str, str]:
        """``defines`` as a name -> value map (bare names get "1")."""
        result = {}
        for item in self.defines:
            name, sep, value = item.partition("=")
            name = name.strip()
            if name:
                result[name] = value if sep else "1"
        return result
