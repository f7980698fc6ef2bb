"""
Per-project run configuration (run-session.config.json).

Example:

    {"setup": ["npm install"], "command": "npm run dev",
     "watch": true, "env": {"PORT": "3001"}}
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional


@dataclass
class RunConfig:
    setup: List[str] = field(default_factory=list)
    command: Optional[str] = None
    # Long-running commands keep the session open after they exit
    watch: bool = True
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "RunConfig":
        if not isinstance(data, dict):
            raise ValueError("run config must be a JSON object")
        setup = data.get("setup") or []
        env = data.get("env") or {}
        if not isinstance(setup, list):
            raise ValueError("'setup' must be a list of commands")
        if not isinstance(env, dict):
            raise ValueError("'env' must be an object")
        command = data.get("command")
        return cls(
            setup=[str(cmd) for cmd in setup],
            command=str(command) if command else None,
            watch=data.get("watch") is not False,
            env={str(k): str(v) for k, v in env.items()},
        )

    def keystrokes(self) -> List[str]:
        """Lines to type into the run session, in order."""
        lines = list(self.setup)
        lines += [f'export {key}="{value}"' for key, value in self.env.items()]
        if self.command:
            lines.append(f"{self.command}; exec bash" if self.watch else self.command)
        return lines


def load_run_config(path: Path) -> RunConfig:
    """Read and validate a run config.

    Raises:
        FileNotFoundError: no config at path
        ValueError: the file is not valid JSON or has the wrong shape
    """
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(str(e)) from e
    return RunConfig.from_dict(data)
