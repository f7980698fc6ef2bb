"""
In-memory test doubles for the protocol interfaces.

MockTmux keeps sessions in a dict; FakeCommandRunner answers commands from
scripted responses and records every invocation. Neither touches a real
tmux server, git repository or network.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple, Union

from .runner import CommandResult

Response = Union[CommandResult, Callable[[tuple], CommandResult]]


class MockTmux:
    """Mock implementation of TmuxInterface for testing"""

    def __init__(self):
        # session name -> {"cwd": str, "command": Optional[str], "options": dict}
        self.sessions: Dict[str, dict] = {}
        self.global_options: Dict[str, str] = {}
        self.sent_keys: List[Tuple[str, str, bool]] = []
        self.attached: List[str] = []
        self.killed: List[str] = []

    def has_session(self, session: str) -> bool:
        return session in self.sessions

    def new_session(self, session: str, cwd: str, command: Optional[str] = None) -> bool:
        if session in self.sessions:
            return False
        self.sessions[session] = {"cwd": cwd, "command": command, "options": {}}
        return True

    def kill_session(self, session: str) -> bool:
        if session not in self.sessions:
            return False
        del self.sessions[session]
        self.killed.append(session)
        return True

    def set_option(self, option: str, value: str) -> bool:
        self.global_options[option] = value
        return True

    def set_session_option(self, session: str, option: str, value: str) -> bool:
        if session not in self.sessions:
            return False
        self.sessions[session]["options"][option] = value
        return True

    def send_keys(self, session: str, keys: str, enter: bool = True) -> bool:
        if session not in self.sessions:
            return False
        self.sent_keys.append((session, keys, enter))
        return True

    def attach(self, session: str) -> int:
        self.attached.append(session)
        return 0 if session in self.sessions else 1

    def keys_for(self, session: str) -> List[str]:
        return [keys for name, keys, _ in self.sent_keys if name == session]


class FakeCommandRunner:
    """Test double that simulates git/tmux/gh responses.

    Responses are registered per argv prefix; the longest registered prefix
    matching a call wins. Unmatched calls fail with exit code 1 and no output.
    A per-call delay lets tests observe how many calls overlap.
    """

    def __init__(self, delay: float = 0.0):
        self._responses: Dict[tuple, Response] = {}
        self._invocations: List[tuple] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, prefix, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        """Script the result for commands starting with prefix."""
        key = tuple(str(p) for p in prefix)
        self._responses[key] = CommandResult(args=key, returncode=returncode, stdout=stdout, stderr=stderr)

    def add_callable(self, prefix, func: Callable[[tuple], CommandResult]) -> None:
        """Script a dynamic result; func receives the full argv tuple."""
        self._responses[tuple(str(p) for p in prefix)] = func

    def _lookup(self, args: tuple) -> CommandResult:
        best: Optional[tuple] = None
        for key in self._responses:
            if args[:len(key)] == key and (best is None or len(key) > len(best)):
                best = key
        if best is None:
            return CommandResult(args=args, returncode=1)
        response = self._responses[best]
        if callable(response):
            return response(args)
        return CommandResult(args=args, returncode=response.returncode,
                             stdout=response.stdout, stderr=response.stderr)

    async def run(self, *args: str, cwd: Optional[str] = None) -> CommandResult:
        argv = tuple(str(a) for a in args)
        self._invocations.append(argv)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self._lookup(argv)
        finally:
            self.in_flight -= 1

    @property
    def invocations(self) -> List[tuple]:
        return self._invocations

    def calls_matching(self, *prefix: str) -> List[tuple]:
        return [argv for argv in self._invocations if argv[:len(prefix)] == prefix]
