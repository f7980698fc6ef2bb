"""
Real implementations of protocol interfaces.

RealTmux drives tmux through libtmux for the session lifecycle (create,
kill, options, keys, attach). Status probing does not go through here: it
uses the async CommandRunner so refresh passes never block the event loop.
"""

import logging
import os
import subprocess
import time
from typing import Dict, Optional

import libtmux
from libtmux.exc import LibTmuxException
from libtmux._internal.query_list import ObjectDoesNotExist

logger = logging.getLogger(__name__)


class RealTmux:
    """Production implementation of TmuxInterface using libtmux.

    Session objects are cached briefly; libtmux spawns a tmux subprocess
    for every lookup.
    """

    _CACHE_TTL = 30.0

    def __init__(self, socket_name: Optional[str] = None):
        """Initialize with optional socket name for test isolation.

        If no socket_name is provided, checks DEVFLEET_TMUX_SOCKET env var.
        """
        self._socket_name = socket_name or os.environ.get("DEVFLEET_TMUX_SOCKET")
        self._server: Optional[libtmux.Server] = None
        # Cache: session_name -> (session_obj, timestamp)
        self._session_cache: Dict[str, tuple] = {}

    @property
    def server(self) -> libtmux.Server:
        """Lazy-load the tmux server connection."""
        if self._server is None:
            if self._socket_name:
                self._server = libtmux.Server(socket_name=self._socket_name)
            else:
                self._server = libtmux.Server()
        return self._server

    def tmux_argv(self, *args: str) -> list:
        argv = ["tmux"]
        if self._socket_name:
            argv += ["-L", self._socket_name]
        return argv + list(args)

    def _get_session(self, session: str) -> Optional[libtmux.Session]:
        """Get a session by name, with caching."""
        now = time.time()
        if session in self._session_cache:
            cached_session, cached_time = self._session_cache[session]
            if now - cached_time < self._CACHE_TTL:
                return cached_session

        try:
            sess = self.server.sessions.get(session_name=session)
            self._session_cache[session] = (sess, now)
            return sess
        except (LibTmuxException, ObjectDoesNotExist):
            return None

    def invalidate_cache(self, session: Optional[str] = None) -> None:
        """Drop cached session objects (all, or just one)."""
        if session is None:
            self._session_cache.clear()
        else:
            self._session_cache.pop(session, None)

    def has_session(self, session: str) -> bool:
        try:
            return self.server.has_session(session)
        except LibTmuxException:
            return False

    def new_session(self, session: str, cwd: str, command: Optional[str] = None) -> bool:
        kwargs = {"session_name": session, "attach": False, "start_directory": cwd}
        if command:
            kwargs["window_command"] = command
        try:
            self.server.new_session(**kwargs)
            self.invalidate_cache(session)
            return True
        except LibTmuxException as e:
            logger.warning("Failed to create tmux session %s: %s", session, e)
            return False

    def kill_session(self, session: str) -> bool:
        try:
            sess = self._get_session(session)
            if sess is None:
                return False
            sess.kill()
            return True
        except LibTmuxException:
            return False
        finally:
            self.invalidate_cache(session)

    def _cmd(self, *args: str) -> bool:
        try:
            result = self.server.cmd(*args)
        except LibTmuxException:
            return False
        return not result.stderr

    def set_option(self, option: str, value: str) -> bool:
        return self._cmd("set-option", "-g", option, value)

    def set_session_option(self, session: str, option: str, value: str) -> bool:
        return self._cmd("set-option", "-t", session, option, value)

    def send_keys(self, session: str, keys: str, enter: bool = True) -> bool:
        try:
            sess = self._get_session(session)
            if sess is None:
                return False
            pane = sess.active_window.active_pane
            if pane is None:
                return False
            pane.send_keys(keys, enter=enter)
            return True
        except LibTmuxException:
            return False

    def attach(self, session: str) -> int:
        # Hands the terminal to tmux until the user detaches
        result = subprocess.run(self.tmux_argv("attach-session", "-t", session))
        return result.returncode
