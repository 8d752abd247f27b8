"""
Isolated execution of transforms lifted out of the player script.

The rest of the package only sees ``compile_script(source)`` and
``invoke(compiled, value)``. Sources are self-contained units ending in a
single invocation trailer ``NAME(arg);``. They are interpreted by yt-dlp's
JavaScript interpreter, which has no access to the host process: the only
binding a unit receives is its one input string.

Units run in a separate worker process. A unit that exceeds its time budget
gets the worker killed (the next call starts a fresh one) and is marked as
timed out, so later calls for it fail immediately.
"""
import logging
import multiprocessing
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple

from yt_dlp.jsinterp import JSInterpreter

from ytstream.config.settings import config
from ytstream.core.errors import ExtractionError, ScriptExecutionError

logger = logging.getLogger(__name__)

TRAILER_RE = re.compile(r"([A-Za-z_$][\w$]*)\(([A-Za-z_$][\w$]*)\);?\s*$")

# Interpreter import and startup are not charged to a unit's budget
WORKER_START_TIMEOUT = 30.0


@dataclass
class CompiledScript:
    name: str
    argument: str
    source: str
    timed_out: bool = field(default=False, compare=False)


def _load(source: str) -> Tuple[str, str, Callable]:
    trailer = TRAILER_RE.search(source)
    if not trailer:
        raise ExtractionError("Script unit has no invocation trailer")

    name, argument = trailer.group(1), trailer.group(2)
    body = source[:trailer.start()]

    try:
        function = JSInterpreter(body).extract_function(name)
    except Exception as e:
        raise ExtractionError(f"Could not compile {name}: {e}") from e
    return name, argument, function


def _serve(conn) -> None:
    """Worker loop: answer (source, value) requests until the pipe closes"""
    functions: Dict[str, Callable] = {}
    conn.send(("ready", None))
    while True:
        try:
            source, value = conn.recv()
        except EOFError:
            return

        try:
            function = functions.get(source)
            if function is None:
                function = functions[source] = _load(source)[2]
            result = function([value])
        except Exception as e:
            conn.send(("error", f"failed: {e}"))
            continue

        if isinstance(result, str):
            conn.send(("ok", result))
        else:
            conn.send(("error", f"returned {type(result).__name__}, expected str"))


class _Worker:
    """One worker process, started on demand and killed on timeout"""

    def __init__(self):
        self._context = multiprocessing.get_context("spawn")
        self._lock = threading.Lock()
        self._process = None
        self._conn = None

    def _start(self) -> None:
        parent_conn, child_conn = self._context.Pipe()
        process = self._context.Process(
            target=_serve, args=(child_conn,), name="ytstream-sandbox", daemon=True,
        )
        process.start()
        child_conn.close()

        try:
            ready = parent_conn.poll(WORKER_START_TIMEOUT) and parent_conn.recv()
        except EOFError:
            ready = None
        if not ready:
            process.kill()
            process.join()
            parent_conn.close()
            raise ScriptExecutionError("Sandbox worker failed to start")

        logger.debug(f"Sandbox worker started (pid {process.pid})")
        self._process, self._conn = process, parent_conn

    def _stop(self) -> None:
        if self._process is not None:
            self._process.kill()
            self._process.join()
            self._conn.close()
        self._process = self._conn = None

    def stop(self) -> None:
        with self._lock:
            self._stop()

    def run(self, source: str, value: str, budget: float) -> Tuple[str, Optional[str]]:
        """Returns (status, payload); raises TimeoutError after killing the worker"""
        with self._lock:
            if self._process is None or not self._process.is_alive():
                self._stop()
                self._start()

            self._conn.send((source, value))
            if not self._conn.poll(budget):
                self._stop()
                raise TimeoutError(f"no result within {budget}s")
            try:
                return self._conn.recv()
            except EOFError:
                self._stop()
                return "error", "worker exited"


_worker = _Worker()


def shutdown() -> None:
    _worker.stop()


def compile_script(source: str) -> CompiledScript:
    """
    Turn a synthesized unit into a callable.
    Raises ExtractionError when the unit has no trailer or its function
    cannot be located.
    """
    name, argument, _ = _load(source)
    return CompiledScript(name=name, argument=argument, source=source)


def invoke(compiled: CompiledScript, value: str, timeout: Optional[float] = None) -> str:
    """Run a compiled unit against its single input within the time budget"""
    if compiled.timed_out:
        raise ScriptExecutionError(f"{compiled.name} timed out earlier, skipped")

    budget = timeout if timeout is not None else config.cipher.execution_timeout
    try:
        status, payload = _worker.run(compiled.source, value, budget)
    except TimeoutError as e:
        compiled.timed_out = True
        logger.warning(f"{compiled.name} exceeded {budget}s, sandbox worker restarted")
        raise ScriptExecutionError(f"{compiled.name} exceeded {budget}s") from e

    if status != "ok":
        raise ScriptExecutionError(f"{compiled.name} {payload}")
    return payload
