"""
Signature and n-parameter transforms lifted from the player script.

Each transform is located by an ordered list of strategies. A strategy
returns a self-contained script unit (helper object, function bound to a
fixed name, invocation trailer) or None. The first unit that compiles wins.
"""
import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ytstream.config.settings import config
from ytstream.core.errors import ExtractionError
from ytstream.infra import sandbox
from ytstream.infra.cache import AsyncTTLCache
from ytstream.infra.http import PageFetcher
from ytstream.infra.sandbox import CompiledScript
from ytstream.services import patterns
from ytstream.utils.parse import find_matching_brace

logger = logging.getLogger(__name__)

DECIPHER_FUNC_NAME = "YtStreamDecipherFunc"
N_TRANSFORM_FUNC_NAME = "YtStreamNTransformFunc"
DECIPHER_ARGUMENT = "sig"
N_ARGUMENT = "ncode"

# Used when no n-transform can be found: n is passed through untouched
PLACEHOLDER_N_TRANSFORM = f"var {N_TRANSFORM_FUNC_NAME}=function(a){{return a}};{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"

TCE_PLAYER_PATH = "/player_ias_tce.vflset/"
PLAYER_PATH = "/player_ias.vflset/"

_HELPER_RE = re.compile(patterns.HELPER_REGEXP, re.S)
_DECIPHER_RE = re.compile(patterns.DECIPHER_REGEXP, re.S)
_N_TRANSFORM_RE = re.compile(patterns.N_TRANSFORM_REGEXP, re.S)
_N_SPLIT_JOIN_RE = re.compile(patterns.N_TRANSFORM_SPLIT_JOIN_REGEXP)
_HELPER_CALL_RE = re.compile(patterns.HELPER_CALL)
_DECIPHER_NAMES = patterns.compile_table(patterns.DECIPHER_NAME_REGEXPS)
_N_TRANSFORM_NAMES = patterns.compile_table(patterns.N_TRANSFORM_NAME_REGEXPS)

_decipher_warning = False
_n_transform_warning = False


@dataclass(frozen=True)
class CipherScript:
    """Compiled transforms for one player script; either may be missing"""
    player_url: Optional[str]
    decipher: Optional[CompiledScript]
    n_transform: Optional[CompiledScript]
    n_transform_placeholder: bool = False


def _strip_function_name(source: str) -> str:
    return re.sub(r"^function\s+[\w$]+\s*\(", "function(", source, count=1)


def find_function_name(body: str, table) -> Optional[str]:
    """
    Name of the function the first matching pattern points at, following
    one level of array indirection (``NAME=[realName]``).
    """
    for regex, group in table.values():
        match = regex.search(body)
        if not match:
            continue
        name = match.group(group)
        indirection = re.search(
            patterns.ARRAY_INDIRECTION.format(name=re.escape(name)), body
        )
        if indirection:
            name = indirection.group(1)
        # Unresolved indexing such as Xy[0] is useless on its own
        return None if "[" in name else name
    return None


def extract_named_function(body: str, name: str) -> Optional[str]:
    """Anonymous function source for ``name``, body found by brace scanning"""
    match = re.search(patterns.FUNCTION_DEFINITION.format(name=re.escape(name)), body)
    if not match:
        return None
    open_index = match.end() - 1
    try:
        close_index = find_matching_brace(body, open_index)
    except ValueError:
        return None
    args = match.group(1) or ""
    return f"function({args}){body[open_index:close_index + 1]}"


def extract_named_object(body: str, name: str) -> Optional[str]:
    match = re.search(patterns.OBJECT_DEFINITION.format(name=re.escape(name)), body)
    if not match:
        return None
    open_index = match.end() - 1
    try:
        close_index = find_matching_brace(body, open_index)
    except ValueError:
        return None
    return body[open_index:close_index + 1]


class ExtractionStrategy:
    """One way of locating a transform; returns a script unit or None"""
    name = "base"

    def extract(self, body: str) -> Optional[str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class DecipherCanonical(ExtractionStrategy):
    """Helper object and decipher function in their canonical shapes"""
    name = "decipher_canonical"

    def extract(self, body: str) -> Optional[str]:
        helper = _HELPER_RE.search(body)
        function = _DECIPHER_RE.search(body)
        if not helper or not function:
            return None
        source = _strip_function_name(function.group(0))
        return f"{helper.group(0)}var {DECIPHER_FUNC_NAME}={source};{DECIPHER_FUNC_NAME}({DECIPHER_ARGUMENT});"


class DecipherNamed(ExtractionStrategy):
    """Find the decipher function by name, then its operations object"""
    name = "decipher_named"

    def extract(self, body: str) -> Optional[str]:
        name = find_function_name(body, _DECIPHER_NAMES)
        if not name:
            return None
        function = extract_named_function(body, name)
        if not function:
            return None

        unit = ""
        helper_call = _HELPER_CALL_RE.search(function)
        if helper_call:
            helper_name = helper_call.group(1)
            helper = extract_named_object(body, helper_name)
            if not helper:
                return None
            unit += f"var {helper_name}={helper};"

        return f"{unit}var {DECIPHER_FUNC_NAME}={function};{DECIPHER_FUNC_NAME}({DECIPHER_ARGUMENT});"


class NTransformCanonical(ExtractionStrategy):
    """n-transform with its try/catch shape"""
    name = "n_transform_canonical"

    def extract(self, body: str) -> Optional[str]:
        match = _N_TRANSFORM_RE.search(body)
        if not match:
            return None
        return f"var {N_TRANSFORM_FUNC_NAME}={match.group(0)}{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"


class NTransformNamed(ExtractionStrategy):
    """Find the n-transform by the call site that reads the n parameter"""
    name = "n_transform_named"

    def extract(self, body: str) -> Optional[str]:
        name = find_function_name(body, _N_TRANSFORM_NAMES)
        if not name:
            return None
        function = extract_named_function(body, name)
        if not function:
            return None
        return f"var {N_TRANSFORM_FUNC_NAME}={function};{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"


class NTransformSplitJoin(ExtractionStrategy):
    """Newer players: a bare a=a.split("") ... return a.join("") function"""
    name = "n_transform_split_join"

    def extract(self, body: str) -> Optional[str]:
        for match in _N_SPLIT_JOIN_RE.finditer(body):
            candidate = match.group(0)
            # The decipher function has the same outline
            if _DECIPHER_RE.fullmatch(candidate):
                continue
            return f"var {N_TRANSFORM_FUNC_NAME}={candidate};{N_TRANSFORM_FUNC_NAME}({N_ARGUMENT});"
        return None


def strip_typeof_guard(unit: str) -> str:
    return patterns.TYPEOF_GUARD.sub("", unit, count=1)


DECIPHER_STRATEGIES: Tuple[ExtractionStrategy, ...] = (DecipherCanonical(), DecipherNamed())
N_TRANSFORM_STRATEGIES: Tuple[ExtractionStrategy, ...] = (
    NTransformCanonical(),
    NTransformNamed(),
    NTransformSplitJoin(),
)


def save_debug_file(name: str, body: str) -> Optional[str]:
    """Write an unparseable script to disk when enabled; returns the path"""
    if not config.cipher.save_debug_files:
        return None
    path = os.path.join(config.cipher.debug_dir, f"{int(time.time() * 1000)}-{name}")
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(body)
    except OSError as e:
        logger.error(f"Failed to save debug file {path}: {e}")
        return None
    return path


class CipherExtractor:
    def __init__(
        self,
        decipher_strategies: Sequence[ExtractionStrategy] = DECIPHER_STRATEGIES,
        n_transform_strategies: Sequence[ExtractionStrategy] = N_TRANSFORM_STRATEGIES,
    ):
        self.decipher_strategies = list(decipher_strategies)
        self.n_transform_strategies = list(n_transform_strategies)

    @staticmethod
    def _first_compiled(
        strategies: List[ExtractionStrategy],
        body: str,
        post_process: Optional[Callable[[str], str]] = None,
    ) -> Optional[CompiledScript]:
        for strategy in strategies:
            try:
                unit = strategy.extract(body)
            except (re.error, ValueError) as e:
                logger.debug(f"{strategy.name} failed: {e}")
                continue
            if not unit:
                continue
            if post_process:
                unit = post_process(unit)
            try:
                compiled = sandbox.compile_script(unit)
            except ExtractionError as e:
                logger.debug(f"{strategy.name} matched but did not compile: {e}")
                continue
            logger.debug(f"Transform located with {strategy.name}")
            return compiled
        return None

    def extract(self, body: str) -> Tuple[Optional[CompiledScript], Optional[CompiledScript]]:
        """Locate both transforms independently"""
        decipher = self._first_compiled(self.decipher_strategies, body)
        n_transform = self._first_compiled(self.n_transform_strategies, body, strip_typeof_guard)
        return decipher, n_transform

    def build(self, body: str, player_url: Optional[str] = None) -> CipherScript:
        global _decipher_warning, _n_transform_warning

        decipher, n_transform = self.extract(body)

        if decipher is None and not _decipher_warning:
            _decipher_warning = True
            saved = save_debug_file("base.js", body)
            logger.warning(
                "Could not parse decipher function, ciphered stream URLs will be missing"
                + (f" (player script saved to {saved})" if saved else "")
            )

        placeholder = False
        if n_transform is None:
            placeholder = True
            n_transform = sandbox.compile_script(PLACEHOLDER_N_TRANSFORM)
            if not _n_transform_warning:
                _n_transform_warning = True
                saved = save_debug_file("base.js", body)
                logger.warning(
                    "Could not parse n transform function, n is left unmodified and "
                    "downloads may be throttled"
                    + (f" (player script saved to {saved})" if saved else "")
                )

        return CipherScript(
            player_url=player_url,
            decipher=decipher,
            n_transform=n_transform,
            n_transform_placeholder=placeholder,
        )


def normalize_player_url(player_url: str) -> str:
    if TCE_PLAYER_PATH in player_url:
        logger.debug("Player URL points to the tce variant, rewriting to the regular script")
        return player_url.replace(TCE_PLAYER_PATH, PLAYER_PATH)
    return player_url


cipher_cache = AsyncTTLCache(config.cache.cipher_ttl)


async def get_cipher_script(
    player_url: str,
    fetcher: PageFetcher,
    cache: Optional[AsyncTTLCache] = None,
    extractor: Optional[CipherExtractor] = None,
) -> CipherScript:
    """Fetch and compile the transforms of a player script, shared per URL"""
    player_url = normalize_player_url(player_url)
    cache = cache if cache is not None else cipher_cache
    extractor = extractor or CipherExtractor()

    async def load() -> CipherScript:
        body = await fetcher.fetch_cached(player_url)
        # Regex scans over a multi-megabyte script would stall the loop
        return await asyncio.to_thread(extractor.build, body, player_url)

    return await cache.get_or_compute(player_url, load)
