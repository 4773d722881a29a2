"""
HAL Facts Extractor — MCP Server

Exposes the per-TU fact extraction engine and its caches via the Model
Context Protocol:

  1. analyze_translation_unit — run the engine on one TU, merging into a cache dir
  2. show_cache               — render one of the four caches
  3. lookup_success_value     — success value recorded for one function
"""

from mcp.server.fastmcp import FastMCP
import os
import sys

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from halfacts.cache_store import CacheKind, CacheStore
from halfacts.config import EngineConfig
from halfacts.engine import HalFactsEngine
from halfacts.errors import HalFactsError

# ═══════════════════════════════════════════════════════════════════════
#  Server Setup
# ═══════════════════════════════════════════════════════════════════════

mcp = FastMCP("HAL Facts Extractor")


def _split_list(value: str):
    return [item.strip() for item in value.split(",") if item.strip()]


def _store_for(cache_dir: str) -> CacheStore:
    return CacheStore(EngineConfig.in_directory(cache_dir))


# ═══════════════════════════════════════════════════════════════════════
#  Tool 1 — Analyze Translation Unit
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def analyze_translation_unit(source_file: str, cache_dir: str, include_dirs: str = "",
                             system_include_dirs: str = "", defines: str = "") -> str:
    """
    Runs the fact extraction engine on one translation unit.

    Facts are merged into the four caches (succ-ret.yaml, api.yaml,
    loops.yaml, periph-struct.yaml) inside cache_dir, exactly as a build
    would do for each compiled file.

    Args:
        source_file:          Path to the C source file of the TU.
        cache_dir:            Directory holding the cache files (created if needed).
        include_dirs:         Comma-separated include directories.
        system_include_dirs:  Comma-separated system include directories;
                              functions declared there never enter the API.
        defines:              Comma-separated macro definitions, e.g. "STM32F4,USE_HAL=1".
    """
    if not os.path.isfile(source_file):
        return f"Error: Source file not found at {source_file}"
    if not cache_dir.strip():
        return "Error: cache_dir is required"

    try:
        config = EngineConfig.in_directory(
            cache_dir,
            include_dirs=_split_list(include_dirs),
            system_include_dirs=_split_list(system_include_dirs),
            defines=_split_list(defines),
        )
        report = HalFactsEngine(config).run(source_file)
    except HalFactsError as e:
        return f"Error: {e}"
    except Exception as e:
        return f"Error analysing {source_file}: {e}"
    return report.summary()


# ═══════════════════════════════════════════════════════════════════════
#  Tool 2 — Show Cache
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def show_cache(cache_dir: str, kind: str) -> str:
    """
    Renders one cache as Markdown.

    Args:
        cache_dir: Directory holding the cache files.
        kind:      One of "succ-ret", "api", "loops", "periph-struct".
    """
    try:
        cache_kind = CacheKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in CacheKind)
        return f"Error: Unknown cache kind '{kind}'. Expected one of: {valid}"

    store = _store_for(cache_dir)
    try:
        content = store.read(cache_kind)
    except HalFactsError as e:
        return f"Error: {e}"

    path = store.paths[cache_kind]
    if not content:
        return f"## {kind}\n\n`{path}` is empty or does not exist yet."

    out = f"## {kind} ({len(content)} entries)\n\n"
    if cache_kind is CacheKind.SUCC_RET:
        out += "| Function | Success value |\n|----------|---------------|\n"
        for name in sorted(content):
            out += f"| `{name}` | {content[name]} |\n"
    elif cache_kind is CacheKind.LOOPS:
        out += "| File | Begin | End |\n|------|-------|-----|\n"
        for span in sorted(content, key=lambda s: s.sort_key):
            out += (f"| `{span.file}` | {span.begin_line}:{span.begin_column} "
                    f"| {span.end_line}:{span.end_column} |\n")
    else:
        for name in content:
            out += f"- `{name}`\n"
    return out


# ═══════════════════════════════════════════════════════════════════════
#  Tool 3 — Lookup Success Value
# ═══════════════════════════════════════════════════════════════════════

@mcp.tool()
def lookup_success_value(cache_dir: str, function_name: str) -> str:
    """
    Returns the success value recorded for a function, if any.

    Args:
        cache_dir:     Directory holding the cache files.
        function_name: Exact C function name, e.g. "HAL_GPIO_Init".
    """
    try:
        values = _store_for(cache_dir).read(CacheKind.SUCC_RET)
    except HalFactsError as e:
        return f"Error: {e}"
    if function_name not in values:
        return f"No success value recorded for `{function_name}`."
    return f"`{function_name}` returns {values[function_name]} on success."


if __name__ == "__main__":
    mcp.run()
