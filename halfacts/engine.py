"""
HAL Facts Engine — per-TU entry point.

    config → validate → preprocess + parse (macro events feed the struct
    name extractor) → enum registry → success values / API classification
    → loop spans → merge all four caches
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict

from halfacts.cache_store import CacheKind, CacheStore, TranslationUnitFacts
from halfacts.config import EngineConfig
from halfacts.enum_registry import EnumRegistry
from halfacts.loops import LoopSpanCollector
from halfacts.periph_structs import PeriphStructNameExtractor
from halfacts.preprocessor import PreprocessorEngine
from halfacts.success_values import SuccessValueInferencer
from halfacts.translation_unit import load_translation_unit

logger = logging.getLogger(__name__)


@dataclass
class EngineReport:
    source_file: str
    facts: TranslationUnitFacts
    analysed: bool = True                # False if the TU could not be parsed
    cache_status: Dict[CacheKind, bool] = field(default_factory=dict)

    def summary(self) -> str:
        lines = [f"# {os.path.basename(self.source_file)}", ""]
        if not self.analysed:
            lines.append("**TU could not be preprocessed or parsed; no facts extracted.**")
            lines.append("")
        lines.append(f"- Success values inferred: {len(self.facts.success_values)}")
        for name in sorted(self.facts.success_values):
            lines.append(f"  - `{name}` → {self.facts.success_values[name]}")
        lines.append(f"- API functions (this TU): {len(self.facts.api_names)}")
        lines.append(f"- Loop headers: {len(self.facts.loop_spans)}")
        lines.append(f"- Peripheral structs: {', '.join(sorted(self.facts.struct_names)) or 'none'}")
        failed = [k.value for k, ok in self.cache_status.items() if not ok]
        if failed:
            lines.append(f"- ⚠️ Cache updates failed: {', '.join(failed)}")
        return "\n".join(lines)


class HalFactsEngine:

    def __init__(self, config: EngineConfig):
        config.validate()
        self.config = config
        self.store = CacheStore(config)
        self.preprocessor = PreprocessorEngine(config.include_dirs, config.system_include_dirs)
        for name, value in config.parsed_defines().items():
            self.preprocessor.add_define(name, value)

    def run(self, source_file: str) -> EngineReport:
        """Analyse one TU and merge its facts into the caches."""
        known = self.store.snapshot_success_values()
        periph = PeriphStructNameExtractor()
        loops = LoopSpanCollector()
        facts = TranslationUnitFacts()

        tu = load_translation_unit(source_file, self.preprocessor, periph.on_macro_expansion)
        if tu is not None:
            registry = EnumRegistry.build(tu)
            inferencer = SuccessValueInferencer(registry, known)
            inferencer.run(tu)
            loops.collect(tu)

            facts.success_values = dict(inferencer.inferred)
            facts.declared = set(inferencer.declared)
            facts.defined = set(inferencer.defined)
            facts.loop_spans = set(loops.resolve(tu.locations))
        facts.struct_names = set(periph.names)

        status = self.store.merge(facts)
        return EngineReport(os.path.abspath(source_file), facts, tu is not None, status)


def analyze_translation_unit(source_file: str, config: EngineConfig) -> EngineReport:
    return HalFactsEngine(config).run(source_file)
