"""
Whole-program nullability inference.

Pipeline:
    Source Code -> Frontend (tree-sitter) -> SIL Program
        -> annotations of every declaration
        -> dataflow evidence of every definition (optionally in parallel)
        -> merge -> one Inference per symbol

Failures are scoped: a function whose body cannot be analysed is skipped
with a "Skipping function: <reason>" diagnostic, a malformed evidence
record is dropped with a "Dropping evidence: <reason>" diagnostic, and the
rest of the program is still inferred.
"""

import json
import sys
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, TextIO, Tuple

from nullinfer.errors import NullabilityError
from nullinfer.inference.collect import EvidenceCollector
from nullinfer.inference.evidence import Evidence, Inference
from nullinfer.inference.merge import merge_evidence
from nullinfer.sil.procedure import Procedure, Program


EXTENSION_LANGUAGES = {
    '.c': 'c',
    '.h': 'c',
    '.cpp': 'cpp',
    '.cc': 'cpp',
    '.cxx': 'cpp',
    '.hpp': 'cpp',
    '.hh': 'cpp',
}


def detect_language(filename: str, default: str = "cpp") -> str:
    """Source language from a file extension"""
    return EXTENSION_LANGUAGES.get(Path(filename).suffix.lower(), default)


@dataclass
class InferenceReport:
    """Result of inferring one program (or a batch of files)"""
    inferences: List[Inference] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    time_ms: float = 0.0
    functions_analyzed: int = 0

    def get(self, symbol: str) -> Optional[Inference]:
        for inference in self.inferences:
            if inference.symbol == symbol:
                return inference
        return None

    def to_dict(self) -> dict:
        return {
            "inferences": [i.to_dict() for i in self.inferences],
            "evidence": [e.to_dict() for e in self.evidence],
            "diagnostics": self.diagnostics,
            "skipped": self.skipped,
            "time_ms": self.time_ms,
            "functions_analyzed": self.functions_analyzed,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class NullabilityInferencer:
    """
    Infers the nullability of pointer parameters and return values.

    Usage:
        inferencer = NullabilityInferencer(jobs=4)
        report = inferencer.infer_file("widget.cc")
        for inference in report.inferences:
            print(inference)
    """

    def __init__(
        self,
        timeout: int = 5000,
        function_budget_ms: Optional[int] = None,
        max_node_visits: int = 64,
        jobs: int = 1,
        max_samples: int = 16,
        verbose: bool = False,
        diagnostics: Optional[TextIO] = sys.stderr,
    ):
        """
        Initialize the inferencer.

        Args:
            timeout: z3 timeout per implication query, in milliseconds
            function_budget_ms: Wall-clock budget per function (None = unlimited)
            max_node_visits: Fixpoint visit limit per CFG node
            jobs: Worker threads for the per-function analyses
            max_samples: Sample evidence kept per slot
            verbose: Enable verbose output
            diagnostics: Stream receiving diagnostic lines (None to silence)
        """
        self.timeout = timeout
        self.function_budget_ms = function_budget_ms
        self.max_node_visits = max_node_visits
        self.jobs = max(1, jobs)
        self.max_samples = max_samples
        self.verbose = verbose
        self.diagnostics = diagnostics

    # =========================================================================
    # Entry points
    # =========================================================================

    def infer_program(self, program: Program) -> InferenceReport:
        """Infer every eligible symbol of a SIL program"""
        start_time = time.time()
        report = InferenceReport()
        self._collect(program, report)
        self._merge(report, _arities(program))
        report.time_ms = (time.time() - start_time) * 1000

        if self.verbose:
            print(f"[Infer] {len(report.inferences)} inference(s) from "
                  f"{len(report.evidence)} evidence in {report.time_ms:.2f}ms")
        return report

    def infer_source(self, source_code: str, filename: str = "<unknown>",
                     language: Optional[str] = None) -> InferenceReport:
        """Parse and infer one translation unit"""
        language = language or detect_language(filename)
        if self.verbose:
            print(f"[Infer] Parsing {filename} as {language}...")
        program = self._get_frontend(language).translate(source_code, filename)
        return self.infer_program(program)

    def infer_file(self, filepath: str, language: Optional[str] = None) -> InferenceReport:
        """Parse and infer one source file"""
        return self.infer_files([filepath], language)

    def infer_files(self, filepaths: List[str],
                    language: Optional[str] = None) -> InferenceReport:
        """
        Infer a batch of files together.

        Evidence from every file is merged in one batch, so a symbol
        declared in a shared header gets one verdict.
        """
        start_time = time.time()
        report = InferenceReport()
        arities: Dict[str, int] = {}

        for filepath in filepaths:
            path = Path(filepath)
            if not path.exists():
                self._diagnose(report, f"File not found: {filepath}")
                continue
            file_language = language or detect_language(str(path))
            if self.verbose:
                print(f"[Infer] Parsing {path} as {file_language}...")
            source_code = path.read_text(encoding='utf-8')
            program = self._get_frontend(file_language).translate(source_code, str(path))
            self._collect(program, report)
            for symbol, arity in _arities(program).items():
                arities[symbol] = max(arity, arities.get(symbol, 0))

        self._merge(report, arities)
        report.time_ms = (time.time() - start_time) * 1000

        if self.verbose:
            print(f"[Infer] {len(report.inferences)} inference(s) from "
                  f"{len(filepaths)} file(s) in {report.time_ms:.2f}ms")
        return report

    # =========================================================================
    # Stages
    # =========================================================================

    def _collect(self, program: Program, report: InferenceReport) -> None:
        collector = EvidenceCollector(
            program,
            timeout=self.timeout,
            max_node_visits=self.max_node_visits,
            function_budget_ms=self.function_budget_ms,
            verbose=self.verbose,
        )
        report.evidence.extend(collector.collect_declarations())

        definitions = program.definitions()
        if self.jobs > 1 and len(definitions) > 1:
            with ThreadPoolExecutor(max_workers=self.jobs) as pool:
                batches = list(pool.map(
                    lambda proc: self._collect_function(collector, proc), definitions))
        else:
            batches = [self._collect_function(collector, proc) for proc in definitions]

        for proc, (evidence, error) in zip(definitions, batches):
            if error is not None:
                report.skipped.append(proc.name)
                self._diagnose(report, f"Skipping function: {error}")
                continue
            report.functions_analyzed += 1
            report.evidence.extend(evidence)

    def _collect_function(self, collector: EvidenceCollector,
                          proc: Procedure) -> Tuple[List[Evidence], Optional[str]]:
        try:
            return collector.collect_definition(proc), None
        except NullabilityError as e:
            return [], f"{proc.name}: {e}"
        except Exception as e:
            if self.verbose:
                traceback.print_exc()
            return [], f"{proc.name}: {type(e).__name__}: {e}"

    def _merge(self, report: InferenceReport, arities: Dict[str, int]) -> None:
        dropped: List[str] = []
        report.inferences = merge_evidence(report.evidence, self.max_samples,
                                           arities, dropped)
        for line in dropped:
            self._diagnose(report, line)

    def _diagnose(self, report: InferenceReport, message: str) -> None:
        report.diagnostics.append(message)
        if self.diagnostics is not None:
            print(message, file=self.diagnostics)

    def _get_frontend(self, language: str):
        """Get frontend for specified language"""
        if language == "c":
            from nullinfer.sil.frontends.c_frontend import CFrontend
            return CFrontend()
        elif language in ("cpp", "c++"):
            from nullinfer.sil.frontends.c_frontend import CppFrontend
            return CppFrontend()
        else:
            raise ValueError(f"Unsupported language: {language}")


def _arities(program: Program) -> Dict[str, int]:
    """Largest arity among the redeclarations of each symbol"""
    arities: Dict[str, int] = {}
    for proc in program.declarations:
        arities[proc.usr] = max(proc.arity, arities.get(proc.usr, 0))
    return arities


def infer_program(program: Program, **options) -> List[Inference]:
    """
    Convenience function: infer a SIL program.

    Args:
        program: The program to infer
        **options: NullabilityInferencer keyword arguments

    Returns:
        One Inference per symbol that had evidence
    """
    return NullabilityInferencer(**options).infer_program(program).inferences


def infer_source(source_code: str, filename: str = "<unknown>",
                 language: Optional[str] = None, **options) -> List[Inference]:
    """Convenience function: parse and infer one translation unit"""
    inferencer = NullabilityInferencer(**options)
    return inferencer.infer_source(source_code, filename, language).inferences
