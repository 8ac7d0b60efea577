from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from fixloop.config import FixLoopSettings
from fixloop.domains.fix import FixContext, FixerRegistry, default_registry
from fixloop.domains.scan import create as create_scanner
from fixloop.domains.scan.base import Scanner
from fixloop.domains.scan.models import Diagnostic
from fixloop.errors import AnalyzerError, CacheLockError, CommitError
from fixloop.repositories.flow_cache import FlowCache
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.type_cache import TypeCache
from fixloop.services.batch_fix.models import (
    DiagnosticOutcome,
    FixRunResult,
    FixStatus,
    Outcome,
    PassSummary,
)
from fixloop.services.batch_fix.processor import AtomicFixApplicator
from fixloop.services.batch_fix.validators import SafetyChecker
from fixloop.services.log_service import logger


@dataclass
class ExecutionConfig:
    project_root: str
    max_passes: int = 3
    smart_mode: bool = True


class PassOrchestrator:
    """Analyse, fix inside one transaction, re-analyse; repeat while it keeps helping."""

    def __init__(
        self,
        config: ExecutionConfig,
        scanner: Scanner,
        registry: FixerRegistry,
        type_cache: Optional[TypeCache] = None,
        flow_cache: Optional[FlowCache] = None,
        applicator: Optional[AtomicFixApplicator] = None,
    ) -> None:
        self.cfg = config
        self.scanner = scanner
        self.registry = registry
        self.type_cache = type_cache if config.smart_mode else None
        self.flow_cache = flow_cache if config.smart_mode else None
        self.applicator = applicator or AtomicFixApplicator(config.project_root)

        logger.info("Max passes: %s", self.max_passes)
        logger.info("Project root: %s", self.cfg.project_root)

    @property
    def max_passes(self) -> int:
        return self.cfg.max_passes if self.cfg.smart_mode else 1

    @classmethod
    def from_settings(cls, settings: FixLoopSettings) -> "PassOrchestrator":
        lock_manager = FileLockManager(settings.lock_dir) if settings.enable_locking else None
        type_cache = flow_cache = None
        if settings.smart_mode:
            type_cache = TypeCache(
                settings.type_cache_file,
                enable_locking=settings.enable_locking,
                lock_manager=lock_manager,
                lock_timeout=settings.lock_timeout,
            )
            flow_cache = FlowCache(
                settings.flow_cache_file,
                enable_locking=settings.enable_locking,
                lock_manager=lock_manager,
                lock_timeout=settings.lock_timeout,
            )
        scanner = create_scanner(
            settings.scanner,
            project_root=settings.project_root,
            paths=settings.paths,
            level=settings.level,
            options=settings.options,
            binary=settings.phpstan_binary,
            timeout=settings.analyzer_timeout,
        )
        applicator = AtomicFixApplicator(
            settings.project_root,
            backup_dir=settings.backup_dir,
            safety_checker=SafetyChecker(php_binary=settings.php_binary),
            lock_manager=lock_manager,
            lock_timeout=settings.lock_timeout,
            keep_backups=settings.keep_backups,
            enable_locking=settings.enable_locking,
        )
        config = ExecutionConfig(
            project_root=settings.project_root,
            max_passes=settings.max_passes,
            smart_mode=settings.smart_mode,
        )
        return cls(config, scanner, default_registry(), type_cache, flow_cache, applicator)

    # -------------- Run --------------
    def run(self) -> FixRunResult:
        start = datetime.now()
        result = FixRunResult(start_time=start.isoformat())

        try:
            diagnostics = self.scanner.scan()
        except AnalyzerError as e:
            return self._finish_errored(result, e)
        result.initial_count = len(diagnostics)

        if not diagnostics:
            result.add_message("No errors found")
            return self._finish(result, [])

        remaining = diagnostics
        for pass_number in range(1, self.max_passes + 1):
            logger.info("===== PASS %s/%s =====", pass_number, self.max_passes)
            summary = self._run_pass(pass_number, remaining, result)
            result.passes.append(summary)
            self._save_caches(result)

            try:
                after = self.scanner.scan()
            except AnalyzerError as e:
                return self._finish_errored(result, e, remaining)
            summary.remaining = len(after)
            logger.info("Pass %s: %s fixed, %s unfixable, %s errored, %s remaining",
                        pass_number, summary.fixed, summary.unfixable, summary.errored, len(after))

            if not after:
                result.add_message(f"All errors fixed in pass {pass_number}")
                remaining = after
                break
            if len(after) >= len(remaining):
                result.add_message(f"No further improvements possible after pass {pass_number}")
                remaining = after
                break
            if all(d.signature in summary.unfixable_signatures for d in after):
                result.add_message(f"Remaining errors are unfixable after pass {pass_number}")
                remaining = after
                break
            remaining = after
        else:
            result.add_message(f"Stopped after the maximum of {self.max_passes} pass(es)")

        return self._finish(result, remaining)

    def _run_pass(self, pass_number: int, diagnostics: List[Diagnostic], result: FixRunResult) -> PassSummary:
        summary = PassSummary(pass_number=pass_number, diagnostics_found=len(diagnostics))
        pass_outcomes: List[DiagnosticOutcome] = []
        written_facts: Dict[str, List[tuple]] = {}

        try:
            with self.applicator.transaction() as tx:
                for diagnostic in diagnostics:
                    outcome = self._fix_one(diagnostic, pass_number, written_facts, pass_outcomes)
                    pass_outcomes.append(outcome)
                tx.commit()
            summary.committed = True
        except CommitError as e:
            logger.error("Pass %s could not be committed: %s", pass_number, e)
            result.errors.append(str(e))
            for facts in written_facts.values():
                self._forget_facts(facts)
            for outcome in pass_outcomes:
                if outcome.outcome is Outcome.FIXED:
                    outcome.outcome = Outcome.ERRORED
                    outcome.reason = f"Rolled back: {e}"

        for outcome in pass_outcomes:
            if outcome.outcome is Outcome.FIXED:
                summary.fixed += 1
                path = outcome.diagnostic.file
                result.fixed_files[self._resolve(path)] = self.applicator.preserved_backups.get(self._resolve(path))
            elif outcome.outcome is Outcome.UNFIXABLE:
                summary.unfixable += 1
                summary.unfixable_signatures.add(outcome.diagnostic.signature)
            else:
                summary.errored += 1
        result.outcomes.extend(pass_outcomes)
        return summary

    def _fix_one(
        self,
        diagnostic: Diagnostic,
        pass_number: int,
        written_facts: Dict[str, List[tuple]],
        earlier: List[DiagnosticOutcome],
    ) -> DiagnosticOutcome:
        if not diagnostic.has_file:
            return DiagnosticOutcome(diagnostic, Outcome.ERRORED, pass_number, "Error is not associated with a file")

        try:
            fixer = self.registry.get_fixer_for(diagnostic)
        except Exception as e:
            logger.error(f"Fixer lookup failed for {diagnostic.file}:{diagnostic.line}: {e}")
            return DiagnosticOutcome(diagnostic, Outcome.ERRORED, pass_number, f"Fixer lookup failed: {e}")
        if fixer is None:
            return DiagnosticOutcome(diagnostic, Outcome.UNFIXABLE, pass_number, "No fixer available")

        path = self._resolve(diagnostic.file)
        context = FixContext(path, self.type_cache, self.flow_cache)
        applied = self.applicator.apply_fix(
            path,
            lambda content: fixer.fix(content, diagnostic, context),
            diagnostic,
            description=fixer.name,
        )

        if applied.reverted:
            self._mark_reverted(path, earlier, written_facts)
        if applied.status is FixStatus.APPLIED:
            written_facts.setdefault(path, []).extend(self._record_facts(context))
            return DiagnosticOutcome(diagnostic, Outcome.FIXED, pass_number, applied.message, fixer.name)
        if applied.status is FixStatus.NO_CHANGE:
            return DiagnosticOutcome(diagnostic, Outcome.UNFIXABLE, pass_number, "Fixer produced no change", fixer.name)
        if applied.status is FixStatus.REJECTED:
            reason = "Rejected by safety check: " + "; ".join(applied.validation_errors)
            return DiagnosticOutcome(diagnostic, Outcome.UNFIXABLE, pass_number, reason, fixer.name)
        return DiagnosticOutcome(diagnostic, Outcome.ERRORED, pass_number, applied.message, fixer.name)

    # -------------- Caches --------------
    def _record_facts(self, context: FixContext) -> List[tuple]:
        """Write the fixer's reports into the caches and push types along known flows."""
        if self.type_cache is None:
            return []
        if self.flow_cache is not None:
            for edge in context.flow_edges:
                self.flow_cache.record_edge(edge.origin_type, edge.origin_member, edge.dest_type, edge.dest_member, edge.kind)

        written = []
        for fact in context.type_facts:
            self.type_cache.set_file_path_for_class(fact.subject, fact.file)
            self.type_cache.set_type(fact.subject, fact.member, fact.type_info)
            written.append((fact.subject, fact.member))
            if self.flow_cache is None:
                continue
            for target in self.flow_cache.get_targets(fact.subject, fact.member):
                if self.type_cache.get_type(target.subject, target.member) is None:
                    self.type_cache.set_type(target.subject, target.member, fact.type_info)
                    written.append((target.subject, target.member))
                    logger.debug("Propagated %s::%s to %s", fact.subject, fact.member, target.key)
        return written

    def _mark_reverted(
        self,
        path: str,
        earlier: List[DiagnosticOutcome],
        written_facts: Dict[str, List[tuple]],
    ) -> None:
        """A failed fix restored ``path`` from its backup: earlier fixes to it this pass are gone."""
        for outcome in earlier:
            if outcome.outcome is Outcome.FIXED and self._resolve(outcome.diagnostic.file) == path:
                outcome.outcome = Outcome.ERRORED
                outcome.reason = "Reverted: a later fix to the same file failed"
        self._forget_facts(written_facts.pop(path, []))

    def _forget_facts(self, written: List[tuple]) -> None:
        if self.type_cache is None:
            return
        for subject, member in written:
            self.type_cache.invalidate(subject, member)

    def _save_caches(self, result: FixRunResult) -> None:
        for cache in (self.type_cache, self.flow_cache):
            if cache is None:
                continue
            try:
                cache.save()
            except CacheLockError as e:
                logger.warning("Cache not saved: %s", e)
                result.errors.append(str(e))

    # -------------- Helpers --------------
    def _resolve(self, path: str) -> str:
        if os.path.isabs(path):
            return path
        return os.path.abspath(os.path.join(self.cfg.project_root, path))

    def _finish(self, result: FixRunResult, remaining: List[Diagnostic]) -> FixRunResult:
        result.remaining_count = len(remaining)
        result.status = "clean" if not remaining else "partial"
        result.end_time = datetime.now().isoformat()
        self._log_summary(result)
        return result

    def _finish_errored(self, result: FixRunResult, error: AnalyzerError, remaining: Optional[List[Diagnostic]] = None) -> FixRunResult:
        logger.error("Analyzer failed: %s", error)
        result.remaining_count = len(remaining or [])
        result.status = "errored"
        result.errors.append(str(error))
        result.end_time = datetime.now().isoformat()
        self._log_summary(result)
        return result

    def _log_summary(self, result: FixRunResult) -> None:
        logger.info("===== FIX RUN RESULT =====")
        logger.info("Status: %s", result.status)
        logger.info("Passes: %s", len(result.passes))
        logger.info("Fixed: %s, unfixable: %s, errored: %s",
                    len(result.fixed), len(result.unfixable), len(result.errored))
        logger.info("Remaining errors: %s", result.remaining_count)
        for message in result.messages:
            logger.info(message)
