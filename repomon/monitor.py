from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from repomon.analysis import RecordAnalysis, analyze_record
from repomon.api_adapter import GitHubApiAdapter
from repomon.classifier import (
    StrategyName,
    classify_input,
    display_name_for_input,
    entity_id_for_input,
    plan_strategies,
)
from repomon.document_adapter import PlainTextDocumentAdapter
from repomon.document_cache import DocumentCache, InMemoryDocumentCache
from repomon.enhancement import AiEnhancer
from repomon.executor import StrategyExecutor, StrategyOutcome
from repomon.filesystem_adapter import LocalFilesystemAdapter
from repomon.git_adapter import GitCliAdapter
from repomon.inference import build_default_provider
from repomon.ledger import BusyLedgerError, LedgerStore, ManualEntryLedger, ManualEntryValidationError
from repomon.merge import apply_hints, merge_outcomes, synthesize_minimal_record
from repomon.monitor_config import MonitorConfig, load_monitor_config_from_env
from repomon.rules import RuleTable, load_rule_table
from repomon.schemas import (
    CanonicalRecord,
    DocumentInput,
    DocumentUpload,
    ManualEntry,
    ManualInput,
    MonitorInput,
    input_identifier,
    utc_now,
)
from repomon.source_adapters import (
    DocumentTextAdapter,
    ExternalApiAdapter,
    FilesystemAdapter,
    InferenceProvider,
    VersionControlAdapter,
)
from repomon.strategies import StrategyContext, build_strategies

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorOptions:
    force_method: str | None = None
    additional_context: str | None = None
    hints: Mapping[str, str] = field(default_factory=dict)
    deadline_seconds: float | None = None


class RepositoryMonitor:
    """Entry point: classify an input, run its strategies, merge, then enhance."""

    def __init__(
        self,
        *,
        config: MonitorConfig | None = None,
        git: VersionControlAdapter | None = None,
        filesystem: FilesystemAdapter | None = None,
        documents: DocumentTextAdapter | None = None,
        api: ExternalApiAdapter | None = None,
        provider: InferenceProvider | None = None,
        rules: RuleTable | None = None,
        ledger_store: LedgerStore | None = None,
        document_cache: DocumentCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or MonitorConfig()
        self.rules = rules or RuleTable()
        policy = self.config.confidence_policy
        self.ledger = ManualEntryLedger(store=ledger_store, rules=self.rules, policy=policy)
        self.document_cache = document_cache if document_cache is not None else InMemoryDocumentCache()
        self._clock = clock
        self._context = StrategyContext(
            policy=policy,
            rules=self.rules,
            git=git,
            filesystem=filesystem,
            documents=documents,
            api=api,
            provider=provider,
            temperature=self.config.inference.temperature,
            clock=clock,
        )
        self._executor = StrategyExecutor(settings=self.config.executor)
        self._enhancer = AiEnhancer(
            provider=provider,
            policy=policy,
            rules=self.rules,
            temperature=self.config.inference.temperature,
        )

    def monitor_repository(self, raw: Any, options: MonitorOptions | None = None) -> CanonicalRecord:
        """Build a record for a URL, path, document or manual entry. Never raises."""
        opts = options or MonitorOptions()
        try:
            target = classify_input(raw)
        except ValueError as exc:
            logger.warning("could not classify input: %s", exc)
            return self._minimal(str(raw) if raw is not None else "", None, opts, reason=str(exc))

        entity_id = entity_id_for_input(target)
        try:
            return self._monitor(target, entity_id, opts)
        except Exception:
            logger.exception("monitoring %s failed; returning minimal record", entity_id)
            return self._minimal(input_identifier(target), entity_id, opts, reason="internal error")

    def process_document_upload(self, document: DocumentUpload, options: MonitorOptions | None = None) -> CanonicalRecord:
        try:
            cached = self.document_cache.put(document)
        except Exception:
            logger.exception("caching document %s failed", document.id)
            cached = document
        return self.monitor_repository(DocumentInput(document=cached), options)

    def add_manual_entry(self, entry: ManualEntry) -> CanonicalRecord:
        """Append to the ledger and rebuild. Raises ``ManualEntryValidationError`` on bad input."""
        return self.ledger.add(entry)

    def analyze(self, record: CanonicalRecord, *, context: str | None = None) -> RecordAnalysis:
        return analyze_record(record, context=context, policy=self.config.confidence_policy)

    def _monitor(self, target: MonitorInput, entity_id: str, opts: MonitorOptions) -> CanonicalRecord:
        plan = plan_strategies(target, force_method=opts.force_method)
        logger.info("monitoring %s with %s", entity_id, ", ".join(name.value for name in plan) or "no strategies")

        outcomes: list[StrategyOutcome] = []
        if isinstance(target, ManualInput) and StrategyName.manual in plan:
            manual = self._record_manual(target.entry)
            if manual is not None:
                outcomes.append(StrategyOutcome(record=manual, strategy=StrategyName.manual, confidence=manual.confidence))

        strategies = build_strategies(
            plan,
            target=target,
            entity_id=entity_id,
            display_name=display_name_for_input(target),
            context=self._context,
            additional_context=opts.additional_context,
        )
        report = self._executor.run(strategies, deadline_seconds=opts.deadline_seconds)
        outcomes.extend(report.outcomes)
        if not outcomes:
            return self._minimal(input_identifier(target), entity_id, opts, reason="no strategy succeeded")

        merged = apply_hints(merge_outcomes(outcomes, now=self._clock), opts.hints)
        record = self._enhancer.enhance(merged, context=opts.additional_context)
        level = self.config.confidence_policy.level_for_score(record.confidence)
        logger.info(
            "resolved %s from %d source(s) at confidence %.2f (%s)",
            entity_id,
            len(outcomes),
            record.confidence,
            level.value if level else "below low",
        )
        return record

    def _record_manual(self, entry: ManualEntry) -> CanonicalRecord | None:
        try:
            return self.ledger.add(entry)
        except ManualEntryValidationError as exc:
            logger.warning("%s", exc)
        except (BusyLedgerError, OSError) as exc:
            logger.warning("could not record manual entry %s: %s", entry.id, exc)
        if not self.ledger.store.entries(entry.repository_id):
            return None
        return self.ledger.rebuild(entry.repository_id)

    def _minimal(self, identifier: str, entity_id: str | None, opts: MonitorOptions, *, reason: str) -> CanonicalRecord:
        return synthesize_minimal_record(
            identifier,
            entity_id=entity_id,
            hints=opts.hints,
            confidence=self.config.confidence_policy.minimal,
            reason=reason,
        )


def build_default_monitor(
    config: MonitorConfig | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    ledger_store: LedgerStore | None = None,
) -> RepositoryMonitor:
    env = os.environ if environ is None else environ
    resolved = config or load_monitor_config_from_env(env)
    rules = load_rule_table(Path(resolved.rule_table_path)) if resolved.rule_table_path else RuleTable()
    return RepositoryMonitor(
        config=resolved,
        git=GitCliAdapter(settings=resolved.git),
        filesystem=LocalFilesystemAdapter(),
        documents=PlainTextDocumentAdapter(),
        api=GitHubApiAdapter(settings=resolved.github, environ=env),
        provider=build_default_provider(resolved.inference, environ=env),
        rules=rules,
        ledger_store=ledger_store,
    )
