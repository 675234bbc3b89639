from __future__ import annotations

import logging
from typing import Any

from repomon.inference import build_enhancement_messages, parse_record_payload
from repomon.merge import is_default_value
from repomon.monitor_config import ConfidencePolicy
from repomon.rules import LIST_FIELDS, RuleTable, coerce_record_fields
from repomon.schemas import CanonicalRecord, Provenance, SourceType, dedupe_preserving_order
from repomon.source_adapters import InferenceProvider, SourceAdapterError

logger = logging.getLogger(__name__)

ALWAYS_APPENDED_FIELDS = ("risk_factors", "opportunities")


class AiEnhancer:
    """Second-pass gap filler for records that came out of the merge with low confidence."""

    def __init__(
        self,
        *,
        provider: InferenceProvider | None,
        policy: ConfidencePolicy,
        rules: RuleTable,
        temperature: float = 0.2,
    ) -> None:
        self._provider = provider
        self._policy = policy
        self._rules = rules
        self._temperature = temperature

    def should_enhance(self, record: CanonicalRecord) -> bool:
        return self._provider is not None and record.confidence < self._policy.enhancement_threshold

    def enhance(self, record: CanonicalRecord, *, context: str | None = None) -> CanonicalRecord:
        if not self.should_enhance(record):
            return record
        assert self._provider is not None

        messages = build_enhancement_messages(record, context=context)
        try:
            payload = parse_record_payload(self._provider.complete(messages, temperature=self._temperature))
        except SourceAdapterError as exc:
            logger.warning("enhancement skipped for %s: %s", record.id, exc)
            return record
        except Exception:
            logger.exception("enhancement provider crashed for %s", record.id)
            return record

        fields, rejected = coerce_record_fields(payload, rules=self._rules)
        if rejected:
            logger.debug("enhancement for %s rejected keys: %s", record.id, ", ".join(rejected))

        updates: dict[str, Any] = {}
        filled: list[str] = []
        for field_name, value in fields.items():
            current = getattr(record, field_name)
            if field_name in ALWAYS_APPENDED_FIELDS:
                combined = dedupe_preserving_order([*current, *value])
                if combined != current:
                    updates[field_name] = combined
                    filled.append(field_name)
            elif field_name in LIST_FIELDS:
                if not current:
                    updates[field_name] = value
                    filled.append(field_name)
            elif is_default_value(field_name, current) or (field_name == "name" and current == record.id):
                updates[field_name] = value
                filled.append(field_name)

        confidence = max(record.confidence, min(record.confidence + self._policy.ai_bonus, self._policy.ai_ceiling))
        provenance = Provenance(
            source_type=SourceType.ai,
            source_identifier=f"enhancement:{record.id}",
            confidence=confidence,
            metadata={"filled_fields": sorted(filled), "previous_confidence": record.confidence},
        )
        return CanonicalRecord.model_validate(
            {
                **record.model_dump(mode="python"),
                **updates,
                "data_sources": [*record.data_sources, provenance],
                "confidence": confidence,
            }
        )
