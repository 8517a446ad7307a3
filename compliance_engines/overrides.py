"""
compliance_engines.overrides -- Jurisdiction override precedence.

Responsibility:
    Resolves the effective rule for one entity by applying the
    jurisdiction overrides (deadline shift, exemption, extra documents,
    interest rate, form) found on the entity's jurisdiction and its
    ancestors.

Architecture position:
    Engines -- pure calculation layer.  Reads overrides and the
    jurisdiction chain through ``ReferenceSource``.

Invariants enforced:
    - Precedence is decided by ONE comparator, ``compare_overrides``:
      priority desc, then jurisdiction level desc (city beats state beats
      country), then effective_from desc (newest wins).
    - Two overrides of the same type with identical precedence raise
      AmbiguousOverrideError; the resolver never guesses.
    - The highest-precedence Exemption short-circuits resolution.
    - Same inputs always produce an equal EffectiveRule (deterministic
      ordering, deterministic fingerprint).

Failure modes:
    - AmbiguousOverrideError on a precedence tie (data-integrity bug).
    - ConfigurationError on an unknown ``applies_when`` operator.

Audit relevance:
    Overrides are legally significant: ``applied_override_ids`` and
    ``fingerprint`` record exactly which rows shaped an entry.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from functools import cmp_to_key
from typing import Any, Mapping
from uuid import UUID

from compliance_kernel.domain.reference import ReferenceSource, jurisdiction_chain
from compliance_kernel.domain.types import (
    BaseRule,
    EffectiveRule,
    JurisdictionOverride,
    OverrideType,
)
from compliance_kernel.exceptions import AmbiguousOverrideError, ConfigurationError
from compliance_kernel.logging_config import get_logger
from compliance_engines.tracer import traced_engine

logger = get_logger("engines.overrides")


@dataclass(frozen=True)
class OverrideCandidate:
    """An override together with the level of the jurisdiction it sits on."""

    override: JurisdictionOverride
    jurisdiction_level: int


def compare_overrides(a: OverrideCandidate, b: OverrideCandidate) -> int:
    """Precedence comparator.  Negative when ``a`` wins over ``b``; 0 on a tie.

    Order: priority desc, jurisdiction level desc, effective_from desc.
    """
    if a.override.priority != b.override.priority:
        return -1 if a.override.priority > b.override.priority else 1
    if a.jurisdiction_level != b.jurisdiction_level:
        return -1 if a.jurisdiction_level > b.jurisdiction_level else 1
    if a.override.effective_from != b.override.effective_from:
        return -1 if a.override.effective_from > b.override.effective_from else 1
    return 0


def order_by_precedence(candidates: list[OverrideCandidate]) -> list[OverrideCandidate]:
    """Sort winners first.  Exact ties keep override_id order so output is stable."""
    by_id = sorted(candidates, key=lambda c: str(c.override.override_id))
    return sorted(by_id, key=cmp_to_key(compare_overrides))


# =============================================================================
# applies_when predicates
# =============================================================================

_OPERATORS = frozenset({"eq", "ne", "gt", "gte", "lt", "lte", "in", "not_in"})


def _as_number(value: Any) -> Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value)
        except InvalidOperation:
            return None
    return None


def _equal(left: Any, right: Any) -> bool:
    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        return ln == rn
    return left == right


def _order(left: Any, right: Any) -> int | None:
    ln, rn = _as_number(left), _as_number(right)
    if ln is not None and rn is not None:
        return (ln > rn) - (ln < rn)
    if isinstance(left, (str, date)) and type(left) is type(right):
        return (left > right) - (left < right)
    return None


def _check_operator(op: str, actual: Any, expected: Any) -> bool:
    if op == "eq":
        return _equal(actual, expected)
    if op == "ne":
        return not _equal(actual, expected)
    if op == "in":
        return any(_equal(actual, e) for e in expected)
    if op == "not_in":
        return not any(_equal(actual, e) for e in expected)
    cmp = _order(actual, expected)
    if cmp is None:
        return False
    if op == "gt":
        return cmp > 0
    if op == "gte":
        return cmp >= 0
    if op == "lt":
        return cmp < 0
    return cmp <= 0  # lte


def matches_applies_when(predicate: Mapping[str, Any], attributes: Mapping[str, Any]) -> bool:
    """True if every condition in ``predicate`` holds for ``attributes``.

    A condition is a literal (equality), a list (membership), or a dict of
    operators (eq, ne, gt, gte, lt, lte, in, not_in).  A missing attribute
    fails its condition.
    """
    for name, condition in predicate.items():
        if name not in attributes:
            return False
        actual = attributes[name]
        if isinstance(condition, dict):
            unknown = set(condition) - _OPERATORS
            if unknown:
                raise ConfigurationError(
                    f"Unknown applies_when operator(s) {sorted(unknown)} on '{name}'",
                    subject=name,
                )
            if not all(_check_operator(op, actual, exp) for op, exp in condition.items()):
                return False
        elif isinstance(condition, (list, tuple)):
            if not any(_equal(actual, option) for option in condition):
                return False
        elif not _equal(actual, condition):
            return False
    return True


# =============================================================================
# Resolver
# =============================================================================


def _fingerprint(applied: list[JurisdictionOverride], exempt: bool) -> str:
    parts = [f"exempt={exempt}"]
    for o in applied:
        parts.append(
            f"{o.override_id}:{o.rule_type.value}:{o.deadline_offset_days}:"
            f"{o.rate_override}:{o.form_override}:{','.join(o.additional_documents)}"
        )
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()[:32]


class JurisdictionRuleResolver:
    """
    Produces the EffectiveRule for an entity.

    Contract:
        ``effective_rule`` gathers candidates on the entity's jurisdiction
        and ancestors, filters by blueprint, activity, effective window and
        ``applies_when``, orders them with ``compare_overrides``, and
        applies one winner per override type (documents accumulate).

    Non-goals:
        Does not persist anything; does not compute dates or penalties.
    """

    def __init__(self, source: ReferenceSource):
        self._source = source

    def candidates(
        self,
        base_rule: BaseRule,
        entity_attributes: Mapping[str, Any],
        jurisdiction_id: UUID,
        as_of_date: date,
    ) -> list[OverrideCandidate]:
        chain = jurisdiction_chain(self._source, jurisdiction_id)
        levels = {node.jurisdiction_id: node.level for node in chain}
        rows = self._source.list_overrides(tuple(levels))

        result: list[OverrideCandidate] = []
        for row in rows:
            if not row.is_active:
                continue
            if row.blueprint_id is not None and row.blueprint_id != base_rule.blueprint_id:
                continue
            if row.effective_from > as_of_date:
                continue
            if row.effective_until is not None and as_of_date > row.effective_until:
                continue
            if not matches_applies_when(row.applies_when, entity_attributes):
                continue
            result.append(OverrideCandidate(row, levels[row.jurisdiction_id]))
        return order_by_precedence(result)

    @traced_engine(
        "jurisdiction_rule", "1.0",
        fingerprint_fields=("base_rule", "entity_attributes", "jurisdiction_id", "as_of_date"),
    )
    def effective_rule(
        self,
        *,
        base_rule: BaseRule,
        entity_attributes: Mapping[str, Any],
        jurisdiction_id: UUID,
        as_of_date: date,
    ) -> EffectiveRule:
        ordered = self.candidates(base_rule, entity_attributes, jurisdiction_id, as_of_date)

        by_type: dict[OverrideType, list[OverrideCandidate]] = {}
        for candidate in ordered:
            by_type.setdefault(candidate.override.rule_type, []).append(candidate)

        # An exemption short-circuits; ties among other types cannot block it.
        exemption_group = by_type.pop(OverrideType.EXEMPTION, None)
        if exemption_group:
            exemption = self._winner(base_rule, OverrideType.EXEMPTION, exemption_group)
            logger.info(
                "override_exemption_applied",
                extra={
                    "rule_code": base_rule.rule_code,
                    "override_id": str(exemption.override_id),
                    "reason": exemption.reason,
                },
            )
            return EffectiveRule(
                base_rule=base_rule,
                formula=base_rule.formula,
                penalty_rule=base_rule.penalty_rule,
                form_code=base_rule.form_code,
                required_documents=base_rule.required_documents,
                exempt=True,
                exemption_reason=exemption.reason,
                applied_override_ids=(exemption.override_id,),
                fingerprint=_fingerprint([exemption], exempt=True),
            )

        winners: dict[OverrideType, JurisdictionOverride] = {
            rule_type: self._winner(base_rule, rule_type, group)
            for rule_type, group in by_type.items()
            if rule_type != OverrideType.ADDITIONAL_REQUIREMENT
        }

        applied: list[JurisdictionOverride] = []
        formula = base_rule.formula
        penalty_rule = base_rule.penalty_rule
        form_code = base_rule.form_code

        deadline = winners.get(OverrideType.DEADLINE_OVERRIDE)
        if deadline is not None and deadline.deadline_offset_days is not None:
            formula = replace(
                formula, offset_days=formula.offset_days + deadline.deadline_offset_days,
            )
            applied.append(deadline)

        rate = winners.get(OverrideType.RATE_OVERRIDE)
        if rate is not None and rate.rate_override is not None and penalty_rule is not None:
            penalty_rule = replace(penalty_rule, interest_rate_annual=rate.rate_override)
            applied.append(rate)

        form = winners.get(OverrideType.FORM_OVERRIDE)
        if form is not None and form.form_override:
            form_code = form.form_override
            applied.append(form)

        documents = list(base_rule.required_documents)
        for candidate in by_type.get(OverrideType.ADDITIONAL_REQUIREMENT, []):
            extra_docs = [d for d in candidate.override.additional_documents if d not in documents]
            documents.extend(extra_docs)
            applied.append(candidate.override)

        logger.info(
            "override_resolution_completed",
            extra={
                "rule_code": base_rule.rule_code,
                "candidate_count": len(ordered),
                "applied_override_ids": [str(o.override_id) for o in applied],
            },
        )

        return EffectiveRule(
            base_rule=base_rule,
            formula=formula,
            penalty_rule=penalty_rule,
            form_code=form_code,
            required_documents=tuple(documents),
            exempt=False,
            applied_override_ids=tuple(o.override_id for o in applied),
            fingerprint=_fingerprint(applied, exempt=False),
        )

    @staticmethod
    def _winner(
        base_rule: BaseRule, rule_type: OverrideType, group: list[OverrideCandidate],
    ) -> JurisdictionOverride:
        """First of an ordered group; raises if the top two tie."""
        if len(group) > 1 and compare_overrides(group[0], group[1]) == 0:
            tied = [c for c in group if compare_overrides(group[0], c) == 0]
            ids = [str(c.override.override_id) for c in tied]
            logger.error(
                "override_precedence_unresolved",
                extra={
                    "rule_code": base_rule.rule_code,
                    "rule_type": rule_type.value,
                    "override_ids": ids,
                    "priority": group[0].override.priority,
                    "jurisdiction_level": group[0].jurisdiction_level,
                },
            )
            raise AmbiguousOverrideError(rule_type.value, ids)
        return group[0].override
