"""
Rule Hierarchy Resolver

Owns the dimension processing order and the priority ordering of rules
within each dimension.
"""

import logging
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from classification.models import (
    ClassificationRule,
    PriorityChange,
    ProcessingOrder,
    sort_rules
)
from classification.store import RuleStore
from exceptions import (
    InvalidProcessingOrderError,
    RuleNotFoundError,
    StoreError,
    UnknownRuleTypeError,
    ValidationError
)


logger = logging.getLogger("VigilRuleHierarchy")

RuleSnapshot = Dict[str, Tuple[ClassificationRule, ...]]


class RuleHierarchyResolver:
    """
    Resolve evaluation order for dimensions and rules.

    Active rules are served from an immutable in-memory snapshot that is
    swapped wholesale on refresh, so classification reads never wait on
    hierarchy writes. Writes are serialized by a single lock and committed
    to the store before the snapshot is rebuilt.
    """

    def __init__(
        self,
        store: RuleStore,
        rule_types: Sequence[str],
        default_order: Optional[Sequence[str]] = None
    ):
        """
        Initialize the resolver.

        Args:
            store: Rule store for rules and the processing order
            rule_types: Known dimensions
            default_order: Initial processing order when none is stored
        """
        self.store = store
        self._rule_types: Tuple[str, ...] = tuple(t.lower() for t in rule_types)
        self._default_order = self._validated_order(default_order or self._rule_types)

        self._write_lock = threading.RLock()
        self._order: Optional[ProcessingOrder] = None
        self._snapshot: Optional[RuleSnapshot] = None
        self._stale = True
        self._generation = 0

    # ------------------------------------------------------------------
    # Dimensions
    # ------------------------------------------------------------------

    @property
    def rule_types(self) -> List[str]:
        return list(self._rule_types)

    @property
    def write_lock(self) -> threading.RLock:
        """Lock serializing every rule and hierarchy mutation."""
        return self._write_lock

    def validate_rule_type(self, rule_type: str) -> str:
        """
        Normalize and check a dimension name.

        Raises:
            UnknownRuleTypeError: If the dimension is not configured
        """
        normalized = (rule_type or "").strip().lower()
        if normalized not in self._rule_types:
            raise UnknownRuleTypeError(
                f"Unknown rule type: {rule_type!r}",
                component="RuleHierarchyResolver",
                context={
                    "rule_type": rule_type,
                    "known_types": list(self._rule_types),
                    "errors": [{"field": "rule_type", "message": f"must be one of {list(self._rule_types)}"}]
                }
            )
        return normalized

    def _validated_order(self, rule_types: Sequence[str]) -> ProcessingOrder:
        if isinstance(rule_types, str):
            rule_types = [rule_types]
        try:
            order = ProcessingOrder(rule_types=tuple(rule_types))
        except ValueError as e:
            raise InvalidProcessingOrderError(
                f"Invalid processing order: {e}",
                component="RuleHierarchyResolver",
                context={"errors": [{"field": "processing_order", "message": str(e)}]}
            )

        errors = []
        if not order.rule_types:
            errors.append({"field": "processing_order", "message": "must contain at least one rule type"})
        for dup in order.duplicates():
            errors.append({"field": "processing_order", "message": f"duplicate rule type {dup!r}"})
        for unknown in order.unknown(self._rule_types):
            errors.append({"field": "processing_order", "message": f"unknown rule type {unknown!r}"})

        if errors:
            raise InvalidProcessingOrderError(
                f"Invalid processing order: {list(rule_types)}",
                component="RuleHierarchyResolver",
                context={"processing_order": list(rule_types), "errors": errors}
            )
        return order

    def get_processing_order(self) -> List[str]:
        """
        Current dimension order, loaded once from the store and cached.

        Raises:
            StoreError: If the order has never been loaded and the store fails
        """
        order = self._order
        if order is None:
            with self._write_lock:
                if self._order is None:
                    self._order = self._load_order()
                order = self._order
        return order.as_list()

    def _load_order(self) -> ProcessingOrder:
        stored = self.store.load_processing_order()
        if not stored:
            return self._default_order

        known = [t for t in stored if t in self._rule_types]
        if len(known) != len(stored):
            logger.warning(f"Dropping unconfigured rule types from stored processing order: {stored}")
        if not known:
            return self._default_order
        return ProcessingOrder(rule_types=tuple(dict.fromkeys(known)))

    def set_processing_order(self, rule_types: Sequence[str]) -> List[str]:
        """
        Replace the processing order.

        Raises:
            InvalidProcessingOrderError: On duplicate, unknown or missing entries
            StoreError: If the order cannot be persisted
        """
        order = self._validated_order(rule_types)
        with self._write_lock:
            self.store.save_processing_order(order.as_list())
            self._order = order
        logger.info(f"Processing order set to {order.as_list()}")
        return order.as_list()

    # ------------------------------------------------------------------
    # Rule snapshot
    # ------------------------------------------------------------------

    def refresh(self) -> RuleSnapshot:
        """
        Reload active rules from the store and swap in a new snapshot.

        Raises:
            StoreError: If the store cannot be read
        """
        generation = self._generation
        rules = self.store.load_active_rules()
        grouped: Dict[str, List[ClassificationRule]] = {t: [] for t in self._rule_types}
        for rule in rules:
            if rule.rule_type not in grouped:
                logger.warning(f"Ignoring rule {rule.id} with unconfigured type {rule.rule_type!r}")
                continue
            grouped[rule.rule_type].append(rule)

        snapshot = {t: tuple(sort_rules(group)) for t, group in grouped.items()}
        with self._write_lock:
            # An edit committed during the load keeps the snapshot stale.
            if generation == self._generation:
                self._snapshot = snapshot
                self._stale = False
        logger.debug(f"Loaded {sum(len(g) for g in snapshot.values())} active rules")
        return snapshot

    def invalidate(self) -> None:
        """Mark the snapshot for reload on the next read."""
        with self._write_lock:
            self._generation += 1
            self._stale = True

    def snapshot(self) -> RuleSnapshot:
        """
        Active rules by dimension, refreshing when stale.

        Falls back to the last-known-good snapshot when the store is down.

        Raises:
            StoreError: If no snapshot exists and the store cannot be read
        """
        current = self._snapshot
        if current is not None and not self._stale:
            return current
        try:
            return self.refresh()
        except StoreError as e:
            if current is None:
                raise
            logger.warning(f"Rule store unavailable, using last-known-good rule snapshot: {e.message}")
            return current

    def rules_for_dimension(
        self,
        rule_type: str,
        source_type: Optional[str] = None
    ) -> List[ClassificationRule]:
        """
        Active rules of one dimension in evaluation order.

        Args:
            rule_type: Dimension to resolve
            source_type: When given, only rules applicable to this source

        Returns:
            Rules sorted by priority descending, creation order ascending
        """
        rule_type = self.validate_rule_type(rule_type)
        rules = self.snapshot().get(rule_type, ())
        return [r for r in rules if r.applies_to(source_type)]

    def active_rules(self) -> List[ClassificationRule]:
        """All active rules sorted by priority across dimensions."""
        rules = [r for group in self.snapshot().values() for r in group]
        return sort_rules(rules)

    # ------------------------------------------------------------------
    # Reordering
    # ------------------------------------------------------------------

    def _load_rule(self, rule_id: str) -> ClassificationRule:
        rule = self.store.load_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id, component="RuleHierarchyResolver")
        return rule

    def _ordered_siblings(self, rule: ClassificationRule) -> List[ClassificationRule]:
        # Inactive rules are placed where they would sit if re-activated.
        siblings = [r for r in self.store.load_active_rules(rule.rule_type) if r.id != rule.id]
        siblings.append(rule)
        return sort_rules(siblings)

    def _commit_priority(self, rule: ClassificationRule, new_priority: int, reason: Optional[str] = None) -> PriorityChange:
        self.store.update_priority(rule.id, new_priority)
        self.invalidate()
        logger.info(f"Rule {rule.id} priority {rule.priority} -> {new_priority}")
        return PriorityChange(
            rule_id=rule.id,
            old_priority=rule.priority,
            new_priority=new_priority,
            changed=new_priority != rule.priority,
            reason=reason
        )

    def promote(self, rule_id: str) -> PriorityChange:
        """
        Move a rule above its immediate higher neighbor.

        Returns:
            PriorityChange; ``changed`` is False when the rule is already first

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        with self._write_lock:
            rule = self._load_rule(rule_id)
            siblings = self._ordered_siblings(rule)
            index = next(i for i, r in enumerate(siblings) if r.id == rule.id)

            if index == 0:
                logger.info(f"Promote of rule {rule_id} is a no-op: already highest in {rule.rule_type}")
                return PriorityChange(
                    rule_id=rule.id,
                    old_priority=rule.priority,
                    new_priority=rule.priority,
                    changed=False,
                    reason="already_highest"
                )

            neighbor = siblings[index - 1]
            return self._commit_priority(rule, neighbor.priority + 1, reason="promoted")

    def demote(self, rule_id: str) -> PriorityChange:
        """
        Move a rule below its immediate lower neighbor.

        Returns:
            PriorityChange; ``changed`` is False when the rule is already last

        Raises:
            RuleNotFoundError: If the rule does not exist
        """
        with self._write_lock:
            rule = self._load_rule(rule_id)
            siblings = self._ordered_siblings(rule)
            index = next(i for i, r in enumerate(siblings) if r.id == rule.id)

            if index == len(siblings) - 1:
                logger.info(f"Demote of rule {rule_id} is a no-op: already lowest in {rule.rule_type}")
                return PriorityChange(
                    rule_id=rule.id,
                    old_priority=rule.priority,
                    new_priority=rule.priority,
                    changed=False,
                    reason="already_lowest"
                )

            neighbor = siblings[index + 1]
            return self._commit_priority(rule, neighbor.priority - 1, reason="demoted")

    def set_priority(self, rule_id: str, value: int) -> PriorityChange:
        """
        Explicitly set a rule's priority; ties resolve by creation order.

        Raises:
            ValidationError: If value is not an integer
            RuleNotFoundError: If the rule does not exist
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(
                f"Priority must be an integer, got {value!r}",
                component="RuleHierarchyResolver",
                context={"errors": [{"field": "priority", "message": "must be an integer"}]}
            )

        with self._write_lock:
            rule = self._load_rule(rule_id)
            if rule.priority == value:
                return PriorityChange(
                    rule_id=rule.id,
                    old_priority=rule.priority,
                    new_priority=value,
                    changed=False,
                    reason="unchanged"
                )
            return self._commit_priority(rule, value, reason="explicit")
