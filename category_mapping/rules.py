"""
Rule Store

Holds CategoryRule tables behind an interface so the mapping engine never
touches shared state directly. Usage counters and upserts are atomic, which
lets several pipelines share one store.

Rule files are JSON, one per shop:

    {
        "shop": "freshful",
        "rules": [
            {"id": "freshful-branzeturi", "pattern": "branzeturi",
             "pattern_type": "exact", "target_path": ["Lactate & ouă"]}
        ]
    }

A file with "shop": "*" holds global rules applied to every store.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import replace
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Union

from normalization.exceptions import RuleStoreError

from .models import GLOBAL_SHOP, CategoryRule

logger = logging.getLogger(__name__)


# Rules created by people win over configured ones
CREATOR_RANK = {'admin': 0, 'learning': 1, 'system': 2}


class RuleStore(ABC):
    """Storage interface for category rules."""

    @abstractmethod
    def rules_for(self, shop: str) -> List[CategoryRule]:
        """Enabled rules for a shop in match order, shop rules before global ones."""
        pass

    @abstractmethod
    def all_rules(self) -> List[CategoryRule]:
        pass

    @abstractmethod
    def get(self, rule_id: str) -> Optional[CategoryRule]:
        pass

    @abstractmethod
    def upsert(self, rule: CategoryRule) -> CategoryRule:
        """Insert or replace a rule. An existing usage_count is kept."""
        pass

    @abstractmethod
    def increment_usage(self, rule_id: str) -> int:
        """Atomically bump usage_count; returns the new value."""
        pass

    @abstractmethod
    def set_enabled(self, rule_id: str, enabled: bool) -> CategoryRule:
        pass

    def rule_usage_report(self) -> List[Dict]:
        """Rules ordered by usage, most used first."""
        rules = sorted(self.all_rules(), key=lambda r: r.usage_count, reverse=True)
        return [
            {
                'id': r.id,
                'shop': r.shop,
                'pattern': r.pattern,
                'pattern_type': r.pattern_type,
                'usage_count': r.usage_count,
                'enabled': r.enabled,
            }
            for r in rules
        ]

    def retire_unused_rules(self, min_usage: int = 1, shop: Optional[str] = None) -> List[str]:
        """
        Disable enabled rules used fewer than min_usage times.

        Rules are disabled, never deleted, so their history stays.

        Returns:
            Ids of the rules that were disabled
        """
        retired = []
        for rule in self.all_rules():
            if shop and rule.shop != shop:
                continue
            if rule.enabled and rule.usage_count < min_usage:
                self.set_enabled(rule.id, False)
                retired.append(rule.id)
        if retired:
            logger.info(f"Retired {len(retired)} unused rules (min_usage={min_usage})")
        return retired


class InMemoryRuleStore(RuleStore):
    """
    Lock-guarded in-process rule table.

    Returned rules are the stored objects; treat them as read-only and
    change them through upsert(), increment_usage() or set_enabled().
    """

    def __init__(self, rules: Optional[List[CategoryRule]] = None):
        self._rules: Dict[str, CategoryRule] = {}
        self._sequence: Dict[str, int] = {}
        self._by_shop: Dict[str, List[CategoryRule]] = {}
        self._lock = Lock()
        for rule in rules or []:
            self.upsert(rule)

    def __len__(self) -> int:
        return len(self._rules)

    def rules_for(self, shop: str) -> List[CategoryRule]:
        with self._lock:
            cached = self._by_shop.get(shop)
            if cached is None:
                cached = self._build_shop_view(shop)
                self._by_shop[shop] = cached
            return list(cached)

    def _build_shop_view(self, shop: str) -> List[CategoryRule]:
        """Caller holds the lock."""
        selected = [
            r for r in self._rules.values()
            if r.enabled and r.shop in (shop, GLOBAL_SHOP)
        ]
        selected.sort(key=lambda r: (
            r.shop != shop,
            CREATOR_RANK.get(r.created_by, 3),
            self._sequence[r.id],
        ))
        return selected

    def all_rules(self) -> List[CategoryRule]:
        with self._lock:
            return list(self._rules.values())

    def get(self, rule_id: str) -> Optional[CategoryRule]:
        with self._lock:
            return self._rules.get(rule_id)

    def upsert(self, rule: CategoryRule) -> CategoryRule:
        with self._lock:
            existing = self._rules.get(rule.id)
            if existing is not None:
                rule = replace(rule, usage_count=max(rule.usage_count, existing.usage_count))
            else:
                self._sequence[rule.id] = len(self._sequence)
            self._rules[rule.id] = rule
            self._by_shop.clear()
            return rule

    def increment_usage(self, rule_id: str) -> int:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise RuleStoreError(f"Unknown rule id: {rule_id}")
            rule.usage_count += 1
            return rule.usage_count

    def set_enabled(self, rule_id: str, enabled: bool) -> CategoryRule:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise RuleStoreError(f"Unknown rule id: {rule_id}")
            rule.enabled = enabled
            self._by_shop.clear()
            return rule


def load_rules_file(path: Union[str, Path]) -> List[CategoryRule]:
    """
    Load one shop rule file.

    Raises:
        RuleStoreError: If the file is unreadable or an entry is invalid
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise RuleStoreError(f"Cannot read rule file {path}: {e}")

    if not isinstance(data, dict) or not isinstance(data.get('rules'), list):
        raise RuleStoreError(f"Rule file {path} must contain a 'rules' list")

    shop = data.get('shop') or path.stem
    rules = []
    for i, entry in enumerate(data['rules']):
        try:
            rules.append(CategoryRule.from_dict(entry, shop=shop))
        except (KeyError, TypeError, ValueError) as e:
            raise RuleStoreError(f"Invalid rule #{i} in {path}: {e}")
    return rules


class JsonRuleStore(InMemoryRuleStore):
    """
    Rule store backed by a directory of <shop>.json files.

    Usage counters live in memory until save() writes them back, so a
    later run starts from the counts this run produced.
    """

    def __init__(self, rules_dir: Union[str, Path]):
        self.rules_dir = Path(rules_dir)
        self._file_shops: Dict[str, Path] = {}
        super().__init__()
        self.reload()

    def reload(self):
        """(Re)load every rule file in the directory."""
        if not self.rules_dir.is_dir():
            raise RuleStoreError(f"Rules directory not found: {self.rules_dir}")

        count = 0
        for path in sorted(self.rules_dir.glob('*.json')):
            rules = load_rules_file(path)
            for rule in rules:
                self.upsert(rule)
                self._file_shops.setdefault(rule.shop, path)
            count += len(rules)
        logger.info(f"Loaded {count} category rules from {self.rules_dir}")

    def _path_for(self, shop: str) -> Path:
        name = '_global' if shop == GLOBAL_SHOP else shop
        return self._file_shops.get(shop, self.rules_dir / f"{name}.json")

    def save(self, shop: Optional[str] = None):
        """Write rules (with usage counters) back to disk, one file per shop."""
        rules = self.all_rules()
        shops = [shop] if shop else sorted({r.shop for r in rules})

        for shop_id in shops:
            path = self._path_for(shop_id)
            payload = {
                'shop': shop_id,
                'rules': [r.to_dict() for r in rules if r.shop == shop_id],
            }
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                os.replace(tmp_path, path)
            except OSError as e:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise RuleStoreError(f"Cannot write rule file {path}: {e}")
            self._file_shops[shop_id] = path
            logger.debug(f"Saved {len(payload['rules'])} rules for {shop_id} to {path}")
