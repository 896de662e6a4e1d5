"""Curtailment rule storage, validation and YAML loading."""

from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import yaml

from .db import get_connection
from .models import PriorityGroup, Rule

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "rules.yaml"

EDITABLE_FIELDS = {
    "name",
    "description",
    "hard_ceiling_price",
    "soft_ceiling_price",
    "floor_price",
    "affected_priority_groups",
    "active",
    "grace_period_seconds",
}


class RuleValidationError(ValueError):
    """A rule was rejected at create/update time."""

    pass


class RuleNotFoundError(LookupError):
    pass


def parse_priority_groups(values: Iterable[str | PriorityGroup] | str) -> frozenset[PriorityGroup]:
    """Parse priority group names, rejecting unknown ones."""
    if isinstance(values, str):
        values = [v.strip() for v in values.split(",") if v.strip()]
    groups = set()
    for value in values:
        try:
            groups.add(PriorityGroup(value))
        except ValueError:
            known = ", ".join(g.value for g in PriorityGroup)
            raise RuleValidationError(f"Unknown priority group '{value}' (expected one of: {known})")
    return frozenset(groups)


def validate_rule(rule: Rule) -> None:
    """Check a rule's invariants: floor < soft ceiling <= hard ceiling."""
    if not rule.name:
        raise RuleValidationError("Rule name is required")
    if not rule.affected_priority_groups:
        raise RuleValidationError("Rule must affect at least one priority group")
    for group in rule.affected_priority_groups:
        if not isinstance(group, PriorityGroup):
            raise RuleValidationError(f"Unknown priority group '{group}'")

    soft = rule.effective_soft_ceiling
    if soft > rule.hard_ceiling_price:
        raise RuleValidationError(
            f"Soft ceiling {soft} must not exceed hard ceiling {rule.hard_ceiling_price}"
        )
    if rule.floor_price >= soft:
        raise RuleValidationError(
            f"Floor price {rule.floor_price} must be below soft ceiling {soft}"
        )
    if rule.grace_period_seconds < 0:
        raise RuleValidationError("Grace period cannot be negative")


def _to_float(data: dict, key: str, required: bool = True) -> float | None:
    value = data.get(key)
    if value is None:
        if required:
            raise RuleValidationError(f"Missing required field '{key}'")
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RuleValidationError(f"Field '{key}' must be a number, got {value!r}")


def rule_from_dict(data: dict[str, Any]) -> Rule:
    """Build and validate a Rule from user-supplied data."""
    rule = Rule(
        name=str(data.get("name") or ""),
        description=data.get("description"),
        hard_ceiling_price=_to_float(data, "hard_ceiling_price"),
        soft_ceiling_price=_to_float(data, "soft_ceiling_price", required=False),
        floor_price=_to_float(data, "floor_price"),
        affected_priority_groups=parse_priority_groups(data.get("affected_priority_groups") or []),
        active=bool(data.get("active", True)),
        grace_period_seconds=int(data.get("grace_period_seconds") or 0),
    )
    validate_rule(rule)
    return rule


def sort_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Order rules by ascending hard ceiling so the most conservative comes first."""
    return sorted(rules, key=lambda r: (r.hard_ceiling_price, r.id if r.id is not None else 0))


def _row_to_rule(row) -> Rule:
    return Rule(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        hard_ceiling_price=row["hard_ceiling_price"],
        soft_ceiling_price=row["soft_ceiling_price"],
        floor_price=row["floor_price"],
        affected_priority_groups=parse_priority_groups(row["affected_priority_groups"]),
        active=bool(row["is_active"]),
        grace_period_seconds=row["grace_period_seconds"] or 0,
        trigger_count=row["trigger_count"] or 0,
        last_triggered_at=(
            datetime.fromisoformat(row["last_triggered_at"]) if row["last_triggered_at"] else None
        ),
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
    )


def _groups_column(groups: frozenset[PriorityGroup]) -> str:
    return ",".join(sorted(g.value for g in groups))


def get_rules(db_path: Path | None = None, active_only: bool = False) -> list[Rule]:
    """Get rules in ascending hard-ceiling order."""
    query = "SELECT * FROM rules"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY hard_ceiling_price ASC, id ASC"

    with get_connection(db_path) as conn:
        rows = conn.execute(query).fetchall()
        return [_row_to_rule(row) for row in rows]


def get_active_rules(db_path: Path | None = None) -> list[Rule]:
    return get_rules(db_path, active_only=True)


def get_rule(rule_id: int, db_path: Path | None = None) -> Rule:
    with get_connection(db_path) as conn:
        row = conn.execute("SELECT * FROM rules WHERE id = ?", (rule_id,)).fetchone()
        if not row:
            raise RuleNotFoundError(f"No rule with id {rule_id}")
        return _row_to_rule(row)


def create_rule(data: dict[str, Any] | Rule, db_path: Path | None = None) -> Rule:
    """Validate and store a new rule. Returns the stored rule."""
    if isinstance(data, Rule):
        rule = data
        validate_rule(rule)
    else:
        rule = rule_from_dict(data)

    with get_connection(db_path) as conn:
        cursor = conn.execute(
            """INSERT INTO rules
               (name, description, hard_ceiling_price, soft_ceiling_price, floor_price,
                affected_priority_groups, is_active, grace_period_seconds, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                rule.name,
                rule.description,
                rule.hard_ceiling_price,
                rule.soft_ceiling_price,
                rule.floor_price,
                _groups_column(rule.affected_priority_groups),
                int(rule.active),
                rule.grace_period_seconds,
                datetime.now().isoformat(),
            ),
        )
        rule_id = cursor.lastrowid
        conn.commit()

    return get_rule(rule_id, db_path)


def update_rule(rule_id: int, data: dict[str, Any], db_path: Path | None = None) -> Rule:
    """Apply a partial update to a rule, re-validating the merged result."""
    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise RuleValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    existing = get_rule(rule_id, db_path)
    merged = {
        "name": existing.name,
        "description": existing.description,
        "hard_ceiling_price": existing.hard_ceiling_price,
        "soft_ceiling_price": existing.soft_ceiling_price,
        "floor_price": existing.floor_price,
        "affected_priority_groups": [g.value for g in existing.affected_priority_groups],
        "active": existing.active,
        "grace_period_seconds": existing.grace_period_seconds,
    }
    merged.update(data)
    rule = rule_from_dict(merged)

    with get_connection(db_path) as conn:
        conn.execute(
            """UPDATE rules SET
                   name = ?, description = ?, hard_ceiling_price = ?, soft_ceiling_price = ?,
                   floor_price = ?, affected_priority_groups = ?, is_active = ?,
                   grace_period_seconds = ?
               WHERE id = ?""",
            (
                rule.name,
                rule.description,
                rule.hard_ceiling_price,
                rule.soft_ceiling_price,
                rule.floor_price,
                _groups_column(rule.affected_priority_groups),
                int(rule.active),
                rule.grace_period_seconds,
                rule_id,
            ),
        )
        conn.commit()

    return get_rule(rule_id, db_path)


def delete_rule(rule_id: int, db_path: Path | None = None) -> None:
    with get_connection(db_path) as conn:
        cursor = conn.execute("DELETE FROM rules WHERE id = ?", (rule_id,))
        conn.commit()
        if cursor.rowcount == 0:
            raise RuleNotFoundError(f"No rule with id {rule_id}")


def record_trigger(rule_id: int, when: datetime | None = None, db_path: Path | None = None) -> None:
    """Bump a rule's trigger count after one of its outcomes was executed."""
    when = when or datetime.now()
    with get_connection(db_path) as conn:
        conn.execute(
            """UPDATE rules
               SET trigger_count = COALESCE(trigger_count, 0) + 1, last_triggered_at = ?
               WHERE id = ?""",
            (when.isoformat(), rule_id),
        )
        conn.commit()


def load_rules_from_yaml(config_path: Path | None = None) -> list[Rule]:
    """Load rule definitions from a YAML config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return [rule_from_dict(r) for r in data.get("rules", [])]


def save_rules_to_db(rules: list[Rule], db_path: Path | None = None) -> int:
    """Store rules, updating any existing rule with the same name in place.

    Updated rules keep their id and trigger history. Returns count saved.
    """
    for rule in rules:
        with get_connection(db_path) as conn:
            row = conn.execute("SELECT id FROM rules WHERE name = ?", (rule.name,)).fetchone()

        if row is None:
            create_rule(rule, db_path)
            continue

        update_rule(
            row["id"],
            {
                "description": rule.description,
                "hard_ceiling_price": rule.hard_ceiling_price,
                "soft_ceiling_price": rule.soft_ceiling_price,
                "floor_price": rule.floor_price,
                "affected_priority_groups": [g.value for g in rule.affected_priority_groups],
                "active": rule.active,
                "grace_period_seconds": rule.grace_period_seconds,
            },
            db_path,
        )
    return len(rules)
