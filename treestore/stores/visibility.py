# treestore/stores/visibility.py
"""
CANONICAL point-in-time visibility predicate.

SINGLE SOURCE OF TRUTH for temporal filtering in every strategy.

Rows carry [valid_since, valid_until). An event stamped t takes effect after
every read stamped t, so a read at t observes the state produced by events
stamped strictly before t:

    valid_since < t AND valid_until >= t

Mutations stamped t see the same pre-event state, open their new rows with
valid_since = t and close replaced rows with valid_until = t.
"""

from typing import Any, Dict

# Sentinel valid_until of an open row
END_OF_TIME = 10 ** 7


def revision_active_at(table_alias: str) -> str:
    """
    Returns SQL WHERE clause for row visibility at :at.

    CANONICAL PREDICATE - Reuse this EXACT predicate in all queries.

    Args:
        table_alias: Table alias the predicate applies to

    Returns:
        SQL fragment using the :at parameter
    """
    a = table_alias
    return f"({a}.valid_since < :at AND {a}.valid_until >= :at)"


def get_visibility_params(timestamp: int) -> Dict[str, Any]:
    """Parameter dict for revision_active_at."""
    return {"at": timestamp}
