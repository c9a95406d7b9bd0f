"""Translation of name-collision policies to Graph conflict-behavior directives."""

from enum import Enum

from onedrive_storage.errors import UnsupportedPolicy


class CollisionPolicy(Enum):
    """What the service should do when a created item's name is already taken."""

    FAIL_IF_EXISTS = "fail_if_exists"
    REPLACE_EXISTING = "replace_existing"
    GENERATE_UNIQUE_NAME = "generate_unique_name"


_CONFLICT_BEHAVIORS: dict[CollisionPolicy, str] = {
    CollisionPolicy.FAIL_IF_EXISTS: "fail",
    CollisionPolicy.REPLACE_EXISTING: "replace",
    CollisionPolicy.GENERATE_UNIQUE_NAME: "rename",
}

_POLICIES_BY_BEHAVIOR: dict[str, CollisionPolicy] = {
    behavior: policy for policy, behavior in _CONFLICT_BEHAVIORS.items()
}


def to_conflict_behavior(policy: CollisionPolicy) -> str:
    """Return the ``@microsoft.graph.conflictBehavior`` value for a policy.

    Raises:
        UnsupportedPolicy: If the value is not a mapped CollisionPolicy.
    """
    try:
        return _CONFLICT_BEHAVIORS[policy]
    except (KeyError, TypeError) as exc:
        raise UnsupportedPolicy(f"No conflict behavior for policy {policy!r}") from exc


def from_conflict_behavior(behavior: str) -> CollisionPolicy:
    """Return the policy that translates to the given conflict-behavior directive.

    Raises:
        UnsupportedPolicy: If the directive is unknown.
    """
    try:
        return _POLICIES_BY_BEHAVIOR[behavior]
    except (KeyError, TypeError) as exc:
        raise UnsupportedPolicy(f"Unknown conflict behavior {behavior!r}") from exc
