ALLOWED_ACTION_KINDS = {"view", "add_to_cart", "purchase", "favorite", "search"}

# Actions that invalidate cached lists and trigger similarity recomputation
FEEDBACK_ACTION_KINDS = {"view", "add_to_cart", "purchase"}

# Weight of a neighbor's action when scoring user-based candidates
BEHAVIOR_WEIGHTS: dict[str, float] = {
    "purchase": 1.0,
    "add_to_cart": 0.8,
    "view": 0.5,
}
DEFAULT_BEHAVIOR_WEIGHT = 0.3

USER_BASED = "user-based"
ITEM_BASED = "item-based"
HYBRID = "hybrid"
POPULAR = "popular"

STRATEGIES = (USER_BASED, ITEM_BASED, HYBRID)
RECOMMENDATION_KINDS = {USER_BASED, ITEM_BASED, HYBRID, POPULAR}

ENTITY_USER = "user"
ENTITY_ITEM = "item"
ENTITY_KINDS = {ENTITY_USER, ENTITY_ITEM}

OUTCOMES = {"clicked", "purchased"}

USER_SIMILARITY_ALGORITHM = "jaccard"
ITEM_SIMILARITY_KINDS = {"content", "collaborative", "hybrid"}

POPULAR_ITEM_SCORE = 0.5

# shown items among this many best sellers do not count as novel
NOVELTY_POPULAR_TOP = 10


def behavior_weight(action_kind: str) -> float:
    return BEHAVIOR_WEIGHTS.get(action_kind.strip().lower(), DEFAULT_BEHAVIOR_WEIGHT)
