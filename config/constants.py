"""
Centralized constants for the Markform engine.
Fixed defaults only; runtime overrides live in config.settings.
"""

# ===========================================
# DOCUMENT FORMAT
# ===========================================
DEFAULT_SPEC_VERSION = 'MF/0.1'
DEFAULT_PRIORITY = 'medium'
FRONTMATTER_NAMESPACE = 'markform'
VALUE_FENCE_INFO = 'value'
IMPLICIT_GROUP_ID = '_default'

# ===========================================
# ROLES
# ===========================================
AGENT_ROLE = 'agent'
USER_ROLE = 'user'
WILDCARD_ROLE = '*'
DEFAULT_ROLES = [USER_ROLE, AGENT_ROLE]
DEFAULT_ROLE_INSTRUCTIONS = {
    USER_ROLE: 'Fill in the fields you have direct knowledge of.',
    AGENT_ROLE: 'Complete the remaining fields based on the provided context.',
}

# ===========================================
# HARNESS
# ===========================================
DEFAULT_MAX_TURNS = 100               # overall turn budget per fill session
DEFAULT_MAX_PATCHES_PER_TURN = 20     # patches accepted from one agent call
DEFAULT_MAX_ISSUES_PER_TURN = 10      # issues shown to the agent per turn
DEFAULT_FILL_MODE = 'continue'

# ===========================================
# ISSUE PRIORITY SCORING
# ===========================================
PRIORITY_WEIGHTS = {
    'high': 3,
    'medium': 2,
    'low': 1,
}
ISSUE_REASON_SCORES = {
    'required_missing': 3,
    'validation_error': 2,
    'checkbox_incomplete': 2,
    'min_items_not_met': 2,
    'optional_unanswered': 1,
}
# (minimum score, tier) checked in order
PRIORITY_TIER_THRESHOLDS = [
    (5, 1),
    (4, 2),
    (3, 3),
    (2, 4),
]
LOWEST_PRIORITY_TIER = 5

# ===========================================
# LOGGING
# ===========================================
LOG_LEVEL = 'INFO'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_NAMESPACE = 'markform'
LOG_MAX_SIZE_MB = 10
LOG_BACKUP_COUNT = 5
